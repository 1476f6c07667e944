"""
Storage layer: schema registry, SQLite engine, record types and repositories.
"""
