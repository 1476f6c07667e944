"""
Core modules for offline books.

This package contains the money calculations and the export/import
engine that moves a dataset between devices.
"""
