"""
Offline books: a local-first store for clients, estimates and invoices.
"""

__version__ = "0.1.0"
