"""
MCP Memory Storage Module
=========================
Store adapter contract, bounded connection pool and the SQLite adapter.
"""

from .base import StoreAdapter
from .sqlite_store import SQLiteStore

__all__ = ["StoreAdapter", "SQLiteStore"]
