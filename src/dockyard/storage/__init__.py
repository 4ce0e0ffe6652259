"""Dockyard record store."""

from dockyard.storage.base import StorageBackend
from dockyard.storage.sqlite_store import SQLiteStore

__all__ = ["SQLiteStore", "StorageBackend"]
