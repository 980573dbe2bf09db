"""Persistent state store and typed container access."""

from .backends import LegacyJSONStore, SQLiteBackend
from .containers import Containers
from .store import Keys, StateStore, StorageWriteError

__all__ = [
    "Containers",
    "Keys",
    "LegacyJSONStore",
    "SQLiteBackend",
    "StateStore",
    "StorageWriteError",
]
