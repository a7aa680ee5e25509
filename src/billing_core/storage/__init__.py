from .base import CacheBackend, CollectionSpec, Document
from .sqlite import MEMORY, SqliteBackend

__all__ = ["CacheBackend", "CollectionSpec", "Document", "MEMORY", "SqliteBackend"]
