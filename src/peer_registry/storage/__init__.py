"""Persistence — key-value cache backends and the directory store."""

from peer_registry.storage.cache import KeyValueCache, MemoryCache, SqliteCache
from peer_registry.storage.directory import DirectoryStore

__all__ = ["DirectoryStore", "KeyValueCache", "MemoryCache", "SqliteCache"]
