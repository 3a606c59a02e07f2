"""Pluggable key/value storage for session data and provider metadata.

Backends:
- MemoryKeyValueStore: in-process, clock-driven TTL (default)
- RedisKeyValueStore: shared across workers (requires ``redis``)
- EncryptedKeyValueStore: Fernet encryption at rest around any backend
"""

from __future__ import annotations

from ._factory import create_session_store, get_shared_cache, reset_shared_cache
from .base import KeyValueStore
from .encrypted import EncryptedKeyValueStore, generate_key
from .memory import MemoryKeyValueStore


__all__ = [
    "EncryptedKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "create_session_store",
    "generate_key",
    "get_shared_cache",
    "reset_shared_cache",
]
