"""In-memory key/value store.

Default backend for single-process deployments, development and tests.
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING

from ..clock import SystemClock
from .base import KeyValueStore


if TYPE_CHECKING:
    from ..clock import Clock


class MemoryKeyValueStore(KeyValueStore):
    """In-memory store with clock-driven TTL expiry.

    Thread-safe within one event loop via asyncio.Lock. Expired entries
    are dropped lazily on access.

    Parameters
    ----------
    clock : Clock, optional
        Time source for TTL checks (defaults to the system clock).
    """

    def __init__(self, clock: Clock | None = None) -> None:
        """Initialize the memory store."""
        self._clock = clock or SystemClock()
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> str | None:
        """Return a live value, evicting it if expired. Caller holds the lock."""
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock.now():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        """Get a value from memory."""
        async with self._lock:
            return self._live(key)

    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        """Store a value in memory."""
        expires_at = self._clock.now() + ttl if ttl is not None else None
        async with self._lock:
            self._data[key] = (value, expires_at)

    async def pop(self, key: str) -> str | None:
        """Read and delete a value under a single lock acquisition."""
        async with self._lock:
            value = self._live(key)
            self._data.pop(key, None)
            return value

    async def forget(self, key: str) -> bool:
        """Delete a value from memory."""
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        """List live keys in memory."""
        async with self._lock:
            return [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]
