"""Redis key/value store.

Production backend for multi-worker deployments where sessions or the
provider metadata cache must be shared between processes.
Requires the `redis` package: pip install ssoclient[redis]
"""

from __future__ import annotations

import math

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from ..exceptions import StorageBackendError
from .base import KeyValueStore


if TYPE_CHECKING:
    from collections.abc import Iterator

    from redis.asyncio import Redis


# Characters with a meaning in SCAN MATCH patterns
_GLOB_SPECIAL = frozenset("*?[]\\")


def _escape_glob(value: str) -> str:
    return "".join(f"\\{char}" if char in _GLOB_SPECIAL else char for char in value)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store using native key expiry.

    Connection and command failures are raised as ``StorageBackendError``.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Namespace prepended to every key (default "ssoclient").
    pool_size : int
        Maximum pooled connections (default 10).
    redis_client : Redis, optional
        Existing async client to use instead of opening a pool, e.g. fakeredis.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "ssoclient",
        pool_size: int = 10,
        *,
        redis_client: Redis | None = None,
    ) -> None:
        """Initialize the Redis store."""
        try:
            from redis.asyncio import Redis as RedisClient
            from redis.exceptions import RedisError
        except ImportError:
            msg = "Redis backend requires the 'redis' package. Install with: pip install redis"
            raise ImportError(msg) from None

        self._prefix = prefix
        self._errors: tuple[type[Exception], ...] = (RedisError, OSError)
        if redis_client is not None:
            self._redis: Any = redis_client
            return
        self._redis = RedisClient.from_url(
            redis_url,
            max_connections=pool_size,
            decode_responses=True,
        )

    def _key(self, key: str) -> str:
        """Namespace a key."""
        return f"{self._prefix}:{key}"

    @contextmanager
    def _command(self, operation: str, key: str) -> Iterator[None]:
        try:
            yield
        except self._errors as exc:
            msg = f"Redis {operation} failed: {exc.__class__.__name__}"
            raise StorageBackendError(msg, operation=operation, key=key) from exc

    async def get(self, key: str) -> str | None:
        """Get a value from Redis."""
        with self._command("get", key):
            return await self._redis.get(self._key(key))  # type: ignore[no-any-return]

    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        """Store a value in Redis, with expiry when a TTL is given."""
        with self._command("put", key):
            if ttl is not None:
                await self._redis.setex(self._key(key), max(1, math.ceil(ttl)), value)
            else:
                await self._redis.set(self._key(key), value)

    async def pop(self, key: str) -> str | None:
        """Read and delete a value atomically with GETDEL."""
        with self._command("pop", key):
            return await self._redis.getdel(self._key(key))  # type: ignore[no-any-return]

    async def forget(self, key: str) -> bool:
        """Delete a value from Redis."""
        with self._command("forget", key):
            return bool(await self._redis.delete(self._key(key)))

    async def keys(self, prefix: str = "") -> list[str]:
        """List keys in Redis matching the prefix."""
        pattern = f"{_escape_glob(self._key(prefix))}*"
        strip = len(self._key(""))
        with self._command("keys", prefix):
            return [k[strip:] async for k in self._redis.scan_iter(match=pattern)]

    async def close(self) -> None:
        """Close the Redis connection pool."""
        with self._command("close", ""):
            await self._redis.aclose()
