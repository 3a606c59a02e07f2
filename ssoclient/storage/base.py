"""Abstract base class for pluggable key/value storage.

The protocol core keeps per-session data (authorization requests, the token
set) and process-wide data (discovery document, JWKS) behind this one
interface, so Redis or any other TTL-capable store can be plugged in.
"""

# pylint: disable=unnecessary-ellipsis

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Abstract async key/value store with TTL semantics.

    Values are strings; callers serialize their own payloads.
    Implementations must be safe for concurrent use from one event loop.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get a value.

        Parameters
        ----------
        key : str
            The key to look up.

        Returns
        -------
        str or None
            The stored value, or None if absent or expired.
        """
        ...

    @abstractmethod
    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        """Store a value.

        Parameters
        ----------
        key : str
            The key to write.
        value : str
            The value to store.
        ttl : float or None
            Seconds until the entry expires (None for no expiry).
        """
        ...

    @abstractmethod
    async def pop(self, key: str) -> str | None:
        """Atomically read and delete a value.

        When two callers race on the same key at most one receives the
        value; the other receives None.

        Parameters
        ----------
        key : str
            The key to consume.

        Returns
        -------
        str or None
            The stored value, or None if absent or expired.
        """
        ...

    @abstractmethod
    async def forget(self, key: str) -> bool:
        """Delete a value.

        Parameters
        ----------
        key : str
            The key to delete.

        Returns
        -------
        bool
            True if an entry was removed.
        """
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with ``prefix``.

        Parameters
        ----------
        prefix : str
            Key prefix filter (empty for all keys).

        Returns
        -------
        list[str]
            Matching keys.
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Release any held connections."""
