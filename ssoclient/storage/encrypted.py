"""Encryption-at-rest decorator for key/value stores.

Wraps any ``KeyValueStore`` and encrypts every value with Fernet
(AES-128-CBC + HMAC-SHA256) before it reaches the inner store.
"""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import StorageError
from .base import KeyValueStore


def generate_key() -> str:
    """Generate a new url-safe base64 Fernet key."""
    return Fernet.generate_key().decode("ascii")


class EncryptedKeyValueStore(KeyValueStore):
    """Store decorator that encrypts values with Fernet.

    Keys are passed through unchanged; callers that must not leak
    guessable values through the keyspace hash them first.

    Parameters
    ----------
    inner : KeyValueStore
        The store holding the ciphertext.
    key : str or bytes
        Fernet key (see ``generate_key``).

    Raises
    ------
    StorageError
        On read, if a stored value cannot be decrypted.
    """

    def __init__(self, inner: KeyValueStore, key: str | bytes) -> None:
        """Initialize the encrypted store."""
        try:
            self._fernet = Fernet(key)
        except (TypeError, ValueError) as exc:
            msg = "Invalid session encryption key"
            raise StorageError(msg, reason=str(exc)) from exc
        self._inner = inner

    @property
    def inner(self) -> KeyValueStore:
        """The wrapped store."""
        return self._inner

    def _encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def _decrypt(self, key: str, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            return self._fernet.decrypt(value.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            msg = "Stored value could not be decrypted"
            raise StorageError(msg, key=key) from exc

    async def get(self, key: str) -> str | None:
        """Get and decrypt a value."""
        return self._decrypt(key, await self._inner.get(key))

    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        """Encrypt and store a value."""
        await self._inner.put(key, self._encrypt(value), ttl)

    async def pop(self, key: str) -> str | None:
        """Atomically consume and decrypt a value.

        The entry is removed even when decryption fails.
        """
        return self._decrypt(key, await self._inner.pop(key))

    async def forget(self, key: str) -> bool:
        """Delete a value."""
        return await self._inner.forget(key)

    async def keys(self, prefix: str = "") -> list[str]:
        """List keys of the inner store."""
        return await self._inner.keys(prefix)

    async def close(self) -> None:
        """Close the inner store."""
        await self._inner.close()
