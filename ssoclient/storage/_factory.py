"""Factory functions for session stores and the process-wide cache."""

from __future__ import annotations

import logging

from functools import lru_cache
from typing import TYPE_CHECKING

from ..exceptions import InvalidParameterError
from .encrypted import EncryptedKeyValueStore, generate_key
from .memory import MemoryKeyValueStore


if TYPE_CHECKING:
    from ..clock import Clock
    from ..config import SSOClientSettings
    from .base import KeyValueStore


logger = logging.getLogger("ssoclient.storage")


class _ProcessKeyHolder:
    """Holder for the process-local encryption key to avoid global statement."""

    value: str | None = None


_process_key_holder = _ProcessKeyHolder()


def _encryption_key(settings: SSOClientSettings) -> str:
    """Get the configured encryption key, or a process-local fallback."""
    if settings.security.encryption_key:
        return settings.security.encryption_key
    if _process_key_holder.value is None:
        logger.warning(
            "No session encryption key configured; generated a process-local key. "
            "Encrypted session data will not survive a restart or be readable "
            "by other workers. Set SSOCLIENT_SECURITY__ENCRYPTION_KEY."
        )
        _process_key_holder.value = generate_key()
    return _process_key_holder.value


def create_session_store(
    settings: SSOClientSettings,
    session_id: str,
    clock: Clock | None = None,
) -> KeyValueStore:
    """Build a session-scoped store from settings.

    Parameters
    ----------
    settings : SSOClientSettings
        Client settings; ``session.backend`` selects memory or Redis and
        ``security.encrypt_tokens`` enables Fernet encryption at rest.
    session_id : str
        Identifier of the user session owning the store. On Redis it is
        part of the key namespace, so sessions never see each other's
        authorization requests or tokens.
    clock : Clock, optional
        Time source for the memory backend.

    Returns
    -------
    KeyValueStore
        The session store.
    """
    if not isinstance(session_id, str) or not session_id.strip():
        msg = "A non-empty session id is required"
        raise InvalidParameterError(msg, parameter="session_id")

    store: KeyValueStore
    if settings.session.backend == "redis":
        from .redis import RedisKeyValueStore

        store = RedisKeyValueStore(
            redis_url=settings.session.redis_url,
            prefix=f"{settings.session.prefix}session:{session_id}",
        )
    else:
        store = MemoryKeyValueStore(clock=clock)

    if settings.security.encrypt_tokens:
        store = EncryptedKeyValueStore(store, _encryption_key(settings))
    return store


@lru_cache(maxsize=1)
def get_shared_cache() -> KeyValueStore:
    """Get the process-wide cache for discovery documents and key sets.

    Returns
    -------
    KeyValueStore
        The shared in-memory cache instance.
    """
    return MemoryKeyValueStore()


def reset_shared_cache() -> None:
    """Drop the shared cache instance and the process-local encryption key.

    Useful for tests that need fresh state between runs.
    """
    get_shared_cache.cache_clear()
    _process_key_holder.value = None
