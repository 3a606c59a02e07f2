"""Session persistence of the token set."""

from __future__ import annotations

import json
import logging

from typing import TYPE_CHECKING

from ..exceptions import StorageBackendError, StorageError
from ..types import TokenSet


if TYPE_CHECKING:
    from ..storage.base import KeyValueStore


logger = logging.getLogger("ssoclient.auth")


class SessionTokenStore:
    """Stores the current session's TokenSet under one session key.

    An undecodable record is removed and treated as absent.

    Parameters
    ----------
    store : KeyValueStore
        The session-scoped key/value store.
    key : str
        Session key of the token set (default "sso_tokens").
    """

    def __init__(self, store: KeyValueStore, key: str = "sso_tokens") -> None:
        self._store = store
        self.key = key

    async def save(self, tokens: TokenSet) -> None:
        """Persist a token set, replacing any previous one."""
        await self._store.put(self.key, json.dumps(tokens.to_dict()))

    async def load(self) -> TokenSet | None:
        """Load the stored token set, or None if absent or unreadable."""
        try:
            raw = await self._store.get(self.key)
        except StorageBackendError:
            raise
        except StorageError:
            logger.warning("Discarding undecryptable token record")
            await self._store.forget(self.key)
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise TypeError("token record is not an object")
            return TokenSet.from_dict(data)
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed token record")
            await self._store.forget(self.key)
            return None

    async def clear(self) -> bool:
        """Remove the stored token set."""
        return await self._store.forget(self.key)
