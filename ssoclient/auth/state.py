"""Anti-CSRF state storage with one-time consumption.

Each pending authorization request is stored under a key derived from a
SHA-256 hash of its state value, so the session keyspace never exposes
live state values. Consumption relies on the store's atomic ``pop``: when
two callbacks race on the same state, only the first read sees the entry.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import secrets
import string

from typing import TYPE_CHECKING, Any

from ..exceptions import (
    InvalidParameterError,
    LaunchTokenError,
    StorageBackendError,
    StorageError,
)
from ..log import mask_token
from ..types import AuthorizationRequest, LaunchTokenState
from .pkce import PKCEChallenge


if TYPE_CHECKING:
    from ..clock import Clock
    from ..config import SSOClientSettings
    from ..storage.base import KeyValueStore


logger = logging.getLogger("ssoclient.auth")

MIN_STATE_LENGTH = 32

_STATE_ALPHABET = string.ascii_letters + string.digits


class StateStore:
    """Session-scoped store of pending authorization requests.

    Parameters
    ----------
    store : KeyValueStore
        The session-scoped key/value store (possibly encrypted).
    clock : Clock
        Time source for creation and expiry timestamps.
    prefix : str
        Session key prefix (default "sso_").
    lifetime : float
        Seconds a stored request stays valid (default 900).
    state_length : int
        Default length of generated state values (default 40).
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock,
        prefix: str = "sso_",
        lifetime: float = 900.0,
        state_length: int = 40,
    ) -> None:
        self._store = store
        self._clock = clock
        self._prefix = f"{prefix}state_"
        self.lifetime = lifetime
        self.state_length = state_length

    @classmethod
    def from_settings(
        cls, settings: SSOClientSettings, store: KeyValueStore, clock: Clock
    ) -> StateStore:
        """Create a state store from client settings."""
        return cls(
            store,
            clock,
            prefix=settings.session.prefix,
            lifetime=settings.session.lifetime * 60.0,
            state_length=settings.security.state_length,
        )

    def generate_state(self, length: int | None = None) -> str:
        """Generate a cryptographically secure state value.

        Parameters
        ----------
        length : int, optional
            Number of characters (defaults to the configured state length).

        Returns
        -------
        str
            A random alphanumeric string.

        Raises
        ------
        InvalidParameterError
            If ``length`` is below 32.
        """
        length = self.state_length if length is None else length
        if length < MIN_STATE_LENGTH:
            msg = f"State length must be at least {MIN_STATE_LENGTH} characters"
            raise InvalidParameterError(msg, length=length)
        return "".join(secrets.choice(_STATE_ALPHABET) for _ in range(length))

    def key_for(self, state: str) -> str:
        """Derive the storage key for a state value."""
        digest = hashlib.sha256(state.encode("utf-8")).hexdigest()
        return f"{self._prefix}{digest}"

    async def store(
        self,
        state: str,
        payload: dict[str, Any] | None = None,
        ttl: float | None = None,
    ) -> AuthorizationRequest:
        """Persist a pending authorization request.

        Parameters
        ----------
        state : str
            The state value sent to the provider.
        payload : dict[str, Any], optional
            PKCE fields (``code_verifier``, ``code_challenge``,
            ``challenge_method``) and any extra data to bind to the state.
        ttl : float, optional
            Seconds until expiry (defaults to the configured lifetime).

        Returns
        -------
        AuthorizationRequest
            The stored request.
        """
        ttl = self.lifetime if ttl is None else ttl
        now = self._clock.now()
        data = dict(payload or {})
        request = AuthorizationRequest(
            state=state,
            created_at=now,
            expires_at=now + ttl,
            code_verifier=data.pop("code_verifier", None),
            code_challenge=data.pop("code_challenge", None),
            challenge_method=data.pop("challenge_method", None),
            extra={k: v for k, v in data.items() if k not in ("state", "created_at", "expires_at")},
        )
        await self._store.put(self.key_for(state), json.dumps(request.to_dict()), ttl)
        logger.debug("Stored authorization state %s (ttl=%ss)", mask_token(state), ttl)
        return request

    async def store_pkce(
        self, state: str, pkce: PKCEChallenge, ttl: float | None = None
    ) -> AuthorizationRequest:
        """Persist a state value with its bound PKCE pair."""
        return await self.store(
            state,
            {
                "code_verifier": pkce.verifier,
                "code_challenge": pkce.challenge,
                "challenge_method": pkce.method,
            },
            ttl,
        )

    async def retrieve(self, state: str, consume: bool = True) -> AuthorizationRequest | None:
        """Look up the request bound to a state value.

        Parameters
        ----------
        state : str
            The state value returned by the provider.
        consume : bool
            Delete the entry before returning it (default True). Consumption
            is atomic, so concurrent callers on one state see it at most once.

        Returns
        -------
        AuthorizationRequest or None
            The request, or None if absent, mismatched, expired or corrupted.
        """
        if not state:
            return None
        key = self.key_for(state)
        try:
            raw = await (self._store.pop(key) if consume else self._store.get(key))
        except StorageBackendError:
            raise
        except StorageError:
            logger.warning("Discarding undecryptable state record")
            await self._store.forget(key)
            return None
        if raw is None:
            logger.debug("No stored state for %s", mask_token(state))
            return None

        request = self._decode(raw)
        if request is None:
            logger.warning("Discarding malformed state record")
            await self._store.forget(key)
            return None
        if not secrets.compare_digest(request.state.encode("utf-8"), state.encode("utf-8")):
            logger.warning("State mismatch for %s", mask_token(state))
            return None
        if request.is_expired(self._clock.now()):
            logger.debug("State %s has expired", mask_token(state))
            await self._store.forget(key)
            return None
        return request

    async def retrieve_pkce(self, state: str) -> PKCEChallenge | None:
        """Read the PKCE pair bound to a state without consuming it."""
        request = await self.retrieve(state, consume=False)
        if request is None or not request.has_pkce:
            return None
        return PKCEChallenge(
            verifier=request.code_verifier or "",
            challenge=request.code_challenge or "",
            method=request.challenge_method or "S256",
        )

    async def validate(self, state: str) -> bool:
        """Consume a state value, returning whether it was valid."""
        return await self.retrieve(state, consume=True) is not None

    async def discard(self, state: str) -> bool:
        """Delete any request stored for a state value."""
        if not state:
            return False
        return await self._store.forget(self.key_for(state))

    async def sweep(self) -> int:
        """Remove expired and unreadable entries.

        Returns
        -------
        int
            Number of entries removed.
        """
        removed = 0
        now = self._clock.now()
        for key in await self._store.keys(self._prefix):
            try:
                raw = await self._store.get(key)
            except StorageBackendError:
                raise
            except StorageError:
                raw = None
            request = self._decode(raw) if raw is not None else None
            if (request is None or request.is_expired(now)) and await self._store.forget(key):
                removed += 1
        if removed:
            logger.debug("Swept %d stale state entries", removed)
        return removed

    async def clear_all(self) -> int:
        """Remove every state entry of the session."""
        removed = 0
        for key in await self._store.keys(self._prefix):
            if await self._store.forget(key):
                removed += 1
        return removed

    @staticmethod
    def _decode(raw: str) -> AuthorizationRequest | None:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                return None
            return AuthorizationRequest.from_dict(data)
        except (ValueError, KeyError, TypeError):
            return None

    @staticmethod
    def decode_launch_token(value: str | None) -> LaunchTokenState | None:
        """Detect a state value that encodes a provider launch token.

        Deep-link launches carry a base64 (standard or url-safe) JSON object
        ``{"launch_token": ..., "state": ...}`` in place of a local state.

        Returns
        -------
        LaunchTokenState or None
            The decoded launch reference, or None for an ordinary state.

        Raises
        ------
        LaunchTokenError
            If a launch token is present without a non-empty ``state``.
        """
        if not value:
            return None
        normalized = value.strip().replace("-", "+").replace("_", "/")
        normalized += "=" * (-len(normalized) % 4)
        try:
            decoded = base64.b64decode(normalized, validate=True)
            data = json.loads(decoded.decode("utf-8"))
        except (binascii.Error, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        launch_token = data.get("launch_token")
        if not isinstance(launch_token, str) or not launch_token:
            return None
        inner_state = data.get("state")
        if not isinstance(inner_state, str) or not inner_state:
            raise LaunchTokenError("Launch token state is missing")
        return LaunchTokenState(launch_token=launch_token, state=inner_state)
