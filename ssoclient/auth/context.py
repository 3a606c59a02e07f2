"""Explicit dependency bundle handed to the auth flow manager."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..clock import SystemClock
from ..config import get_settings
from ..http import HttpTransport
from ..log import configure_from_settings
from ..storage import create_session_store, get_shared_cache


if TYPE_CHECKING:
    import httpx

    from ..clock import Clock
    from ..config import SSOClientSettings
    from ..storage.base import KeyValueStore


@dataclass
class AuthContext:
    """Configuration plus the collaborators one client instance works with.

    Attributes
    ----------
    settings : SSOClientSettings
        Client configuration.
    session_store : KeyValueStore
        Session-scoped store for authorization requests and the token set.
    cache : KeyValueStore
        Process-wide cache for discovery documents and key sets.
    transport : HttpTransport
        HTTP transport for all provider calls.
    clock : Clock
        Time source for every expiry comparison.
    """

    settings: SSOClientSettings
    session_store: KeyValueStore
    cache: KeyValueStore
    transport: HttpTransport
    clock: Clock

    @classmethod
    def from_settings(
        cls,
        settings: SSOClientSettings | None = None,
        *,
        session_id: str | None = None,
        session_store: KeyValueStore | None = None,
        cache: KeyValueStore | None = None,
        clock: Clock | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> AuthContext:
        """Build a context, filling unset collaborators from settings.

        Parameters
        ----------
        settings : SSOClientSettings, optional
            Client configuration (defaults to ``get_settings()``).
        session_id : str, optional
            Identifier of the user session, e.g. the web framework session
            id. Required unless ``session_store`` is given.
        session_store : KeyValueStore, optional
            Session store (defaults to ``create_session_store``).
        cache : KeyValueStore, optional
            Shared cache (defaults to ``get_shared_cache()``).
        clock : Clock, optional
            Time source (defaults to the system clock).
        http_transport : httpx.AsyncBaseTransport, optional
            Low-level httpx transport, e.g. ``httpx.MockTransport`` in tests.
        """
        settings = settings or get_settings()
        clock = clock or SystemClock()
        configure_from_settings(settings.log)
        if session_store is None:
            session_store = create_session_store(settings, session_id or "", clock)
        return cls(
            settings=settings,
            session_store=session_store,
            cache=cache or get_shared_cache(),
            transport=HttpTransport.from_settings(
                settings.http,
                verify=settings.security.verify_ssl,
                transport=http_transport,
            ),
            clock=clock,
        )
