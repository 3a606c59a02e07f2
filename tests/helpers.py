"""Shared test doubles and builders."""

from __future__ import annotations

import asyncio

from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

import httpx


if TYPE_CHECKING:
    from collections.abc import Coroutine


ISSUER = "https://sso.example.com"
CLIENT_ID = "client-123"
CLIENT_SECRET = "secret-xyz"  # noqa: S105
REDIRECT_URI = "https://app.example.com/callback"

DISCOVERY_PATH = "/.well-known/openid-configuration"
TOKEN_PATH = "/oauth/token"
REVOKE_PATH = "/oauth/revoke"
USERINFO_PATH = "/api/user"
JWKS_PATH = "/oauth/jwks"

Responder = Callable[[httpx.Request], httpx.Response]


def run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


class ManualClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeProvider:
    """Scripted identity provider served through ``httpx.MockTransport``.

    Each route holds a queue of responders; the last one is reused once
    the queue is down to a single entry. Every request is recorded.
    """

    def __init__(self, discovery: dict[str, Any]) -> None:
        self.discovery = discovery
        self.calls: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.transport = httpx.MockTransport(self._handle)
        self.add_handler(
            "GET",
            DISCOVERY_PATH,
            lambda request: httpx.Response(200, json=self.discovery),
        )

    def add(self, method: str, path: str, status: int = 200, json: Any = None) -> None:
        """Queue a JSON response for a route."""
        self.add_handler(method, path, lambda request: httpx.Response(status, json=json))

    def add_handler(self, method: str, path: str, handler: Responder) -> None:
        """Queue a custom responder for a route."""
        self.routes.setdefault((method, path), []).append(handler)

    def replace(self, method: str, path: str, status: int = 200, json: Any = None) -> None:
        """Drop queued responders for a route and set a single response."""
        self.routes.pop((method, path), None)
        self.add(method, path, status, json)

    def calls_to(self, path: str) -> list[httpx.Request]:
        """Requests recorded for a path."""
        return [request for request in self.calls if request.url.path == path]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": "not_found"})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        return responder(request)


def discovery_document(issuer: str = ISSUER) -> dict[str, Any]:
    """Build a complete discovery document."""
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth/authorize",
        "token_endpoint": f"{issuer}{TOKEN_PATH}",
        "userinfo_endpoint": f"{issuer}{USERINFO_PATH}",
        "jwks_uri": f"{issuer}{JWKS_PATH}",
        "revocation_endpoint": f"{issuer}{REVOKE_PATH}",
        "end_session_endpoint": f"{issuer}/logout",
        "scopes_supported": ["openid", "profile", "email"],
        "response_types_supported": ["code"],
        "code_challenge_methods_supported": ["S256", "plain"],
    }


def token_response(**overrides: Any) -> dict[str, Any]:
    """Build a successful token endpoint body; pass ``key=None`` to drop a field."""
    body: dict[str, Any] = {
        "access_token": "at_issued_0123456789",
        "token_type": "Bearer",
        "expires_in": 3600,
        "refresh_token": "rt_issued_0123456789",
        "id_token": "header.payload.signature",
        "scope": "openid profile email",
    }
    body.update(overrides)
    return {k: v for k, v in body.items() if v is not None}


def form(request: httpx.Request) -> dict[str, str]:
    """Decode a form-encoded request body."""
    return dict(parse_qsl(request.content.decode("utf-8")))
