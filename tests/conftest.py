"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from ssoclient.auth.context import AuthContext
from ssoclient.config import SSOClientSettings, clear_settings
from ssoclient.http import HttpTransport
from ssoclient.storage import MemoryKeyValueStore, reset_shared_cache
from tests.helpers import (
    CLIENT_ID,
    CLIENT_SECRET,
    ISSUER,
    REDIRECT_URI,
    FakeProvider,
    ManualClock,
    discovery_document,
)

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Keep host configuration and shared singletons out of every test."""
    for name in list(os.environ):
        if name.startswith("SSOCLIENT_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
    monkeypatch.chdir(tmp_path)
    clear_settings()
    reset_shared_cache()
    yield
    clear_settings()
    reset_shared_cache()


@pytest.fixture()
def clock() -> ManualClock:
    """Create a manually driven clock."""
    return ManualClock()


@pytest.fixture()
def settings() -> SSOClientSettings:
    """Create complete client settings with retries that do not sleep."""
    return SSOClientSettings(
        base_url=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
        http={"retry_delay": 0},
        security={"encrypt_tokens": False},
    )


@pytest.fixture()
def provider() -> FakeProvider:
    """Create a fake identity provider with a valid discovery document."""
    return FakeProvider(discovery_document())


@pytest.fixture()
def transport(provider: FakeProvider) -> HttpTransport:
    """Create an HTTP transport wired to the fake provider."""
    return HttpTransport(retry_attempts=3, retry_delay=0, transport=provider.transport)


@pytest.fixture()
def session_store(clock: ManualClock) -> MemoryKeyValueStore:
    """Create a session store driven by the manual clock."""
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture()
def cache(clock: ManualClock) -> MemoryKeyValueStore:
    """Create a shared cache driven by the manual clock."""
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture()
def context(
    settings: SSOClientSettings,
    session_store: MemoryKeyValueStore,
    cache: MemoryKeyValueStore,
    transport: HttpTransport,
    clock: ManualClock,
) -> AuthContext:
    """Create an auth context with in-memory stores and the fake provider."""
    return AuthContext(
        settings=settings,
        session_store=session_store,
        cache=cache,
        transport=transport,
        clock=clock,
    )
