"""Tests for the in-memory key/value store and the store factory."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import logging

import pytest

from ssoclient.config import SSOClientSettings
from ssoclient.exceptions import InvalidParameterError
from ssoclient.storage import (
    EncryptedKeyValueStore,
    MemoryKeyValueStore,
    create_session_store,
    get_shared_cache,
    reset_shared_cache,
)
from tests.helpers import ManualClock


# --- MemoryKeyValueStore Tests ---


class TestMemoryKeyValueStore:
    """Tests for MemoryKeyValueStore."""

    @pytest.fixture
    def store(self, clock: ManualClock) -> MemoryKeyValueStore:
        """Create a fresh store driven by the manual clock."""
        return MemoryKeyValueStore(clock=clock)

    @pytest.mark.asyncio
    async def test_put_and_get(self, store: MemoryKeyValueStore) -> None:
        """Test storing and reading a value."""
        await store.put("key", "value")
        assert await store.get("key") == "value"

    @pytest.mark.asyncio
    async def test_get_nonexistent(self, store: MemoryKeyValueStore) -> None:
        """Test reading a key that was never stored."""
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_put_replaces(self, store: MemoryKeyValueStore) -> None:
        """Test that a second put replaces the value."""
        await store.put("key", "old")
        await store.put("key", "new")
        assert await store.get("key") == "new"

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, store: MemoryKeyValueStore, clock: ManualClock) -> None:
        """Test that a value disappears once its TTL has elapsed."""
        await store.put("key", "value", ttl=10)
        clock.advance(9)
        assert await store.get("key") == "value"
        clock.advance(1)
        assert await store.get("key") is None
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(
        self, store: MemoryKeyValueStore, clock: ManualClock
    ) -> None:
        """Test that values without a TTL survive any amount of time."""
        await store.put("key", "value")
        clock.advance(10**9)
        assert await store.get("key") == "value"

    @pytest.mark.asyncio
    async def test_pop_consumes(self, store: MemoryKeyValueStore) -> None:
        """Test that pop returns the value once and removes it."""
        await store.put("key", "value")
        assert await store.pop("key") == "value"
        assert await store.pop("key") is None
        assert await store.get("key") is None

    @pytest.mark.asyncio
    async def test_pop_expired(self, store: MemoryKeyValueStore, clock: ManualClock) -> None:
        """Test that popping an expired value returns nothing."""
        await store.put("key", "value", ttl=5)
        clock.advance(6)
        assert await store.pop("key") is None

    @pytest.mark.asyncio
    async def test_concurrent_pop_single_winner(self, store: MemoryKeyValueStore) -> None:
        """Test that only one of many concurrent pops gets the value."""
        await store.put("key", "value")
        results = await asyncio.gather(*(store.pop("key") for _ in range(20)))
        assert results.count("value") == 1

    @pytest.mark.asyncio
    async def test_forget(self, store: MemoryKeyValueStore) -> None:
        """Test deleting a value."""
        await store.put("key", "value")
        assert await store.forget("key") is True
        assert await store.forget("key") is False

    @pytest.mark.asyncio
    async def test_keys_by_prefix(self, store: MemoryKeyValueStore) -> None:
        """Test listing keys filtered by prefix."""
        await store.put("sso_state_a", "1")
        await store.put("sso_state_b", "2")
        await store.put("sso_tokens", "3")
        assert sorted(await store.keys("sso_state_")) == ["sso_state_a", "sso_state_b"]
        assert len(await store.keys()) == 3

    @pytest.mark.asyncio
    async def test_close_is_noop(self, store: MemoryKeyValueStore) -> None:
        """Test that closing leaves the store usable."""
        await store.put("key", "value")
        await store.close()
        assert await store.get("key") == "value"


# --- Factory Tests ---


class TestCreateSessionStore:
    """Tests for building session stores from settings."""

    def test_memory_backend_encrypted_by_default(self) -> None:
        """Test the default memory store is wrapped in encryption."""
        store = create_session_store(SSOClientSettings(), "s-1")
        assert isinstance(store, EncryptedKeyValueStore)
        assert isinstance(store.inner, MemoryKeyValueStore)

    @pytest.mark.parametrize("session_id", ["", "   ", None])
    def test_session_id_required(self, session_id) -> None:
        """Test a store cannot be built without an owning session."""
        with pytest.raises(InvalidParameterError, match="session id"):
            create_session_store(SSOClientSettings(), session_id)

    def test_memory_stores_are_per_session(self) -> None:
        """Test two sessions never share a memory store."""
        settings = SSOClientSettings(security={"encrypt_tokens": False})
        alice = create_session_store(settings, "alice")
        bob = create_session_store(settings, "bob")

        async def scenario() -> str | None:
            await alice.put("sso_tokens", "alice-tokens")
            return await bob.get("sso_tokens")

        assert asyncio.run(scenario()) is None

    def test_plain_memory_backend(self) -> None:
        """Test disabling encryption yields a bare memory store."""
        store = create_session_store(SSOClientSettings(security={"encrypt_tokens": False}), "s-1")
        assert isinstance(store, MemoryKeyValueStore)

    def test_process_key_warns_once(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test the generated fallback key is shared and logged once."""
        settings = SSOClientSettings()
        with caplog.at_level(logging.WARNING, logger="ssoclient.storage"):
            first = create_session_store(settings, "s-1")
            second = create_session_store(settings, "s-2")
        assert caplog.text.count("process-local key") == 1

        async def roundtrip() -> str | None:
            await first.put("key", "shared")
            await second.inner.put("key", await first.inner.get("key"))  # type: ignore[attr-defined]
            return await second.get("key")

        assert asyncio.run(roundtrip()) == "shared"

    def test_configured_key(self) -> None:
        """Test a configured key decrypts across stores."""
        from ssoclient.storage import generate_key

        key = generate_key()
        settings = SSOClientSettings(security={"encryption_key": key})
        writer = create_session_store(settings, "s-1")
        reader = create_session_store(settings, "s-2")

        async def roundtrip() -> str | None:
            await writer.put("key", "value")
            await reader.inner.put("key", await writer.inner.get("key"))  # type: ignore[attr-defined]
            return await reader.get("key")

        assert asyncio.run(roundtrip()) == "value"


class TestSharedCache:
    """Tests for the process-wide cache."""

    def test_singleton(self) -> None:
        """Test the shared cache is one instance until reset."""
        assert get_shared_cache() is get_shared_cache()

    def test_reset(self) -> None:
        """Test reset creates a fresh instance."""
        first = get_shared_cache()
        reset_shared_cache()
        assert get_shared_cache() is not first
