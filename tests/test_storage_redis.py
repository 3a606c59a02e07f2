"""Tests for the Redis key/value store.

These tests use fakeredis to simulate Redis without requiring a real server.
"""
# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio

from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio

from ssoclient.auth.context import AuthContext
from ssoclient.auth.flow import AuthFlowManager
from ssoclient.auth.state import StateStore
from ssoclient.auth.token_store import SessionTokenStore
from ssoclient.config import SessionSettings, SSOClientSettings
from ssoclient.exceptions import StorageBackendError
from ssoclient.storage import EncryptedKeyValueStore, create_session_store, generate_key
from ssoclient.storage.redis import RedisKeyValueStore
from tests.helpers import TOKEN_PATH, FakeProvider, ManualClock, token_response


# Check if fakeredis is available
try:
    import fakeredis.aioredis

    HAS_FAKEREDIS = True
except ImportError:
    HAS_FAKEREDIS = False


pytestmark = [
    pytest.mark.redis,
    pytest.mark.skipif(
        not HAS_FAKEREDIS,
        reason="fakeredis not installed (pip install fakeredis)",
    ),
]


@pytest.fixture
def fake_redis() -> fakeredis.aioredis.FakeRedis:
    """Create a fake Redis client for testing."""
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest_asyncio.fixture
async def store(fake_redis: fakeredis.aioredis.FakeRedis):
    """Create a RedisKeyValueStore with fake Redis."""
    store = RedisKeyValueStore(redis_client=fake_redis, prefix="test")
    yield store
    await fake_redis.flushall()


class TestRedisKeyValueStore:
    """Tests for RedisKeyValueStore."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, store: RedisKeyValueStore, fake_redis) -> None:
        """Test values land under the prefixed key."""
        await store.put("key", "value")
        assert await store.get("key") == "value"
        assert await fake_redis.get("test:key") == "value"

    @pytest.mark.asyncio
    async def test_get_nonexistent(self, store: RedisKeyValueStore) -> None:
        """Test reading a missing key."""
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_ttl_uses_native_expiry(self, store: RedisKeyValueStore, fake_redis) -> None:
        """Test a TTL becomes a Redis expiry, rounded up to whole seconds."""
        await store.put("key", "value", ttl=9.2)
        ttl = await fake_redis.ttl("test:key")
        assert 0 < ttl <= 10

    @pytest.mark.asyncio
    async def test_sub_second_ttl_is_at_least_one_second(
        self, store: RedisKeyValueStore, fake_redis
    ) -> None:
        """Test a tiny TTL does not become an invalid zero expiry."""
        await store.put("key", "value", ttl=0.1)
        assert await fake_redis.ttl("test:key") == 1

    @pytest.mark.asyncio
    async def test_no_ttl(self, store: RedisKeyValueStore, fake_redis) -> None:
        """Test values without a TTL persist."""
        await store.put("key", "value")
        assert await fake_redis.ttl("test:key") == -1

    @pytest.mark.asyncio
    async def test_pop_consumes(self, store: RedisKeyValueStore) -> None:
        """Test pop returns the value once."""
        await store.put("key", "value")
        assert await store.pop("key") == "value"
        assert await store.pop("key") is None

    @pytest.mark.asyncio
    async def test_concurrent_pop_single_winner(self, store: RedisKeyValueStore) -> None:
        """Test only one concurrent consumer gets the value."""
        await store.put("key", "value")
        results = await asyncio.gather(*(store.pop("key") for _ in range(10)))
        assert results.count("value") == 1

    @pytest.mark.asyncio
    async def test_forget(self, store: RedisKeyValueStore) -> None:
        """Test deleting a value."""
        await store.put("key", "value")
        assert await store.forget("key") is True
        assert await store.forget("key") is False

    @pytest.mark.asyncio
    async def test_keys_strip_namespace(self, store: RedisKeyValueStore, fake_redis) -> None:
        """Test listed keys are returned without the namespace."""
        await store.put("sso_state_a", "1")
        await store.put("sso_tokens", "2")
        await fake_redis.set("other:sso_state_b", "3")
        assert await store.keys("sso_state_") == ["sso_state_a"]
        assert sorted(await store.keys()) == ["sso_state_a", "sso_tokens"]


class TestStateStoreOnRedis:
    """Tests for the state store running on the Redis backend."""

    @pytest.mark.asyncio
    async def test_encrypted_state_roundtrip(self, store: RedisKeyValueStore) -> None:
        """Test storing and consuming a state through encryption and Redis."""
        states = StateStore(EncryptedKeyValueStore(store, generate_key()), ManualClock())
        state = states.generate_state()
        await states.store(state, {"code_verifier": "v" * 43})

        first = await states.retrieve(state)
        second = await states.retrieve(state)
        assert first is not None
        assert first.code_verifier == "v" * 43
        assert second is None


class TestBackendFailures:
    """Tests for Redis outages surfacing as storage errors."""

    @pytest.fixture
    def offline_store(self) -> RedisKeyValueStore:
        server = fakeredis.FakeServer()
        server.connected = False
        client = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
        return RedisKeyValueStore(redis_client=client, prefix="test")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["get", "pop", "forget", "keys"])
    async def test_commands_raise_storage_backend_error(
        self, offline_store: RedisKeyValueStore, operation: str
    ) -> None:
        """Test connection failures are wrapped instead of leaking redis errors."""
        with pytest.raises(StorageBackendError, match="Redis"):
            await getattr(offline_store, operation)("key")

    @pytest.mark.asyncio
    async def test_put_raises_storage_backend_error(self, offline_store: RedisKeyValueStore) -> None:
        """Test a failed write is wrapped."""
        with pytest.raises(StorageBackendError) as exc_info:
            await offline_store.put("key", "value", ttl=10)
        assert exc_info.value.context["operation"] == "put"

    @pytest.mark.asyncio
    async def test_token_store_propagates_outage(
        self, offline_store: RedisKeyValueStore
    ) -> None:
        """Test an outage is not mistaken for an unreadable token record."""
        with pytest.raises(StorageBackendError):
            await SessionTokenStore(offline_store, "sso_tokens").load()


class TestSessionIsolation:
    """Tests for per-session namespaces on a shared Redis server."""

    @pytest.fixture
    def redis_settings(self, settings: SSOClientSettings) -> SSOClientSettings:
        return settings.model_copy(
            update={"session": SessionSettings(backend="redis", redis_url="redis://redis.test:6379/0")}
        )

    @pytest.fixture
    def shared_server(self, monkeypatch: pytest.MonkeyPatch, fake_redis):
        """Route every store built from settings to the same fake server."""
        import redis.asyncio

        monkeypatch.setattr(redis.asyncio.Redis, "from_url", lambda *args, **kwargs: fake_redis)
        return fake_redis

    def _manager(
        self, settings: SSOClientSettings, session_id: str, provider: FakeProvider, clock: ManualClock
    ) -> AuthFlowManager:
        context = AuthContext.from_settings(
            settings, session_id=session_id, clock=clock, http_transport=provider.transport
        )
        return AuthFlowManager(context)

    @pytest.mark.asyncio
    async def test_store_namespace_includes_session_id(
        self, redis_settings: SSOClientSettings, shared_server
    ) -> None:
        store = create_session_store(redis_settings, "alice")
        assert isinstance(store, RedisKeyValueStore)
        await store.put("sso_tokens", "value")
        assert await shared_server.get("sso_session:alice:sso_tokens") == "value"

    @pytest.mark.asyncio
    async def test_tokens_and_states_stay_in_their_session(
        self,
        redis_settings: SSOClientSettings,
        shared_server,
        provider: FakeProvider,
        clock: ManualClock,
    ) -> None:
        alice = self._manager(redis_settings, "alice", provider, clock)
        bob = self._manager(redis_settings, "bob", provider, clock)
        provider.add("POST", TOKEN_PATH, json=token_response())

        alice_url = await alice.redirect()
        alice_state = parse_qs(urlparse(alice_url).query)["state"][0]
        result = await alice.handle_callback("auth-code", alice_state)
        assert result.success is True

        assert await alice.is_authenticated() is True
        assert await bob.is_authenticated() is False
        assert await bob.get_access_token() is None

        await bob.redirect()
        before = sorted(await shared_server.keys("sso_session:bob:*"))
        assert len(before) == 1

        await alice.logout(revoke=False)
        assert await alice.is_authenticated() is False
        assert sorted(await shared_server.keys("sso_session:bob:*")) == before

    @pytest.mark.asyncio
    async def test_glob_characters_in_session_id_do_not_widen_listing(
        self, redis_settings: SSOClientSettings, shared_server
    ) -> None:
        wildcard = create_session_store(redis_settings, "*")
        await shared_server.set("sso_session:alice:sso_state_x", "1")
        assert await wildcard.keys("sso_state_") == []
