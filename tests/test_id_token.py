"""Tests for ID token validation against the provider key set."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import base64
import json

from typing import Any

import pytest

from authlib.jose import JsonWebKey, JsonWebToken

from ssoclient.auth.discovery import DiscoveryCache
from ssoclient.auth.tokens import TokenExchanger, decode_jwt_segments
from ssoclient.exceptions import TokenValidationError
from ssoclient.http import HttpTransport
from ssoclient.storage import MemoryKeyValueStore
from tests.helpers import CLIENT_ID, ISSUER, JWKS_PATH, FakeProvider, ManualClock, run


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture(scope="module")
def signing_key() -> Any:
    """Generate an RSA signing key."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="module")
def other_key() -> Any:
    """Generate an unrelated RSA key."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


def _public_jwk(key: Any, kid: str) -> dict[str, Any]:
    jwk = dict(key.as_dict(is_private=False))
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return jwk


def _sign(key: Any, claims: dict[str, Any], kid: str = "key-1", alg: str = "RS256") -> str:
    token = JsonWebToken([alg]).encode({"alg": alg, "kid": kid}, claims, key)
    return token.decode("ascii") if isinstance(token, bytes) else token


def _claims(clock: ManualClock, **overrides: Any) -> dict[str, Any]:
    now = int(clock.now())
    claims = {
        "iss": ISSUER,
        "sub": "user-1",
        "aud": CLIENT_ID,
        "iat": now,
        "exp": now + 300,
        "email": "user@example.com",
    }
    claims.update(overrides)
    return claims


@pytest.fixture()
def exchanger(
    transport: HttpTransport, cache: MemoryKeyValueStore, clock: ManualClock
) -> TokenExchanger:
    """Create a token exchanger for the fake provider."""
    discovery = DiscoveryCache(ISSUER, transport, cache, clock, jwks_ttl=300)
    return TokenExchanger(discovery, transport, clock, client_id=CLIENT_ID)


@pytest.fixture()
def jwks_provider(provider: FakeProvider, signing_key: Any) -> FakeProvider:
    """Serve a key set holding the signing key as ``key-1``."""
    provider.add("GET", JWKS_PATH, json={"keys": [_public_jwk(signing_key, "key-1")]})
    return provider


# ── Tests ────────────────────────────────────────────────────────────


class TestValidateIdToken:
    """Tests for signature and claim verification."""

    def test_valid_token(
        self, exchanger: TokenExchanger, jwks_provider: FakeProvider, signing_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(signing_key, _claims(clock))
        claims = run(exchanger.validate_id_token(token))
        assert claims["sub"] == "user-1"
        assert claims["email"] == "user@example.com"

    def test_key_set_is_cached(
        self, exchanger: TokenExchanger, jwks_provider: FakeProvider, signing_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(signing_key, _claims(clock))

        async def scenario():
            await exchanger.validate_id_token(token)
            await exchanger.validate_id_token(token)

        run(scenario())
        assert len(jwks_provider.calls_to(JWKS_PATH)) == 1

    def test_expired_token(
        self, exchanger: TokenExchanger, jwks_provider: FakeProvider, signing_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(signing_key, _claims(clock))
        clock.advance(600)
        with pytest.raises(TokenValidationError):
            run(exchanger.validate_id_token(token))

    def test_wrong_issuer(
        self, exchanger: TokenExchanger, jwks_provider: FakeProvider, signing_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(signing_key, _claims(clock, iss="https://evil.example.com"))
        with pytest.raises(TokenValidationError):
            run(exchanger.validate_id_token(token))

    def test_wrong_audience(
        self, exchanger: TokenExchanger, jwks_provider: FakeProvider, signing_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(signing_key, _claims(clock, aud="someone-else"))
        with pytest.raises(TokenValidationError):
            run(exchanger.validate_id_token(token))

    def test_bad_signature(
        self, exchanger: TokenExchanger, jwks_provider: FakeProvider, other_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(other_key, _claims(clock), kid="key-1")
        with pytest.raises(TokenValidationError):
            run(exchanger.validate_id_token(token))

    def test_nonce(
        self, exchanger: TokenExchanger, jwks_provider: FakeProvider, signing_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(signing_key, _claims(clock, nonce="n-1"))
        assert run(exchanger.validate_id_token(token, nonce="n-1"))["nonce"] == "n-1"
        with pytest.raises(TokenValidationError):
            run(exchanger.validate_id_token(token, nonce="n-2"))

    def test_disallowed_algorithm(self, exchanger: TokenExchanger, jwks_provider: FakeProvider) -> None:
        header = base64.urlsafe_b64encode(json.dumps({"alg": "none"}).encode()).rstrip(b"=").decode()
        payload = base64.urlsafe_b64encode(json.dumps({"sub": "x"}).encode()).rstrip(b"=").decode()
        with pytest.raises(TokenValidationError, match="not allowed"):
            run(exchanger.validate_id_token(f"{header}.{payload}."))
        assert jwks_provider.calls_to(JWKS_PATH) == []

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "!!.??.xx"])
    def test_malformed_token(self, exchanger: TokenExchanger, token: str) -> None:
        with pytest.raises(TokenValidationError):
            run(exchanger.validate_id_token(token))


class TestKeyRotation:
    """Tests for re-fetching the key set on an unknown key id."""

    def test_unknown_kid_triggers_one_refetch(
        self,
        exchanger: TokenExchanger,
        provider: FakeProvider,
        signing_key: Any,
        other_key: Any,
        clock: ManualClock,
    ) -> None:
        provider.add("GET", JWKS_PATH, json={"keys": [_public_jwk(signing_key, "key-1")]})
        provider.add(
            "GET",
            JWKS_PATH,
            json={"keys": [_public_jwk(signing_key, "key-1"), _public_jwk(other_key, "key-2")]},
        )

        async def scenario():
            await exchanger.validate_id_token(_sign(signing_key, _claims(clock)))
            return await exchanger.validate_id_token(_sign(other_key, _claims(clock), kid="key-2"))

        assert run(scenario())["sub"] == "user-1"
        assert len(provider.calls_to(JWKS_PATH)) == 2

    def test_kid_still_unknown_after_refetch(
        self, exchanger: TokenExchanger, jwks_provider: FakeProvider, other_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(other_key, _claims(clock), kid="key-9")
        with pytest.raises(TokenValidationError, match="No signing key"):
            run(exchanger.validate_id_token(token))
        assert len(jwks_provider.calls_to(JWKS_PATH)) == 2

    def test_jwks_unavailable(
        self, exchanger: TokenExchanger, provider: FakeProvider, signing_key: Any, clock: ManualClock
    ) -> None:
        provider.add("GET", JWKS_PATH, status=404)
        with pytest.raises(TokenValidationError):
            run(exchanger.validate_id_token(_sign(signing_key, _claims(clock))))

    @pytest.mark.parametrize("keys", [["junk"], [None], [{"kid": "key-1"}, 42]])
    def test_non_object_key_entries(
        self,
        exchanger: TokenExchanger,
        provider: FakeProvider,
        signing_key: Any,
        clock: ManualClock,
        keys: list[Any],
    ) -> None:
        provider.add("GET", JWKS_PATH, json={"keys": keys})
        with pytest.raises(TokenValidationError, match="not a JSON object"):
            run(exchanger.validate_id_token(_sign(signing_key, _claims(clock))))


class TestUnverifiedDecode:
    """Tests for the unsafe decode path."""

    def test_decodes_without_key_set(
        self, exchanger: TokenExchanger, provider: FakeProvider, other_key: Any, clock: ManualClock
    ) -> None:
        token = _sign(other_key, _claims(clock, aud="anyone"), kid="unknown")
        claims = run(exchanger.validate_id_token(token, verify_signature=False))
        assert claims["aud"] == "anyone"
        assert provider.calls == []

    def test_logs_unsafe_warning(
        self, exchanger: TokenExchanger, other_key: Any, clock: ManualClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        token = _sign(other_key, _claims(clock))
        with caplog.at_level("WARNING", logger="ssoclient.auth"):
            exchanger.decode_unverified(token)
        assert "unsafe" in caplog.text

    def test_decode_jwt_segments(self, other_key: Any, clock: ManualClock) -> None:
        header, payload = decode_jwt_segments(_sign(other_key, _claims(clock), kid="k"))
        assert header["kid"] == "k"
        assert payload["iss"] == ISSUER

    def test_non_object_payload(self) -> None:
        segment = base64.urlsafe_b64encode(b"[1]").rstrip(b"=").decode()
        with pytest.raises(TokenValidationError):
            decode_jwt_segments(f"{segment}.{segment}.sig")
