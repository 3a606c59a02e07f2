"""Token endpoint operations.

Authorization code exchange, refresh, revocation, userinfo retrieval and
ID token validation against the endpoints resolved by the discovery cache.
Signature verification is delegated to authlib.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import base64
import binascii
import json
import logging
import math

from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from ..exceptions import (
    DiscoveryError,
    EndpointNotFoundError,
    LaunchTokenError,
    RevocationError,
    TokenExchangeError,
    TokenRefreshError,
    TokenValidationError,
    UserInfoError,
)
from ..http import parse_json, upstream_error
from ..log import mask_token, redact_sensitive_data
from ..types import TokenSet


if TYPE_CHECKING:
    from ..clock import Clock
    from ..config import SSOClientSettings
    from ..http import HttpTransport
    from .discovery import DiscoveryCache


logger = logging.getLogger("ssoclient.auth")

DEFAULT_ID_TOKEN_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "ES512", "PS256"]


def _is_numeric(value: Any) -> bool:
    """Check for a finite, non-negative number or numeric string."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return False
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return False
    return math.isfinite(number) and number >= 0


def _b64url_json(segment: str) -> Any:
    """Decode one base64url JWT segment into JSON."""
    padded = segment + "=" * (-len(segment) % 4)
    return json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))


def decode_jwt_segments(token: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a compact JWT into its header and payload without verification.

    Raises
    ------
    TokenValidationError
        If the token is not a three-part JWT with JSON header and payload.
    """
    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 3:
        msg = "Malformed JWT: expected three dot-separated segments"
        raise TokenValidationError(msg)
    try:
        header = _b64url_json(parts[0])
        payload = _b64url_json(parts[1])
    except (binascii.Error, ValueError) as exc:
        msg = "Malformed JWT: segments are not base64url JSON"
        raise TokenValidationError(msg) from exc
    if not isinstance(header, dict) or not isinstance(payload, dict):
        msg = "Malformed JWT: header and payload must be JSON objects"
        raise TokenValidationError(msg)
    return header, payload


class TokenExchanger:
    """Client for the provider's token, revocation and userinfo endpoints.

    Parameters
    ----------
    discovery : DiscoveryCache
        Resolves endpoint URLs and the signing key set.
    transport : HttpTransport
        HTTP transport with timeouts and retries.
    clock : Clock
        Time source for token expiry and claim validation.
    client_id : str
        OAuth2 client ID.
    client_secret : str, optional
        OAuth2 client secret (omitted for public clients).
    redirect_uri : str
        Registered callback URL sent with code exchanges.
    algorithms : list[str], optional
        Accepted ID token signing algorithms.
    launch_token_url : str, optional
        Base URL of the provider's launch token endpoint.
    """

    def __init__(
        self,
        discovery: DiscoveryCache,
        transport: HttpTransport,
        clock: Clock,
        client_id: str,
        client_secret: str | None = None,
        redirect_uri: str = "",
        algorithms: list[str] | None = None,
        launch_token_url: str | None = None,
    ) -> None:
        self.discovery = discovery
        self.client_id = client_id
        self.client_secret = client_secret or None
        self.redirect_uri = redirect_uri
        self.algorithms = list(algorithms or DEFAULT_ID_TOKEN_ALGORITHMS)
        self.launch_token_url = launch_token_url
        self._transport = transport
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: SSOClientSettings,
        discovery: DiscoveryCache,
        transport: HttpTransport,
        clock: Clock,
    ) -> TokenExchanger:
        """Create a token exchanger from client settings."""
        return cls(
            discovery,
            transport,
            clock,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=settings.redirect_uri,
            algorithms=settings.security.id_token_algorithms,
            launch_token_url=f"{settings.issuer_base_url}{settings.endpoints.launch_token}",
        )

    def _client_auth(self, data: dict[str, str]) -> dict[str, str]:
        """Add client credentials to a form payload."""
        data["client_id"] = self.client_id
        if self.client_secret:
            data["client_secret"] = self.client_secret
        return data

    async def _post_token_request(
        self,
        data: dict[str, str],
        error_cls: type[TokenExchangeError],
        step: str,
    ) -> dict[str, Any]:
        """POST to the token endpoint and validate the response body."""
        try:
            endpoint = await self.discovery.get_endpoint("token_endpoint")
        except DiscoveryError as exc:
            msg = f"{step} failed: token endpoint unavailable"
            raise error_cls(msg, step=step) from exc

        try:
            response = await self._transport.post_form(endpoint, data)
        except httpx.TimeoutException as exc:
            msg = f"{step} failed: request timed out"
            raise error_cls(msg, endpoint=endpoint, timed_out=True, step=step) from exc
        except httpx.HTTPError as exc:
            msg = f"{step} failed: {exc.__class__.__name__}"
            raise error_cls(msg, endpoint=endpoint, step=step) from exc

        if not response.is_success:
            error, description = upstream_error(response)
            reason = error or f"HTTP {response.status_code}"
            msg = f"{step} failed: {reason}"
            if description:
                msg = f"{msg} - {description}"
            logger.error(
                "%s failed at %s: status=%d body=%s",
                step,
                endpoint,
                response.status_code,
                redact_sensitive_data(parse_json(response)),
            )
            raise error_cls(
                msg,
                error=error,
                error_description=description,
                status_code=response.status_code,
                endpoint=endpoint,
                step=step,
            )

        body = parse_json(response)
        self._validate_token_response(body, error_cls, step, endpoint)
        return body  # type: ignore[no-any-return]

    @staticmethod
    def _validate_token_response(
        body: Any,
        error_cls: type[TokenExchangeError],
        step: str,
        endpoint: str,
    ) -> None:
        """Structurally validate a 2xx token response."""
        if not isinstance(body, dict):
            msg = f"{step} failed: invalid token response (not a JSON object)"
            raise error_cls(msg, endpoint=endpoint, step=step)
        access_token = body.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            msg = f"{step} failed: invalid token response (missing access_token)"
            raise error_cls(msg, endpoint=endpoint, step=step)
        if "expires_in" in body and not _is_numeric(body["expires_in"]):
            msg = f"{step} failed: invalid token response (expires_in is not a finite non-negative number)"
            raise error_cls(msg, endpoint=endpoint, step=step)
        token_type = body.get("token_type")
        if token_type is not None and str(token_type).lower() != "bearer":
            logger.warning("Unexpected token type %r from %s", token_type, endpoint)

    async def exchange_code(
        self,
        code: str,
        code_verifier: str | None = None,
        redirect_uri: str | None = None,
    ) -> TokenSet:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the callback.
        code_verifier : str, optional
            The PKCE verifier bound to the authorization request.
        redirect_uri : str, optional
            Callback URL (defaults to the configured one).

        Returns
        -------
        TokenSet
            The issued tokens.

        Raises
        ------
        TokenExchangeError
            On a non-2xx or structurally invalid response, or a transport failure.
        """
        data = self._client_auth(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or self.redirect_uri,
            }
        )
        if code_verifier:
            data["code_verifier"] = code_verifier

        body = await self._post_token_request(data, TokenExchangeError, "Token exchange")
        tokens = TokenSet.from_response(body, self._clock.now())
        logger.info("Exchanged authorization code for tokens")
        return tokens

    async def refresh(self, refresh_token: str, scopes: list[str] | None = None) -> TokenSet:
        """Obtain a new access token with a refresh token.

        The previous refresh token is kept when the provider does not
        rotate it.

        Raises
        ------
        TokenRefreshError
            On a non-2xx or structurally invalid response, or a transport failure.
        """
        data = self._client_auth({"grant_type": "refresh_token", "refresh_token": refresh_token})
        if scopes:
            data["scope"] = " ".join(scopes)

        body = await self._post_token_request(data, TokenRefreshError, "Token refresh")
        tokens = TokenSet.from_response(
            body, self._clock.now(), previous_refresh_token=refresh_token
        )
        logger.info("Refreshed access token")
        return tokens

    async def _revoke(self, token: str, token_type_hint: str) -> bool:
        """Revoke one token, raising RevocationError on failure."""
        try:
            endpoint = await self.discovery.get_endpoint("revocation_endpoint")
        except EndpointNotFoundError:
            logger.debug("No revocation endpoint advertised; skipping revocation")
            return True
        except DiscoveryError as exc:
            msg = "Revocation failed: revocation endpoint unavailable"
            raise RevocationError(msg) from exc

        data = self._client_auth({"token": token, "token_type_hint": token_type_hint})
        try:
            response = await self._transport.post_form(endpoint, data)
        except httpx.TimeoutException as exc:
            msg = "Revocation failed: request timed out"
            raise RevocationError(msg, endpoint=endpoint, timed_out=True) from exc
        except httpx.HTTPError as exc:
            msg = f"Revocation failed: {exc.__class__.__name__}"
            raise RevocationError(msg, endpoint=endpoint) from exc

        if response.is_success:
            return True
        error, description = upstream_error(response)
        if response.status_code == 400 and error == "invalid_token":
            return True
        msg = f"Revocation failed: {error or f'HTTP {response.status_code}'}"
        raise RevocationError(
            msg,
            error=error,
            error_description=description,
            status_code=response.status_code,
            endpoint=endpoint,
        )

    async def revoke(self, token: str, token_type_hint: str = "access_token") -> bool:  # noqa: S107
        """Revoke a token at the provider (best effort).

        Both HTTP success and HTTP 400 ``invalid_token`` count as revoked. A
        provider without a revocation endpoint is a no-op success. Other
        failures are logged and reported as False, never raised.

        Parameters
        ----------
        token : str
            The token to revoke.
        token_type_hint : str
            ``access_token`` or ``refresh_token``.

        Returns
        -------
        bool
            True if the token is known to be revoked.
        """
        if not token:
            return True
        try:
            revoked = await self._revoke(token, token_type_hint)
        except RevocationError as exc:
            logger.warning("Could not revoke %s %s: %s", token_type_hint, mask_token(token), exc)
            return False
        logger.debug("Revoked %s %s", token_type_hint, mask_token(token))
        return revoked

    async def revoke_tokens(self, tokens: TokenSet) -> bool:
        """Revoke the access and refresh tokens of a token set.

        Returns
        -------
        bool
            True only if every attempted revocation succeeded.
        """
        results = [await self.revoke(tokens.access_token, "access_token")]
        if tokens.refresh_token:
            results.append(await self.revoke(tokens.refresh_token, "refresh_token"))
        return all(results)

    async def get_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch the user's claims from the userinfo endpoint.

        Raises
        ------
        UserInfoError
            On a non-2xx or non-object response, or a transport failure.
        EndpointNotFoundError
            If the provider does not advertise a userinfo endpoint.
        """
        endpoint = await self.discovery.get_endpoint("userinfo_endpoint")
        try:
            response = await self._transport.get(
                endpoint, headers={"Authorization": f"Bearer {access_token}"}
            )
        except httpx.TimeoutException as exc:
            msg = "Userinfo request timed out"
            raise UserInfoError(msg, endpoint=endpoint, timed_out=True) from exc
        except httpx.HTTPError as exc:
            msg = f"Userinfo request failed: {exc.__class__.__name__}"
            raise UserInfoError(msg, endpoint=endpoint) from exc

        if not response.is_success:
            error, description = upstream_error(response)
            msg = f"Userinfo request failed: {error or f'HTTP {response.status_code}'}"
            raise UserInfoError(
                msg,
                error=error,
                error_description=description,
                status_code=response.status_code,
                endpoint=endpoint,
            )

        claims = parse_json(response)
        if not isinstance(claims, dict):
            msg = "Userinfo response is not a JSON object"
            raise UserInfoError(msg, endpoint=endpoint, status_code=response.status_code)
        return claims

    def decode_unverified(self, id_token: str) -> dict[str, Any]:
        """Decode an ID token payload WITHOUT any signature or claim checks.

        UNSAFE: for debugging only. Never trust the returned claims for
        authentication decisions.
        """
        logger.warning("Decoding ID token without signature verification (unsafe)")
        _, payload = decode_jwt_segments(id_token)
        return payload

    async def _key_set_for(self, kid: str | None) -> dict[str, Any]:
        """Get a key set holding ``kid``, re-fetching once on a miss."""
        jwks = await self.discovery.get_jwks()
        if kid is None or any(key.get("kid") == kid for key in jwks["keys"]):
            return jwks
        logger.info("Signing key %s not in cached JWKS; re-fetching", kid)
        jwks = await self.discovery.get_jwks(force_refresh=True)
        if not any(key.get("kid") == kid for key in jwks["keys"]):
            msg = "No signing key matches the ID token key id"
            raise TokenValidationError(msg, kid=kid)
        return jwks

    async def validate_id_token(
        self,
        id_token: str,
        verify_signature: bool = True,
        nonce: str | None = None,
    ) -> dict[str, Any]:
        """Validate an OIDC ID token.

        Checks signature (via JWKS), issuer, audience, expiry, and nonce.

        Parameters
        ----------
        id_token : str
            The raw ID token JWT string.
        verify_signature : bool
            When False, only decode the payload (see ``decode_unverified``).
        nonce : str, optional
            Expected nonce value (if one was sent in the authorize request).

        Returns
        -------
        dict[str, Any]
            The validated claims from the ID token.

        Raises
        ------
        TokenValidationError
            If the token is malformed or fails any check.
        """
        if not verify_signature:
            return self.decode_unverified(id_token)

        header, _ = decode_jwt_segments(id_token)
        alg = header.get("alg")
        if alg not in self.algorithms:
            msg = f"ID token algorithm {alg!r} is not allowed"
            raise TokenValidationError(msg)

        try:
            document = await self.discovery.get_document()
            jwks_data = await self._key_set_for(header.get("kid"))
        except DiscoveryError as exc:
            msg = f"ID token validation failed: {exc.message}"
            raise TokenValidationError(msg, endpoint=exc.endpoint) from exc

        claims_options: dict[str, Any] = {
            "iss": {"essential": True, "value": document.issuer},
            "aud": {"essential": True, "value": self.client_id},
            "exp": {"essential": True},
        }
        if nonce:
            claims_options["nonce"] = {"essential": True, "value": nonce}

        jwt = JsonWebToken(self.algorithms)
        try:
            key_set = JsonWebKey.import_key_set(jwks_data)
            claims = jwt.decode(id_token, key_set, claims_options=claims_options)
            claims.validate(now=int(self._clock.now()))
        except (JoseError, ValueError) as exc:
            msg = f"ID token validation failed: {exc}"
            raise TokenValidationError(msg) from exc

        return dict(claims)

    async def fetch_launch_token(self, launch_token: str) -> dict[str, Any]:
        """Resolve a provider-issued launch token.

        Returns
        -------
        dict[str, Any]
            The launch data, holding ``state`` and ``code_verifier``.

        Raises
        ------
        LaunchTokenError
            If the token is unknown, expired or the response is malformed.
        """
        if not self.launch_token_url:
            msg = "Launch token endpoint is not configured"
            raise LaunchTokenError(msg)
        url = f"{self.launch_token_url.rstrip('/')}/{quote(launch_token, safe='')}"
        try:
            response = await self._transport.get(url)
        except httpx.HTTPError as exc:
            msg = f"Failed to resolve launch token: {exc.__class__.__name__}"
            raise LaunchTokenError(msg, endpoint=self.launch_token_url) from exc

        if not response.is_success:
            logger.warning(
                "Launch token %s rejected: HTTP %d",
                mask_token(launch_token),
                response.status_code,
            )
            msg = "Invalid or expired launch token"
            raise LaunchTokenError(msg, status_code=response.status_code)

        data = parse_json(response)
        if (
            not isinstance(data, dict)
            or not isinstance(data.get("state"), str)
            or not data["state"]
            or not isinstance(data.get("code_verifier"), str)
        ):
            msg = "Launch token response is missing state or code_verifier"
            raise LaunchTokenError(msg)
        return data
