"""OAuth2 authorization code flow orchestrator.

Provides AuthFlowManager, which sequences PKCE generation, state storage,
discovery, code exchange, refresh and logout for one client configuration
and one session store. All collaborators arrive through an AuthContext;
nothing is read from module-level globals.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import secrets

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from ..exceptions import (
    AuthorizationError,
    DiscoveryError,
    LaunchTokenError,
    ProtocolError,
    SSOClientError,
    StateError,
    TokenError,
    TokenExchangeError,
    TokenExpiredError,
    TokenRefreshError,
    TokenValidationError,
)
from ..log import mask_token
from ..types import AuthFlowResult, AuthFlowState
from .discovery import DiscoveryCache
from .pkce import PKCEChallenge
from .state import StateStore
from .token_store import SessionTokenStore
from .tokens import TokenExchanger


if TYPE_CHECKING:
    from ..types import LaunchTokenState, TokenSet
    from .context import AuthContext


logger = logging.getLogger("ssoclient.auth")

# Authorization parameters callers cannot override through options
_RESERVED_PARAMS = frozenset(
    {
        "response_type",
        "client_id",
        "redirect_uri",
        "state",
        "code_challenge",
        "code_challenge_method",
    }
)


def _error_code(exc: SSOClientError) -> str:
    """Map a typed error to the code reported in a failed AuthFlowResult."""
    if isinstance(exc, ProtocolError) and exc.error:
        return exc.error
    if isinstance(exc, StateError):
        return "invalid_state"
    if isinstance(exc, DiscoveryError):
        return "discovery_failed"
    if isinstance(exc, TokenExchangeError):
        return "token_exchange_failed"
    if isinstance(exc, AuthorizationError):
        return "authorization_failed"
    return "authentication_failed"


class AuthFlowManager:
    """Orchestrates the OAuth2 authorization code flow for one session.

    States move ``IDLE -> AWAITING_CALLBACK -> AUTHENTICATED``, through
    ``REFRESHING`` when an expired access token is renewed, and to
    ``LOGGED_OUT`` on logout. An unrecoverable error moves to ``FAILED``.

    Parameters
    ----------
    context : AuthContext
        Settings plus the session store, shared cache, HTTP transport and
        clock this manager works with.

    Raises
    ------
    ConfigurationError
        If the settings lack a base URL, client ID, redirect URI or scopes.
    """

    def __init__(self, context: AuthContext) -> None:
        """Initialize the auth flow manager."""
        settings = context.settings
        settings.require_client_config()

        self.context = context
        self.settings = settings
        self.pkce_length = settings.security.code_verifier_length
        self.pkce_method = settings.security.code_challenge_method
        self.use_pkce = settings.security.force_pkce

        self.states = StateStore.from_settings(settings, context.session_store, context.clock)
        self.discovery = DiscoveryCache.from_settings(
            settings, context.transport, context.cache, context.clock
        )
        self.exchanger = TokenExchanger.from_settings(
            settings, self.discovery, context.transport, context.clock
        )
        self.token_store = SessionTokenStore(context.session_store, settings.session.tokens_key)

        self._flow_state = AuthFlowState.IDLE

    @property
    def flow_state(self) -> AuthFlowState:
        """Current state of the auth flow."""
        return self._flow_state

    async def close(self) -> None:
        """Close the HTTP transport. Call from app shutdown lifecycle."""
        await self.context.transport.close()

    async def redirect(self, options: dict[str, Any] | None = None) -> str:
        """Start a login and build the provider authorization URL.

        Parameters
        ----------
        options : dict[str, Any], optional
            Extra authorization parameters such as ``prompt`` or
            ``login_hint``. ``scope`` may be a string or a list. The
            protocol parameters (state, PKCE, client and redirect) cannot
            be overridden.

        Returns
        -------
        str
            The authorization URL to send the browser to.

        Raises
        ------
        DiscoveryError
            If the authorization endpoint cannot be resolved.
        """
        options = dict(options or {})
        authorization_endpoint = await self.discovery.get_endpoint("authorization_endpoint")

        scope = options.pop("scope", None) or self.settings.scopes
        if isinstance(scope, (list, tuple)):
            scope = " ".join(scope)

        state = self.states.generate_state()
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "scope": str(scope),
            "state": state,
        }

        if self.use_pkce:
            pkce = PKCEChallenge.generate(self.pkce_length, self.pkce_method)
            await self.states.store_pkce(state, pkce)
            params["code_challenge"] = pkce.challenge
            params["code_challenge_method"] = pkce.method
        else:
            await self.states.store(state)

        for key, value in options.items():
            if key in _RESERVED_PARAMS:
                logger.warning("Ignoring reserved authorization parameter %r", key)
            elif value is not None:
                params[key] = str(value)

        separator = "&" if "?" in authorization_endpoint else "?"
        self._flow_state = AuthFlowState.AWAITING_CALLBACK
        logger.debug("Redirecting to %s (state=%s)", authorization_endpoint, mask_token(state))
        return f"{authorization_endpoint}{separator}{urlencode(params)}"

    async def handle_callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> AuthFlowResult:
        """Complete a login from the provider's callback parameters.

        Never raises: every error discards the stored
        state, persists nothing and is returned as a failed result.

        Parameters
        ----------
        code : str or None
            The authorization code.
        state : str or None
            The state value echoed by the provider.
        error : str, optional
            OAuth error code sent by the provider instead of a code.
        error_description : str, optional
            Description accompanying ``error``.

        Returns
        -------
        AuthFlowResult
            Success with the stored TokenSet, or failure with the error.
        """
        try:
            tokens = await self._complete_callback(code, state, error, error_description)
        except SSOClientError as exc:
            return await self._callback_failed(state, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error while completing the authorization callback")
            msg = f"Authentication failed: {exc.__class__.__name__}"
            return await self._callback_failed(state, SSOClientError(msg, step="callback"), exc)

        self._flow_state = AuthFlowState.AUTHENTICATED
        return AuthFlowResult(success=True, tokens=tokens)

    async def _callback_failed(
        self,
        state: str | None,
        exc: SSOClientError,
        cause: BaseException | None = None,
    ) -> AuthFlowResult:
        """Discard the state and build the failed result for a callback."""
        if cause is not None:
            exc.__cause__ = cause
        if state:
            try:
                await self.states.discard(state)
            except Exception:  # noqa: BLE001
                logger.warning("Could not discard state %s after a failed callback", mask_token(state))
        self._flow_state = AuthFlowState.FAILED
        logger.warning("Authorization callback failed: %s", exc)
        description = exc.error_description if isinstance(exc, ProtocolError) else None
        return AuthFlowResult(
            success=False,
            error=_error_code(exc),
            error_description=description or exc.message,
            exception=exc,
        )

    async def _complete_callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None,
        error_description: str | None,
    ) -> TokenSet:
        if error:
            msg = f"Authorization failed: {error}"
            raise AuthorizationError(msg, error=error, error_description=error_description)
        if not state:
            raise StateError("Missing state parameter")
        if not code:
            raise AuthorizationError("Missing authorization code")

        launch = self.states.decode_launch_token(state)
        if launch is not None:
            code_verifier: str | None = await self._resolve_launch_token(launch)
        else:
            request = await self.states.retrieve(state, consume=True)
            if request is None:
                raise StateError("Invalid or expired state")
            code_verifier = request.code_verifier

        tokens = await self.exchanger.exchange_code(code, code_verifier)
        await self.token_store.save(tokens)
        logger.info("Authentication completed")
        return tokens

    async def _resolve_launch_token(self, launch: LaunchTokenState) -> str:
        """Resolve a launch token and return its bound code verifier."""
        data = await self.exchanger.fetch_launch_token(launch.launch_token)
        if not secrets.compare_digest(
            data["state"].encode("utf-8"), launch.state.encode("utf-8")
        ):
            raise LaunchTokenError("Launch token state mismatch")
        return data["code_verifier"]  # type: ignore[no-any-return]

    async def get_tokens(self) -> TokenSet | None:
        """Get the stored token set."""
        return await self.token_store.load()

    async def get_access_token(self) -> str | None:
        """Get the stored access token, expired or not."""
        tokens = await self.token_store.load()
        return tokens.access_token if tokens else None

    async def get_refresh_token(self) -> str | None:
        """Get the stored refresh token."""
        tokens = await self.token_store.load()
        return tokens.refresh_token if tokens else None

    async def get_id_token(self) -> str | None:
        """Get the stored ID token."""
        tokens = await self.token_store.load()
        return tokens.id_token if tokens else None

    async def is_authenticated(self) -> bool:
        """Whether the session holds a usable token set.

        True for a live access token, or an expired one that can still be
        refreshed.
        """
        tokens = await self.token_store.load()
        if tokens is None:
            return False
        return not tokens.is_expired(self.context.clock.now()) or bool(tokens.refresh_token)

    async def refresh(self) -> TokenSet:
        """Refresh the stored access token.

        Returns
        -------
        TokenSet
            The new token set (already persisted).

        Raises
        ------
        TokenExpiredError
            If there is no stored refresh token.
        TokenRefreshError
            If the provider rejects the refresh. An ``invalid_grant``
            rejection also clears the stored tokens.
        """
        tokens = await self.token_store.load()
        if tokens is None or not tokens.refresh_token:
            self._flow_state = AuthFlowState.FAILED
            raise TokenExpiredError("Access token expired, no refresh token available")

        self._flow_state = AuthFlowState.REFRESHING
        try:
            refreshed = await self.exchanger.refresh(tokens.refresh_token, self.settings.scopes)
        except TokenRefreshError as exc:
            self._flow_state = AuthFlowState.FAILED
            if exc.error == "invalid_grant":
                logger.info("Refresh token rejected; clearing stored tokens")
                await self.token_store.clear()
            raise

        await self.token_store.save(refreshed)
        self._flow_state = AuthFlowState.AUTHENTICATED
        return refreshed

    async def get_valid_access_token(self) -> str:
        """Get a live access token, refreshing it when expired.

        Raises
        ------
        TokenError
            If the session holds no tokens.
        TokenExpiredError
            If the token expired and cannot be refreshed.
        """
        tokens = await self.token_store.load()
        if tokens is None:
            raise TokenError("Not authenticated: no access token available")
        if tokens.is_expired(self.context.clock.now()):
            logger.debug("Access token expired; refreshing")
            tokens = await self.refresh()
        return tokens.access_token

    async def get_userinfo(self) -> dict[str, Any]:
        """Fetch the user's claims with a live access token."""
        access_token = await self.get_valid_access_token()
        claims = await self.exchanger.get_userinfo(access_token)
        if self.settings.log.include_user_data:
            logger.debug("Userinfo claims: %s", claims)
        return claims

    async def validate_id_token(
        self,
        id_token: str | None = None,
        verify_signature: bool = True,
    ) -> dict[str, Any]:
        """Validate an ID token and return its claims.

        Parameters
        ----------
        id_token : str, optional
            Token to validate; the session's stored ID token when omitted.
        verify_signature : bool
            Verify the signature against the provider key set (default True).

        Raises
        ------
        TokenValidationError
            If no ID token is given or stored, or validation fails.
        """
        if id_token is None:
            id_token = await self.get_id_token()
        if not id_token:
            raise TokenValidationError("No ID token stored for this session")
        return await self.exchanger.validate_id_token(id_token, verify_signature)

    async def revoke_tokens(self) -> bool:
        """Revoke the stored tokens at the provider (best effort)."""
        tokens = await self.token_store.load()
        if tokens is None:
            return True
        return await self.exchanger.revoke_tokens(tokens)

    async def logout(self, revoke: bool = True) -> bool:
        """Log the session out.

        Revokes the stored tokens when asked, then clears the token set and
        every pending state entry. Always succeeds locally.

        Returns
        -------
        bool
            Whether revocation succeeded (True when nothing was revoked).
        """
        revoked = True
        if revoke:
            revoked = await self.revoke_tokens()
            if not revoked:
                logger.warning("Token revocation failed during logout; clearing local session")
        await self.token_store.clear()
        await self.states.clear_all()
        self._flow_state = AuthFlowState.LOGGED_OUT
        logger.info("Logged out")
        return revoked

    def get_logout_url(self, redirect_url: str | None = None) -> str:
        """Build the provider logout URL.

        Parameters
        ----------
        redirect_url : str, optional
            Where the provider should send the browser afterwards.
        """
        url = f"{self.settings.issuer_base_url}{self.settings.endpoints.logout}"
        if redirect_url:
            url = f"{url}?{urlencode({'redirect_uri': redirect_url})}"
        return url
