"""ssoclient exception hierarchy.

All ssoclient-specific exceptions inherit from SSOClientError, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class SSOClientError(Exception):
    """Base exception for all ssoclient errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize ssoclient exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (endpoint, step, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(SSOClientError):
    """Client configuration is missing or malformed.

    Raised at construction time; a client that raises this must not start.
    """

    def __init__(self, message: str, setting: str | None = None, **context: Any) -> None:
        """Initialize configuration error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        setting : str, optional
            The offending setting name.
        **context : Any
            Additional context.
        """
        super().__init__(message, setting=setting, **context)
        self.setting = setting


class InvalidParameterError(SSOClientError, ValueError):
    """A generator was called with an out-of-range parameter."""


class UnsupportedMethodError(SSOClientError, ValueError):
    """Unsupported PKCE code challenge method."""


class StorageError(SSOClientError):
    """A stored value could not be read or decoded.

    Raised by storage backends (for example on a failed decryption).
    Callers treat the affected entry as absent.
    """


class StorageBackendError(StorageError):
    """The storage backend itself failed (connection loss, command error).

    Unlike a corrupt entry, nothing is known about the stored value, so
    callers propagate this instead of discarding the entry.
    """


class ProtocolError(SSOClientError):
    """Base exception for failures talking to the identity provider.

    Carries the upstream OAuth ``error`` / ``error_description`` when the
    provider returned them, the HTTP status and the endpoint involved.
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        status_code: int | None = None,
        endpoint: str | None = None,
        timed_out: bool = False,
        **context: Any,
    ) -> None:
        """Initialize protocol error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        error : str, optional
            Upstream OAuth error code (e.g. ``invalid_grant``).
        error_description : str, optional
            Upstream human-readable error description.
        status_code : int, optional
            HTTP status code of the failing response.
        endpoint : str, optional
            The endpoint URL that was called.
        timed_out : bool
            Whether the failure was a request timeout.
        **context : Any
            Additional context.
        """
        super().__init__(
            message,
            error=error,
            status_code=status_code,
            endpoint=endpoint,
            timed_out=timed_out or None,
            **context,
        )
        self.error = error
        self.error_description = error_description
        self.status_code = status_code
        self.endpoint = endpoint
        self.timed_out = timed_out


class DiscoveryError(ProtocolError):
    """Provider metadata is unreachable or structurally invalid."""


class EndpointNotFoundError(DiscoveryError):
    """A named endpoint is not advertised by the discovery document."""


class StateError(SSOClientError):
    """Missing, expired or mismatched anti-CSRF state.

    Always terminal for the callback that raised it.
    """


class LaunchTokenError(StateError):
    """A launch-token deep link could not be resolved or did not match."""


class AuthorizationError(ProtocolError):
    """The identity provider returned an error on the authorization callback."""


class TokenError(ProtocolError):
    """Base exception for token-related failures."""


class TokenExchangeError(TokenError):
    """Authorization code exchange failed.

    Raised on non-2xx responses and on structurally invalid 2xx responses.
    """


class TokenRefreshError(TokenExchangeError):
    """Refreshing an access token failed."""


class TokenExpiredError(TokenError):
    """Access token has expired and cannot be refreshed."""


class TokenValidationError(TokenError):
    """ID token is malformed or failed signature/claim verification."""


class RevocationError(ProtocolError):
    """Token revocation failed.

    Never fatal: logout clears local state regardless.
    """


class UserInfoError(ProtocolError):
    """The userinfo endpoint returned a non-2xx response."""
