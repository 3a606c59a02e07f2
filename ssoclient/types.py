"""Type definitions for the ssoclient protocol core.

Shared data records passed between the PKCE generator, state store,
discovery cache, token exchanger and the auth flow orchestrator.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .exceptions import SSOClientError


DEFAULT_EXPIRES_IN = 3600

# Fields a discovery document must carry as absolute URLs
REQUIRED_DISCOVERY_FIELDS: tuple[str, ...] = (
    "issuer",
    "authorization_endpoint",
    "token_endpoint",
    "jwks_uri",
)


class AuthFlowState(str, Enum):
    """States of the authorization code flow."""

    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"
    FAILED = "failed"


@dataclass
class AuthorizationRequest:
    """A pending authorization request bound to one state value.

    Attributes
    ----------
    state : str
        The anti-CSRF state value sent to the provider.
    created_at : float
        Unix timestamp when the request was stored.
    expires_at : float
        Unix timestamp after which the request is rejected.
    code_verifier : str or None
        PKCE code verifier bound to this state.
    code_challenge : str or None
        PKCE code challenge derived from the verifier.
    challenge_method : str or None
        PKCE challenge method (``S256`` or ``plain``).
    extra : dict[str, Any]
        Any additional payload stored alongside the state.
    """

    state: str
    created_at: float
    expires_at: float
    code_verifier: str | None = None
    code_challenge: str | None = None
    challenge_method: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        """Check whether the request has passed its expiry time."""
        return self.expires_at < now

    @property
    def has_pkce(self) -> bool:
        """Whether a PKCE verifier is bound to this request."""
        return bool(self.code_verifier)

    def to_dict(self) -> dict[str, Any]:
        """Flatten the request into a JSON-serializable payload."""
        data = {k: v for k, v in asdict(self).items() if k != "extra"}
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorizationRequest:
        """Rebuild a request from a stored payload.

        Raises
        ------
        KeyError, TypeError, ValueError
            If the payload is missing required fields or has wrong types.
        """
        known = {
            "state",
            "created_at",
            "expires_at",
            "code_verifier",
            "code_challenge",
            "challenge_method",
        }
        if not isinstance(data["state"], str):
            raise TypeError("state must be a string")
        return cls(
            state=data["state"],
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            code_verifier=data.get("code_verifier"),
            code_challenge=data.get("code_challenge"),
            challenge_method=data.get("challenge_method"),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class TokenSet:
    """OAuth2 token set issued by the provider.

    Attributes
    ----------
    access_token : str
        The access token for API requests. Never empty.
    expires_at : float
        Unix timestamp when the access token expires.
    stored_at : float
        Unix timestamp when the set was stored.
    token_type : str
        Token type, typically "Bearer".
    refresh_token : str or None
        Optional refresh token for obtaining new access tokens.
    id_token : str or None
        Optional OIDC ID token (JWT).
    scope : str or None
        Space-separated list of granted scopes.
    expires_in : int
        Token lifetime in seconds as reported by the provider.
    """

    access_token: str
    expires_at: float
    stored_at: float
    token_type: str = "Bearer"  # noqa: S105
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None
    expires_in: int = DEFAULT_EXPIRES_IN

    def __post_init__(self) -> None:
        """Enforce the non-empty access token invariant."""
        if not self.access_token or not isinstance(self.access_token, str):
            raise ValueError("TokenSet requires a non-empty access_token")

    def is_expired(self, now: float) -> bool:
        """Check if the access token has expired."""
        return self.expires_at <= now

    @classmethod
    def from_response(
        cls,
        raw: dict[str, Any],
        now: float,
        previous_refresh_token: str | None = None,
    ) -> TokenSet:
        """Build a token set from a validated token endpoint response.

        Parameters
        ----------
        raw : dict[str, Any]
            The token endpoint JSON body.
        now : float
            Current Unix timestamp.
        previous_refresh_token : str, optional
            Refresh token to keep when the response does not rotate it.
        """
        expires_in = raw.get("expires_in")
        lifetime = int(float(expires_in)) if expires_in is not None else DEFAULT_EXPIRES_IN
        return cls(
            access_token=raw["access_token"],
            token_type=raw.get("token_type") or "Bearer",
            refresh_token=raw.get("refresh_token") or previous_refresh_token,
            id_token=raw.get("id_token"),
            scope=raw.get("scope"),
            expires_in=lifetime,
            expires_at=now + lifetime,
            stored_at=now,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        """Deserialize from a stored dict."""
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            scope=data.get("scope"),
            expires_in=int(data.get("expires_in", DEFAULT_EXPIRES_IN)),
            expires_at=float(data["expires_at"]),
            stored_at=float(data["stored_at"]),
        )


@dataclass
class DiscoveryDocument:
    """Validated OpenID provider metadata.

    Only constructed from documents that passed validation, so the four
    required URLs are always present.
    """

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    fetched_at: float
    userinfo_endpoint: str | None = None
    revocation_endpoint: str | None = None
    end_session_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    response_types_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        """Look up a metadata field by name, including non-standard ones."""
        value = getattr(self, name, None) if name in self.__dataclass_fields__ else None
        if value is None:
            value = self.raw.get(name)
        return value

    @classmethod
    def from_dict(cls, data: dict[str, Any], fetched_at: float) -> DiscoveryDocument:
        """Build a document from a raw metadata dict (already validated)."""
        return cls(
            issuer=data["issuer"],
            authorization_endpoint=data["authorization_endpoint"],
            token_endpoint=data["token_endpoint"],
            jwks_uri=data["jwks_uri"],
            userinfo_endpoint=data.get("userinfo_endpoint"),
            revocation_endpoint=data.get("revocation_endpoint"),
            end_session_endpoint=data.get("end_session_endpoint"),
            scopes_supported=data.get("scopes_supported"),
            response_types_supported=data.get("response_types_supported"),
            code_challenge_methods_supported=data.get("code_challenge_methods_supported"),
            raw=dict(data),
            fetched_at=fetched_at,
        )


@dataclass(frozen=True)
class LaunchTokenState:
    """Decoded state value of a provider-initiated (deep link) launch.

    Attributes
    ----------
    launch_token : str
        Provider-issued reference to the pending launch.
    state : str
        The state value the provider bound to the launch.
    """

    launch_token: str
    state: str = ""


@dataclass
class AuthFlowResult:
    """Result of handling an authorization callback.

    Attributes
    ----------
    success : bool
        Whether authentication completed.
    tokens : TokenSet or None
        The stored token set on success.
    error : str or None
        Error code for the failure (the IdP's own code when it sent one).
    error_description : str or None
        Human-readable failure description.
    exception : SSOClientError or None
        The typed error behind a failure.
    """

    success: bool
    tokens: TokenSet | None = None
    error: str | None = None
    error_description: str | None = None
    exception: SSOClientError | None = None

    def raise_for_error(self) -> None:
        """Re-raise the typed error of a failed result."""
        if not self.success and self.exception is not None:
            raise self.exception
