"""ssoclient - OAuth 2.0 / OpenID Connect client core.

Drives a browser-redirect Authorization Code + PKCE login, manages
anti-CSRF state, discovers and caches provider metadata and signing keys,
and owns the token lifecycle (exchange, refresh, validation, revocation).
"""

from .auth import (
    AuthContext,
    AuthFlowManager,
    DiscoveryCache,
    PKCEChallenge,
    SessionTokenStore,
    StateStore,
    TokenExchanger,
    generate_challenge,
    generate_verifier,
    validate_verifier,
    verify_challenge,
)
from .claims import DerivedValue, DirectClaim, map_claims, parse_source, resolve_field
from .clock import Clock, SystemClock
from .config import (
    CacheSettings,
    ClaimSettings,
    EndpointSettings,
    HttpSettings,
    LogSettings,
    SecuritySettings,
    SessionSettings,
    SSOClientSettings,
    clear_settings,
    get_settings,
    reload_settings,
)
from .exceptions import (
    AuthorizationError,
    ConfigurationError,
    DiscoveryError,
    EndpointNotFoundError,
    InvalidParameterError,
    LaunchTokenError,
    ProtocolError,
    RevocationError,
    SSOClientError,
    StateError,
    StorageBackendError,
    StorageError,
    TokenError,
    TokenExchangeError,
    TokenExpiredError,
    TokenRefreshError,
    TokenValidationError,
    UnsupportedMethodError,
    UserInfoError,
)
from .http import HttpTransport
from .log import enable_debug, get_logger, set_level
from .storage import (
    EncryptedKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    create_session_store,
    get_shared_cache,
    reset_shared_cache,
)
from .types import (
    AuthFlowResult,
    AuthFlowState,
    AuthorizationRequest,
    DiscoveryDocument,
    LaunchTokenState,
    TokenSet,
)


__version__ = "1.0.0"

__all__ = [
    "AuthContext",
    "AuthFlowManager",
    "AuthFlowResult",
    "AuthFlowState",
    "AuthorizationError",
    "AuthorizationRequest",
    "CacheSettings",
    "ClaimSettings",
    "Clock",
    "ConfigurationError",
    "DerivedValue",
    "DirectClaim",
    "DiscoveryCache",
    "DiscoveryDocument",
    "DiscoveryError",
    "EncryptedKeyValueStore",
    "EndpointNotFoundError",
    "EndpointSettings",
    "HttpSettings",
    "HttpTransport",
    "InvalidParameterError",
    "KeyValueStore",
    "LaunchTokenError",
    "LaunchTokenState",
    "LogSettings",
    "MemoryKeyValueStore",
    "PKCEChallenge",
    "ProtocolError",
    "RevocationError",
    "SSOClientError",
    "SSOClientSettings",
    "SecuritySettings",
    "SessionSettings",
    "SessionTokenStore",
    "StateError",
    "StateStore",
    "StorageBackendError",
    "StorageError",
    "SystemClock",
    "TokenError",
    "TokenExchangeError",
    "TokenExchanger",
    "TokenExpiredError",
    "TokenRefreshError",
    "TokenSet",
    "TokenValidationError",
    "UnsupportedMethodError",
    "UserInfoError",
    "__version__",
    "clear_settings",
    "create_session_store",
    "enable_debug",
    "generate_challenge",
    "generate_verifier",
    "get_logger",
    "get_settings",
    "get_shared_cache",
    "map_claims",
    "parse_source",
    "reload_settings",
    "reset_shared_cache",
    "resolve_field",
    "set_level",
    "validate_verifier",
    "verify_challenge",
]
