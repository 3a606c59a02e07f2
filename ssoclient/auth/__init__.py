"""OAuth2 / OpenID Connect protocol core.

Components, leaves first: PKCE generation, anti-CSRF state storage,
discovery and key caching, token endpoint operations, and the
AuthFlowManager that sequences them.
"""

from __future__ import annotations

from .context import AuthContext
from .discovery import DiscoveryCache, validate_discovery_document
from .flow import AuthFlowManager
from .pkce import (
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    PKCEChallenge,
    generate_challenge,
    generate_verifier,
    validate_verifier,
    verify_challenge,
)
from .state import StateStore
from .token_store import SessionTokenStore
from .tokens import TokenExchanger


__all__ = [
    "MAX_VERIFIER_LENGTH",
    "MIN_VERIFIER_LENGTH",
    "AuthContext",
    "AuthFlowManager",
    "DiscoveryCache",
    "PKCEChallenge",
    "SessionTokenStore",
    "StateStore",
    "TokenExchanger",
    "generate_challenge",
    "generate_verifier",
    "validate_discovery_document",
    "validate_verifier",
    "verify_challenge",
]
