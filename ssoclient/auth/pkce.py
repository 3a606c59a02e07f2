"""PKCE verifier and challenge helpers.

Implements RFC 7636 for public and confidential OAuth 2.0 clients.
Supports the S256 (SHA-256 hash of the code verifier) and plain methods.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets
import string

from base64 import urlsafe_b64encode
from dataclasses import dataclass

from ..exceptions import InvalidParameterError, UnsupportedMethodError


MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128

SUPPORTED_METHODS = ("S256", "plain")

# RFC 7636 section 4.1 unreserved characters
UNRESERVED_CHARACTERS = string.ascii_letters + string.digits + "-._~"

_VERIFIER_PATTERN = re.compile(r"[A-Za-z0-9\-._~]{43,128}")


def generate_verifier(length: int = MAX_VERIFIER_LENGTH) -> str:
    """Generate a high-entropy code verifier.

    Parameters
    ----------
    length : int
        Verifier length in characters, between 43 and 128 (default 128).

    Returns
    -------
    str
        A random string over the unreserved character set.

    Raises
    ------
    InvalidParameterError
        If ``length`` is outside [43, 128].
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        msg = (
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH} characters"
        )
        raise InvalidParameterError(msg, length=length)
    return "".join(secrets.choice(UNRESERVED_CHARACTERS) for _ in range(length))


def generate_challenge(verifier: str, method: str = "S256") -> str:
    """Derive the code challenge for a verifier.

    Parameters
    ----------
    verifier : str
        The code verifier.
    method : str
        ``S256`` (base64url SHA-256, unpadded) or ``plain``.

    Returns
    -------
    str
        The code challenge.

    Raises
    ------
    UnsupportedMethodError
        If ``method`` is not S256 or plain.
    """
    if method == "S256":
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    if method == "plain":
        return verifier
    msg = f"Unsupported code challenge method: {method}"
    raise UnsupportedMethodError(msg, supported=", ".join(SUPPORTED_METHODS))


def verify_challenge(verifier: str, challenge: str, method: str = "S256") -> bool:
    """Check a verifier against a challenge in constant time.

    Never raises; any internal error yields False.
    """
    try:
        expected = generate_challenge(verifier, method)
        return hmac.compare_digest(expected.encode("ascii"), challenge.encode("ascii"))
    except (UnsupportedMethodError, UnicodeError, AttributeError, TypeError):
        return False


def validate_verifier(verifier: str) -> bool:
    """Check verifier format and length (RFC 7636 section 4.1)."""
    return isinstance(verifier, str) and bool(_VERIFIER_PATTERN.fullmatch(verifier))


@dataclass(frozen=True)
class PKCEChallenge:
    """A verifier together with the challenge sent in the authorization URL.

    Attributes
    ----------
    verifier : str
        Secret kept until the token exchange.
    challenge : str
        The code challenge derived from the verifier.
    method : str
        The challenge method, "S256" or "plain".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = MAX_VERIFIER_LENGTH, method: str = "S256") -> PKCEChallenge:
        """Create a fresh verifier and derive its challenge.

        Parameters
        ----------
        length : int
            Verifier length in characters (default 128).
        method : str
            Challenge method (default "S256").

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        verifier = generate_verifier(length)
        return cls(verifier=verifier, challenge=generate_challenge(verifier, method), method=method)

    def verify(self, verifier: str) -> bool:
        """Check whether ``verifier`` matches this challenge."""
        return verify_challenge(verifier, self.challenge, self.method)
