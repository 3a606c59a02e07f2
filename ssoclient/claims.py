"""Mapping of verified claims onto application fields.

Each target field has an ordered list of sources. A source is either a raw
claim (``"picture"``) or a derived value (``":full_name"``). Sources are
tried in order and the first non-empty result wins.

Example::

    field_mappings = {
        "name": [":full_name"],
        "username": [":preferred_username", ":email"],
        "avatar": ["picture"],
    }
    map_claims(claims, field_mappings)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Union

from .exceptions import InvalidParameterError


DERIVED_PREFIX = ":"

DERIVED_KINDS = frozenset(
    {
        "identifier",
        "email",
        "full_name",
        "given_name",
        "family_name",
        "preferred_username",
        "sub",
    }
)


@dataclass(frozen=True)
class DirectClaim:
    """A claim read as-is from the claim map."""

    name: str


@dataclass(frozen=True)
class DerivedValue:
    """A value computed from one or more claims."""

    kind: str


ClaimSource = Union[DirectClaim, DerivedValue]


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def parse_source(source: str | ClaimSource) -> ClaimSource:
    """Parse a configured source string.

    Raises
    ------
    InvalidParameterError
        If a ``:`` source names an unknown derived value.
    """
    if isinstance(source, (DirectClaim, DerivedValue)):
        return source
    if source.startswith(DERIVED_PREFIX):
        kind = source[len(DERIVED_PREFIX) :]
        if kind not in DERIVED_KINDS:
            msg = f"Unknown derived claim value: {source}"
            raise InvalidParameterError(msg, supported=", ".join(sorted(DERIVED_KINDS)))
        return DerivedValue(kind)
    return DirectClaim(source)


def derive(claims: dict[str, Any], kind: str) -> Any:
    """Compute a derived value from a claim map."""
    if kind == "full_name":
        if _present(claims.get("name")):
            return claims["name"]
        parts = [claims.get("given_name"), claims.get("family_name")]
        composed = " ".join(str(p).strip() for p in parts if _present(p))
        if composed:
            return composed
        for fallback in ("email", "preferred_username", "identifier"):
            if _present(claims.get(fallback)):
                return claims[fallback]
        return None
    return claims.get(kind)


def resolve_field(claims: dict[str, Any], sources: Sequence[str | ClaimSource]) -> Any:
    """Return the first non-empty value among ``sources``, or None."""
    for source in sources:
        parsed = parse_source(source)
        if isinstance(parsed, DerivedValue):
            value = derive(claims, parsed.kind)
        else:
            value = claims.get(parsed.name)
        if _present(value):
            return value
    return None


def map_claims(
    claims: dict[str, Any],
    field_mappings: dict[str, list[str]],
) -> dict[str, Any]:
    """Map a claim set onto every configured field.

    Fields with no non-empty source are left out of the result.
    """
    mapped: dict[str, Any] = {}
    for field_name, sources in field_mappings.items():
        value = resolve_field(claims, sources)
        if value is not None:
            mapped[field_name] = value
    return mapped
