"""Logging utilities for ssoclient.

Modules log through children of the ``ssoclient`` logger
(``ssoclient.auth``, ``ssoclient.http``, ``ssoclient.storage``). Non-fatal
failures such as revocation or cache eviction are logged as warnings
instead of being raised.
"""

from __future__ import annotations

import logging
import sys

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .config import LogSettings


LOGGER_NAME = "ssoclient"

_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

REDACTED = "[REDACTED]"

# Substrings marking a key whose value must never reach a log record
_SENSITIVE_FRAGMENTS = ("secret", "password", "token", "verifier", "code", "key", "credential")

# Protocol metadata that matches a fragment above but carries no secret
_SAFE_KEYS = frozenset({"token_type", "token_type_hint", "expires_in", "error", "error_description"})


class _LoggerHolder:
    """Holder for the package logger, configured once per process."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the ``ssoclient`` logger.

    The first call attaches a stderr handler (unless the application
    already configured one) and sets the level to WARNING.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger(LOGGER_NAME)
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(_FORMAT))
            logger.addHandler(handler)
        if logger.level == logging.NOTSET:
            logger.setLevel(logging.WARNING)
        _LoggerHolder.instance = logger
    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the level of the ``ssoclient`` logger.

    Parameters
    ----------
    level : int or str
        A logging level such as ``logging.INFO`` or ``"info"``.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Log discovery, state and token operations at DEBUG level."""
    set_level(logging.DEBUG)


def configure_from_settings(settings: LogSettings) -> None:
    """Apply the ``[log]`` configuration section."""
    set_level(settings.level)


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    if name in _SAFE_KEYS:
        return False
    return any(fragment in name for fragment in _SENSITIVE_FRAGMENTS)


def redact_sensitive_data(data: Any, max_depth: int = 5) -> Any:
    """Return a copy of ``data`` that is safe to log.

    Values under keys that look like credentials (tokens, secrets,
    verifiers, codes) are replaced with ``[REDACTED]``. Nested dicts and
    lists are walked up to ``max_depth`` levels; deeper structures are
    replaced with ``[MAX_DEPTH]``.

    Parameters
    ----------
    data : Any
        Usually a decoded JSON body or claim map.
    max_depth : int
        Maximum nesting depth to walk (default 5).

    Returns
    -------
    Any
        The redacted copy. Scalars are returned unchanged.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else redact_sensitive_data(value, max_depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data


def mask_token(token: str | None, visible: int = 10) -> str:
    """Shorten a token to its first ``visible`` characters for log output.

    Tokens no longer than ``visible`` are fully masked.
    """
    if not token:
        return ""
    if len(token) <= visible:
        return "*" * len(token)
    return f"{token[:visible]}..."
