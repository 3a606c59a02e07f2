"""Time source used for every expiry comparison.

Injected through :class:`~ssoclient.auth.context.AuthContext` so tests can
advance time deterministically.
"""

from __future__ import annotations

import time

from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Anything that returns the current Unix time in seconds."""

    def now(self) -> float:
        """Return the current Unix timestamp."""
        ...


class SystemClock:
    """Wall-clock time via :func:`time.time`."""

    def now(self) -> float:
        """Return the current Unix timestamp."""
        return time.time()
