"""Simulated monotonic clock shared by the vault and the handlers."""

from __future__ import annotations

from vaultfuzz.core.errors import HarnessError

DEFAULT_GENESIS = 1_700_000_000


class Clock:
    """A timestamp that only moves forward.

    The vault reads it through :meth:`now`; only the driver, the handlers and
    the settlement hook advance it.
    """

    def __init__(self, start: int = DEFAULT_GENESIS) -> None:
        if start < 0:
            raise HarnessError(f"clock cannot start before zero: {start}")
        self._now = start

    def __repr__(self) -> str:
        return f"Clock(now={self._now})"

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise HarnessError(f"clock cannot move backward ({seconds}s)")
        self._now += seconds
        return self._now

    def warp_to(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise HarnessError(f"clock cannot move backward: {timestamp} < {self._now}")
        self._now = timestamp
        return self._now

    def advance_to_at_least(self, timestamp: int) -> int:
        """Warp to *timestamp* unless the clock is already past it."""
        if timestamp > self._now:
            self._now = timestamp
        return self._now
