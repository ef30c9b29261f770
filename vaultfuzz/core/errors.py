"""Exception hierarchy for the harness.

Three failure classes are kept apart:

* :class:`UnexpectedRevertError` - the system under test rejected a call that
  the handler built to be valid. Fatal to the sequence.
* :class:`InvariantViolationError` - a property predicate returned false.
  Fatal to the sequence.
* :class:`HarnessError` (and :class:`GhostDesyncError`) - the harness itself is
  inconsistent. Never attributed to the system under test.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vaultfuzz.sut.errors import RevertCode


class HarnessError(Exception):
    """The harness reached a state it should never reach."""


class GhostDesyncError(HarnessError):
    """Ghost bookkeeping disagrees with itself or with the vault."""


class ConfigurationError(HarnessError):
    """Invalid driver or campaign configuration."""


class ReplayError(HarnessError):
    """A recorded sequence could not be loaded for replay."""


class UnexpectedRevertError(Exception):
    """A handler's call was rejected with a code outside the allow-list."""

    def __init__(self, handler: str, code: RevertCode | None, message: str) -> None:
        self.handler = handler
        self.code = code
        self.message = message
        label = code.value if code is not None else "EXCEPTION"
        super().__init__(f"{handler}: unexpected {label}: {message}")


class InvariantViolationError(AssertionError):
    """One or more properties failed."""

    def __init__(self, property_ids: list[str], details: list[str] | None = None) -> None:
        self.property_ids = property_ids
        self.details = details or []
        summary = ", ".join(property_ids)
        if self.details:
            summary += " (" + "; ".join(self.details) + ")"
        super().__init__(f"invariant violated: {summary}")
