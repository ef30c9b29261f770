"""Optional human-readable trace of successful operations.

Pure observability: nothing in the harness reads the trace back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class TraceEntry:
    step: int
    timestamp: int
    operation: str
    actor: str | None
    amount: int | None
    asset_balance: int | None = None
    claim_balance: int | None = None
    total_supply: int = 0

    def format(self) -> str:
        who = self.actor or "-"
        amount = "" if self.amount is None else f" amount={self.amount}"
        balances = ""
        if self.asset_balance is not None:
            balances = f" asset={self.asset_balance} claim={self.claim_balance}"
        return (
            f"#{self.step:<4d} t={self.timestamp} {self.operation:<32s} "
            f"{who}{amount}{balances} supply={self.total_supply}"
        )


@dataclass
class TraceRecorder:
    entries: list[TraceEntry] = field(default_factory=list)
    step: int = 0

    def record(self, entry: TraceEntry) -> None:
        entry.step = self.step
        self.entries.append(entry)
        logger.debug(entry.format())

    def lines(self) -> list[str]:
        return [e.format() for e in self.entries]
