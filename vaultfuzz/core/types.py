"""Shared enums and report schemas used across the harness."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class Outcome(str, enum.Enum):
    """Result of a single handler step."""

    SUCCESS = "success"
    DECLINED = "declined"
    UNEXPECTED = "unexpected"


class DriverState(str, enum.Enum):
    """Lifecycle of one sequence."""

    IDLE = "idle"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class FailureKind(str, enum.Enum):
    """Why a sequence failed."""

    UNEXPECTED_REVERT = "unexpected_revert"
    INVARIANT_VIOLATION = "invariant_violation"


# ── Report Schemas ───────────────────────────────────────────────────────────


class HandlerCallSchema(BaseModel):
    """A replayable step: the handler plus the raw randomness it consumed."""

    handler_id: str
    raw_arguments: list[int] = Field(default_factory=list)
    chosen_actor: str | None = None
    outcome: Outcome | None = None


class FailureSchema(BaseModel):
    """Details of the first failure in a sequence."""

    kind: FailureKind
    step: int
    property_ids: list[str] = Field(default_factory=list)
    revert_code: str | None = None
    message: str = ""
    during_settlement: bool = False


class SequenceReport(BaseModel):
    """Summary of one executed sequence."""

    sequence_id: str
    seed: int
    state: DriverState
    steps_executed: int = 0
    successes: int = 0
    declines: int = 0
    settled: bool = False
    timed_out: bool = False
    duration_seconds: float = 0.0
    handler_counts: dict[str, int] = Field(default_factory=dict)
    calls: list[HandlerCallSchema] = Field(default_factory=list)
    failure: FailureSchema | None = None
    minimal_calls: list[HandlerCallSchema] | None = None
    trace: list[str] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.state == DriverState.PASSED


class CampaignReport(BaseModel):
    """Merged results of many independent sequences."""

    sequences: list[SequenceReport] = Field(default_factory=list)
    duration_seconds: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def passed(self) -> int:
        return sum(1 for s in self.sequences if s.passed)

    @property
    def failed(self) -> int:
        return len(self.sequences) - self.passed

    @property
    def failures(self) -> list[SequenceReport]:
        return [s for s in self.sequences if not s.passed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "duration_seconds": round(self.duration_seconds, 2),
            "metadata": self.metadata,
            "sequences": [s.model_dump(mode="json") for s in self.sequences],
        }
