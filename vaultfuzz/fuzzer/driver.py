"""Sequence driver — executes handler sequences and checks properties after every step.

Architecture
------------
::

    run_campaign
      └── SequenceDriver (one per seed, private system + ghost store)
            ├── Idle → Running: deploy a fresh system
            ├── Running → Running: pick handler, draw raw args, execute,
            │                      evaluate every property
            ├── Running → Failed: unexpected rejection or violated property
            │     └── SequenceShrinker: replay reductions on fresh systems
            └── Running → Passed: step budget reached, settlement hook,
                                  final (settled) property check

A :class:`~vaultfuzz.core.errors.GhostDesyncError` is a harness bug and is
raised straight out of the driver instead of failing the sequence.
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable

from vaultfuzz.core.config import Settings
from vaultfuzz.core.errors import ConfigurationError, UnexpectedRevertError
from vaultfuzz.core.logging import sequence_context
from vaultfuzz.core.types import (
    CampaignReport,
    DriverState,
    FailureKind,
    FailureSchema,
    HandlerCallSchema,
    Outcome,
    SequenceReport,
)
from vaultfuzz.fuzzer.context import HarnessContext, WorldConfig, build_context
from vaultfuzz.fuzzer.handlers import HandlerId, RawArgs, execute
from vaultfuzz.fuzzer.properties import PropertyOracle, VaultObservation, describe, violations
from vaultfuzz.fuzzer.settlement import settle
from vaultfuzz.fuzzer.shrink import SequenceShrinker

logger = logging.getLogger(__name__)


# ── Data Models ──────────────────────────────────────────────────────────────


@dataclass
class HandlerCall:
    """The unit replayed during shrinking."""
    handler_id: HandlerId
    raw: RawArgs
    chosen_actor: str | None = None
    outcome: Outcome | None = None

    @property
    def signature(self) -> str:
        who = f" as {self.chosen_actor}" if self.chosen_actor else ""
        return f"{self.handler_id.value}{who}"

    def to_schema(self) -> HandlerCallSchema:
        return HandlerCallSchema(
            handler_id=self.handler_id.value,
            raw_arguments=self.raw.as_list(),
            chosen_actor=self.chosen_actor,
            outcome=self.outcome,
        )

    @classmethod
    def from_schema(cls, schema: HandlerCallSchema) -> HandlerCall:
        return cls(
            handler_id=HandlerId(schema.handler_id),
            raw=RawArgs.from_list(schema.raw_arguments),
        )


@dataclass
class Failure:
    kind: FailureKind
    step: int
    property_ids: list[str] = field(default_factory=list)
    revert_code: str | None = None
    handler_id: HandlerId | None = None
    message: str = ""
    during_settlement: bool = False

    def matches(self, other: Failure) -> bool:
        """Whether *other* is the same failure for shrinking purposes."""
        if self.kind != other.kind or self.during_settlement != other.during_settlement:
            return False
        if self.kind == FailureKind.INVARIANT_VIOLATION:
            return bool(set(self.property_ids) & set(other.property_ids))
        return self.revert_code == other.revert_code and self.handler_id == other.handler_id

    def to_schema(self) -> FailureSchema:
        return FailureSchema(
            kind=self.kind,
            step=self.step,
            property_ids=list(self.property_ids),
            revert_code=self.revert_code,
            message=self.message,
            during_settlement=self.during_settlement,
        )


@dataclass
class Execution:
    """What happened when a list of calls ran against one system."""
    calls: list[HandlerCall] = field(default_factory=list)
    failure: Failure | None = None
    successes: int = 0
    declines: int = 0
    settled: bool = False
    timed_out: bool = False
    trace: list[str] = field(default_factory=list)


@dataclass
class SequenceResult:
    seed: int
    sequence_id: str
    state: DriverState
    execution: Execution
    minimal_calls: list[HandlerCall] | None = None
    duration_seconds: float = 0.0

    @property
    def failure(self) -> Failure | None:
        return self.execution.failure

    @property
    def calls(self) -> list[HandlerCall]:
        return self.execution.calls

    def handler_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for call in self.execution.calls:
            counts[call.handler_id.value] = counts.get(call.handler_id.value, 0) + 1
        return counts

    def to_report(self) -> SequenceReport:
        return SequenceReport(
            sequence_id=self.sequence_id,
            seed=self.seed,
            state=self.state,
            steps_executed=len(self.execution.calls),
            successes=self.execution.successes,
            declines=self.execution.declines,
            settled=self.execution.settled,
            timed_out=self.execution.timed_out,
            duration_seconds=self.duration_seconds,
            handler_counts=self.handler_counts(),
            calls=[c.to_schema() for c in self.execution.calls],
            failure=self.failure.to_schema() if self.failure else None,
            minimal_calls=(
                [c.to_schema() for c in self.minimal_calls]
                if self.minimal_calls is not None
                else None
            ),
            trace=self.execution.trace,
        )


@dataclass
class DriverConfig:
    """Per-sequence execution settings."""
    steps: int = 150
    max_duration_seconds: float = 300.0
    enable_shrinking: bool = True
    shrink_max_replays: int = 500
    enable_settlement: bool = True
    handler_weights: dict[str, int] = field(default_factory=dict)
    world: WorldConfig = field(default_factory=WorldConfig)
    trace: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> DriverConfig:
        return cls(
            steps=settings.steps_per_sequence,
            max_duration_seconds=settings.max_duration_seconds,
            enable_shrinking=settings.enable_shrinking,
            shrink_max_replays=settings.shrink_max_replays,
            enable_settlement=settings.enable_settlement,
            handler_weights=dict(settings.handler_weights),
            world=WorldConfig.from_settings(settings),
            trace=settings.trace,
        )


def resolve_weights(weights: dict[str, int]) -> tuple[list[HandlerId], list[int]]:
    """Turn a name→weight mapping into parallel choice lists.

    An empty mapping means uniform selection. Handlers not named get weight 0.
    """
    handler_ids = list(HandlerId)
    if not weights:
        return handler_ids, [1] * len(handler_ids)

    known = {h.value for h in handler_ids}
    unknown = sorted(set(weights) - known)
    if unknown:
        raise ConfigurationError(f"unknown handler(s) in weights: {', '.join(unknown)}")
    if any(w < 0 for w in weights.values()):
        raise ConfigurationError("handler weights cannot be negative")

    resolved = [weights.get(h.value, 0) for h in handler_ids]
    if sum(resolved) == 0:
        raise ConfigurationError("at least one handler needs a positive weight")
    return handler_ids, resolved


def sequence_id_for(seed: int) -> str:
    return hashlib.sha256(f"vaultfuzz-{seed}".encode()).hexdigest()[:12]


# ── Sequence Driver ──────────────────────────────────────────────────────────


class SequenceDriver:
    """Runs one sequence per seed against a private, freshly deployed system."""

    def __init__(
        self,
        config: DriverConfig | None = None,
        oracle: PropertyOracle | None = None,
        context_factory: Callable[[], HarnessContext] | None = None,
    ) -> None:
        self._config = config or DriverConfig()
        self._oracle = oracle or PropertyOracle()
        self._context_factory = context_factory or (
            lambda: build_context(self._config.world, trace=self._config.trace)
        )
        self._handler_ids, self._weights = resolve_weights(self._config.handler_weights)
        self.state = DriverState.IDLE

    @property
    def config(self) -> DriverConfig:
        return self._config

    def run(self, seed: int) -> SequenceResult:
        """Execute one random sequence; shrink it if it fails."""
        sequence_id = sequence_id_for(seed)
        rng = random.Random(seed)
        start = time.monotonic()
        deadline = start + self._config.max_duration_seconds

        def next_call(step: int) -> HandlerCall | None:
            if step >= self._config.steps:
                return None
            if time.monotonic() > deadline:
                raise _Timeout
            handler_id = rng.choices(self._handler_ids, weights=self._weights)[0]
            return HandlerCall(handler_id, RawArgs.draw(rng))

        with sequence_context(seed, sequence_id) as log_ctx:
            logger.info("Sequence %s: up to %d steps", sequence_id, self._config.steps)
            self.state = DriverState.RUNNING
            execution = self._execute(
                next_call, settle_at_end=self._config.enable_settlement, log_ctx=log_ctx
            )

            minimal: list[HandlerCall] | None = None
            if execution.failure is not None:
                self.state = DriverState.FAILED
                logger.warning(
                    "Sequence %s failed at step %d: %s",
                    sequence_id, execution.failure.step, execution.failure.message,
                )
                if self._config.enable_shrinking:
                    minimal = self.shrink(execution.calls, execution.failure)
            else:
                self.state = DriverState.PASSED

        duration = time.monotonic() - start
        logger.info(
            "Sequence %s %s: %d steps (%d ok, %d declined) in %.2fs",
            sequence_id, self.state.value, len(execution.calls),
            execution.successes, execution.declines, duration,
        )
        return SequenceResult(
            seed=seed,
            sequence_id=sequence_id,
            state=self.state,
            execution=execution,
            minimal_calls=minimal,
            duration_seconds=duration,
        )

    def replay(self, calls: list[HandlerCall], *, settle_at_end: bool | None = None) -> Execution:
        """Re-execute recorded calls, in order, against a fresh system."""
        if settle_at_end is None:
            settle_at_end = self._config.enable_settlement
        pending = list(calls)

        def next_call(step: int) -> HandlerCall | None:
            if step >= len(pending):
                return None
            call = pending[step]
            return HandlerCall(call.handler_id, call.raw)

        return self._execute(next_call, settle_at_end=settle_at_end)

    def shrink(self, calls: list[HandlerCall], failure: Failure) -> list[HandlerCall]:
        def reproduce(candidate: list[HandlerCall]) -> list[HandlerCall] | None:
            outcome = self.replay(candidate, settle_at_end=failure.during_settlement)
            if outcome.failure is not None and failure.matches(outcome.failure):
                return outcome.calls
            return None

        shrinker = SequenceShrinker(reproduce, max_replays=self._config.shrink_max_replays)
        return shrinker.shrink(calls)

    # ── Execution ────────────────────────────────────────────────────

    def _execute(
        self,
        next_call: Callable[[int], HandlerCall | None],
        *,
        settle_at_end: bool,
        log_ctx=None,
    ) -> Execution:
        ctx = self._context_factory()
        execution = Execution()
        previous: VaultObservation | None = None
        step = 0

        while True:
            try:
                call = next_call(step)
            except _Timeout:
                execution.timed_out = True
                logger.warning("Wall-clock budget exhausted after %d steps", step)
                break
            if call is None:
                break

            if log_ctx is not None:
                log_ctx.step = step
                log_ctx.handler = call.handler_id.value
                log_ctx.actor = None
            if ctx.trace is not None:
                ctx.trace.step = step
            execution.calls.append(call)

            try:
                result = execute(ctx, call.handler_id, call.raw)
            except UnexpectedRevertError as exc:
                call.outcome = Outcome.UNEXPECTED
                execution.failure = Failure(
                    kind=FailureKind.UNEXPECTED_REVERT,
                    step=step,
                    revert_code=exc.code.value if exc.code is not None else None,
                    handler_id=call.handler_id,
                    message=str(exc),
                )
                break

            call.chosen_actor = result.actor
            if log_ctx is not None:
                log_ctx.actor = result.actor
            call.outcome = result.outcome
            if result.outcome == Outcome.SUCCESS:
                execution.successes += 1
            else:
                execution.declines += 1

            obs, results = self._oracle.evaluate(ctx, previous)
            failed = violations(results)
            if failed:
                execution.failure = Failure(
                    kind=FailureKind.INVARIANT_VIOLATION,
                    step=step,
                    property_ids=[r.property_id.value for r in failed],
                    handler_id=call.handler_id,
                    message=f"after {call.signature}: {describe(obs)}",
                )
                break
            previous = obs
            step += 1

        if execution.failure is None and settle_at_end:
            if log_ctx is not None:
                log_ctx.step, log_ctx.handler, log_ctx.actor = step, "settlement", None
            self._settle(ctx, execution, previous, step)

        if ctx.trace is not None:
            execution.trace = ctx.trace.lines()
        return execution

    def _settle(
        self,
        ctx: HarnessContext,
        execution: Execution,
        previous: VaultObservation | None,
        step: int,
    ) -> None:
        try:
            settle(ctx)
        except UnexpectedRevertError as exc:
            execution.failure = Failure(
                kind=FailureKind.UNEXPECTED_REVERT,
                step=step,
                revert_code=exc.code.value if exc.code is not None else None,
                message=str(exc),
                during_settlement=True,
            )
            return

        execution.settled = True
        obs, results = self._oracle.evaluate(ctx, previous, settled=True)
        failed = violations(results)
        if failed:
            execution.failure = Failure(
                kind=FailureKind.INVARIANT_VIOLATION,
                step=step,
                property_ids=[r.property_id.value for r in failed],
                message=f"after settlement: {describe(obs)}",
                during_settlement=True,
            )


class _Timeout(Exception):
    pass


# ── Campaign ─────────────────────────────────────────────────────────────────


def _run_one(config: DriverConfig, seed: int) -> SequenceReport:
    return SequenceDriver(config).run(seed).to_report()


def run_campaign(
    config: DriverConfig,
    seeds: Iterable[int],
    workers: int = 1,
) -> CampaignReport:
    """Run independent sequences, one per seed.

    Sequences share no mutable state, so ``workers > 1`` fans them out over
    a process pool.
    """
    seeds = list(seeds)
    start = time.monotonic()
    logger.info("Campaign: %d sequences, %d workers", len(seeds), workers)

    if workers <= 1:
        reports = [_run_one(config, seed) for seed in seeds]
    else:
        with ProcessPoolExecutor(max_workers=workers) as pool:
            reports = list(pool.map(_run_one, [config] * len(seeds), seeds))

    report = CampaignReport(
        sequences=reports,
        duration_seconds=time.monotonic() - start,
        metadata={
            "steps_per_sequence": config.steps,
            "workers": workers,
            "first_seed": seeds[0] if seeds else None,
        },
    )
    logger.info(
        "Campaign complete: %d passed, %d failed in %.1fs",
        report.passed, report.failed, report.duration_seconds,
    )
    return report
