"""Tests for the sequence driver, replay, shrinking and campaigns."""

from __future__ import annotations

import logging

import pytest

from vaultfuzz.core.config import Settings
from vaultfuzz.core.errors import ConfigurationError, GhostDesyncError
from vaultfuzz.core.types import DriverState, FailureKind, Outcome
from vaultfuzz.fuzzer.driver import (
    DriverConfig,
    Failure,
    HandlerCall,
    SequenceDriver,
    resolve_weights,
    run_campaign,
    sequence_id_for,
)
from vaultfuzz.fuzzer.handlers import HandlerId, RawArgs
from vaultfuzz.fuzzer.properties import PROPERTIES, Property, PropertyId, PropertyOracle
from vaultfuzz.fuzzer.shrink import SequenceShrinker
from vaultfuzz.sut.errors import RevertCode, VaultRevert
from vaultfuzz.sut.vault import Vault


def _no_requests(obs, prev=None) -> bool:
    return obs.queue.next_index == 0


def _oracle_rejecting_requests() -> PropertyOracle:
    """The real properties plus one that fails as soon as any request exists."""
    faulty = Property(PropertyId.QUEUE_DENSITY, _no_requests, "no requests ever")
    return PropertyOracle(PROPERTIES + (faulty,))


class TestWeights:

    def test_uniform_by_default(self):
        handler_ids, weights = resolve_weights({})
        assert handler_ids == list(HandlerId)
        assert set(weights) == {1}

    def test_named_weights(self):
        handler_ids, weights = resolve_weights({"deposit": 3, "time_jump": 1})
        chosen = {h: w for h, w in zip(handler_ids, weights) if w}
        assert chosen == {HandlerId.DEPOSIT: 3, HandlerId.TIME_JUMP: 1}

    def test_unknown_handler_rejected(self):
        with pytest.raises(ConfigurationError, match="bogus"):
            resolve_weights({"bogus": 1})

    def test_all_zero_rejected(self):
        with pytest.raises(ConfigurationError):
            resolve_weights({"deposit": 0})

    def test_negative_rejected(self):
        with pytest.raises(ConfigurationError):
            resolve_weights({"deposit": -1})


class TestRun:

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_random_sequences_pass(self, small_config: DriverConfig, seed: int):
        driver = SequenceDriver(small_config)
        result = driver.run(seed)

        assert result.failure is None, result.failure
        assert result.state == DriverState.PASSED
        assert driver.state == DriverState.PASSED
        assert len(result.calls) == small_config.steps
        assert result.execution.settled
        assert result.execution.successes + result.execution.declines == small_config.steps

    def test_same_seed_same_sequence(self, small_config: DriverConfig):
        first = SequenceDriver(small_config).run(9)
        second = SequenceDriver(small_config).run(9)
        assert [(c.handler_id, c.raw) for c in first.calls] == [(c.handler_id, c.raw) for c in second.calls]
        assert first.sequence_id == second.sequence_id == sequence_id_for(9)

    def test_weights_restrict_handlers(self):
        config = DriverConfig(steps=30, handler_weights={"time_jump": 1})
        result = SequenceDriver(config).run(4)
        assert {c.handler_id for c in result.calls} == {HandlerId.TIME_JUMP}
        assert result.handler_counts() == {"time_jump": 30}

    def test_replay_reproduces_outcomes(self, small_config: DriverConfig):
        driver = SequenceDriver(small_config)
        result = driver.run(5)
        replayed = driver.replay(result.calls)
        assert [c.outcome for c in replayed.calls] == [c.outcome for c in result.calls]
        assert replayed.successes == result.execution.successes

    def test_no_settlement(self):
        config = DriverConfig(steps=10, enable_settlement=False)
        result = SequenceDriver(config).run(6)
        assert result.state == DriverState.PASSED
        assert not result.execution.settled

    def test_timeout_stops_early(self):
        config = DriverConfig(steps=1_000, max_duration_seconds=-1.0)
        result = SequenceDriver(config).run(1)
        assert result.execution.timed_out
        assert result.calls == []

    def test_report_schema(self, small_config: DriverConfig):
        report = SequenceDriver(small_config).run(2).to_report()
        assert report.passed
        assert report.steps_executed == small_config.steps
        assert sum(report.handler_counts.values()) == small_config.steps
        assert report.failure is None
        assert report.minimal_calls is None

    def test_trace_lines_in_report(self):
        config = DriverConfig(steps=20, handler_weights={"deposit": 1}, trace=True)
        report = SequenceDriver(config).run(3).to_report()
        assert report.trace
        assert any("deposit" in line for line in report.trace)


class TestFailures:

    def test_violation_is_shrunk_to_minimal_sequence(self):
        config = DriverConfig(
            steps=30,
            enable_settlement=False,
            handler_weights={"deposit": 1, "request_withdrawal": 1, "time_jump": 1},
        )
        driver = SequenceDriver(config, oracle=_oracle_rejecting_requests())
        result = driver.run(12)

        assert result.state == DriverState.FAILED
        assert result.failure.kind == FailureKind.INVARIANT_VIOLATION
        assert result.failure.property_ids == [PropertyId.QUEUE_DENSITY.value]
        assert result.calls[-1].handler_id == HandlerId.REQUEST_WITHDRAWAL

        minimal = result.minimal_calls
        assert [c.handler_id for c in minimal] == [HandlerId.DEPOSIT, HandlerId.REQUEST_WITHDRAWAL]
        replayed = driver.replay(minimal, settle_at_end=False)
        assert replayed.failure is not None
        assert result.failure.matches(replayed.failure)

    def test_unexpected_revert_is_a_failure(self, monkeypatch: pytest.MonkeyPatch):
        def broken_rebase(self):
            raise VaultRevert(RevertCode.UNAUTHORIZED, "broken")

        monkeypatch.setattr(Vault, "rebase", broken_rebase)
        config = DriverConfig(steps=20, handler_weights={"rebase": 1, "time_jump": 1})
        result = SequenceDriver(config).run(8)

        assert result.failure.kind == FailureKind.UNEXPECTED_REVERT
        assert result.failure.revert_code == RevertCode.UNAUTHORIZED.value
        assert result.calls[-1].outcome == Outcome.UNEXPECTED
        assert [c.handler_id for c in result.minimal_calls] == [HandlerId.REBASE]

    def test_shrinking_disabled(self):
        config = DriverConfig(
            steps=30,
            enable_settlement=False,
            enable_shrinking=False,
            handler_weights={"deposit": 1, "request_withdrawal": 1},
        )
        result = SequenceDriver(config, oracle=_oracle_rejecting_requests()).run(12)
        assert result.state == DriverState.FAILED
        assert result.minimal_calls is None

    def test_settlement_failure_flagged(self):
        config = DriverConfig(steps=5, handler_weights={"deposit": 1})
        result = SequenceDriver(config, oracle=_oracle_rejecting_requests()).run(1)
        assert result.failure.during_settlement
        assert result.failure.kind == FailureKind.INVARIANT_VIOLATION

    def test_ghost_desync_propagates(self, monkeypatch: pytest.MonkeyPatch):
        original = Vault.request_withdrawal

        def wrong_id(self, caller, amount):
            request_id, queued = original(self, caller, amount)
            return request_id + 100, queued

        monkeypatch.setattr(Vault, "request_withdrawal", wrong_id)
        config = DriverConfig(steps=30, handler_weights={"deposit": 1, "request_withdrawal": 1})
        with pytest.raises(GhostDesyncError):
            SequenceDriver(config).run(3)


class TestFailureMatching:

    def test_violations_match_on_shared_property(self):
        a = Failure(FailureKind.INVARIANT_VIOLATION, 3, property_ids=["solvency", "queue_bounds"])
        b = Failure(FailureKind.INVARIANT_VIOLATION, 1, property_ids=["queue_bounds"])
        c = Failure(FailureKind.INVARIANT_VIOLATION, 1, property_ids=["clock_sanity"])
        assert a.matches(b)
        assert not a.matches(c)

    def test_reverts_match_on_code_and_handler(self):
        a = Failure(FailureKind.UNEXPECTED_REVERT, 3, revert_code="X", handler_id=HandlerId.REBASE)
        assert a.matches(Failure(FailureKind.UNEXPECTED_REVERT, 0, revert_code="X", handler_id=HandlerId.REBASE))
        assert not a.matches(Failure(FailureKind.UNEXPECTED_REVERT, 0, revert_code="Y", handler_id=HandlerId.REBASE))

    def test_settlement_failures_only_match_each_other(self):
        a = Failure(FailureKind.INVARIANT_VIOLATION, 3, property_ids=["solvency"])
        b = Failure(FailureKind.INVARIANT_VIOLATION, 3, property_ids=["solvency"], during_settlement=True)
        assert not a.matches(b)


class TestShrinker:

    def test_removes_irrelevant_calls(self):
        calls = [HandlerCall(HandlerId.TIME_JUMP, RawArgs(value=i)) for i in range(20)]
        calls[13] = HandlerCall(HandlerId.REBASE, RawArgs(value=99))

        def reproduce(candidate):
            return candidate if any(c.handler_id == HandlerId.REBASE for c in candidate) else None

        minimal = SequenceShrinker(reproduce).shrink(calls)
        assert [c.handler_id for c in minimal] == [HandlerId.REBASE]
        assert minimal[0].raw == RawArgs()

    def test_budget_is_respected(self):
        calls = [HandlerCall(HandlerId.TIME_JUMP, RawArgs(value=i)) for i in range(50)]
        shrinker = SequenceShrinker(lambda candidate: candidate, max_replays=2)
        minimal = shrinker.shrink(calls)
        assert shrinker.replays == 2
        # Reductions accepted before the budget ran out are kept.
        assert len(minimal) == 13


class TestCampaign:

    def test_serial_campaign(self):
        config = DriverConfig(steps=25)
        report = run_campaign(config, [1, 2, 3])
        assert report.passed == 3
        assert report.failed == 0
        assert [s.seed for s in report.sequences] == [1, 2, 3]
        assert report.to_dict()["metadata"]["steps_per_sequence"] == 25

    def test_parallel_campaign_matches_serial(self):
        config = DriverConfig(steps=20)
        serial = run_campaign(config, [4, 5])
        parallel = run_campaign(config, [4, 5], workers=2)
        assert [s.calls for s in parallel.sequences] == [s.calls for s in serial.sequences]

    def test_from_settings(self):
        settings = Settings(steps_per_sequence=12, handler_weights={"deposit": 2}, actor_count=3)
        config = DriverConfig.from_settings(settings)
        assert config.steps == 12
        assert config.handler_weights == {"deposit": 2}
        assert config.world.actor_count == 3


class _Collector(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class TestLogContext:

    def test_records_carry_step_and_handler(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.DEBUG, logger="vaultfuzz.fuzzer.handlers")
        collector = _Collector()
        root = logging.getLogger()
        root.addHandler(collector)
        try:
            config = DriverConfig(steps=3, handler_weights={"claim_withdrawal": 1})
            result = SequenceDriver(config).run(4)
        finally:
            root.removeHandler(collector)

        assert result.state == DriverState.PASSED
        declines = [r for r in collector.records if "declined" in r.getMessage()]
        assert [r.step for r in declines] == [0, 1, 2]
        assert {r.handler for r in declines} == {"claim_withdrawal"}
        assert {r.seed for r in declines} == {4}
        assert all(r.actor is None for r in declines)
