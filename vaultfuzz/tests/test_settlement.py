"""Tests for the post-sequence settlement hook."""

from __future__ import annotations

import pytest

from vaultfuzz.core.errors import UnexpectedRevertError
from vaultfuzz.fuzzer.context import HarnessContext
from vaultfuzz.fuzzer.handlers import HandlerId, RawArgs, execute
from vaultfuzz.fuzzer.properties import PropertyOracle, observe, violations
from vaultfuzz.fuzzer.settlement import settle
from vaultfuzz.sut.errors import RevertCode, VaultRevert
from vaultfuzz.sut.vault import MIN_CLAIM_DELAY, ONE, Vault


def _busy(ctx: HarnessContext) -> HarnessContext:
    """Deposits, requests, capital in strategies and unvested yield."""
    for i, actor in enumerate(ctx.actors):
        ctx.vault.mint(actor, (i + 1) * 1_000 * ctx.unit)
    execute(ctx, HandlerId.REQUEST_WITHDRAWAL, RawArgs(selector=1, value=10**20, flag=1))
    ctx.vault.allocate(ctx.operator)
    execute(ctx, HandlerId.REQUEST_WITHDRAWAL, RawArgs(selector=2, value=10**20, flag=1))
    execute(ctx, HandlerId.SIMULATE_STRATEGY_YIELD, RawArgs(value=300))
    ctx.vault.set_drip_duration(ctx.governor, 7 * 24 * 3600)
    ctx.vault.set_trustee_fee_bps(ctx.governor, 2_000)
    return ctx


class TestSettle:

    def test_settled_state_holds(self, ctx: HarnessContext, oracle: PropertyOracle):
        report = settle(_busy(ctx))

        assert report.requests == len(ctx.actors)
        assert report.claims == len(ctx.actors) + 2
        assert report.drained > 0
        _, results = oracle.evaluate(ctx, settled=True)
        assert violations(results) == []

    def test_actors_fully_withdrawn(self, ctx: HarnessContext):
        settle(_busy(ctx))
        obs = observe(ctx)
        assert all(balance == 0 for balance in obs.actor_balances.values())
        assert obs.queue.claimed == obs.queue.queued
        assert len(ctx.ghost) == 0

    def test_yield_vested_before_withdrawal(self, ctx: HarnessContext):
        _busy(ctx)
        start = sum(ctx.asset.balance_of(a) for a in ctx.actors)
        report = settle(ctx)
        assert report.vesting_cycles >= 1
        # Deposits come back with strategy yield on top.
        assert sum(ctx.asset.balance_of(a) for a in ctx.actors) - start > 10_000 * ctx.unit

    def test_idempotent(self, ctx: HarnessContext, oracle: PropertyOracle):
        settle(_busy(ctx))
        second = settle(ctx)
        assert not second.changed_anything
        _, results = oracle.evaluate(ctx, settled=True)
        assert violations(results) == []

    def test_empty_system(self, ctx: HarnessContext, oracle: PropertyOracle):
        report = settle(ctx)
        assert not report.changed_anything
        _, results = oracle.evaluate(ctx, settled=True)
        assert violations(results) == []

    def test_reenables_async_withdrawals(self, deposited: HarnessContext):
        deposited.vault.set_withdrawal_claim_delay(deposited.governor, 0)
        report = settle(deposited)
        assert deposited.vault.config().withdrawal_claim_delay == MIN_CLAIM_DELAY
        assert report.requests == 2

    def test_rejection_is_unexpected(self, deposited: HarnessContext, monkeypatch: pytest.MonkeyPatch):
        def refuse(self, caller, amount):
            raise VaultRevert(RevertCode.QUEUE_PENDING_LIQUIDITY, "refused")

        monkeypatch.setattr(Vault, "request_withdrawal", refuse)
        with pytest.raises(UnexpectedRevertError) as excinfo:
            settle(deposited)
        assert excinfo.value.code == RevertCode.QUEUE_PENDING_LIQUIDITY

    def test_unvested_yield_larger_than_supply(
        self, ctx: HarnessContext, alice: str, bob: str, oracle: PropertyOracle
    ):
        vault = ctx.vault
        vault.mint(alice, 1_000 * ctx.unit)
        vault.mint(bob, ctx.unit)
        vault.set_rebase_rate_max(ctx.governor, 0)
        ctx.asset.mint(vault.address, 50 * ctx.unit)
        vault.set_max_supply_diff(ctx.governor, ONE)
        execute(ctx, HandlerId.REQUEST_WITHDRAWAL, RawArgs(selector=0, flag=0))
        execute(ctx, HandlerId.CLAIM_WITHDRAWAL, RawArgs(selector=0))
        assert vault.balance_of(alice) == 0
        # Backing is far above the remaining supply and cannot vest in time.
        assert vault.total_reported_value() > 20 * vault.total_supply()

        report = settle(ctx)
        assert report.requests == 1
        assert vault.config().max_supply_diff == 0
        assert vault.balance_of(bob) == 0
        _, results = oracle.evaluate(ctx, settled=True)
        assert violations(results) == []
