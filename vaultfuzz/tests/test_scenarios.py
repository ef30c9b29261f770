"""End-to-end scenarios driven through the handler layer."""

from __future__ import annotations

import random

import pytest

from vaultfuzz.core.types import Outcome
from vaultfuzz.fuzzer.context import HarnessContext
from vaultfuzz.fuzzer.handlers import HandlerId, RawArgs, execute
from vaultfuzz.fuzzer.properties import PropertyOracle, violations
from vaultfuzz.fuzzer.settlement import settle
from vaultfuzz.sut.errors import RevertCode, VaultRevert
from vaultfuzz.sut.vault import MAX_TRUSTEE_FEE_BPS, YEAR


def _deposit(ctx: HarnessContext, actor_index: int, amount: int) -> None:
    # clamp(value, 1, balance) == 1 + value % balance
    result = execute(ctx, HandlerId.DEPOSIT, RawArgs(selector=actor_index, value=amount - 1))
    assert result.outcome == Outcome.SUCCESS


class TestScenarios:

    def test_deposit_request_claim_round_trip(self, ctx: HarnessContext, alice: str):
        start = ctx.asset.balance_of(alice)
        _deposit(ctx, 0, 1_234 * ctx.unit + 56)
        execute(ctx, HandlerId.REQUEST_WITHDRAWAL, RawArgs(selector=0, flag=0))
        result = execute(ctx, HandlerId.CLAIM_WITHDRAWAL, RawArgs(selector=0))

        assert result.outcome == Outcome.SUCCESS
        assert ctx.asset.balance_of(alice) == start
        assert not ctx.ghost.has_pending(alice)

    def test_round_trip_with_trustee_fee(self, ctx: HarnessContext, alice: str):
        start = ctx.asset.balance_of(alice)
        ctx.vault.set_trustee_fee_bps(ctx.governor, 2_000)
        _deposit(ctx, 0, 1_000 * ctx.unit)
        ctx.asset.mint(ctx.vault.address, 10 * ctx.unit)
        ctx.clock.advance(YEAR)
        execute(ctx, HandlerId.REBASE, RawArgs())

        execute(ctx, HandlerId.REQUEST_WITHDRAWAL, RawArgs(selector=0, flag=0))
        execute(ctx, HandlerId.CLAIM_WITHDRAWAL, RawArgs(selector=0))
        gained = ctx.asset.balance_of(alice) - start
        # 10 units of yield, 20% to the treasury, a sliver to the dead seed.
        assert 7 * ctx.unit < gained < 8 * ctx.unit

    def test_full_balance_request_leaves_zero(self, deposited: HarnessContext, alice: str):
        deposited.asset.mint(deposited.vault.address, 333 * deposited.unit + 7)
        deposited.clock.advance(YEAR)
        deposited.vault.rebase()
        assert deposited.vault.balance_of(alice) > 1_000 * 10**18

        result = execute(deposited, HandlerId.REQUEST_WITHDRAWAL, RawArgs(selector=0, flag=0))
        assert result.outcome == Outcome.SUCCESS
        assert deposited.vault.balance_of(alice) == 0
        assert deposited.otoken.credits_of(alice) == 0

    def test_deposit_1000_withdraw_500(self, ctx: HarnessContext, alice: str):
        _deposit(ctx, 0, 1_000 * ctx.unit)
        before = ctx.asset.balance_of(alice)
        claimed_before = ctx.vault.withdrawal_queue_metadata().claimed

        request = RawArgs(selector=0, value=500 * 10**18 - 1, flag=1)
        assert execute(ctx, HandlerId.REQUEST_WITHDRAWAL, request).outcome == Outcome.SUCCESS
        assert ctx.vault.balance_of(alice) == 500 * 10**18

        execute(ctx, HandlerId.TIME_JUMP, RawArgs(value=ctx.vault.config().withdrawal_claim_delay - 1))
        assert execute(ctx, HandlerId.CLAIM_WITHDRAWAL, RawArgs(selector=0)).outcome == Outcome.SUCCESS

        assert ctx.asset.balance_of(alice) - before == 500 * ctx.unit
        assert ctx.ghost.requests_of(alice) == []
        assert ctx.vault.withdrawal_queue_metadata().claimed - claimed_before == 500 * ctx.unit

    def test_trustee_fee_above_limit(self, ctx: HarnessContext):
        rng = random.Random(0)
        for _ in range(200):
            execute(ctx, HandlerId.SET_TRUSTEE_FEE_BPS, RawArgs(value=rng.getrandbits(256)))
            assert ctx.vault.config().trustee_fee_bps <= MAX_TRUSTEE_FEE_BPS

        with pytest.raises(VaultRevert) as excinfo:
            ctx.vault.set_trustee_fee_bps(ctx.governor, 5_100)
        assert excinfo.value.code == RevertCode.INVALID_CONFIG

    @pytest.mark.parametrize("seed", [0, 1])
    def test_counters_monotone_under_random_operations(self, ctx: HarnessContext, oracle: PropertyOracle, seed: int):
        rng = random.Random(seed)
        handler_ids = list(HandlerId)
        previous = ctx.vault.withdrawal_queue_metadata()
        prev_obs = None
        for _ in range(300):
            execute(ctx, rng.choice(handler_ids), RawArgs.draw(rng))
            meta = ctx.vault.withdrawal_queue_metadata()
            assert meta.queued >= previous.queued
            assert meta.claimed >= previous.claimed
            assert meta.claimed <= meta.claimable <= meta.queued
            prev_obs, results = oracle.evaluate(ctx, prev_obs)
            assert violations(results) == []
            previous = meta

        settle(ctx)
        _, results = oracle.evaluate(ctx, prev_obs, settled=True)
        assert violations(results) == []
