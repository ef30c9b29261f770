"""Post-sequence settlement hook.

Mid-sequence the vault can legitimately carry unvested yield, unclaimed
requests and capital parked in strategies. Settlement drives it to a fully
liquid, fully claimed state so the end-of-run properties are checked
against a stable state:

  1. pull every strategy's capital back into the vault
  2. widen rate and drip limits to their permissive extremes and switch
     off the backing check (a zero supply diff)
  3. advance through drip cycles, rebasing, until yield has vested
  4. make sure async withdrawals are enabled
  5. every actor with a balance requests a full withdrawal
  6. advance past the latest maturity
  7. every actor claims all of their ghost-tracked requests

Any rejection during settlement is unexpected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from vaultfuzz.fuzzer.context import HarnessContext
from vaultfuzz.fuzzer.handlers import call_sut, track_request
from vaultfuzz.sut.vault import DAY, MAX_REBASE_RATE_APR, MIN_CLAIM_DELAY, ONE

logger = logging.getLogger(__name__)

SETTLEMENT_DRIP_DURATION = DAY
MAX_VESTING_CYCLES = 400

_NOTHING_ALLOWED: frozenset = frozenset()


@dataclass
class SettlementReport:
    drained: int = 0
    vesting_cycles: int = 0
    requests: int = 0
    claims: int = 0
    claimed_amount: int = 0

    @property
    def changed_anything(self) -> bool:
        return bool(self.drained or self.requests or self.claims)


def _call(name: str, caller: str | None, fn, *args):
    return call_sut(f"settlement.{name}", caller, fn, *args, allowed=_NOTHING_ALLOWED)


def settle(ctx: HarnessContext) -> SettlementReport:
    """Run the settlement procedure. Raises ``UnexpectedRevertError`` on any rejection."""
    vault = ctx.vault
    report = SettlementReport()

    report.drained = _call(
        "withdraw_all_from_strategies", ctx.operator,
        vault.withdraw_all_from_strategies, ctx.operator,
    )

    _call("set_rebase_rate_max", ctx.governor, vault.set_rebase_rate_max, ctx.governor, MAX_REBASE_RATE_APR)
    _call("set_max_supply_diff", ctx.governor, vault.set_max_supply_diff, ctx.governor, 0)
    _call("set_vault_buffer", ctx.governor, vault.set_vault_buffer, ctx.governor, ONE)
    _call("set_drip_duration", ctx.governor, vault.set_drip_duration, ctx.governor, SETTLEMENT_DRIP_DURATION)

    # Let deferred yield and fees vest.
    for cycle in range(1, MAX_VESTING_CYCLES + 1):
        ctx.clock.advance(SETTLEMENT_DRIP_DURATION)
        _call("rebase", None, vault.rebase)
        report.vesting_cycles = cycle
        if vault.total_reported_value() - vault.total_supply() < vault.decimal_scale:
            break

    if vault.config().withdrawal_claim_delay == 0:
        _call(
            "set_withdrawal_claim_delay", ctx.governor,
            vault.set_withdrawal_claim_delay, ctx.governor, MIN_CLAIM_DELAY,
        )

    for actor in ctx.actors:
        balance = vault.balance_of(actor)
        if balance == 0:
            continue
        request_id, _ = _call("request_withdrawal", actor, vault.request_withdrawal, actor, balance)
        track_request(ctx, actor, request_id)
        ctx.record("settlement.request_withdrawal", actor, balance)
        report.requests += 1

    ctx.clock.advance_to_at_least(ctx.ghost.latest_maturity())

    for actor in ctx.actors:
        ids = ctx.ghost.ids_of(actor)
        if not ids:
            continue
        _, total = _call("claim_withdrawals", actor, vault.claim_withdrawals, actor, ids)
        for request_id in ids:
            ctx.ghost.remove(actor, request_id)
        ctx.record("settlement.claim_withdrawals", actor, total)
        report.claims += len(ids)
        report.claimed_amount += total

    logger.debug(
        "Settlement: drained %d, %d vesting cycles, %d requests, %d claims (%d)",
        report.drained, report.vesting_cycles, report.requests,
        report.claims, report.claimed_amount,
    )
    return report
