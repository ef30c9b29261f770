"""Handler set — one bounded, precondition-satisfying wrapper per vault entry point.

Every handler takes the harness context plus :class:`RawArgs` (four
unconstrained 256-bit integers) and either makes a call that is valid by
construction or declines the step. Handlers are deterministic in their raw
arguments, which is what makes a recorded sequence replayable.

Result classification
---------------------
* success - the vault accepted the call; ghost state is updated afterwards.
* declined - no eligible actor/strategy, or a rejection in
  :data:`ALLOWED_REJECTIONS`. A valid outcome, not a failure.
* unexpected - any other rejection or crash; raised as
  :class:`~vaultfuzz.core.errors.UnexpectedRevertError`.
"""

from __future__ import annotations

import functools
import logging
import random
from dataclasses import astuple, dataclass
from enum import Enum
from typing import Any, Callable

from vaultfuzz.core.errors import GhostDesyncError, UnexpectedRevertError
from vaultfuzz.core.types import Outcome
from vaultfuzz.fuzzer.actors import cyclic_scan
from vaultfuzz.fuzzer.bounds import (
    AUTO_ALLOCATE_THRESHOLD_UNITS,
    CLAIM_DELAY,
    CLAIM_DELAY_DISABLE_ODDS,
    DRIP_DURATION,
    MAX_SUPPLY_DIFF_RANGE,
    REBASE_RATE_MAX,
    REBASE_THRESHOLD_UNITS,
    TIME_JUMP,
    TRUSTEE_FEE_BPS,
    VAULT_BUFFER,
    YIELD_BPS,
    clamp,
)
from vaultfuzz.fuzzer.context import HarnessContext
from vaultfuzz.sut.errors import RevertCode, VaultRevert
from vaultfuzz.sut.strategy import MockStrategy

logger = logging.getLogger(__name__)

UINT256_MAX = 2**256 - 1
_BOUNDARY_VALUES = (0, 1, 2, UINT256_MAX, UINT256_MAX - 1, 2**128)
_BOUNDARY_PROBABILITY = 0.3

# One in N draws of an amount-taking handler uses the full balance.
FULL_BALANCE_ODDS = 4

ALLOWED_REJECTIONS: frozenset[RevertCode] = frozenset({
    RevertCode.QUEUE_PENDING_LIQUIDITY,
    RevertCode.INSUFFICIENT_LIQUIDITY,
    RevertCode.BACKING_SUPPLY_MISMATCH,
})


# ── Data Models ──────────────────────────────────────────────────────────────


class HandlerId(str, Enum):
    """Every operation the driver can schedule."""
    DEPOSIT = "deposit"
    REQUEST_WITHDRAWAL = "request_withdrawal"
    CLAIM_WITHDRAWAL = "claim_withdrawal"
    CLAIM_WITHDRAWALS = "claim_withdrawals"
    TRANSFER = "transfer"
    REBASE = "rebase"
    ALLOCATE = "allocate"
    ADD_QUEUE_LIQUIDITY = "add_withdrawal_queue_liquidity"
    DEPOSIT_TO_STRATEGY = "deposit_to_strategy"
    WITHDRAW_FROM_STRATEGY = "withdraw_from_strategy"
    WITHDRAW_ALL_FROM_STRATEGY = "withdraw_all_from_strategy"
    WITHDRAW_ALL_FROM_STRATEGIES = "withdraw_all_from_strategies"
    SET_AUTO_ALLOCATE_THRESHOLD = "set_auto_allocate_threshold"
    SET_DRIP_DURATION = "set_drip_duration"
    SET_MAX_SUPPLY_DIFF = "set_max_supply_diff"
    SET_REBASE_RATE_MAX = "set_rebase_rate_max"
    SET_REBASE_THRESHOLD = "set_rebase_threshold"
    SET_TRUSTEE_FEE_BPS = "set_trustee_fee_bps"
    SET_VAULT_BUFFER = "set_vault_buffer"
    SET_WITHDRAWAL_CLAIM_DELAY = "set_withdrawal_claim_delay"
    TIME_JUMP = "time_jump"
    SIMULATE_VAULT_YIELD = "simulate_vault_yield"
    SIMULATE_STRATEGY_YIELD = "simulate_strategy_yield"


def _draw_uint(rng: random.Random) -> int:
    # Mix boundary values and uniform draws
    if rng.random() < _BOUNDARY_PROBABILITY:
        return rng.choice(_BOUNDARY_VALUES)
    return rng.getrandbits(256)


@dataclass(frozen=True)
class RawArgs:
    """Unconstrained randomness consumed by one handler call."""
    selector: int = 0  # actor / strategy choice
    value: int = 0  # primary amount
    aux: int = 0  # secondary choice, shuffle seed
    flag: int = 0

    @classmethod
    def draw(cls, rng: random.Random) -> RawArgs:
        return cls(_draw_uint(rng), _draw_uint(rng), _draw_uint(rng), _draw_uint(rng))

    @classmethod
    def from_list(cls, values: list[int]) -> RawArgs:
        return cls(*values)

    def as_list(self) -> list[int]:
        return list(astuple(self))


@dataclass
class StepResult:
    outcome: Outcome
    actor: str | None = None
    detail: str = ""
    revert_code: RevertCode | None = None


class StepDeclined(Exception):
    """Raised inside a handler to abandon the step without error."""

    def __init__(self, reason: str, actor: str | None = None, code: RevertCode | None = None) -> None:
        self.reason = reason
        self.actor = actor
        self.code = code
        super().__init__(reason)


def decline(reason: str, actor: str | None = None) -> None:
    raise StepDeclined(reason, actor)


HandlerFn = Callable[[HarnessContext, RawArgs], StepResult]


def _declinable(handler_id: HandlerId) -> Callable[[HandlerFn], HandlerFn]:
    def decorator(fn: HandlerFn) -> HandlerFn:
        @functools.wraps(fn)
        def wrapper(ctx: HarnessContext, raw: RawArgs) -> StepResult:
            try:
                return fn(ctx, raw)
            except StepDeclined as exc:
                logger.debug("%s declined: %s", handler_id.value, exc.reason)
                return StepResult(
                    Outcome.DECLINED, actor=exc.actor, detail=exc.reason, revert_code=exc.code
                )
        return wrapper
    return decorator


def call_sut(
    operation: str,
    actor: str | None,
    fn: Callable[..., Any],
    *args: Any,
    allowed: frozenset[RevertCode] = ALLOWED_REJECTIONS,
) -> Any:
    """Invoke the vault and classify any rejection.

    Allow-listed rejections become :class:`StepDeclined`; everything else,
    including non-revert crashes inside the vault, becomes
    :class:`UnexpectedRevertError`.
    """
    try:
        return fn(*args)
    except VaultRevert as exc:
        if exc.code in allowed:
            raise StepDeclined(exc.message, actor, exc.code) from exc
        raise UnexpectedRevertError(operation, exc.code, exc.message) from exc
    except Exception as exc:
        raise UnexpectedRevertError(operation, None, f"{type(exc).__name__}: {exc}") from exc


def _ok(actor: str | None = None, detail: str = "") -> StepResult:
    return StepResult(Outcome.SUCCESS, actor=actor, detail=detail)


def _amount(raw: RawArgs, balance: int) -> int:
    """Amount in ``[1, balance]``; occasionally exactly the full balance."""
    if raw.flag % FULL_BALANCE_ODDS == 0:
        return balance
    return clamp(raw.value, 1, balance)


def _pick_strategy(ctx: HarnessContext, selector: int) -> MockStrategy:
    strategies = ctx.strategies
    if not strategies:
        decline("no strategies deployed")
    return strategies[selector % len(strategies)]


def track_request(ctx: HarnessContext, actor: str, returned_id: int) -> int:
    """Add the request the vault just created to the actor's ghost list.

    The index is read back from the queue metadata rather than predicted.
    """
    meta = call_sut("withdrawal_queue_metadata", actor, ctx.vault.withdrawal_queue_metadata)
    assigned = meta.next_index - 1
    if assigned != returned_id:
        raise GhostDesyncError(
            f"vault returned request {returned_id} but queue frontier is {assigned}"
        )
    info = call_sut("withdrawal_request", actor, ctx.vault.withdrawal_request, assigned)
    ctx.ghost.add(actor, assigned, info.claimable_at)
    return assigned


# ── User operations ──────────────────────────────────────────────────────────


@_declinable(HandlerId.DEPOSIT)
def deposit(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    actor = ctx.actors.scan(raw.selector, lambda a: ctx.asset.balance_of(a) > 0)
    if actor is None:
        decline("no actor holds the underlying asset")
    amount = clamp(raw.value, 1, ctx.asset.balance_of(actor))
    call_sut("mint", actor, ctx.vault.mint, actor, amount)
    ctx.record("deposit", actor, amount)
    return _ok(actor, f"amount={amount}")


@_declinable(HandlerId.REQUEST_WITHDRAWAL)
def request_withdrawal(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    if ctx.vault.config().withdrawal_claim_delay == 0:
        decline("async withdrawals disabled")
    actor = ctx.actors.scan(raw.selector, lambda a: ctx.otoken.balance_of(a) > 0)
    if actor is None:
        decline("no actor holds claim tokens")
    amount = _amount(raw, ctx.otoken.balance_of(actor))
    request_id, _ = call_sut(
        "request_withdrawal", actor, ctx.vault.request_withdrawal, actor, amount
    )
    track_request(ctx, actor, request_id)
    ctx.record("request_withdrawal", actor, amount)
    return _ok(actor, f"request={request_id} amount={amount}")


@_declinable(HandlerId.CLAIM_WITHDRAWAL)
def claim_withdrawal(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    actor = ctx.actors.scan(raw.selector, ctx.ghost.has_pending)
    if actor is None:
        decline("no actor has pending requests")
    pending = ctx.ghost.requests_of(actor)
    request = pending[raw.value % len(pending)]
    ctx.clock.advance_to_at_least(request.expected_timestamp)

    amount = call_sut(
        "claim_withdrawal", actor, ctx.vault.claim_withdrawal, actor, request.request_index
    )
    ctx.ghost.remove(actor, request.request_index)
    ctx.record("claim_withdrawal", actor, amount)
    return _ok(actor, f"request={request.request_index} amount={amount}")


@_declinable(HandlerId.CLAIM_WITHDRAWALS)
def claim_withdrawals(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    """Claim a random non-empty subset of one actor's pending requests."""
    actor = ctx.actors.scan(raw.selector, ctx.ghost.has_pending)
    if actor is None:
        decline("no actor has pending requests")
    pending = ctx.ghost.requests_of(actor)
    count = clamp(raw.value, 1, len(pending))
    random.Random(raw.aux).shuffle(pending)
    chosen = pending[:count]

    # Under-advancing would make a well-formed claim fail.
    ctx.clock.advance_to_at_least(max(r.expected_timestamp for r in chosen))

    ids = [r.request_index for r in chosen]
    _, total = call_sut("claim_withdrawals", actor, ctx.vault.claim_withdrawals, actor, ids)
    for request_id in ids:
        ctx.ghost.remove(actor, request_id)
    ctx.record("claim_withdrawals", actor, total)
    return _ok(actor, f"requests={ids} amount={total}")


@_declinable(HandlerId.TRANSFER)
def transfer(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    if len(ctx.actors) < 2:
        decline("transfer needs two actors")
    sender = ctx.actors.scan(raw.selector, lambda a: ctx.otoken.balance_of(a) > 0)
    if sender is None:
        decline("no actor holds claim tokens")
    receiver = ctx.actors.scan(raw.aux, lambda a: a != sender)
    amount = _amount(raw, ctx.otoken.balance_of(sender))
    call_sut("transfer", sender, ctx.vault.transfer, sender, receiver, amount)
    ctx.record("transfer", sender, amount)
    return _ok(sender, f"to={receiver} amount={amount}")


@_declinable(HandlerId.REBASE)
def rebase(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    caller = ctx.actors.pick(raw.selector)
    supply = call_sut("rebase", caller, ctx.vault.rebase)
    ctx.record("rebase", caller)
    return _ok(caller, f"supply={supply}")


@_declinable(HandlerId.ADD_QUEUE_LIQUIDITY)
def add_withdrawal_queue_liquidity(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    caller = ctx.actors.pick(raw.selector)
    added = call_sut(
        "add_withdrawal_queue_liquidity", caller, ctx.vault.add_withdrawal_queue_liquidity
    )
    ctx.record("add_withdrawal_queue_liquidity", caller, added)
    return _ok(caller, f"added={added}")


# ── Capital movement (operator) ──────────────────────────────────────────────


@_declinable(HandlerId.ALLOCATE)
def allocate(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    moved = call_sut("allocate", ctx.operator, ctx.vault.allocate, ctx.operator)
    ctx.record("allocate", ctx.operator, moved)
    return _ok(ctx.operator, f"allocated={moved}")


@_declinable(HandlerId.DEPOSIT_TO_STRATEGY)
def deposit_to_strategy(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    strategy = _pick_strategy(ctx, raw.selector)
    available = ctx.vault.asset_available()
    if available == 0:
        decline("no idle asset to deploy", ctx.operator)
    amount = clamp(raw.value, 1, available)
    call_sut(
        "deposit_to_strategy",
        ctx.operator,
        ctx.vault.deposit_to_strategy,
        ctx.operator,
        strategy.name,
        [ctx.asset.symbol],
        [amount],
    )
    ctx.record(f"deposit_to_strategy[{strategy.name}]", ctx.operator, amount)
    return _ok(ctx.operator, f"strategy={strategy.name} amount={amount}")


@_declinable(HandlerId.WITHDRAW_FROM_STRATEGY)
def withdraw_from_strategy(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    strategy = cyclic_scan(ctx.strategies, raw.selector, lambda s: s.check_balance() > 0)
    if strategy is None:
        decline("no strategy holds capital", ctx.operator)
    amount = _amount(raw, strategy.check_balance())
    call_sut(
        "withdraw_from_strategy",
        ctx.operator,
        ctx.vault.withdraw_from_strategy,
        ctx.operator,
        strategy.name,
        [ctx.asset.symbol],
        [amount],
    )
    ctx.record(f"withdraw_from_strategy[{strategy.name}]", ctx.operator, amount)
    return _ok(ctx.operator, f"strategy={strategy.name} amount={amount}")


@_declinable(HandlerId.WITHDRAW_ALL_FROM_STRATEGY)
def withdraw_all_from_strategy(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    strategy = _pick_strategy(ctx, raw.selector)
    amount = call_sut(
        "withdraw_all_from_strategy",
        ctx.operator,
        ctx.vault.withdraw_all_from_strategy,
        ctx.operator,
        strategy.name,
    )
    ctx.record(f"withdraw_all_from_strategy[{strategy.name}]", ctx.operator, amount)
    return _ok(ctx.operator, f"strategy={strategy.name} amount={amount}")


@_declinable(HandlerId.WITHDRAW_ALL_FROM_STRATEGIES)
def withdraw_all_from_strategies(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    amount = call_sut(
        "withdraw_all_from_strategies",
        ctx.operator,
        ctx.vault.withdraw_all_from_strategies,
        ctx.operator,
    )
    ctx.record("withdraw_all_from_strategies", ctx.operator, amount)
    return _ok(ctx.operator, f"amount={amount}")


# ── Configuration (governor / operator) ──────────────────────────────────────


def _configure(ctx: HarnessContext, caller: str, setter: str, value: int) -> StepResult:
    call_sut(setter, caller, getattr(ctx.vault, setter), caller, value)
    ctx.record(setter, caller, value)
    return _ok(caller, f"value={value}")


@_declinable(HandlerId.SET_AUTO_ALLOCATE_THRESHOLD)
def set_auto_allocate_threshold(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    value = AUTO_ALLOCATE_THRESHOLD_UNITS.clamp(raw.value) * ctx.unit
    return _configure(ctx, ctx.governor, "set_auto_allocate_threshold", value)


@_declinable(HandlerId.SET_DRIP_DURATION)
def set_drip_duration(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    return _configure(ctx, ctx.governor, "set_drip_duration", DRIP_DURATION.clamp(raw.value))


@_declinable(HandlerId.SET_MAX_SUPPLY_DIFF)
def set_max_supply_diff(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    return _configure(
        ctx, ctx.governor, "set_max_supply_diff", MAX_SUPPLY_DIFF_RANGE.clamp(raw.value)
    )


@_declinable(HandlerId.SET_REBASE_RATE_MAX)
def set_rebase_rate_max(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    return _configure(ctx, ctx.governor, "set_rebase_rate_max", REBASE_RATE_MAX.clamp(raw.value))


@_declinable(HandlerId.SET_REBASE_THRESHOLD)
def set_rebase_threshold(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    value = REBASE_THRESHOLD_UNITS.clamp(raw.value) * ctx.unit
    return _configure(ctx, ctx.governor, "set_rebase_threshold", value)


@_declinable(HandlerId.SET_TRUSTEE_FEE_BPS)
def set_trustee_fee_bps(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    return _configure(ctx, ctx.governor, "set_trustee_fee_bps", TRUSTEE_FEE_BPS.clamp(raw.value))


@_declinable(HandlerId.SET_VAULT_BUFFER)
def set_vault_buffer(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    return _configure(ctx, ctx.operator, "set_vault_buffer", VAULT_BUFFER.clamp(raw.value))


@_declinable(HandlerId.SET_WITHDRAWAL_CLAIM_DELAY)
def set_withdrawal_claim_delay(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    if raw.flag % CLAIM_DELAY_DISABLE_ODDS == 0:
        value = 0
    else:
        value = CLAIM_DELAY.clamp(raw.value)
    return _configure(ctx, ctx.governor, "set_withdrawal_claim_delay", value)


# ── Environment ──────────────────────────────────────────────────────────────


@_declinable(HandlerId.TIME_JUMP)
def time_jump(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    seconds = TIME_JUMP.clamp(raw.value)
    ctx.clock.advance(seconds)
    ctx.record("time_jump", None, seconds)
    return _ok(None, f"seconds={seconds}")


@_declinable(HandlerId.SIMULATE_VAULT_YIELD)
def simulate_vault_yield(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    bps = YIELD_BPS.clamp(raw.value)
    amount = ctx.vault.asset_balance() * bps // 10_000
    if amount == 0:
        decline("yield rounds to zero")
    ctx.asset.mint(ctx.vault.address, amount)
    ctx.record("simulate_vault_yield", None, amount)
    return _ok(None, f"bps={bps} amount={amount}")


@_declinable(HandlerId.SIMULATE_STRATEGY_YIELD)
def simulate_strategy_yield(ctx: HarnessContext, raw: RawArgs) -> StepResult:
    strategy = cyclic_scan(ctx.strategies, raw.selector, lambda s: s.check_balance() > 0)
    if strategy is None:
        decline("no strategy holds capital")
    bps = YIELD_BPS.clamp(raw.value)
    amount = strategy.check_balance() * bps // 10_000
    if amount == 0:
        decline("yield rounds to zero")
    ctx.asset.mint(strategy.address, amount)
    ctx.record(f"simulate_strategy_yield[{strategy.name}]", None, amount)
    return _ok(None, f"strategy={strategy.name} bps={bps} amount={amount}")


# ── Dispatch table ───────────────────────────────────────────────────────────


HANDLERS: dict[HandlerId, HandlerFn] = {
    HandlerId.DEPOSIT: deposit,
    HandlerId.REQUEST_WITHDRAWAL: request_withdrawal,
    HandlerId.CLAIM_WITHDRAWAL: claim_withdrawal,
    HandlerId.CLAIM_WITHDRAWALS: claim_withdrawals,
    HandlerId.TRANSFER: transfer,
    HandlerId.REBASE: rebase,
    HandlerId.ALLOCATE: allocate,
    HandlerId.ADD_QUEUE_LIQUIDITY: add_withdrawal_queue_liquidity,
    HandlerId.DEPOSIT_TO_STRATEGY: deposit_to_strategy,
    HandlerId.WITHDRAW_FROM_STRATEGY: withdraw_from_strategy,
    HandlerId.WITHDRAW_ALL_FROM_STRATEGY: withdraw_all_from_strategy,
    HandlerId.WITHDRAW_ALL_FROM_STRATEGIES: withdraw_all_from_strategies,
    HandlerId.SET_AUTO_ALLOCATE_THRESHOLD: set_auto_allocate_threshold,
    HandlerId.SET_DRIP_DURATION: set_drip_duration,
    HandlerId.SET_MAX_SUPPLY_DIFF: set_max_supply_diff,
    HandlerId.SET_REBASE_RATE_MAX: set_rebase_rate_max,
    HandlerId.SET_REBASE_THRESHOLD: set_rebase_threshold,
    HandlerId.SET_TRUSTEE_FEE_BPS: set_trustee_fee_bps,
    HandlerId.SET_VAULT_BUFFER: set_vault_buffer,
    HandlerId.SET_WITHDRAWAL_CLAIM_DELAY: set_withdrawal_claim_delay,
    HandlerId.TIME_JUMP: time_jump,
    HandlerId.SIMULATE_VAULT_YIELD: simulate_vault_yield,
    HandlerId.SIMULATE_STRATEGY_YIELD: simulate_strategy_yield,
}


def execute(ctx: HarnessContext, handler_id: HandlerId, raw: RawArgs) -> StepResult:
    """Run one handler. Raises :class:`UnexpectedRevertError` on unexpected rejection."""
    return HANDLERS[handler_id](ctx, raw)
