"""Property oracle — side-effect-free predicates checked after every step.

Each property reads one :class:`VaultObservation` (plus, for the monotonicity
check, the observation taken after the previous step) and returns a bool.
The observation is captured once per step so every property sees the same
state and no property ever calls a mutating vault method.

Properties verified:
  - Core solvency: issued supply never exceeds reported value
  - Accounting closure: supply equals the sum of all holder balances
  - Withdrawal queue ordering, bounds, density and monotonicity
  - Liquidity sufficiency for claimable-but-unclaimed withdrawals
  - Clock sanity and configuration bounds
  - Value consistency between reported value and raw balances
  - Ghost bookkeeping agrees with the vault
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from vaultfuzz.core.errors import InvariantViolationError
from vaultfuzz.fuzzer.context import HarnessContext
from vaultfuzz.sut.errors import VaultRevert
from vaultfuzz.sut.vault import (
    MAX_SUPPLY_DIFF,
    MAX_TRUSTEE_FEE_BPS,
    MAX_VAULT_BUFFER,
    VaultConfig,
    WithdrawalQueueMetadata,
    WithdrawalRequestInfo,
)

logger = logging.getLogger(__name__)

# Absolute tolerances, in claim-token wei. Fixed rather than proportional so
# drift cannot hide behind a large balance.
ACCOUNTING_TOLERANCE = 10**6
VALUE_TOLERANCE = 10**6


# ── Types ────────────────────────────────────────────────────────────────────


class PropertyId(str, Enum):
    SOLVENCY = "solvency"
    ACCOUNTING_CLOSURE = "accounting_closure"
    QUEUE_ORDERING = "queue_ordering"
    QUEUE_BOUNDS = "queue_bounds"
    QUEUE_DENSITY = "queue_density"
    QUEUE_MONOTONICITY = "queue_monotonicity"
    QUEUE_COUNTER_MONOTONICITY = "queue_counter_monotonicity"
    LIQUIDITY_SUFFICIENCY = "liquidity_sufficiency"
    CLOCK_SANITY = "clock_sanity"
    CONFIG_BOUNDS = "config_bounds"
    VALUE_CONSISTENCY = "value_consistency"
    GHOST_OWNERSHIP = "ghost_ownership"
    GHOST_INDEX_UNIQUENESS = "ghost_index_uniqueness"
    SETTLED_STATE = "settled_state"


@dataclass(frozen=True)
class VaultObservation:
    """Everything the properties need, read once from the vault."""
    timestamp: int
    total_supply: int
    total_reported_value: int
    vault_asset_balance: int
    strategy_balances: dict[str, int]
    queue: WithdrawalQueueMetadata
    requests: tuple[WithdrawalRequestInfo, ...]
    last_rebase: int
    config: VaultConfig
    decimal_scale: int
    actor_balances: dict[str, int]
    sink_balances: dict[str, int]
    ghost: dict[str, tuple[int, ...]] = field(default_factory=dict)

    @property
    def outstanding(self) -> int:
        return self.queue.queued - self.queue.claimed


def observe(ctx: HarnessContext) -> VaultObservation:
    vault = ctx.vault
    meta = vault.withdrawal_queue_metadata()
    requests = []
    for index in range(meta.next_index):
        try:
            requests.append(vault.withdrawal_request(index))
        except VaultRevert:
            # A hole below the frontier; queue_density reports it.
            requests.append(WithdrawalRequestInfo())
    return VaultObservation(
        timestamp=ctx.clock.now(),
        total_supply=vault.total_supply(),
        total_reported_value=vault.total_reported_value(),
        vault_asset_balance=vault.asset_balance(),
        strategy_balances={name: vault.strategy_balance(name) for name in vault.strategy_names()},
        queue=meta,
        requests=tuple(requests),
        last_rebase=vault.last_rebase(),
        config=vault.config(),
        decimal_scale=vault.decimal_scale,
        actor_balances={a: vault.balance_of(a) for a in ctx.actors},
        sink_balances={s: vault.balance_of(s) for s in ctx.actors.sinks},
        ghost=ctx.ghost.snapshot(),
    )


Predicate = Callable[[VaultObservation, "VaultObservation | None"], bool]


@dataclass(frozen=True)
class Property:
    id: PropertyId
    predicate: Predicate
    description: str
    settled_only: bool = False


@dataclass(frozen=True)
class InvariantResult:
    property_id: PropertyId
    holds: bool


# ── Predicates ───────────────────────────────────────────────────────────────


def solvency(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    return obs.total_supply <= obs.total_reported_value


def accounting_closure(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    held = sum(obs.actor_balances.values()) + sum(obs.sink_balances.values())
    return abs(obs.total_supply - held) <= ACCOUNTING_TOLERANCE


def queue_ordering(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    q = obs.queue
    return q.claimed <= q.claimable <= q.queued


def queue_bounds(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    return all(r.queued <= obs.queue.queued for r in obs.requests)


def queue_density(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    return len(obs.requests) == obs.queue.next_index and all(r.withdrawer for r in obs.requests)


def queue_monotonicity(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    return all(
        obs.requests[i].queued >= obs.requests[i - 1].queued
        for i in range(1, len(obs.requests))
    )


def queue_counter_monotonicity(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    if prev is None:
        return True
    now, before = obs.queue, prev.queue
    return (
        now.queued >= before.queued
        and now.claimable >= before.claimable
        and now.claimed >= before.claimed
        and now.next_index >= before.next_index
    )


def liquidity_sufficiency(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    return obs.vault_asset_balance >= obs.queue.claimable - obs.queue.claimed


def clock_sanity(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    return obs.last_rebase <= obs.timestamp


def config_bounds(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    c = obs.config
    return (
        0 <= c.vault_buffer <= MAX_VAULT_BUFFER
        and 0 <= c.max_supply_diff <= MAX_SUPPLY_DIFF
        and 0 <= c.trustee_fee_bps <= MAX_TRUSTEE_FEE_BPS
    )


def value_consistency(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    raw = obs.vault_asset_balance + sum(obs.strategy_balances.values()) - obs.outstanding
    expected = raw * obs.decimal_scale
    return abs(obs.total_reported_value - expected) <= VALUE_TOLERANCE


def ghost_ownership(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    for owner, ids in obs.ghost.items():
        for index in ids:
            if index >= len(obs.requests):
                return False
            request = obs.requests[index]
            if request.withdrawer != owner or request.claimed:
                return False
    return True


def ghost_index_uniqueness(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    seen: set[int] = set()
    for ids in obs.ghost.values():
        for index in ids:
            if index in seen:
                return False
            seen.add(index)
    return True


def settled_state(obs: VaultObservation, prev: VaultObservation | None = None) -> bool:
    return (
        not any(obs.ghost.values())
        and all(balance == 0 for balance in obs.strategy_balances.values())
        and all(balance == 0 for balance in obs.actor_balances.values())
        and obs.queue.claimed == obs.queue.queued
    )


PROPERTIES: tuple[Property, ...] = (
    Property(PropertyId.SOLVENCY, solvency, "total supply <= total reported value"),
    Property(
        PropertyId.ACCOUNTING_CLOSURE,
        accounting_closure,
        "total supply ~= sum of actor and sink balances",
    ),
    Property(PropertyId.QUEUE_ORDERING, queue_ordering, "claimed <= claimable <= queued"),
    Property(PropertyId.QUEUE_BOUNDS, queue_bounds, "every request.queued <= metadata.queued"),
    Property(PropertyId.QUEUE_DENSITY, queue_density, "no unassigned request below next_index"),
    Property(
        PropertyId.QUEUE_MONOTONICITY,
        queue_monotonicity,
        "request.queued non-decreasing in index",
    ),
    Property(
        PropertyId.QUEUE_COUNTER_MONOTONICITY,
        queue_counter_monotonicity,
        "queue counters never decrease",
    ),
    Property(
        PropertyId.LIQUIDITY_SUFFICIENCY,
        liquidity_sufficiency,
        "vault balance covers claimable - claimed",
    ),
    Property(PropertyId.CLOCK_SANITY, clock_sanity, "last rebase <= now"),
    Property(PropertyId.CONFIG_BOUNDS, config_bounds, "buffer, supply diff and fee within limits"),
    Property(
        PropertyId.VALUE_CONSISTENCY,
        value_consistency,
        "reported value ~= (vault + strategies - outstanding) * scale",
    ),
    Property(PropertyId.GHOST_OWNERSHIP, ghost_ownership, "ghost requests are owned and unclaimed"),
    Property(
        PropertyId.GHOST_INDEX_UNIQUENESS,
        ghost_index_uniqueness,
        "no request index tracked for two actors",
    ),
    Property(
        PropertyId.SETTLED_STATE,
        settled_state,
        "after settlement nothing is pending, deployed or held by actors",
        settled_only=True,
    ),
)


# ── Oracle ───────────────────────────────────────────────────────────────────


class PropertyOracle:
    """Evaluates every registered property against the current state."""

    def __init__(self, properties: tuple[Property, ...] = PROPERTIES) -> None:
        self._properties = properties

    @property
    def properties(self) -> tuple[Property, ...]:
        return self._properties

    def check(
        self,
        obs: VaultObservation,
        previous: VaultObservation | None = None,
        *,
        settled: bool = False,
    ) -> list[InvariantResult]:
        return [
            InvariantResult(p.id, bool(p.predicate(obs, previous)))
            for p in self._properties
            if settled or not p.settled_only
        ]

    def evaluate(
        self,
        ctx: HarnessContext,
        previous: VaultObservation | None = None,
        *,
        settled: bool = False,
    ) -> tuple[VaultObservation, list[InvariantResult]]:
        obs = observe(ctx)
        return obs, self.check(obs, previous, settled=settled)

    def assert_all(
        self,
        ctx: HarnessContext,
        previous: VaultObservation | None = None,
        *,
        settled: bool = False,
    ) -> VaultObservation:
        """Evaluate and raise :class:`InvariantViolationError` on any failure."""
        obs, results = self.evaluate(ctx, previous, settled=settled)
        failed = violations(results)
        if failed:
            raise InvariantViolationError(
                [r.property_id.value for r in failed], [describe(obs)]
            )
        return obs


def violations(results: list[InvariantResult]) -> list[InvariantResult]:
    return [r for r in results if not r.holds]


def describe(obs: VaultObservation) -> str:
    """One-line state summary for failure messages."""
    q = obs.queue
    return (
        f"t={obs.timestamp} supply={obs.total_supply} value={obs.total_reported_value} "
        f"vault={obs.vault_asset_balance} strategies={sum(obs.strategy_balances.values())} "
        f"queue=({q.queued},{q.claimable},{q.claimed},{q.next_index})"
    )
