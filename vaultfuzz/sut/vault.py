"""Reference vault: deposits, rebasing supply, async withdrawal queue, strategies.

Amounts of the underlying asset are in asset units (``asset.decimals``);
amounts of the claim token are always 18-decimal. ``decimal_scale``
converts between the two.

Withdrawal queue
----------------
``queued``, ``claimable`` and ``claimed`` are cumulative asset counters.
Request *i* stores the value of ``queued`` right after it was added, so it
becomes claimable once ``claimable >= request.queued``. ``claimable`` is
topped up lazily from idle vault balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable

from vaultfuzz.sut.errors import RevertCode, VaultRevert, require
from vaultfuzz.sut.otoken import RebasingToken
from vaultfuzz.sut.strategy import MockStrategy
from vaultfuzz.sut.token import MockToken

logger = logging.getLogger(__name__)

ONE = 10**18
YEAR = 365 * 24 * 3600
DAY = 24 * 3600

MAX_TRUSTEE_FEE_BPS = 5_000
MAX_VAULT_BUFFER = ONE
MAX_SUPPLY_DIFF = ONE
MAX_REBASE_RATE_APR = 2 * ONE  # 200% per year
MAX_DRIP_DURATION = 30 * DAY
MIN_CLAIM_DELAY = 10 * 60
MAX_CLAIM_DELAY = 15 * DAY


@dataclass
class VaultConfig:
    """Governance-controlled parameters."""
    auto_allocate_threshold: int = 0  # asset units, 0 disables
    drip_duration: int = 0  # seconds, 0 distributes yield immediately
    max_supply_diff: int = 0  # 1e18 = 100%, 0 disables the backing check
    rebase_rate_max: int = MAX_REBASE_RATE_APR  # APR, 1e18 = 100%
    rebase_threshold: int = 0  # asset units
    trustee_fee_bps: int = 0
    vault_buffer: int = 0  # 1e18 = 100%
    withdrawal_claim_delay: int = MIN_CLAIM_DELAY  # seconds, 0 disables async withdrawals


@dataclass
class WithdrawalQueueMetadata:
    queued: int = 0
    claimable: int = 0
    claimed: int = 0
    next_index: int = 0


@dataclass
class WithdrawalRequestInfo:
    withdrawer: str = ""
    claimed: bool = False
    timestamp: int = 0
    claimable_at: int = 0
    amount: int = 0
    queued: int = 0


class Vault:
    """The system under test."""

    address = "vault"

    def __init__(
        self,
        asset: MockToken,
        otoken: RebasingToken,
        governor: str,
        operator: str,
        treasury: str,
        time_source: Callable[[], int],
        config: VaultConfig | None = None,
    ) -> None:
        self.asset = asset
        self.otoken = otoken
        self.governor = governor
        self.operator = operator
        self.treasury = treasury
        self._now = time_source
        self._config = config or VaultConfig()
        self._strategies: dict[str, MockStrategy] = {}
        self._default_strategy: str | None = None
        self._queue = WithdrawalQueueMetadata()
        self._requests: dict[int, WithdrawalRequestInfo] = {}
        self._last_rebase = time_source()
        self.decimal_scale = 10 ** (otoken.decimals - asset.decimals)

    # ── Read accessors ───────────────────────────────────────────────────

    def total_supply(self) -> int:
        return self.otoken.total_supply()

    def balance_of(self, account: str) -> int:
        return self.otoken.balance_of(account)

    def asset_balance(self) -> int:
        """Raw underlying held by the vault itself."""
        return self.asset.balance_of(self.address)

    def strategy_names(self) -> list[str]:
        return list(self._strategies)

    def strategy_balance(self, name: str) -> int:
        return self._strategy(name).check_balance()

    def default_strategy(self) -> str | None:
        return self._default_strategy

    def outstanding_withdrawals(self) -> int:
        return self._queue.queued - self._queue.claimed

    def total_value(self) -> int:
        """Backing value in asset units, net of outstanding withdrawals."""
        gross = self.asset_balance() + sum(
            s.check_balance() for s in self._strategies.values()
        )
        return max(0, gross - self.outstanding_withdrawals())

    def total_reported_value(self) -> int:
        """Backing value in claim-token units."""
        return self.total_value() * self.decimal_scale

    def asset_available(self) -> int:
        """Idle vault balance not reserved for the withdrawal queue."""
        return max(0, self.asset_balance() - self.outstanding_withdrawals())

    def withdrawal_queue_metadata(self) -> WithdrawalQueueMetadata:
        return replace(self._queue)

    def withdrawal_request(self, request_id: int) -> WithdrawalRequestInfo:
        try:
            return replace(self._requests[request_id])
        except KeyError:
            raise VaultRevert(RevertCode.UNKNOWN_REQUEST, f"no request {request_id}") from None

    def last_rebase(self) -> int:
        return self._last_rebase

    def config(self) -> VaultConfig:
        return replace(self._config)

    # ── Access control helpers ───────────────────────────────────────────

    def _only_governor(self, caller: str) -> None:
        require(caller == self.governor, RevertCode.UNAUTHORIZED, "caller is not the governor")

    def _only_operator_or_governor(self, caller: str) -> None:
        require(
            caller in (self.operator, self.governor),
            RevertCode.UNAUTHORIZED,
            "caller is not the operator or governor",
        )

    def _strategy(self, name: str) -> MockStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise VaultRevert(
                RevertCode.STRATEGY_NOT_SUPPORTED, f"strategy {name!r} not approved"
            ) from None

    # ── Strategy administration ──────────────────────────────────────────

    def approve_strategy(self, caller: str, strategy: MockStrategy) -> None:
        self._only_governor(caller)
        require(
            strategy.name not in self._strategies,
            RevertCode.INVALID_CONFIG,
            "strategy already approved",
        )
        self._strategies[strategy.name] = strategy

    def set_default_strategy(self, caller: str, name: str) -> None:
        self._only_governor(caller)
        self._strategy(name)
        self._default_strategy = name

    # ── User operations ──────────────────────────────────────────────────

    def mint(self, caller: str, amount: int) -> int:
        """Deposit *amount* asset units and mint claim tokens 1:1 (scaled)."""
        require(amount > 0, RevertCode.INVALID_AMOUNT, "amount must be greater than 0")

        if amount >= self._config.rebase_threshold:
            self._rebase()

        self.asset.transfer_from(self.address, caller, self.address, amount)
        minted = amount * self.decimal_scale
        self.otoken.mint(caller, minted)

        threshold = self._config.auto_allocate_threshold
        if threshold > 0 and amount >= threshold:
            self._allocate()
        return minted

    def transfer(self, caller: str, to: str, amount: int) -> None:
        self.otoken.transfer(caller, to, amount)

    def request_withdrawal(self, caller: str, amount: int) -> tuple[int, int]:
        """Burn *amount* claim tokens and queue the asset equivalent.

        Returns ``(request_id, queued)``.
        """
        require(
            self._config.withdrawal_claim_delay > 0,
            RevertCode.ASYNC_WITHDRAWALS_DISABLED,
            "async withdrawals not enabled",
        )
        require(amount > 0, RevertCode.INVALID_AMOUNT, "amount must be greater than 0")
        require(
            amount <= self.otoken.balance_of(caller),
            RevertCode.INSUFFICIENT_BALANCE,
            "withdrawal exceeds balance",
        )
        self._check_backing()

        self.otoken.burn(caller, amount)
        assets = amount // self.decimal_scale
        now = self._now()

        request_id = self._queue.next_index
        queued = self._queue.queued + assets
        self._requests[request_id] = WithdrawalRequestInfo(
            withdrawer=caller,
            timestamp=now,
            claimable_at=now + self._config.withdrawal_claim_delay,
            amount=assets,
            queued=queued,
        )
        self._queue.queued = queued
        self._queue.next_index = request_id + 1

        self._add_withdrawal_queue_liquidity()
        return request_id, queued

    def claim_withdrawal(self, caller: str, request_id: int) -> int:
        self._add_withdrawal_queue_liquidity()
        amount = self._mark_claimed(self._claimable_request(caller, request_id))
        self.asset.transfer(self.address, caller, amount)
        return amount

    def claim_withdrawals(self, caller: str, request_ids: list[int]) -> tuple[list[int], int]:
        """Claim several requests at once. Either every request is claimed or none is."""
        self._add_withdrawal_queue_liquidity()
        require(
            len(set(request_ids)) == len(request_ids),
            RevertCode.ALREADY_CLAIMED,
            "duplicate request id",
        )
        requests = [self._claimable_request(caller, request_id) for request_id in request_ids]
        amounts = [self._mark_claimed(request) for request in requests]
        total = sum(amounts)
        self.asset.transfer(self.address, caller, total)
        return amounts, total

    def add_withdrawal_queue_liquidity(self) -> int:
        return self._add_withdrawal_queue_liquidity()

    def _claimable_request(self, caller: str, request_id: int) -> WithdrawalRequestInfo:
        request = self._requests.get(request_id)
        require(request is not None, RevertCode.UNKNOWN_REQUEST, f"no request {request_id}")
        require(request.withdrawer == caller, RevertCode.NOT_REQUESTER, "not requester")
        require(not request.claimed, RevertCode.ALREADY_CLAIMED, "already claimed")
        require(
            request.claimable_at <= self._now(),
            RevertCode.CLAIM_DELAY_NOT_MET,
            "claim delay not met",
        )
        require(
            request.queued <= self._queue.claimable,
            RevertCode.QUEUE_PENDING_LIQUIDITY,
            "queue pending liquidity",
        )
        return request

    def _mark_claimed(self, request: WithdrawalRequestInfo) -> int:
        request.claimed = True
        self._queue.claimed += request.amount
        return request.amount

    def _add_withdrawal_queue_liquidity(self) -> int:
        shortfall = self._queue.queued - self._queue.claimable
        if shortfall == 0:
            return 0
        unallocated = self.asset_balance() - (self._queue.claimable - self._queue.claimed)
        if unallocated <= 0:
            return 0
        added = min(shortfall, unallocated)
        self._queue.claimable += added
        return added

    def _check_backing(self) -> None:
        limit = self._config.max_supply_diff
        supply = self.otoken.total_supply()
        if limit == 0 or supply == 0:
            return
        ratio = self.total_reported_value() * ONE // supply
        diff = abs(ratio - ONE)
        require(
            diff <= limit,
            RevertCode.BACKING_SUPPLY_MISMATCH,
            f"backing ratio off by {diff} > {limit}",
        )

    # ── Rebasing ─────────────────────────────────────────────────────────

    def rebase(self) -> int:
        return self._rebase()

    def _rebase(self) -> int:
        supply = self.otoken.total_supply()
        now = self._now()
        if supply == 0:
            self._last_rebase = now
            return 0

        value = self.total_reported_value()
        if value <= supply:
            self._last_rebase = now
            return supply

        elapsed = now - self._last_rebase
        distributable = value - supply
        if self._config.drip_duration > 0:
            distributable = min(
                distributable, distributable * elapsed // self._config.drip_duration
            )
        rate_cap = supply * self._config.rebase_rate_max * elapsed // (YEAR * ONE)
        distributable = min(distributable, rate_cap)
        if distributable <= 0:
            return supply

        fee = distributable * self._config.trustee_fee_bps // 10_000
        if fee > 0:
            self.otoken.mint(self.treasury, fee)
        self.otoken.change_supply(supply + distributable)
        self._last_rebase = now
        logger.debug("rebase: supply %d -> %d (fee %d)", supply, supply + distributable, fee)
        return supply + distributable

    # ── Capital movement ─────────────────────────────────────────────────

    def allocate(self, caller: str) -> int:
        self._only_operator_or_governor(caller)
        return self._allocate()

    def _allocate(self) -> int:
        self._add_withdrawal_queue_liquidity()
        if self._default_strategy is None:
            return 0
        available = self.asset_available()
        buffer = self.total_value() * self._config.vault_buffer // ONE
        if available <= buffer:
            return 0
        amount = available - buffer
        strategy = self._strategies[self._default_strategy]
        self.asset.transfer(self.address, strategy.address, amount)
        return amount

    def deposit_to_strategy(
        self, caller: str, strategy_name: str, assets: list[str], amounts: list[int]
    ) -> None:
        self._only_operator_or_governor(caller)
        strategy = self._strategy(strategy_name)
        require(len(assets) == len(amounts), RevertCode.INVALID_AMOUNT, "parameter length mismatch")
        for asset, amount in zip(assets, amounts):
            require(
                asset == self.asset.symbol,
                RevertCode.STRATEGY_NOT_SUPPORTED,
                f"asset {asset!r} unsupported",
            )
            require(amount >= 0, RevertCode.INVALID_AMOUNT, "negative amount")
            require(
                amount <= self.asset_available(),
                RevertCode.INSUFFICIENT_LIQUIDITY,
                "not enough asset available",
            )
            self.asset.transfer(self.address, strategy.address, amount)

    def withdraw_from_strategy(
        self, caller: str, strategy_name: str, assets: list[str], amounts: list[int]
    ) -> None:
        self._only_operator_or_governor(caller)
        strategy = self._strategy(strategy_name)
        require(len(assets) == len(amounts), RevertCode.INVALID_AMOUNT, "parameter length mismatch")
        for asset, amount in zip(assets, amounts):
            require(
                asset == self.asset.symbol,
                RevertCode.STRATEGY_NOT_SUPPORTED,
                f"asset {asset!r} unsupported",
            )
            strategy.withdraw(self.address, self.address, amount)
        self._add_withdrawal_queue_liquidity()

    def withdraw_all_from_strategy(self, caller: str, strategy_name: str) -> int:
        self._only_operator_or_governor(caller)
        amount = self._strategy(strategy_name).withdraw_all(self.address)
        self._add_withdrawal_queue_liquidity()
        return amount

    def withdraw_all_from_strategies(self, caller: str) -> int:
        self._only_operator_or_governor(caller)
        total = sum(s.withdraw_all(self.address) for s in self._strategies.values())
        self._add_withdrawal_queue_liquidity()
        return total

    # ── Configuration ────────────────────────────────────────────────────

    def set_auto_allocate_threshold(self, caller: str, threshold: int) -> None:
        self._only_governor(caller)
        require(threshold >= 0, RevertCode.INVALID_CONFIG, "negative threshold")
        self._config.auto_allocate_threshold = threshold

    def set_drip_duration(self, caller: str, duration: int) -> None:
        self._only_governor(caller)
        require(0 <= duration <= MAX_DRIP_DURATION, RevertCode.INVALID_CONFIG, "invalid drip duration")
        self._config.drip_duration = duration

    def set_max_supply_diff(self, caller: str, diff: int) -> None:
        self._only_governor(caller)
        require(0 <= diff <= MAX_SUPPLY_DIFF, RevertCode.INVALID_CONFIG, "invalid max supply diff")
        self._config.max_supply_diff = diff

    def set_rebase_rate_max(self, caller: str, apr: int) -> None:
        self._only_governor(caller)
        require(0 <= apr <= MAX_REBASE_RATE_APR, RevertCode.INVALID_CONFIG, "rate too high")
        # Accrue under the old rate before switching.
        self._rebase()
        self._config.rebase_rate_max = apr

    def set_rebase_threshold(self, caller: str, threshold: int) -> None:
        self._only_governor(caller)
        require(threshold >= 0, RevertCode.INVALID_CONFIG, "negative threshold")
        self._config.rebase_threshold = threshold

    def set_trustee_fee_bps(self, caller: str, bps: int) -> None:
        self._only_governor(caller)
        require(0 <= bps <= MAX_TRUSTEE_FEE_BPS, RevertCode.INVALID_CONFIG, "basis points cannot exceed 50%")
        self._config.trustee_fee_bps = bps

    def set_vault_buffer(self, caller: str, buffer: int) -> None:
        self._only_operator_or_governor(caller)
        require(0 <= buffer <= MAX_VAULT_BUFFER, RevertCode.INVALID_CONFIG, "invalid buffer")
        self._config.vault_buffer = buffer

    def set_withdrawal_claim_delay(self, caller: str, delay: int) -> None:
        self._only_governor(caller)
        require(
            delay == 0 or MIN_CLAIM_DELAY <= delay <= MAX_CLAIM_DELAY,
            RevertCode.INVALID_CONFIG,
            "invalid claim delay period",
        )
        self._config.withdrawal_claim_delay = delay
