"""Closed parameter domains and the clamp that maps raw randomness into them.

Clamping is remainder-based, ``low + raw % (high - low + 1)``, rather than
``min``/``max`` truncation, so out-of-range draws spread over the interval.
"""

from __future__ import annotations

from dataclasses import dataclass

from vaultfuzz.sut.vault import (
    DAY,
    MAX_CLAIM_DELAY,
    MAX_DRIP_DURATION,
    MAX_REBASE_RATE_APR,
    MAX_SUPPLY_DIFF,
    MAX_TRUSTEE_FEE_BPS,
    MAX_VAULT_BUFFER,
    MIN_CLAIM_DELAY,
)


def clamp(raw: int, low: int, high: int) -> int:
    if low > high:
        raise ValueError(f"empty range [{low}, {high}]")
    return low + raw % (high - low + 1)


@dataclass(frozen=True)
class ParamRange:
    name: str
    low: int
    high: int

    def __post_init__(self) -> None:
        if self.low > self.high:
            raise ValueError(f"{self.name}: empty range [{self.low}, {self.high}]")

    def __contains__(self, value: int) -> bool:
        return self.low <= value <= self.high

    def clamp(self, raw: int) -> int:
        return clamp(raw, self.low, self.high)


TIME_JUMP = ParamRange("time_jump_seconds", 1, 7 * DAY)
YIELD_BPS = ParamRange("yield_bps", 0, 500)  # at most 5% of current balance
TRUSTEE_FEE_BPS = ParamRange("trustee_fee_bps", 0, MAX_TRUSTEE_FEE_BPS)
VAULT_BUFFER = ParamRange("vault_buffer", 0, MAX_VAULT_BUFFER)
MAX_SUPPLY_DIFF_RANGE = ParamRange("max_supply_diff", 0, MAX_SUPPLY_DIFF)
REBASE_RATE_MAX = ParamRange("rebase_rate_max", 0, MAX_REBASE_RATE_APR)
DRIP_DURATION = ParamRange("drip_duration", 0, MAX_DRIP_DURATION)
CLAIM_DELAY = ParamRange("withdrawal_claim_delay", MIN_CLAIM_DELAY, MAX_CLAIM_DELAY)
REBASE_THRESHOLD_UNITS = ParamRange("rebase_threshold_units", 0, 10_000)
AUTO_ALLOCATE_THRESHOLD_UNITS = ParamRange("auto_allocate_threshold_units", 0, 100_000)

# One in N draws of the claim-delay setter disables async withdrawals.
CLAIM_DELAY_DISABLE_ODDS = 8

PARAM_RANGES: dict[str, ParamRange] = {
    r.name: r
    for r in (
        TIME_JUMP,
        YIELD_BPS,
        TRUSTEE_FEE_BPS,
        VAULT_BUFFER,
        MAX_SUPPLY_DIFF_RANGE,
        REBASE_RATE_MAX,
        DRIP_DURATION,
        CLAIM_DELAY,
        REBASE_THRESHOLD_UNITS,
        AUTO_ALLOCATE_THRESHOLD_UNITS,
    )
}
