"""Structured rejection codes raised by the reference vault."""

from __future__ import annotations

from enum import Enum


class RevertCode(str, Enum):
    """Machine-readable reason for a rejected call."""

    # Caller / input
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_CONFIG = "INVALID_CONFIG"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_ALLOWANCE = "INSUFFICIENT_ALLOWANCE"

    # Withdrawal queue
    ASYNC_WITHDRAWALS_DISABLED = "ASYNC_WITHDRAWALS_DISABLED"
    CLAIM_DELAY_NOT_MET = "CLAIM_DELAY_NOT_MET"
    QUEUE_PENDING_LIQUIDITY = "QUEUE_PENDING_LIQUIDITY"
    NOT_REQUESTER = "NOT_REQUESTER"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    UNKNOWN_REQUEST = "UNKNOWN_REQUEST"

    # Capital / backing
    INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
    BACKING_SUPPLY_MISMATCH = "BACKING_SUPPLY_MISMATCH"
    STRATEGY_NOT_SUPPORTED = "STRATEGY_NOT_SUPPORTED"


class VaultRevert(Exception):
    """A call was rejected by the vault or one of its tokens."""

    def __init__(self, code: RevertCode, message: str = "") -> None:
        self.code = code
        self.message = message or code.value
        super().__init__(f"{code.value}: {self.message}")


def require(condition: bool, code: RevertCode, message: str = "") -> None:
    """Raise :class:`VaultRevert` unless *condition* holds."""
    if not condition:
        raise VaultRevert(code, message)
