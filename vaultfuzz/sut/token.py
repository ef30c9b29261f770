"""Fungible token mock with plain 1:1 balance accounting."""

from __future__ import annotations

from vaultfuzz.sut.errors import RevertCode, require


class MockToken:
    """Minimal fungible token: no fees, no hooks, unlimited minting."""

    def __init__(self, symbol: str, decimals: int = 18) -> None:
        self.symbol = symbol
        self.decimals = decimals
        self._balances: dict[str, int] = {}
        self._allowances: dict[tuple[str, str], int] = {}
        self._total_supply = 0

    def __repr__(self) -> str:
        return f"MockToken({self.symbol}, supply={self._total_supply})"

    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def mint(self, account: str, amount: int) -> None:
        require(amount >= 0, RevertCode.INVALID_AMOUNT, "negative mint")
        self._balances[account] = self.balance_of(account) + amount
        self._total_supply += amount

    def burn(self, account: str, amount: int) -> None:
        require(self.balance_of(account) >= amount, RevertCode.INSUFFICIENT_BALANCE)
        self._balances[account] -= amount
        self._total_supply -= amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        require(amount >= 0, RevertCode.INVALID_AMOUNT, "negative allowance")
        self._allowances[(owner, spender)] = amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        require(amount >= 0, RevertCode.INVALID_AMOUNT, "negative transfer")
        require(
            self.balance_of(sender) >= amount,
            RevertCode.INSUFFICIENT_BALANCE,
            f"{self.symbol}: transfer amount exceeds balance",
        )
        self._balances[sender] -= amount
        self._balances[to] = self.balance_of(to) + amount

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        allowed = self.allowance(owner, spender)
        require(
            allowed >= amount,
            RevertCode.INSUFFICIENT_ALLOWANCE,
            f"{self.symbol}: insufficient allowance",
        )
        self.transfer(owner, to, amount)
        self._allowances[(owner, spender)] = allowed - amount
