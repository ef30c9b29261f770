"""Yield strategy sub-account.

Holds underlying on behalf of the vault. Yield is modelled externally by
minting more underlying straight to the strategy's address.
"""

from __future__ import annotations

from vaultfuzz.sut.errors import RevertCode, require
from vaultfuzz.sut.token import MockToken


class MockStrategy:
    def __init__(self, name: str, asset: MockToken, vault_address: str) -> None:
        self.name = name
        self.address = f"strategy:{name}"
        self.asset = asset
        self.vault_address = vault_address

    def __repr__(self) -> str:
        return f"MockStrategy({self.name}, balance={self.check_balance()})"

    def check_balance(self) -> int:
        return self.asset.balance_of(self.address)

    def withdraw(self, caller: str, recipient: str, amount: int) -> None:
        require(caller == self.vault_address, RevertCode.UNAUTHORIZED, "caller is not the vault")
        require(
            amount <= self.check_balance(),
            RevertCode.INSUFFICIENT_LIQUIDITY,
            f"{self.name}: withdraw exceeds balance",
        )
        self.asset.transfer(self.address, recipient, amount)

    def withdraw_all(self, caller: str) -> int:
        require(caller == self.vault_address, RevertCode.UNAUTHORIZED, "caller is not the vault")
        amount = self.check_balance()
        if amount:
            self.asset.transfer(self.address, self.vault_address, amount)
        return amount
