"""Rebasing claim token issued by the vault.

Balances are stored as *credits*; ``balance = credits * 1e18 / credits_per_token``.
A rebase lowers ``credits_per_token`` so every holder's balance grows
proportionally without touching individual accounts.
"""

from __future__ import annotations

from vaultfuzz.sut.errors import RevertCode, require

ONE = 10**18
INITIAL_CREDITS_PER_TOKEN = 10**27


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


class RebasingToken:
    """Claim token with credit-based rebasing. Only the vault may mint or burn."""

    decimals = 18

    def __init__(self, symbol: str = "vTKN") -> None:
        self.symbol = symbol
        self._credits: dict[str, int] = {}
        self._rebasing_credits = 0
        self._credits_per_token = INITIAL_CREDITS_PER_TOKEN
        self._total_supply = 0

    def __repr__(self) -> str:
        return f"RebasingToken({self.symbol}, supply={self._total_supply})"

    # ── Views ────────────────────────────────────────────────────────────

    def total_supply(self) -> int:
        return self._total_supply

    def credits_per_token(self) -> int:
        return self._credits_per_token

    def credits_of(self, account: str) -> int:
        return self._credits.get(account, 0)

    def balance_of(self, account: str) -> int:
        return self.credits_of(account) * ONE // self._credits_per_token

    def holders(self) -> list[str]:
        return [a for a, c in self._credits.items() if c > 0]

    # ── Mutations ────────────────────────────────────────────────────────

    def _credits_for(self, amount: int) -> int:
        return _ceil_div(amount * self._credits_per_token, ONE)

    def mint(self, account: str, amount: int) -> None:
        require(amount > 0, RevertCode.INVALID_AMOUNT, "mint amount must be positive")
        credits = amount * self._credits_per_token // ONE
        self._credits[account] = self.credits_of(account) + credits
        self._rebasing_credits += credits
        self._total_supply += amount

    def burn(self, account: str, amount: int) -> None:
        require(amount > 0, RevertCode.INVALID_AMOUNT, "burn amount must be positive")
        balance = self.balance_of(account)
        require(amount <= balance, RevertCode.INSUFFICIENT_BALANCE, "burn exceeds balance")

        if amount == balance:
            credits = self.credits_of(account)
        else:
            credits = min(self._credits_for(amount), self.credits_of(account))
        self._credits[account] = self.credits_of(account) - credits
        self._rebasing_credits -= credits
        self._total_supply -= amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        require(amount > 0, RevertCode.INVALID_AMOUNT, "transfer amount must be positive")
        balance = self.balance_of(sender)
        require(amount <= balance, RevertCode.INSUFFICIENT_BALANCE, "transfer exceeds balance")

        if amount == balance:
            credits = self.credits_of(sender)
        else:
            credits = min(self._credits_for(amount), self.credits_of(sender))
        self._credits[sender] = self.credits_of(sender) - credits
        self._credits[to] = self.credits_of(to) + credits

    def change_supply(self, new_total_supply: int) -> None:
        """Distribute ``new_total_supply - total_supply`` across all holders."""
        require(
            new_total_supply >= self._total_supply,
            RevertCode.INVALID_AMOUNT,
            "supply may only increase",
        )
        if self._total_supply == 0 or new_total_supply == self._total_supply:
            return
        # Rounding up credits-per-token rounds balances down, keeping
        # the sum of balances at or below total supply.
        self._credits_per_token = max(
            1, _ceil_div(self._rebasing_credits * ONE, new_total_supply)
        )
        self._total_supply = new_total_supply
