"""Harness context: the single handle passed to handlers, properties and hooks."""

from __future__ import annotations

from dataclasses import dataclass

from vaultfuzz.core.config import Settings
from vaultfuzz.fuzzer.actors import ActorRegistry
from vaultfuzz.fuzzer.clock import Clock
from vaultfuzz.fuzzer.ghost import GhostStore
from vaultfuzz.fuzzer.trace import TraceEntry, TraceRecorder
from vaultfuzz.sut.deploy import Deployment, deploy_system
from vaultfuzz.sut.otoken import RebasingToken
from vaultfuzz.sut.strategy import MockStrategy
from vaultfuzz.sut.token import MockToken
from vaultfuzz.sut.vault import Vault


@dataclass(frozen=True)
class WorldConfig:
    """Shape of the deployed world; identical for every sequence of a campaign."""
    actor_count: int = 4
    asset_decimals: int = 6
    initial_actor_balance: int = 1_000_000
    dead_seed_deposit: int = 1
    strategy_count: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> WorldConfig:
        return cls(
            actor_count=settings.actor_count,
            asset_decimals=settings.asset_decimals,
            initial_actor_balance=settings.initial_actor_balance,
            dead_seed_deposit=settings.dead_seed_deposit,
            strategy_count=settings.strategy_count,
        )


@dataclass
class HarnessContext:
    deployment: Deployment
    actors: ActorRegistry
    clock: Clock
    ghost: GhostStore
    trace: TraceRecorder | None = None

    @property
    def vault(self) -> Vault:
        return self.deployment.vault

    @property
    def asset(self) -> MockToken:
        return self.deployment.asset

    @property
    def otoken(self) -> RebasingToken:
        return self.deployment.otoken

    @property
    def strategies(self) -> list[MockStrategy]:
        return self.deployment.strategies

    @property
    def governor(self) -> str:
        return self.deployment.governor

    @property
    def operator(self) -> str:
        return self.deployment.operator

    @property
    def unit(self) -> int:
        """One whole asset unit."""
        return 10**self.asset.decimals

    def record(self, operation: str, actor: str | None = None, amount: int | None = None) -> None:
        if self.trace is None:
            return
        self.trace.record(
            TraceEntry(
                step=0,
                timestamp=self.clock.now(),
                operation=operation,
                actor=actor,
                amount=amount,
                asset_balance=self.asset.balance_of(actor) if actor else None,
                claim_balance=self.otoken.balance_of(actor) if actor else None,
                total_supply=self.otoken.total_supply(),
            )
        )


def build_context(world: WorldConfig | None = None, *, trace: bool = False) -> HarnessContext:
    """Deploy a fresh system and wrap it with a clean registry, clock and ghost store."""
    world = world or WorldConfig()
    actors = ActorRegistry.create(world.actor_count)
    clock = Clock()
    deployment = deploy_system(
        list(actors),
        clock.now,
        asset_decimals=world.asset_decimals,
        initial_actor_balance=world.initial_actor_balance,
        dead_seed_deposit=world.dead_seed_deposit,
        strategy_count=world.strategy_count,
    )
    return HarnessContext(
        deployment=deployment,
        actors=actors,
        clock=clock,
        ghost=GhostStore(actors),
        trace=TraceRecorder() if trace else None,
    )
