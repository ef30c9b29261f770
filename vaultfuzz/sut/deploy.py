"""Deployment and wiring of the reference system under test."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from vaultfuzz.sut.otoken import RebasingToken
from vaultfuzz.sut.strategy import MockStrategy
from vaultfuzz.sut.token import MockToken
from vaultfuzz.sut.vault import Vault, VaultConfig

logger = logging.getLogger(__name__)

GOVERNOR = "governor"
OPERATOR = "operator"
DEAD = "0x000000000000000000000000000000000000dEaD"
TREASURY = "treasury"

UNLIMITED = 2**256 - 1


@dataclass
class Deployment:
    """Handles to every deployed component."""
    vault: Vault
    asset: MockToken
    otoken: RebasingToken
    strategies: list[MockStrategy] = field(default_factory=list)
    governor: str = GOVERNOR
    operator: str = OPERATOR
    dead: str = DEAD
    treasury: str = TREASURY


def deploy_system(
    actors: list[str],
    time_source: Callable[[], int],
    *,
    asset_decimals: int = 6,
    initial_actor_balance: int = 1_000_000,
    dead_seed_deposit: int = 1,
    strategy_count: int = 2,
    config: VaultConfig | None = None,
) -> Deployment:
    """Deploy tokens, vault and strategies, then fund and approve every actor.

    ``initial_actor_balance`` and ``dead_seed_deposit`` are in whole asset units.
    """
    unit = 10**asset_decimals
    asset = MockToken("USDX", decimals=asset_decimals)
    otoken = RebasingToken("vUSDX")
    vault = Vault(
        asset=asset,
        otoken=otoken,
        governor=GOVERNOR,
        operator=OPERATOR,
        treasury=TREASURY,
        time_source=time_source,
        config=config,
    )

    strategies = [
        MockStrategy(f"strategy-{i}", asset, vault.address) for i in range(strategy_count)
    ]
    for strategy in strategies:
        vault.approve_strategy(GOVERNOR, strategy)
    if strategies:
        vault.set_default_strategy(GOVERNOR, strategies[0].name)

    # A permanent deposit parked at the dead address keeps supply non-zero.
    if dead_seed_deposit > 0:
        seed_amount = dead_seed_deposit * unit
        asset.mint(GOVERNOR, seed_amount)
        asset.approve(GOVERNOR, vault.address, UNLIMITED)
        minted = vault.mint(GOVERNOR, seed_amount)
        vault.transfer(GOVERNOR, DEAD, minted)

    for actor in actors:
        asset.mint(actor, initial_actor_balance * unit)
        asset.approve(actor, vault.address, UNLIMITED)

    logger.debug(
        "Deployed vault with %d actors, %d strategies, asset decimals %d",
        len(actors), len(strategies), asset_decimals,
    )
    return Deployment(
        vault=vault,
        asset=asset,
        otoken=otoken,
        strategies=strategies,
    )
