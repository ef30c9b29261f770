"""Shared fixtures for the vaultfuzz test suite."""

from __future__ import annotations

import pytest

from vaultfuzz.fuzzer.context import HarnessContext, WorldConfig, build_context
from vaultfuzz.fuzzer.driver import DriverConfig
from vaultfuzz.fuzzer.properties import PropertyOracle


# ── World Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def world() -> WorldConfig:
    """Default world: 4 actors, 6-decimal asset, 2 strategies."""
    return WorldConfig()


@pytest.fixture
def ctx(world: WorldConfig) -> HarnessContext:
    """A freshly deployed system with a clean ghost store."""
    return build_context(world)


@pytest.fixture
def traced_ctx(world: WorldConfig) -> HarnessContext:
    return build_context(world, trace=True)


@pytest.fixture
def alice(ctx: HarnessContext) -> str:
    return ctx.actors[0]


@pytest.fixture
def bob(ctx: HarnessContext) -> str:
    return ctx.actors[1]


@pytest.fixture
def deposited(ctx: HarnessContext, alice: str, bob: str) -> HarnessContext:
    """Alice and Bob each hold 1,000 units worth of claim tokens."""
    ctx.vault.mint(alice, 1_000 * ctx.unit)
    ctx.vault.mint(bob, 1_000 * ctx.unit)
    return ctx


# ── Driver Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def oracle() -> PropertyOracle:
    return PropertyOracle()


@pytest.fixture
def small_config() -> DriverConfig:
    """Short sequences so driver tests stay fast."""
    return DriverConfig(steps=60, shrink_max_replays=200)
