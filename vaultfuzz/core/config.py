"""Core configuration for the vaultfuzz harness."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Harness settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="VAULTFUZZ_",
        case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "vaultfuzz"
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── Campaign ─────────────────────────────────────────────────────────
    sequences: int = Field(default=20, ge=1)
    steps_per_sequence: int = Field(default=150, ge=1)
    seed: int | None = None
    workers: int = Field(default=1, ge=1)
    max_duration_seconds: float = 300.0
    enable_shrinking: bool = True
    shrink_max_replays: int = 500
    enable_settlement: bool = True
    trace: bool = False
    handler_weights: dict[str, int] = Field(default_factory=dict)

    # ── World ────────────────────────────────────────────────────────────
    actor_count: int = Field(default=4, ge=1)
    asset_decimals: int = Field(default=6, ge=0, le=18)
    initial_actor_balance: int = 1_000_000  # whole asset units
    dead_seed_deposit: int = 1  # whole asset units
    strategy_count: int = Field(default=2, ge=1)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
