"""
Confluence — Configuration Management

Pydantic Settings: loads from environment / .env, validates all tunables at
first use. Every heuristic constant the combiners rely on lives here so it can
be overridden without touching engine code.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Analysis configuration loaded from ``CONFLUENCE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONFLUENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Chip combination ──
    default_timeframe_weight: float = Field(default=0.33, ge=0.0, le=1.0)
    chip_timeframe_weights: dict[str, float] = Field(
        default_factory=lambda: {"weekly": 0.3, "daily": 0.5, "1hour": 0.2}
    )
    level_proximity_threshold: float = 0.02
    volume_profile_bins: int = 50

    # ── Pattern ranking ──
    pattern_window: int = 100             # most recent candles scanned per timeframe
    pattern_decay_rate: float = 0.05      # exp(-rate * bars_since_pattern_end)
    confirmed_pattern_bonus: float = 1.5
    forming_pattern_bonus: float = 1.3
    forming_bonus_max_distance: int = 5
    pattern_signal_ratio: float = 1.5
    pattern_signal_top_n: int = 10

    # ── Pattern combination ──
    combined_signal_ratio: float = 1.2
    pattern_timeframe_weights: dict[str, float] = Field(
        default_factory=lambda: {"weekly": 1.0, "daily": 1.5, "1hour": 2.0}
    )

    # ── Trend reversal ──
    reversal_signal_threshold: float = 40.0

    # ── Integrated report ──
    chip_weight: float = 0.6
    pattern_weight: float = 0.4


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance — created once, reused everywhere."""
    return Settings()
