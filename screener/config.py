"""Central configuration: loads .env and exposes typed settings."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic_settings import BaseSettings
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)

# Resolve project root (parent of screener/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_PATH = PROJECT_ROOT / ".env"

DEFAULT_UNIVERSE = [
    "AAPL", "MSFT", "NVDA", "AMZN", "GOOGL", "META", "TSLA", "AMD",
    "AVGO", "NFLX", "JPM", "V", "MA", "UNH", "XOM", "COST",
    "LLY", "CRM", "ORCL", "ADBE", "QCOM", "INTC", "BA", "DIS",
]


class Settings(BaseSettings):
    # --- Database ---
    database_url: str = ""

    # --- Logging ---
    log_format: str = "text"  # "text" or "json"

    # --- Screening ---
    min_clarity_threshold: float = 67.0
    screen_batch_size: int = 5
    screen_batch_pause_s: float = 1.0
    quote_pause_s: float = 0.3
    top_n_picks: int = 10
    min_bars_for_screen: int = 26
    prefilter_min_volume_ratio: float = 0.5
    universe: list[str] = Field(default_factory=lambda: list(DEFAULT_UNIVERSE))

    # --- Market data ---
    history_range: str = "3mo"
    history_interval: str = "1d"
    history_cache_ttl_s: int = 6 * 3600
    screening_cache_ttl_s: int = 30 * 60
    cache_db_path: str = ""  # empty = in-memory cache

    # --- Outcome ledger ---
    signal_expiry_days: int = 10

    # --- Empirical probability / calibration ---
    min_calibration_samples: int = 30
    min_empirical_samples: int = 50
    median_sample_threshold: int = 150
    calibration_max_deviation: float = 10.0

    @model_validator(mode="after")
    def _validate_screening(self) -> "Settings":
        """Reject unusable screening parameters at startup."""
        if self.screen_batch_size < 1:
            raise ValueError(
                f"screen_batch_size must be >= 1 (got {self.screen_batch_size})"
            )
        if self.top_n_picks < 1:
            raise ValueError(f"top_n_picks must be >= 1 (got {self.top_n_picks})")
        if not 0 <= self.min_clarity_threshold <= 100:
            raise ValueError(
                f"min_clarity_threshold must be within [0, 100] "
                f"(got {self.min_clarity_threshold})"
            )
        if not self.universe:
            logger.warning("Screening universe is empty - scans will return no picks")
        return self

    model_config = {
        "env_file": str(ENV_PATH),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
