"""
TradeVerify configuration - loaded from environment (TRADEVERIFY_*).
"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TRADEVERIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database (for storage layer)
    database_url: str = "sqlite+aiosqlite:///tradeverify.db"

    # Settlement economics (per standardized trade)
    trade_size_usd: float = 1000.0
    fees_usd: float = 2.0  # 0.1% entry + 0.1% exit
    slippage_usd: float = 2.0  # 0.1% entry + 0.1% exit

    # Data quality gate
    min_quality_score: float = 70.0
    max_price_change_pct: float = 50.0
    gap_tolerance_multiplier: float = 1.5

    # Live verification sweep
    sweep_interval_seconds: int = 3600  # hourly
    sweep_max_concurrency: int = 5
    sweep_time_budget_seconds: float = 240.0
    max_price_age_seconds: int = 300  # 5 minutes

    # Signal intake rate limits (per user)
    intake_cooldown_seconds: int = 60
    intake_daily_limit: int = 20

    # Market data
    provider_order: List[str] = ["binance", "kraken"]
    http_timeout_seconds: float = 30.0


settings = Settings()


def get_settings() -> Settings:
    """Return application settings (for dependency injection)."""
    return settings
