"""
Configuration for the promotion engine.

Values come from environment variables prefixed with PROMO_ (or a .env
file), falling back to the defaults below. The defaults are the business
rules the engine ships with.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


ROOT_DIR = Path(__file__).parent.parent
DEFAULT_DATA_DIR = ROOT_DIR / "data"


class PromotionEngineSettings(BaseSettings):
    """Promotion engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROMO_",
        env_file=".env",
        extra="ignore",
    )

    # Storage / presentation
    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Directory holding the JSON fixtures")
    default_currency: str = Field(default="TND", description="Currency shown when a product has none")
    log_level: str = Field(default="INFO")

    # Scheduling (crontab syntax: minute hour day month day_of_week)
    scheduler_timezone: Optional[str] = Field(default=None, description="None means the host timezone")
    daily_cron: str = "0 0 * * *"
    black_friday_start_cron: str = "0 0 25 11 *"
    black_friday_end_cron: str = "0 0 28 11 *"

    # Shared scanner threshold
    sales_threshold: int = 10

    # High sales, near expiration
    expiring_window_days: int = 5
    expiring_discount_percentage: float = 40.0
    expiring_promotion_name: str = "Promotion Expiration Produit"

    # Low sales, near expiration
    low_sales_window_days: int = 10
    low_sales_discount_percentage: float = 45.0
    low_sales_duration_days: int = 7
    low_sales_promotion_name: str = "AI Suggested Promotion for Low Sales and Expiring Products"

    # Black Friday
    black_friday_name: str = "Black Friday"
    black_friday_placeholder_percentage: float = 50.0
    black_friday_month: int = 11
    black_friday_day: int = 25
    black_friday_duration_days: int = 3


@lru_cache
def get_settings() -> PromotionEngineSettings:
    """Get the process-wide settings instance."""
    return PromotionEngineSettings()
