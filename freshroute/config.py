"""FRESHROUTE — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_access_token: str = ""
    meta_ad_account_id: str = ""
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"

    # ── Database ──
    database_url: str = ""

    # ── Freshness Policy ──
    freshness_threshold_hours: float = 3.0
    enforce_cache_first: bool = True
    upstream_lookback_months: int = 37  # Meta insights retention
    all_time_epoch_year: int = 2010
    large_window_days: int = 730
    weekly_summary_tolerance_days: int = 3
    enrichment_min_period_days: int = 3
    single_flight_enabled: bool = True
    validate_credentials_before_fetch: bool = True

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    cache_refresh_interval_hours: int = 3
    default_entity_id: Optional[str] = None  # Entity served by META_* credentials

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/freshroute.db"
        return "sqlite:///./freshroute.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
