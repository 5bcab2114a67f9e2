"""FRESHROUTE — Persisted Storage Models.

Three stores back the router:
  current_period_cache  — TTL-bounded cache for the current month / ISO week
  campaign_summaries    — immutable weekly / monthly summaries (written by ingestion)
  daily_kpi_data        — immutable daily rows, used as a monthly fallback

Payload-shaped columns are stored as JSON text, mirroring the raw-data audit table.
"""

from datetime import date, datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field, UniqueConstraint


class CurrentPeriodCache(SQLModel, table=True):
    """One cached aggregate per (entity, period, platform).

    Created or overwritten only by live write-back; never deleted by reads.
    """

    __tablename__ = "current_period_cache"
    __table_args__ = (
        UniqueConstraint(
            "entity_id", "period_id", "platform", name="uq_current_period_cache"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: str = Field(index=True)
    period_id: str = Field(index=True, description="YYYY-MM or YYYY-Www")
    platform: str = Field(default="meta", index=True)
    payload_json: str = Field(description="AggregatePayload as JSON")
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class CampaignSummary(SQLModel, table=True):
    """Immutable summary for an elapsed week or month."""

    __tablename__ = "campaign_summaries"
    __table_args__ = (
        UniqueConstraint(
            "entity_id",
            "platform",
            "summary_type",
            "summary_date",
            name="uq_campaign_summary",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: str = Field(index=True)
    platform: str = Field(default="meta", index=True)
    summary_type: str = Field(index=True, description="weekly | monthly")
    summary_date: date = Field(index=True, description="Week start or first of month")
    total_spend: float = 0.0
    total_impressions: float = 0.0
    total_clicks: float = 0.0
    total_conversions: float = 0.0
    average_ctr: float = 0.0
    average_cpc: float = 0.0
    derived_metrics_json: Optional[str] = Field(
        default=None, description="DerivedMetrics as JSON; NULL when not collected"
    )
    line_items_json: str = Field(default="[]", description="Campaign line items")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DailyKpiRecord(SQLModel, table=True):
    """Immutable per-day metrics for an entity."""

    __tablename__ = "daily_kpi_data"
    __table_args__ = (
        UniqueConstraint("entity_id", "platform", "record_date", name="uq_daily_kpi"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: str = Field(index=True)
    platform: str = Field(default="meta", index=True)
    record_date: date = Field(index=True)
    total_spend: float = 0.0
    total_impressions: float = 0.0
    total_clicks: float = 0.0
    total_conversions: float = 0.0
    click_to_call: float = 0.0
    email_contacts: float = 0.0
    booking_step_1: float = 0.0
    booking_step_2: float = 0.0
    booking_step_3: float = 0.0
    reservations: float = 0.0
    reservation_value: float = 0.0
    reach: float = 0.0


class EntityAccount(SQLModel, table=True):
    """Maps an entity to its upstream ad account and credential."""

    __tablename__ = "entity_accounts"
    __table_args__ = (
        UniqueConstraint("entity_id", "platform", name="uq_entity_account"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: str = Field(index=True)
    platform: str = Field(default="meta")
    name: str = ""
    ad_account_id: str = Field(description="e.g. act_123456")
    access_token: str = ""
    is_active: bool = True
