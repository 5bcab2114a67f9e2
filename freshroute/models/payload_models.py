"""FRESHROUTE — Aggregate Payload & Router Contract Models."""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, model_validator

from freshroute.models.enums import (
    DataSource,
    PeriodClassification,
    Platform,
    ResponseStatus,
    SummaryType,
)


# ─────────────────────────────────────────────
# WINDOW
# ─────────────────────────────────────────────


class DateWindow(BaseModel):
    """Inclusive date window. ``start`` must not be after ``end``."""

    start: date
    end: date

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_order(self) -> "DateWindow":
        if self.start > self.end:
            raise ValueError(
                f"window start {self.start} is after end {self.end}"
            )
        return self

    @property
    def length_days(self) -> int:
        return (self.end - self.start).days + 1


# ─────────────────────────────────────────────
# PAYLOAD — Canonical response shape
# ─────────────────────────────────────────────


class LineItem(BaseModel):
    """A single raw performance record (one campaign, or one day) before aggregation."""

    campaign_id: str = ""
    campaign_name: str = ""
    date_start: str = ""
    date_stop: str = ""
    spend: float = 0.0
    impressions: float = 0.0
    clicks: float = 0.0
    conversions: float = 0.0
    ctr: float = 0.0
    cpc: float = 0.0
    # Conversion sub-metrics
    click_to_call: float = 0.0
    email_contacts: float = 0.0
    booking_step_1: float = 0.0
    booking_step_2: float = 0.0
    booking_step_3: float = 0.0
    reservations: float = 0.0
    reservation_value: float = 0.0
    reach: float = 0.0


class Totals(BaseModel):
    spend: float = 0.0
    impressions: float = 0.0
    clicks: float = 0.0
    conversions: float = 0.0
    ctr: float = 0.0
    cpc: float = 0.0


class DerivedMetrics(BaseModel):
    """Conversion funnel block. Either wholly present or absent (``None``)."""

    click_to_call: float
    email_contacts: float
    booking_step_1: float
    booking_step_2: float
    booking_step_3: float
    reservations: float
    reservation_value: float
    reach: float
    roas: float
    cost_per_reservation: float

    @classmethod
    def zero(cls) -> "DerivedMetrics":
        return cls(**{name: 0.0 for name in cls.model_fields})


class PayloadProvenance(BaseModel):
    """Where the payload's numbers came from."""

    from_database: bool = False
    summary_type: Optional[SummaryType] = None
    aggregated_from_daily: bool = False
    fetched_at: Optional[datetime] = None
    enriched_from: Optional[str] = None


class AggregatePayload(BaseModel):
    """Aggregated analytics for one entity over one window."""

    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    line_items: List[LineItem] = []
    totals: Totals = Totals()
    derived_metrics: Optional[DerivedMetrics] = None
    provenance: PayloadProvenance = PayloadProvenance()
    needs_enrichment: bool = False
    """Explicit flag: derived metrics are missing and enrichment found nothing."""
    error: bool = False
    """Set only on the degrade-to-zero payload returned after a cache read error."""

    @classmethod
    def zero(cls, window: Optional[DateWindow] = None, error: bool = False) -> "AggregatePayload":
        """All-zero payload with an explicit (zero) derived block."""
        return cls(
            date_range_start=window.start if window else None,
            date_range_end=window.end if window else None,
            derived_metrics=DerivedMetrics.zero(),
            error=error,
        )


# ─────────────────────────────────────────────
# CACHE ENTRY — Read view over a cache row
# ─────────────────────────────────────────────


class CacheEntry(BaseModel):
    entity_id: str
    period_id: str
    platform: Platform = Platform.META
    payload: AggregatePayload
    last_updated: datetime


# ─────────────────────────────────────────────
# ROUTER CONTRACT
# ─────────────────────────────────────────────


class RouterRequest(BaseModel):
    """Abstract analytics request, already authorized upstream of the router."""

    entity_id: str
    window: DateWindow
    platform: Platform = Platform.META
    force_fresh: bool = False
    hint: Optional[str] = None
    """Caller classification override, e.g. "all-time"."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "entity_id": "client-42",
                    "window": {"start": "2024-03-01", "end": "2024-03-31"},
                    "platform": "meta",
                },
                {
                    "entity_id": "client-42",
                    "window": {"start": "2024-03-11", "end": "2024-03-17"},
                    "force_fresh": True,
                },
            ]
        }
    }


class Provenance(BaseModel):
    """Which path answered the request, so bypasses are observable."""

    source: DataSource = DataSource.NONE
    expected_source: DataSource = DataSource.NONE
    actual_source: DataSource = DataSource.NONE
    cache_first_enforced: bool = True
    is_current_period: bool = False
    classification: Optional[PeriodClassification] = None
    period_id: Optional[str] = None
    response_time_ms: float = 0.0
    cache_age_ms: Optional[float] = None
    stale_data: Optional[bool] = None
    bypassed: bool = False
    write_back: bool = False
    trace: List[str] = []


class ErrorInfo(BaseModel):
    kind: str
    message: str


class RouterResponse(BaseModel):
    success: bool
    status: ResponseStatus
    payload: Optional[AggregatePayload] = None
    provenance: Provenance = Provenance()
    error: Optional[ErrorInfo] = None
