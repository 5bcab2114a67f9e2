"""FRESHROUTE — Historical Store.

Read path over immutable persisted aggregates:
  weekly  (<= 7 days) → summary inside the window, else within ±N days of start
  monthly (> 7 days)  → summary keyed at the first of the month,
                        else aggregate daily records at read time

A miss returns ``None``; brand-new entities have no history and that is not a fault.
"""

import json
from datetime import timedelta
from typing import List, Optional

from pydantic import ValidationError

from freshroute.analyzer.kpi_engine import aggregate_line_items, line_item_rates
from freshroute.config import settings
from freshroute.core.errors import StoreError
from freshroute.core.logging import get_logger
from freshroute.models.enums import Platform, SummaryType
from freshroute.models.payload_models import (
    AggregatePayload,
    DateWindow,
    DerivedMetrics,
    LineItem,
    PayloadProvenance,
    Totals,
)
from freshroute.models.storage_models import CampaignSummary, DailyKpiRecord
from freshroute.stores.storage import StorageBackend

logger = get_logger("stores.historical")


def summary_derived_metrics(summary: CampaignSummary) -> Optional[DerivedMetrics]:
    """Parse the stored derived block; ``None`` when it was never collected."""
    if not summary.derived_metrics_json:
        return None
    try:
        return DerivedMetrics.model_validate_json(summary.derived_metrics_json)
    except ValidationError as e:
        raise StoreError(
            f"Corrupt derived metrics on summary {summary.id}: {e}",
            operation="read_summary",
        ) from e


def summary_to_payload(summary: CampaignSummary, window: DateWindow) -> AggregatePayload:
    """Convert a stored summary row into the canonical payload shape."""
    try:
        line_items: List[LineItem] = [
            LineItem.model_validate(item)
            for item in json.loads(summary.line_items_json or "[]")
        ]
    except (ValueError, ValidationError) as e:
        raise StoreError(
            f"Corrupt line items on summary {summary.id}: {e}",
            operation="read_summary",
        ) from e
    return AggregatePayload(
        date_range_start=window.start,
        date_range_end=window.end,
        line_items=line_items,
        totals=Totals(
            spend=summary.total_spend,
            impressions=summary.total_impressions,
            clicks=summary.total_clicks,
            conversions=summary.total_conversions,
            ctr=summary.average_ctr,
            cpc=summary.average_cpc,
        ),
        derived_metrics=summary_derived_metrics(summary),
        provenance=PayloadProvenance(
            from_database=True,
            summary_type=SummaryType(summary.summary_type),
        ),
    )


def daily_record_to_line_item(record: DailyKpiRecord) -> LineItem:
    """One synthetic line item per day so reports keep a line-item breakdown."""
    day = record.record_date.isoformat()
    return line_item_rates(
        LineItem(
            campaign_id=f"daily-{day}",
            campaign_name=f"Daily Data {day}",
            date_start=day,
            date_stop=day,
            spend=record.total_spend or 0.0,
            impressions=record.total_impressions or 0.0,
            clicks=record.total_clicks or 0.0,
            conversions=record.total_conversions or 0.0,
            click_to_call=record.click_to_call or 0.0,
            email_contacts=record.email_contacts or 0.0,
            booking_step_1=record.booking_step_1 or 0.0,
            booking_step_2=record.booking_step_2 or 0.0,
            booking_step_3=record.booking_step_3 or 0.0,
            reservations=record.reservations or 0.0,
            reservation_value=record.reservation_value or 0.0,
            reach=record.reach or 0.0,
        )
    )


class HistoricalStore:
    """Loads elapsed-period aggregates from summaries or daily rows."""

    def __init__(self, storage: StorageBackend, tolerance_days: Optional[int] = None):
        self.storage = storage
        self.tolerance_days = (
            settings.weekly_summary_tolerance_days
            if tolerance_days is None
            else tolerance_days
        )

    def load(
        self,
        entity_id: str,
        window: DateWindow,
        platform: Platform | str = Platform.META,
    ) -> Optional[AggregatePayload]:
        """Return the stored aggregate for the window, or ``None`` when nothing exists.

        Raises StoreError if the storage backend fails.
        """
        platform = Platform(platform).value
        if window.length_days <= 7:
            payload = self._load_weekly(entity_id, window, platform)
        else:
            payload = self._load_monthly(entity_id, window, platform)

        if payload is None:
            logger.info(
                f"No stored data for {entity_id} {window.start} → {window.end}",
                extra={"entity_id": entity_id, "platform": platform},
            )
        return payload

    # ── Weekly ──

    def _load_weekly(
        self, entity_id: str, window: DateWindow, platform: str
    ) -> Optional[AggregatePayload]:
        rows = self.storage.find_summaries(
            entity_id, SummaryType.WEEKLY.value, platform, window.start, window.end
        )
        if not rows:
            # Upstream week boundaries may not align with ISO weeks
            tolerance = timedelta(days=self.tolerance_days)
            rows = self.storage.find_summaries(
                entity_id,
                SummaryType.WEEKLY.value,
                platform,
                window.start - tolerance,
                window.start + tolerance,
            )
            if rows:
                logger.info(
                    f"Weekly summary for {window.start} matched within ±{self.tolerance_days} days "
                    f"(summary_date={rows[0].summary_date})",
                    extra={"entity_id": entity_id, "platform": platform},
                )
        if not rows:
            return None
        return summary_to_payload(rows[0], window)

    # ── Monthly ──

    def _load_monthly(
        self, entity_id: str, window: DateWindow, platform: str
    ) -> Optional[AggregatePayload]:
        summary = self.storage.read_summary(
            entity_id, window.start.replace(day=1), SummaryType.MONTHLY.value, platform
        )
        if summary:
            return summary_to_payload(summary, window)

        records = self.storage.read_daily_records(
            entity_id, window.start, window.end, platform
        )
        if not records:
            return None

        logger.info(
            f"No monthly summary for {window.start}; aggregating {len(records)} daily records",
            extra={"entity_id": entity_id, "platform": platform},
        )
        line_items = [daily_record_to_line_item(r) for r in records]
        totals, derived = aggregate_line_items(line_items)
        return AggregatePayload(
            date_range_start=window.start,
            date_range_end=window.end,
            line_items=line_items,
            totals=totals,
            derived_metrics=derived,
            provenance=PayloadProvenance(
                from_database=True,
                summary_type=SummaryType.MONTHLY,
                aggregated_from_daily=True,
            ),
        )
