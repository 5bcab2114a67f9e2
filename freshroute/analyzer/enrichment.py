"""FRESHROUTE — Enrichment Service.

Backfills a missing derived-metrics block from the stored summary of the same
canonical period. Exactly one secondary lookup per call; never calls upstream.
"""

from datetime import date, timedelta
from typing import Optional

from freshroute.config import settings
from freshroute.core.logging import get_logger
from freshroute.core.metric_registry import FUNNEL_METRICS
from freshroute.core.periods import CanonicalPeriod
from freshroute.models.enums import Platform, SummaryType
from freshroute.models.payload_models import AggregatePayload, DerivedMetrics
from freshroute.models.storage_models import CampaignSummary
from freshroute.stores.historical_store import summary_derived_metrics
from freshroute.stores.storage import StorageBackend

logger = get_logger("analyzer.enrichment")


def _funnel_is_empty(derived: DerivedMetrics) -> bool:
    return all(getattr(derived, name) == 0 for name in FUNNEL_METRICS)


def _elapsed_days(payload: AggregatePayload, today: date) -> int:
    """Days of the payload's window that have already happened."""
    if payload.date_range_start is None:
        return 0
    end = payload.date_range_end or today
    return (min(end, today) - payload.date_range_start).days + 1


class EnrichmentService:
    """Detects and backfills structurally missing derived metrics."""

    def __init__(
        self,
        storage: StorageBackend,
        min_period_days: Optional[int] = None,
        tolerance_days: Optional[int] = None,
    ):
        self.storage = storage
        self.min_period_days = (
            settings.enrichment_min_period_days
            if min_period_days is None
            else min_period_days
        )
        self.tolerance_days = (
            settings.weekly_summary_tolerance_days
            if tolerance_days is None
            else tolerance_days
        )

    def _find_summary(
        self, entity_id: str, period: CanonicalPeriod, platform: str
    ) -> Optional[CampaignSummary]:
        """One lookup; weekly summaries match within ±tolerance of the week start."""
        if period.summary_type != SummaryType.WEEKLY:
            return self.storage.read_summary(
                entity_id, period.summary_date, period.summary_type.value, platform
            )
        tolerance = timedelta(days=self.tolerance_days)
        rows = self.storage.find_summaries(
            entity_id,
            period.summary_type.value,
            platform,
            period.summary_date - tolerance,
            period.summary_date + tolerance,
        )
        exact = [row for row in rows if row.summary_date == period.summary_date]
        return (exact or rows or [None])[0]

    def needs_enrichment(self, payload: AggregatePayload, today: Optional[date] = None) -> bool:
        """True when the derived block is absent, or all-zero despite real spend.

        The all-zero heuristic only applies once the period is mature enough
        that zero conversions against non-zero spend is implausible.
        """
        if payload.derived_metrics is None:
            return True
        if payload.totals.spend <= 0 or not _funnel_is_empty(payload.derived_metrics):
            return False
        today = today or date.today()
        return _elapsed_days(payload, today) >= self.min_period_days

    def enrich(
        self,
        payload: AggregatePayload,
        entity_id: str,
        period: CanonicalPeriod,
        platform: Platform | str = Platform.META,
    ) -> AggregatePayload:
        """Merge the stored summary's derived block into ``payload``.

        Only ``derived_metrics`` is replaced. When the summary is missing or
        carries nothing usable the payload comes back flagged
        ``needs_enrichment=True`` and otherwise unchanged; callers must not loop.
        Raises StoreError if the storage backend fails.
        """
        platform = Platform(platform).value
        summary = self._find_summary(entity_id, period, platform)
        derived = summary_derived_metrics(summary) if summary else None

        if derived is None or _funnel_is_empty(derived):
            logger.info(
                f"No derived metrics available to enrich {period.period_id}",
                extra={"entity_id": entity_id, "period_id": period.period_id},
            )
            return payload.model_copy(update={"needs_enrichment": True})

        source = f"{period.summary_type.value}-summary:{summary.summary_date.isoformat()}"
        logger.info(
            f"Enriched derived metrics from {source}",
            extra={"entity_id": entity_id, "period_id": period.period_id},
        )
        return payload.model_copy(
            update={
                "derived_metrics": derived,
                "needs_enrichment": False,
                "provenance": payload.provenance.model_copy(
                    update={"enriched_from": source}
                ),
            }
        )
