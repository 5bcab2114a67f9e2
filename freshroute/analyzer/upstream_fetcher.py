"""FRESHROUTE — Upstream Fetcher.

Live path: pull raw line items from the platform provider and aggregate them
with the same KPI engine routine the historical daily fallback uses.
Write-back is a separate call the router makes only for current periods.
"""

from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

import httpx

from freshroute.analyzer.kpi_engine import aggregate_line_items
from freshroute.config import settings
from freshroute.connectors.base_provider import UpstreamProvider
from freshroute.core.errors import UpstreamError
from freshroute.core.logging import get_logger
from freshroute.models.enums import Platform
from freshroute.models.payload_models import (
    AggregatePayload,
    CacheEntry,
    DateWindow,
    PayloadProvenance,
)
from freshroute.stores.cache_store import SmartCacheStore

logger = get_logger("analyzer.upstream")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UpstreamFetcher:
    """Fetches live aggregates and persists them into the cache on request."""

    def __init__(
        self,
        providers: Mapping[Platform, UpstreamProvider],
        cache_store: SmartCacheStore,
        validate_credentials: Optional[bool] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.providers = dict(providers)
        self.cache_store = cache_store
        self.validate_credentials = (
            settings.validate_credentials_before_fetch
            if validate_credentials is None
            else validate_credentials
        )
        self.clock = clock

    def _provider(self, platform: Platform) -> UpstreamProvider:
        provider = self.providers.get(platform)
        if provider is None:
            raise UpstreamError(
                f"No upstream provider configured for platform '{platform.value}'",
                kind="provider_missing",
            )
        return provider

    async def fetch_and_aggregate(
        self,
        entity_id: str,
        window: DateWindow,
        platform: Platform | str = Platform.META,
    ) -> AggregatePayload:
        """Fetch line items for the window and aggregate them.

        Raises UpstreamError on credential, transport or provider failure.
        """
        platform = Platform(platform)
        provider = self._provider(platform)

        try:
            if self.validate_credentials:
                if not await provider.validate_credential(entity_id):
                    raise UpstreamError(
                        f"{platform.value} credential for {entity_id} is not valid",
                        kind="credential_invalid",
                    )
            line_items = await provider.fetch_line_items(
                entity_id, window.start, window.end
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Transport failure: {e}", kind="transport") from e

        totals, derived = aggregate_line_items(line_items)
        logger.info(
            f"Live fetch for {entity_id} {window.start} → {window.end}: "
            f"{len(line_items)} line items, spend={totals.spend}",
            extra={"entity_id": entity_id, "platform": platform.value},
        )
        return AggregatePayload(
            date_range_start=window.start,
            date_range_end=window.end,
            line_items=line_items,
            totals=totals,
            derived_metrics=derived,
            provenance=PayloadProvenance(fetched_at=self.clock()),
        )

    def write_back(
        self,
        entity_id: str,
        period_id: str,
        payload: AggregatePayload,
        platform: Platform | str = Platform.META,
    ) -> CacheEntry:
        """Persist a freshly computed aggregate into the current-period cache."""
        return self.cache_store.put(entity_id, period_id, payload, platform)
