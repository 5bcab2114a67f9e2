"""FRESHROUTE — Smart Cache Store.

TTL-bounded cache keyed by (entity, period). Staleness is a read-time
classification: ``get`` returns stale entries and never deletes anything.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from freshroute.config import settings
from freshroute.core.errors import StoreError
from freshroute.core.logging import get_logger
from freshroute.models.enums import Platform
from freshroute.models.payload_models import AggregatePayload, CacheEntry
from freshroute.stores.storage import StorageBackend

logger = get_logger("stores.cache")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    """SQLite drops tzinfo on read; stored timestamps are always UTC."""
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


class SmartCacheStore:
    """Read/write access to the current-period cache with freshness metadata."""

    def __init__(
        self,
        storage: StorageBackend,
        freshness_threshold: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.storage = storage
        self.freshness_threshold = freshness_threshold or timedelta(
            hours=settings.freshness_threshold_hours
        )
        self.clock = clock

    def get(
        self,
        entity_id: str,
        period_id: str,
        platform: Platform | str = Platform.META,
    ) -> Optional[CacheEntry]:
        """Return the entry regardless of staleness, or ``None`` on a miss.

        Raises StoreError if the storage backend fails.
        """
        platform = Platform(platform)
        row = self.storage.read_cache_entry(entity_id, period_id, platform.value)
        if row is None:
            return None
        try:
            payload = AggregatePayload.model_validate_json(row.payload_json)
        except ValidationError as e:
            raise StoreError(
                f"Corrupt cache payload for {entity_id} {period_id}: {e}",
                operation="read_cache_entry",
            ) from e
        return CacheEntry(
            entity_id=row.entity_id,
            period_id=row.period_id,
            platform=platform,
            payload=payload,
            last_updated=_as_utc(row.last_updated),
        )

    def put(
        self,
        entity_id: str,
        period_id: str,
        payload: AggregatePayload,
        platform: Platform | str = Platform.META,
    ) -> CacheEntry:
        """Overwrite the entry for (entity, period); last writer wins."""
        platform = Platform(platform)
        now = self.clock()
        self.storage.write_cache_entry(
            entity_id, period_id, platform.value, payload.model_dump_json(), now
        )
        logger.info(
            f"Cache write for {entity_id} {period_id}",
            extra={"entity_id": entity_id, "period_id": period_id, "platform": platform.value},
        )
        return CacheEntry(
            entity_id=entity_id,
            period_id=period_id,
            platform=platform,
            payload=payload,
            last_updated=now,
        )

    # ── Freshness ──

    def age(self, entry: CacheEntry, now: Optional[datetime] = None) -> timedelta:
        return (now or self.clock()) - _as_utc(entry.last_updated)

    def is_fresh(self, entry: CacheEntry, now: Optional[datetime] = None) -> bool:
        return self.age(entry, now) < self.freshness_threshold
