"""FRESHROUTE — Scheduler Jobs.

APScheduler interval job that refreshes the current-period cache for every
active entity by routing the current week and month-to-date with force_fresh.
"""

from datetime import datetime, timezone
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from freshroute.config import settings
from freshroute.core.errors import StoreError
from freshroute.core.logging import get_logger
from freshroute.core.periods import current_month_window, current_week_window
from freshroute.models.enums import Platform, ResponseStatus
from freshroute.models.payload_models import RouterRequest
from freshroute.router.freshness_router import FreshnessRouter
from freshroute.stores.storage import StorageBackend

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def refresh_current_periods(
    freshness_router: FreshnessRouter,
    storage: StorageBackend,
    clock: Callable[[], datetime] = _utc_now,
) -> int:
    """Refresh the cache for each active entity. Returns the number of refreshed periods."""
    try:
        accounts = storage.list_entity_accounts(active_only=True)
    except StoreError as e:
        logger.error(f"Cache refresh skipped; could not list entities: {e}")
        return 0

    now = clock()
    refreshed = 0
    for account in accounts:
        platform = Platform(account.platform)
        for window in (current_week_window(now), current_month_window(now)):
            response = await freshness_router.route(
                RouterRequest(
                    entity_id=account.entity_id,
                    window=window,
                    platform=platform,
                    force_fresh=True,
                )
            )
            if response.status == ResponseStatus.SUCCESS:
                refreshed += 1
            else:
                reason = response.error.message if response.error else response.status.value
                logger.error(
                    f"Cache refresh failed for {account.entity_id} "
                    f"{window.start} → {window.end}: {reason}",
                    extra={"entity_id": account.entity_id, "platform": platform.value},
                )

    logger.info(f"Cache refresh complete: {refreshed} periods across {len(accounts)} entities")
    return refreshed


def start_scheduler(freshness_router: FreshnessRouter, storage: StorageBackend):
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        refresh_current_periods,
        "interval",
        hours=settings.cache_refresh_interval_hours,
        args=[freshness_router, storage],
        id="cache_refresh",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Cache refresh every {settings.cache_refresh_interval_hours}h"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
