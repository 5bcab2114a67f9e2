"""FRESHROUTE — Abstract Storage Backend.

The persistence collaborator consumed by the stores. Implementations raise
``StoreError`` on failure and return ``None`` / empty lists for misses.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional

from freshroute.models.storage_models import (
    CampaignSummary,
    CurrentPeriodCache,
    DailyKpiRecord,
    EntityAccount,
)


class StorageBackend(ABC):
    """Read/write access to summaries, daily rows, the cache and entity accounts."""

    @abstractmethod
    def read_summary(
        self, entity_id: str, summary_date: date, summary_type: str, platform: str
    ) -> Optional[CampaignSummary]:
        """Exact summary lookup by its natural key."""
        ...

    @abstractmethod
    def find_summaries(
        self,
        entity_id: str,
        summary_type: str,
        platform: str,
        date_from: date,
        date_to: date,
    ) -> List[CampaignSummary]:
        """Summaries with ``summary_date`` in [date_from, date_to], newest first."""
        ...

    @abstractmethod
    def read_daily_records(
        self, entity_id: str, start: date, end: date, platform: str
    ) -> List[DailyKpiRecord]:
        """Daily rows in [start, end], oldest first."""
        ...

    @abstractmethod
    def read_cache_entry(
        self, entity_id: str, period_id: str, platform: str
    ) -> Optional[CurrentPeriodCache]:
        ...

    @abstractmethod
    def write_cache_entry(
        self,
        entity_id: str,
        period_id: str,
        platform: str,
        payload_json: str,
        last_updated: datetime,
    ) -> CurrentPeriodCache:
        """Upsert; last writer wins."""
        ...

    @abstractmethod
    def get_entity_account(
        self, entity_id: str, platform: str
    ) -> Optional[EntityAccount]:
        ...

    @abstractmethod
    def list_entity_accounts(
        self, platform: Optional[str] = None, active_only: bool = True
    ) -> List[EntityAccount]:
        ...
