"""FRESHROUTE — SQLModel Storage Backend.

Opens one short-lived session per operation so a single instance can be
shared across requests for the lifetime of the process.
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from freshroute.core.errors import StoreError
from freshroute.core.logging import get_logger
from freshroute.models.storage_models import (
    CampaignSummary,
    CurrentPeriodCache,
    DailyKpiRecord,
    EntityAccount,
)
from freshroute.stores.storage import StorageBackend

logger = get_logger("stores.sql")


class SQLStorage(StorageBackend):
    """StorageBackend over a SQLAlchemy engine (PostgreSQL or SQLite)."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        """Yield a session; map driver errors to StoreError."""
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Storage {operation} failed: {e}")
            raise StoreError(f"{operation} failed: {e}", operation=operation) from e

    # ── Summaries ──

    def read_summary(
        self, entity_id: str, summary_date: date, summary_type: str, platform: str
    ) -> Optional[CampaignSummary]:
        with self._session("read_summary") as session:
            return session.exec(
                select(CampaignSummary).where(
                    CampaignSummary.entity_id == entity_id,
                    CampaignSummary.summary_date == summary_date,
                    CampaignSummary.summary_type == summary_type,
                    CampaignSummary.platform == platform,
                )
            ).first()

    def find_summaries(
        self,
        entity_id: str,
        summary_type: str,
        platform: str,
        date_from: date,
        date_to: date,
    ) -> List[CampaignSummary]:
        with self._session("find_summaries") as session:
            rows = session.exec(
                select(CampaignSummary)
                .where(
                    CampaignSummary.entity_id == entity_id,
                    CampaignSummary.summary_type == summary_type,
                    CampaignSummary.platform == platform,
                    CampaignSummary.summary_date >= date_from,
                    CampaignSummary.summary_date <= date_to,
                )
                .order_by(CampaignSummary.summary_date.desc())  # type: ignore
            ).all()
            return list(rows)

    # ── Daily Records ──

    def read_daily_records(
        self, entity_id: str, start: date, end: date, platform: str
    ) -> List[DailyKpiRecord]:
        with self._session("read_daily_records") as session:
            rows = session.exec(
                select(DailyKpiRecord)
                .where(
                    DailyKpiRecord.entity_id == entity_id,
                    DailyKpiRecord.platform == platform,
                    DailyKpiRecord.record_date >= start,
                    DailyKpiRecord.record_date <= end,
                )
                .order_by(DailyKpiRecord.record_date.asc())  # type: ignore
            ).all()
            return list(rows)

    # ── Cache ──

    def read_cache_entry(
        self, entity_id: str, period_id: str, platform: str
    ) -> Optional[CurrentPeriodCache]:
        with self._session("read_cache_entry") as session:
            return session.exec(
                select(CurrentPeriodCache).where(
                    CurrentPeriodCache.entity_id == entity_id,
                    CurrentPeriodCache.period_id == period_id,
                    CurrentPeriodCache.platform == platform,
                )
            ).first()

    def write_cache_entry(
        self,
        entity_id: str,
        period_id: str,
        platform: str,
        payload_json: str,
        last_updated: datetime,
    ) -> CurrentPeriodCache:
        with self._session("write_cache_entry") as session:
            existing = session.exec(
                select(CurrentPeriodCache).where(
                    CurrentPeriodCache.entity_id == entity_id,
                    CurrentPeriodCache.period_id == period_id,
                    CurrentPeriodCache.platform == platform,
                )
            ).first()

            if existing:
                existing.payload_json = payload_json
                existing.last_updated = last_updated
                row = existing
            else:
                row = CurrentPeriodCache(
                    entity_id=entity_id,
                    period_id=period_id,
                    platform=platform,
                    payload_json=payload_json,
                    last_updated=last_updated,
                )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    # ── Entity Accounts ──

    def get_entity_account(
        self, entity_id: str, platform: str
    ) -> Optional[EntityAccount]:
        with self._session("get_entity_account") as session:
            return session.exec(
                select(EntityAccount).where(
                    EntityAccount.entity_id == entity_id,
                    EntityAccount.platform == platform,
                )
            ).first()

    def list_entity_accounts(
        self, platform: Optional[str] = None, active_only: bool = True
    ) -> List[EntityAccount]:
        with self._session("list_entity_accounts") as session:
            query = select(EntityAccount)
            if platform:
                query = query.where(EntityAccount.platform == platform)
            if active_only:
                query = query.where(EntityAccount.is_active == True)  # noqa: E712
            return list(session.exec(query).all())
