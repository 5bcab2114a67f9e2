"""Shared fixtures: in-memory SQLite storage, a recording fake provider and a fixed clock."""

import json
import os
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import pytest

# Configure before freshroute.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from freshroute.analyzer.enrichment import EnrichmentService  # noqa: E402
from freshroute.analyzer.upstream_fetcher import UpstreamFetcher  # noqa: E402
from freshroute.connectors.base_provider import UpstreamProvider  # noqa: E402
from freshroute.database import build_engine, init_db  # noqa: E402
from freshroute.models.enums import Platform  # noqa: E402
from freshroute.models.payload_models import DerivedMetrics, LineItem  # noqa: E402
from freshroute.models.storage_models import (  # noqa: E402
    CampaignSummary,
    DailyKpiRecord,
    EntityAccount,
)
from freshroute.router.freshness_router import FreshnessRouter  # noqa: E402
from freshroute.router.single_flight import SingleFlight  # noqa: E402
from freshroute.stores.cache_store import SmartCacheStore  # noqa: E402
from freshroute.stores.historical_store import HistoricalStore  # noqa: E402
from freshroute.stores.sql_storage import SQLStorage  # noqa: E402

from sqlmodel import Session  # noqa: E402

# Friday 2024-03-15 12:00 UTC; ISO week 2024-W11 runs 03-11 → 03-17
NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
ENTITY = "client-42"


class FixedClock:
    """Callable clock that tests can advance."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeProvider(UpstreamProvider):
    """Upstream stand-in that records every call."""

    def __init__(self, line_items: Optional[List[LineItem]] = None, valid: bool = True):
        self.line_items = line_items if line_items is not None else [sample_line_item()]
        self.valid = valid
        self.fetch_calls: List[tuple] = []
        self.validate_calls: List[str] = []
        self.error: Optional[Exception] = None

    async def fetch_line_items(self, entity_id, start, end):
        self.fetch_calls.append((entity_id, start, end))
        if self.error is not None:
            raise self.error
        return list(self.line_items)

    async def validate_credential(self, entity_id):
        self.validate_calls.append(entity_id)
        return self.valid

    async def describe_credential(self, entity_id):
        valid = await self.validate_credential(entity_id)
        return {"valid": valid, "expires_at": 0, "scopes": ["ads_read"], "app_id": "test"}


def sample_line_item(**overrides) -> LineItem:
    values = dict(
        campaign_id="c-1",
        campaign_name="Spring Promo",
        spend=120.0,
        impressions=10000.0,
        clicks=250.0,
        conversions=6.0,
        booking_step_1=40.0,
        booking_step_2=20.0,
        booking_step_3=10.0,
        reservations=6.0,
        reservation_value=900.0,
        reach=8000.0,
    )
    values.update(overrides)
    return LineItem(**values)


def sample_derived(**overrides) -> DerivedMetrics:
    values = dict(
        click_to_call=3.0,
        email_contacts=2.0,
        booking_step_1=40.0,
        booking_step_2=20.0,
        booking_step_3=10.0,
        reservations=6.0,
        reservation_value=900.0,
        reach=8000.0,
        roas=7.5,
        cost_per_reservation=20.0,
    )
    values.update(overrides)
    return DerivedMetrics(**values)


# ── Storage ──


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite:///:memory:")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def storage(engine):
    return SQLStorage(engine)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def cache_store(storage, clock):
    return SmartCacheStore(storage, clock=clock)


@pytest.fixture
def make_router(storage, cache_store, provider, clock):
    """Factory so tests can flip cache-first enforcement or single-flight."""

    def _make(enforce_cache_first: bool = True, single_flight: bool = True) -> FreshnessRouter:
        return FreshnessRouter(
            historical_store=HistoricalStore(storage, tolerance_days=3),
            cache_store=cache_store,
            enrichment=EnrichmentService(storage, min_period_days=3),
            fetcher=UpstreamFetcher({Platform.META: provider}, cache_store, clock=clock),
            enforce_cache_first=enforce_cache_first,
            single_flight=SingleFlight() if single_flight else None,
            clock=clock,
            lookback_months=37,
        )

    return _make


@pytest.fixture
def router(make_router):
    return make_router()


# ── Seed Helpers ──


def add_rows(engine, *rows) -> None:
    with Session(engine, expire_on_commit=False) as session:
        for row in rows:
            session.add(row)
        session.commit()


def make_summary(
    summary_type: str,
    summary_date: date,
    entity_id: str = ENTITY,
    derived: Optional[DerivedMetrics] = None,
    line_items: Optional[List[LineItem]] = None,
    **totals: float,
) -> CampaignSummary:
    values: Dict[str, float] = dict(
        total_spend=500.0,
        total_impressions=40000.0,
        total_clicks=800.0,
        total_conversions=12.0,
        average_ctr=2.0,
        average_cpc=0.625,
    )
    values.update(totals)
    return CampaignSummary(
        entity_id=entity_id,
        platform="meta",
        summary_type=summary_type,
        summary_date=summary_date,
        derived_metrics_json=derived.model_dump_json() if derived else None,
        line_items_json=json.dumps([item.model_dump() for item in (line_items or [])]),
        **values,
    )


def make_daily(record_date: date, entity_id: str = ENTITY, **metrics: float) -> DailyKpiRecord:
    values: Dict[str, float] = dict(
        total_spend=50.0,
        total_impressions=4000.0,
        total_clicks=100.0,
        total_conversions=2.0,
        reservations=2.0,
        reservation_value=300.0,
    )
    values.update(metrics)
    return DailyKpiRecord(entity_id=entity_id, platform="meta", record_date=record_date, **values)


def make_account(entity_id: str = ENTITY, **overrides) -> EntityAccount:
    values = dict(
        entity_id=entity_id,
        platform="meta",
        name="Client 42",
        ad_account_id="act_123",
        access_token="token-abc",
        is_active=True,
    )
    values.update(overrides)
    return EntityAccount(**values)
