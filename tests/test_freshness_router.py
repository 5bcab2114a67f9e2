"""End-to-end routing: classification → decision table → stores/upstream → provenance."""

import asyncio
from datetime import date, timedelta
from unittest.mock import patch

import httpx
import pytest

from freshroute.analyzer.enrichment import EnrichmentService
from freshroute.analyzer.kpi_engine import aggregate_line_items
from freshroute.analyzer.upstream_fetcher import UpstreamFetcher
from freshroute.connectors.meta.provider import MetaProvider
from freshroute.connectors.meta.transformer import transform_insights
from freshroute.core.errors import StoreError, UpstreamError
from freshroute.models.enums import DataSource, PeriodClassification, Platform, ResponseStatus
from freshroute.models.payload_models import AggregatePayload, DateWindow, RouterRequest
from freshroute.router.decision_table import DECISION_TABLE, Action, decide
from freshroute.router.freshness_router import FreshnessRouter
from freshroute.stores.historical_store import HistoricalStore

from conftest import ENTITY, add_rows, make_account, make_daily, make_summary, sample_derived

CURRENT_MONTH = DateWindow(start=date(2024, 3, 1), end=date(2024, 3, 15))
CURRENT_WEEK = DateWindow(start=date(2024, 3, 11), end=date(2024, 3, 17))
LAST_WEEK = DateWindow(start=date(2024, 3, 4), end=date(2024, 3, 10))
LAST_MONTH = DateWindow(start=date(2024, 2, 1), end=date(2024, 2, 29))


def request(window: DateWindow, **kwargs) -> RouterRequest:
    return RouterRequest(entity_id=ENTITY, window=window, **kwargs)


def route(router, req: RouterRequest):
    return asyncio.run(router.route(req))


class TestDecisionTable:
    @pytest.mark.parametrize(
        "classification, force, action",
        [
            (PeriodClassification.HISTORICAL, False, Action.QUERY_DATABASE),
            (PeriodClassification.ALL_TIME, False, Action.QUERY_DATABASE),
            (PeriodClassification.HISTORICAL, True, Action.LIVE_HISTORICAL),
            (PeriodClassification.ALL_TIME, True, Action.QUERY_DATABASE),
            (PeriodClassification.CURRENT_MONTH, False, Action.CACHE_FIRST),
            (PeriodClassification.CURRENT_WEEK, False, Action.CACHE_FIRST),
            (PeriodClassification.CURRENT_MONTH, True, Action.LIVE_REFRESH),
            (PeriodClassification.CURRENT_WEEK, True, Action.LIVE_REFRESH),
        ],
    )
    def test_every_state_has_one_action(self, classification, force, action):
        assert decide(classification, force).action == action

    def test_table_is_total(self):
        for classification in PeriodClassification:
            for force in (False, True):
                matches = [r for r in DECISION_TABLE if r.matches(classification, force)]
                assert len(matches) == 1


class TestHistorical:
    def test_database_hit_makes_no_upstream_call(self, engine, router, provider):
        add_rows(engine, make_summary("weekly", LAST_WEEK.start, derived=sample_derived()))

        response = route(router, request(LAST_WEEK))

        assert response.success
        assert response.provenance.source == DataSource.DATABASE
        assert response.provenance.classification == PeriodClassification.HISTORICAL
        assert not response.provenance.bypassed
        assert provider.fetch_calls == []

    def test_cache_first_blocks_upstream_on_database_miss(self, router, provider):
        response = route(router, request(LAST_MONTH))

        assert not response.success
        assert response.status == ResponseStatus.NO_DATA
        assert response.error.kind == "no_data_available"
        assert response.payload is None
        assert provider.fetch_calls == []
        assert provider.validate_calls == []

    def test_fallthrough_when_cache_first_disabled(self, make_router, provider, cache_store):
        router = make_router(enforce_cache_first=False)

        response = route(router, request(LAST_MONTH))

        assert response.success
        assert response.provenance.source == DataSource.LIVE_HISTORICAL
        assert response.provenance.expected_source == DataSource.DATABASE
        assert response.provenance.bypassed
        assert len(provider.fetch_calls) == 1
        # Historical answers are never written back
        assert cache_store.get(ENTITY, "2024-02") is None

    def test_forced_historical_goes_live_without_write_back(self, router, provider, cache_store):
        response = route(router, request(LAST_MONTH, force_fresh=True))

        assert response.provenance.source == DataSource.LIVE_HISTORICAL
        assert not response.provenance.write_back
        assert not response.provenance.bypassed
        assert cache_store.get(ENTITY, "2024-02") is None

    def test_daily_fallback(self, engine, router):
        add_rows(engine, make_daily(date(2024, 2, 3)), make_daily(date(2024, 2, 4)))

        response = route(router, request(LAST_MONTH))

        assert response.payload.provenance.aggregated_from_daily
        assert response.payload.totals.spend == 100.0

    def test_summary_without_derived_block_is_enriched_once(self, engine, router):
        add_rows(engine, make_summary("monthly", LAST_MONTH.start))

        response = route(router, request(LAST_MONTH))

        # Enrichment looks up the same monthly summary, finds nothing, and stops
        assert response.success
        assert response.payload.derived_metrics is None
        assert response.payload.needs_enrichment
        assert "enrichment:unavailable" in response.provenance.trace

    def test_forced_all_time_still_uses_database(self, engine, router, provider):
        add_rows(engine, make_daily(date(2010, 5, 1)))
        window = DateWindow(start=date(2010, 5, 1), end=date(2010, 5, 31))

        response = route(router, request(window, force_fresh=True))

        assert response.provenance.classification == PeriodClassification.ALL_TIME
        assert response.provenance.source == DataSource.DATABASE
        assert provider.fetch_calls == []

    def test_lookback_exceeded_is_validation_error(self, router, provider):
        window = DateWindow(start=date(2020, 1, 1), end=date(2020, 1, 31))

        response = route(router, request(window, force_fresh=True))

        assert response.status == ResponseStatus.ERROR
        assert response.error.kind == "validation_error"
        assert provider.fetch_calls == []


class TestCurrentPeriod:
    def test_cache_miss_fetches_and_writes_back(self, router, provider, cache_store):
        response = route(router, request(CURRENT_MONTH))

        assert response.provenance.source == DataSource.LIVE_CACHED
        assert response.provenance.write_back
        assert response.provenance.is_current_period
        assert not response.provenance.bypassed
        assert len(provider.fetch_calls) == 1
        assert cache_store.get(ENTITY, "2024-03") is not None

    def test_cache_hit_makes_no_upstream_call(self, router, provider, cache_store):
        cache_store.put(ENTITY, "2024-03", AggregatePayload.zero(CURRENT_MONTH))
        provider.fetch_calls.clear()

        response = route(router, request(CURRENT_MONTH))

        assert response.provenance.source == DataSource.CACHE_FRESH
        assert response.provenance.cache_age_ms == 0
        assert not response.provenance.stale_data
        assert provider.fetch_calls == []

    def test_stale_entry_is_served_flagged(self, router, provider, cache_store, clock):
        cache_store.put(ENTITY, "2024-W11", AggregatePayload.zero(CURRENT_WEEK))
        clock.now = clock.now + timedelta(hours=4)

        response = route(router, request(CURRENT_WEEK))

        assert response.success
        assert response.provenance.source == DataSource.CACHE_STALE
        assert response.provenance.stale_data
        assert response.provenance.cache_age_ms == pytest.approx(4 * 3600 * 1000)
        assert provider.fetch_calls == []

    def test_force_fresh_refreshes_cache(self, router, provider, cache_store, clock):
        cache_store.put(ENTITY, "2024-W11", AggregatePayload.zero(CURRENT_WEEK))
        clock.now = clock.now + timedelta(hours=1)

        response = route(router, request(CURRENT_WEEK, force_fresh=True))

        assert response.provenance.source == DataSource.LIVE_FRESH
        assert response.provenance.write_back
        entry = cache_store.get(ENTITY, "2024-W11")
        assert entry.payload.totals.spend == 120.0
        assert cache_store.age(entry) == timedelta(0)

    def test_cache_read_error_degrades_to_zero_payload(self, router, provider, cache_store):
        with patch.object(cache_store, "get", side_effect=StoreError("db down", operation="read_cache_entry")):
            response = route(router, request(CURRENT_MONTH))

        assert response.success
        assert response.status == ResponseStatus.DEGRADED
        assert response.payload.error
        assert response.payload.totals.spend == 0
        assert response.payload.derived_metrics.roas == 0
        assert response.provenance.source == DataSource.CACHE_ERROR
        assert response.error.kind == "cache_read_error"
        assert provider.fetch_calls == []

    def test_write_back_failure_still_answers(self, router, cache_store):
        with patch.object(cache_store, "put", side_effect=StoreError("read-only", operation="write_cache_entry")):
            response = route(router, request(CURRENT_MONTH))

        assert response.success
        assert response.provenance.source == DataSource.LIVE_CACHED
        assert not response.provenance.write_back
        assert response.payload.totals.spend == 120.0


class TestUpstreamFailures:
    def test_invalid_credential_skips_fetch(self, router, provider):
        provider.valid = False

        response = route(router, request(CURRENT_MONTH))

        assert response.status == ResponseStatus.ERROR
        assert response.error.kind == "credential_invalid"
        assert provider.fetch_calls == []

    def test_transport_error_is_mapped(self, router, provider):
        provider.error = httpx.ConnectError("connection refused")

        response = route(router, request(CURRENT_MONTH))

        assert response.error.kind == "transport"

    def test_provider_error_kind_is_preserved(self, router, provider, cache_store):
        provider.error = UpstreamError("throttled", kind="rate_limited", status_code=429)

        response = route(router, request(CURRENT_WEEK))

        assert response.error.kind == "rate_limited"
        assert cache_store.get(ENTITY, "2024-W11") is None

    def test_missing_provider(self, router, provider):
        response = route(router, request(CURRENT_MONTH, platform=Platform.GOOGLE))

        assert response.error.kind == "provider_missing"
        assert provider.fetch_calls == []

    def test_historical_store_failure_is_store_error(self, router):
        with patch.object(router.historical_store, "load", side_effect=StoreError("boom")):
            response = route(router, request(LAST_MONTH))

        assert response.status == ResponseStatus.ERROR
        assert response.error.kind == "store_error"

    def test_unexpected_provider_exception_is_mapped(self, router, provider, cache_store):
        provider.error = ValueError("unexpected payload shape")

        response = route(router, request(CURRENT_MONTH))

        assert response.status == ResponseStatus.ERROR
        assert response.error.kind == "upstream"
        assert "ValueError" in response.error.message
        assert cache_store.get(ENTITY, "2024-03") is None


class TestSingleFlight:
    @pytest.fixture(autouse=True)
    def slow_provider(self, provider):
        """Make the fetch yield so concurrent routes overlap."""
        original = provider.fetch_line_items

        async def slow_fetch(entity_id, start, end):
            await asyncio.sleep(0.01)
            return await original(entity_id, start, end)

        provider.fetch_line_items = slow_fetch

    def test_concurrent_misses_share_one_fetch(self, router, provider):
        async def run():
            return await asyncio.gather(
                router.route(request(CURRENT_MONTH)),
                router.route(request(CURRENT_MONTH)),
                router.route(request(CURRENT_MONTH)),
            )

        responses = asyncio.run(run())

        assert len(provider.fetch_calls) == 1
        assert all(r.success for r in responses)
        joined = [r for r in responses if "single-flight:joined" in r.provenance.trace]
        assert len(joined) == 2

    def test_disabled_single_flight_fetches_each_time(self, make_router, provider):
        router = make_router(single_flight=False)

        async def run():
            return await asyncio.gather(
                router.route(request(CURRENT_MONTH)),
                router.route(request(CURRENT_MONTH)),
            )

        asyncio.run(run())
        assert len(provider.fetch_calls) == 2

    def test_cancelled_leader_fails_followers_cleanly(self, router, provider):
        async def run():
            leader = asyncio.create_task(router.route(request(CURRENT_MONTH)))
            await asyncio.sleep(0)
            follower = asyncio.create_task(router.route(request(CURRENT_MONTH)))
            await asyncio.sleep(0)
            leader.cancel()
            with pytest.raises(asyncio.CancelledError):
                await leader
            return await follower

        response = asyncio.run(run())

        assert len(provider.fetch_calls) == 1
        assert response.status == ResponseStatus.ERROR
        assert response.error.kind == "transport"
        assert "single-flight:joined" not in response.provenance.trace


INSIGHTS_URL = "https://graph.facebook.com/v21.0/act_123/insights"
PAGES = {
    None: {
        "data": [
            {"campaign_id": "1", "campaign_name": "A", "spend": "100.00", "impressions": "5000", "clicks": "120"},
            {"campaign_id": "2", "campaign_name": "B", "spend": "40.50", "impressions": "2500", "clicks": "30"},
        ],
        "paging": {"next": f"{INSIGHTS_URL}?after=p2&access_token=token-abc"},
    },
    "p2": {
        "data": [
            {"campaign_id": "3", "campaign_name": "C", "spend": "9.50", "impressions": "500", "clicks": "10"},
        ],
    },
}


class TestLiveMetaResponses:
    """Routes through the real Meta provider against a mocked Graph API."""

    @pytest.fixture
    def meta_router(self, engine, storage, cache_store, clock):
        def build(handler) -> FreshnessRouter:
            provider = MetaProvider(storage, transport=httpx.MockTransport(handler))
            return FreshnessRouter(
                historical_store=HistoricalStore(storage, tolerance_days=3),
                cache_store=cache_store,
                enrichment=EnrichmentService(storage, min_period_days=3),
                fetcher=UpstreamFetcher(
                    {Platform.META: provider}, cache_store, validate_credentials=False, clock=clock
                ),
                enforce_cache_first=True,
                clock=clock,
                lookback_months=37,
            )

        add_rows(engine, make_account())
        return build

    def test_paged_insights_are_counted_once(self, meta_router, cache_store):
        requests = []

        def handler(req):
            requests.append(req)
            return httpx.Response(200, json=PAGES[req.url.params.get("after")])

        response = route(meta_router(handler), request(CURRENT_MONTH))

        expected, _ = aggregate_line_items(
            transform_insights(PAGES[None]["data"] + PAGES["p2"]["data"])
        )
        assert response.success
        assert len(requests) == 2
        assert len(response.payload.line_items) == 3
        assert response.payload.totals.spend == pytest.approx(150.0)
        assert response.payload.totals.model_dump() == expected.model_dump()
        assert cache_store.get(ENTITY, "2024-03").payload.totals.spend == pytest.approx(150.0)

    def test_html_gateway_page_is_upstream_failure(self, meta_router, cache_store):
        def handler(req):
            return httpx.Response(
                200, text="<html>gateway</html>", headers={"content-type": "text/html"}
            )

        response = route(meta_router(handler), request(CURRENT_MONTH))

        assert response.status == ResponseStatus.ERROR
        assert response.error.kind == "upstream"
        assert cache_store.get(ENTITY, "2024-03") is None
