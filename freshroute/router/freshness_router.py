"""FRESHROUTE — Freshness Router.

Per request:
  validate → classify → decision table → {cache | database | upstream}
  → optional enrichment → response with provenance

Policy: never silently hit the rate-limited upstream when the cache or the
historical store is the expected source. With cache-first enforcement a
database miss is a NoDataAvailable response, and a stale cache entry is
served flagged rather than refreshed. There is no retry loop; callers retry
with ``force_fresh=True``.
"""

import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Mapping, Optional

from freshroute.analyzer.enrichment import EnrichmentService
from freshroute.analyzer.upstream_fetcher import UpstreamFetcher
from freshroute.config import settings
from freshroute.connectors.base_provider import UpstreamProvider
from freshroute.core.errors import StoreError, UpstreamError, WindowValidationError
from freshroute.core.logging import get_logger
from freshroute.core.periods import (
    canonical_period,
    classify,
    exceeds_lookback,
    is_current,
    period_id_for,
)
from freshroute.models.enums import (
    DataSource,
    PeriodClassification,
    Platform,
    ResponseStatus,
)
from freshroute.models.payload_models import (
    AggregatePayload,
    ErrorInfo,
    Provenance,
    RouterRequest,
    RouterResponse,
)
from freshroute.router.decision_table import Action, DecisionRule, decide
from freshroute.router.single_flight import SingleFlight
from freshroute.stores.cache_store import SmartCacheStore
from freshroute.stores.historical_store import HistoricalStore
from freshroute.stores.storage import StorageBackend

logger = get_logger("router")

LIVE_SOURCES = frozenset(
    {
        DataSource.LIVE_HISTORICAL,
        DataSource.LIVE_CACHED,
        DataSource.LIVE_FRESH,
    }
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _RouteContext:
    """Mutable state for one routed request."""

    def __init__(
        self,
        request: RouterRequest,
        now: datetime,
        rule: DecisionRule,
        period_id: str,
        provenance: Provenance,
    ):
        self.request = request
        self.now = now
        self.rule = rule
        self.period_id = period_id
        self.provenance = provenance

    def step(self, message: str) -> None:
        self.provenance.trace.append(message)


class FreshnessRouter:
    """Answers analytics requests from the cheapest correct source."""

    def __init__(
        self,
        historical_store: HistoricalStore,
        cache_store: SmartCacheStore,
        enrichment: EnrichmentService,
        fetcher: UpstreamFetcher,
        enforce_cache_first: Optional[bool] = None,
        single_flight: Optional[SingleFlight] = None,
        clock: Callable[[], datetime] = _utc_now,
        lookback_months: Optional[int] = None,
    ):
        self.historical_store = historical_store
        self.cache_store = cache_store
        self.enrichment = enrichment
        self.fetcher = fetcher
        self.enforce_cache_first = (
            settings.enforce_cache_first
            if enforce_cache_first is None
            else enforce_cache_first
        )
        self.single_flight = single_flight
        self.clock = clock
        self.lookback_months = (
            settings.upstream_lookback_months
            if lookback_months is None
            else lookback_months
        )
        self._handlers: Dict[
            Action, Callable[[_RouteContext], Awaitable[RouterResponse]]
        ] = {
            Action.QUERY_DATABASE: self._query_database,
            Action.LIVE_HISTORICAL: self._live_historical,
            Action.CACHE_FIRST: self._cache_first,
            Action.LIVE_REFRESH: self._live_refresh,
        }

    # ── Entry Point ──

    async def route(self, request: RouterRequest) -> RouterResponse:
        """Route one request. Never raises for store, upstream or validation failures."""
        started = time.perf_counter()
        now = self.clock()
        window = request.window

        classification = classify(window, now, request.hint)
        period_id = period_id_for(window, classification)
        rule = decide(classification, request.force_fresh)
        provenance = Provenance(
            expected_source=rule.expected_source,
            cache_first_enforced=self.enforce_cache_first,
            is_current_period=is_current(classification),
            classification=classification,
            period_id=period_id,
        )
        ctx = _RouteContext(request, now, rule, period_id, provenance)
        ctx.step(f"classified:{classification.value}")
        ctx.step(f"action:{rule.action.value}")

        try:
            self._validate(ctx, classification)
            response = await self._handlers[rule.action](ctx)
        except WindowValidationError as e:
            response = self._failure(ctx, e.kind, str(e))
        except UpstreamError as e:
            logger.error(
                f"Upstream failure for {request.entity_id}: {e}",
                extra={"entity_id": request.entity_id, "period_id": period_id},
            )
            response = self._failure(ctx, e.kind, str(e))
        except StoreError as e:
            response = self._failure(ctx, e.kind, str(e))
        except Exception as e:
            # Providers outside the taxonomy (decode bugs, client libraries)
            logger.exception(
                f"Unexpected {e.__class__.__name__} routing {request.entity_id}: {e}",
                extra={"entity_id": request.entity_id, "period_id": period_id},
            )
            response = self._failure(
                ctx, UpstreamError.kind, f"{e.__class__.__name__}: {e}"
            )

        response.provenance.response_time_ms = round(
            (time.perf_counter() - started) * 1000, 3
        )
        self._log_decision(ctx, response)
        return response

    # ── Validation ──

    def _validate(self, ctx: _RouteContext, classification: PeriodClassification) -> None:
        """Reject windows upstream cannot serve; all-time requests are exempt."""
        window = ctx.request.window
        if classification == PeriodClassification.ALL_TIME:
            return
        if exceeds_lookback(window, ctx.now, self.lookback_months):
            raise WindowValidationError(
                f"Window starting {window.start} exceeds the "
                f"{self.lookback_months}-month upstream lookback"
            )

    # ── Handlers ──

    async def _query_database(self, ctx: _RouteContext) -> RouterResponse:
        req = ctx.request
        payload = self.historical_store.load(req.entity_id, req.window, req.platform)
        if payload is not None:
            ctx.step("database:hit")
            return self._success(ctx, self._maybe_enrich(ctx, payload), DataSource.DATABASE)

        ctx.step("database:miss")
        if self.enforce_cache_first:
            ctx.step("cache-first:blocked-upstream")
            return RouterResponse(
                success=False,
                status=ResponseStatus.NO_DATA,
                provenance=ctx.provenance,
                error=ErrorInfo(
                    kind="no_data_available",
                    message=(
                        f"No stored data for {req.entity_id} "
                        f"{req.window.start} → {req.window.end}"
                    ),
                ),
            )

        ctx.step("cache-first:disabled-fallthrough")
        payload = await self.fetcher.fetch_and_aggregate(
            req.entity_id, req.window, req.platform
        )
        return self._success(ctx, payload, DataSource.LIVE_HISTORICAL)

    async def _live_historical(self, ctx: _RouteContext) -> RouterResponse:
        req = ctx.request
        payload = await self.fetcher.fetch_and_aggregate(
            req.entity_id, req.window, req.platform
        )
        ctx.step("upstream:fetched")
        return self._success(ctx, payload, DataSource.LIVE_HISTORICAL)

    async def _cache_first(self, ctx: _RouteContext) -> RouterResponse:
        req = ctx.request
        try:
            entry = self.cache_store.get(req.entity_id, ctx.period_id, req.platform)
        except StoreError as e:
            # Dashboards get an explicit empty payload instead of a failure
            logger.error(
                f"Cache read failed for {req.entity_id} {ctx.period_id}: {e}",
                extra={"entity_id": req.entity_id, "period_id": ctx.period_id},
            )
            ctx.step("cache:read-error")
            return self._degraded(ctx, str(e))

        if entry is not None:
            age = self.cache_store.age(entry, ctx.now)
            fresh = self.cache_store.is_fresh(entry, ctx.now)
            ctx.provenance.cache_age_ms = age.total_seconds() * 1000
            ctx.provenance.stale_data = not fresh
            ctx.step("cache:fresh" if fresh else "cache:stale")
            payload = self._maybe_enrich(ctx, entry.payload)
            source = DataSource.CACHE_FRESH if fresh else DataSource.CACHE_STALE
            return self._success(ctx, payload, source)

        ctx.step("cache:miss")
        payload = await self._fetch_and_cache(ctx, coalesce=True)
        return self._success(ctx, payload, DataSource.LIVE_CACHED)

    async def _live_refresh(self, ctx: _RouteContext) -> RouterResponse:
        payload = await self._fetch_and_cache(ctx, coalesce=False)
        return self._success(ctx, payload, DataSource.LIVE_FRESH)

    # ── Live + Write-back ──

    async def _fetch_and_cache(
        self, ctx: _RouteContext, coalesce: bool
    ) -> AggregatePayload:
        """Fetch upstream and write back; only reachable for current periods."""
        req = ctx.request

        async def fetch_then_write() -> tuple[AggregatePayload, bool]:
            payload = await self.fetcher.fetch_and_aggregate(
                req.entity_id, req.window, req.platform
            )
            return payload, self._write_back(ctx, payload)

        if coalesce and self.single_flight is not None:
            key = (req.entity_id, ctx.period_id, Platform(req.platform).value)
            (payload, written), shared = await self.single_flight.do(
                key, fetch_then_write
            )
            if shared:
                ctx.step("single-flight:joined")
        else:
            payload, written = await fetch_then_write()

        ctx.step("upstream:fetched")
        ctx.step("write-back:ok" if written else "write-back:failed")
        ctx.provenance.write_back = written
        return payload

    def _write_back(self, ctx: _RouteContext, payload: AggregatePayload) -> bool:
        req = ctx.request
        try:
            self.fetcher.write_back(req.entity_id, ctx.period_id, payload, req.platform)
            return True
        except StoreError as e:
            logger.error(
                f"Cache write-back failed for {req.entity_id} {ctx.period_id}: {e}",
                extra={"entity_id": req.entity_id, "period_id": ctx.period_id},
            )
            return False

    # ── Enrichment ──

    def _maybe_enrich(
        self, ctx: _RouteContext, payload: AggregatePayload
    ) -> AggregatePayload:
        """One best-effort enrichment pass; failures leave the payload flagged."""
        if not self.enrichment.needs_enrichment(payload, ctx.now.date()):
            return payload
        req = ctx.request
        try:
            enriched = self.enrichment.enrich(
                payload, req.entity_id, canonical_period(req.window), req.platform
            )
        except StoreError as e:
            logger.warning(
                f"Enrichment lookup failed for {req.entity_id}: {e}",
                extra={"entity_id": req.entity_id, "period_id": ctx.period_id},
            )
            ctx.step("enrichment:error")
            return payload.model_copy(update={"needs_enrichment": True})
        ctx.step(
            "enrichment:unavailable" if enriched.needs_enrichment else "enrichment:applied"
        )
        return enriched

    # ── Response Builders ──

    def _success(
        self, ctx: _RouteContext, payload: AggregatePayload, source: DataSource
    ) -> RouterResponse:
        ctx.provenance.source = source
        ctx.provenance.actual_source = source
        # Upstream answered where cache/database was expected and available
        ctx.provenance.bypassed = (
            source in LIVE_SOURCES
            and ctx.rule.expected_source not in LIVE_SOURCES
            and source != DataSource.LIVE_CACHED
        )
        return RouterResponse(
            success=True,
            status=ResponseStatus.SUCCESS,
            payload=payload,
            provenance=ctx.provenance,
        )

    def _degraded(self, ctx: _RouteContext, message: str) -> RouterResponse:
        ctx.provenance.source = DataSource.CACHE_ERROR
        ctx.provenance.actual_source = DataSource.CACHE_ERROR
        return RouterResponse(
            success=True,
            status=ResponseStatus.DEGRADED,
            payload=AggregatePayload.zero(ctx.request.window, error=True),
            provenance=ctx.provenance,
            error=ErrorInfo(kind="cache_read_error", message=message),
        )

    def _failure(self, ctx: _RouteContext, kind: str, message: str) -> RouterResponse:
        ctx.step(f"error:{kind}")
        return RouterResponse(
            success=False,
            status=ResponseStatus.ERROR,
            provenance=ctx.provenance,
            error=ErrorInfo(kind=kind, message=message),
        )

    def _log_decision(self, ctx: _RouteContext, response: RouterResponse) -> None:
        prov = response.provenance
        extra = {
            "entity_id": ctx.request.entity_id,
            "period_id": ctx.period_id,
            "platform": Platform(ctx.request.platform).value,
            "classification": prov.classification.value if prov.classification else None,
            "source": prov.source.value,
            "duration_ms": prov.response_time_ms,
        }
        message = (
            f"Routed {ctx.request.entity_id} {ctx.request.window.start} → "
            f"{ctx.request.window.end} via {ctx.rule.action.value}: "
            f"{response.status.value} from {prov.source.value}"
        )
        if prov.bypassed:
            logger.warning(
                f"{message} (expected {prov.expected_source.value}; upstream bypass)",
                extra=extra,
            )
        else:
            logger.info(message, extra=extra)


def create_freshness_router(
    storage: StorageBackend,
    providers: Mapping[Platform, UpstreamProvider],
    clock: Callable[[], datetime] = _utc_now,
) -> FreshnessRouter:
    """Wire the stores, enrichment and fetcher around one storage backend."""
    cache_store = SmartCacheStore(storage, clock=clock)
    return FreshnessRouter(
        historical_store=HistoricalStore(storage),
        cache_store=cache_store,
        enrichment=EnrichmentService(storage),
        fetcher=UpstreamFetcher(providers, cache_store, clock=clock),
        single_flight=SingleFlight() if settings.single_flight_enabled else None,
        clock=clock,
    )
