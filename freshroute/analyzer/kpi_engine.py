"""FRESHROUTE — KPI Engine.

The single aggregation routine shared by the historical daily-record fallback
and live line-item aggregation. Both paths must call ``aggregate_line_items``
so identical inputs produce bit-for-bit identical totals.

Rates are never summed: CTR, CPC, ROAS and cost per reservation are
recomputed from the summed additive metrics, with divide-by-zero → 0.
"""

from typing import Any, Dict, Iterable, Mapping, Sequence

from freshroute.core.metric_registry import ADDITIVE_METRICS
from freshroute.models.payload_models import DerivedMetrics, LineItem, Totals
from freshroute.core.logging import get_logger

logger = get_logger("analyzer.kpi")


def _safe_float(value: Any) -> float:
    """Safely convert a value to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


# ── Formulas ──


def compute_ctr(clicks: float, impressions: float) -> float:
    return (clicks / impressions * 100) if impressions > 0 else 0.0


def compute_cpc(spend: float, clicks: float) -> float:
    return (spend / clicks) if clicks > 0 else 0.0


def compute_roas(reservation_value: float, spend: float) -> float:
    return (reservation_value / spend) if spend > 0 else 0.0


def compute_cost_per_reservation(spend: float, reservations: float) -> float:
    return (spend / reservations) if reservations > 0 else 0.0


# ── Aggregation ──


def sum_additive(rows: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    """Sum every additive registry metric across rows, in registry order."""
    sums: Dict[str, float] = {name: 0.0 for name in ADDITIVE_METRICS}
    for row in rows:
        for name in ADDITIVE_METRICS:
            sums[name] += _safe_float(row.get(name, 0))
    return sums


def totals_from_sums(sums: Mapping[str, float]) -> Totals:
    spend = sums.get("spend", 0.0)
    impressions = sums.get("impressions", 0.0)
    clicks = sums.get("clicks", 0.0)
    return Totals(
        spend=spend,
        impressions=impressions,
        clicks=clicks,
        conversions=sums.get("conversions", 0.0),
        ctr=compute_ctr(clicks, impressions),
        cpc=compute_cpc(spend, clicks),
    )


def derived_from_sums(sums: Mapping[str, float]) -> DerivedMetrics:
    spend = sums.get("spend", 0.0)
    reservations = sums.get("reservations", 0.0)
    reservation_value = sums.get("reservation_value", 0.0)
    return DerivedMetrics(
        click_to_call=sums.get("click_to_call", 0.0),
        email_contacts=sums.get("email_contacts", 0.0),
        booking_step_1=sums.get("booking_step_1", 0.0),
        booking_step_2=sums.get("booking_step_2", 0.0),
        booking_step_3=sums.get("booking_step_3", 0.0),
        reservations=reservations,
        reservation_value=reservation_value,
        reach=sums.get("reach", 0.0),
        roas=compute_roas(reservation_value, spend),
        cost_per_reservation=compute_cost_per_reservation(spend, reservations),
    )


def aggregate_line_items(items: Sequence[LineItem]) -> tuple[Totals, DerivedMetrics]:
    """Aggregate line items into totals and the derived-metrics block."""
    sums = sum_additive(item.model_dump() for item in items)
    totals = totals_from_sums(sums)
    derived = derived_from_sums(sums)
    logger.debug(
        f"Aggregated {len(items)} line items: spend={totals.spend} clicks={totals.clicks}"
    )
    return totals, derived


def line_item_rates(item: LineItem) -> LineItem:
    """Recompute a line item's own CTR / CPC from its volumes."""
    return item.model_copy(
        update={
            "ctr": compute_ctr(item.clicks, item.impressions),
            "cpc": compute_cpc(item.spend, item.clicks),
        }
    )
