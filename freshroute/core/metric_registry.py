"""FRESHROUTE — Unified Metric Registry.

Defines the canonical set of metrics carried by an aggregate payload and how
each one is combined. Aggregation (historical daily fallback and live
line-item aggregation) reads this registry, so both paths sum the same keys
in the same order.
"""

from enum import Enum
from typing import Dict, List


class MetricType(str, Enum):
    """How a metric is categorised."""

    VOLUME = "volume"  # Raw counts: impressions, clicks, reach
    COST = "cost"  # Monetary: spend
    CONVERSION = "conversion"  # Funnel steps and reservations
    REVENUE = "revenue"  # reservation_value
    RATE = "rate"  # Recomputed from sums: ctr, cpc
    DERIVED = "derived"  # Recomputed from sums: roas, cost_per_reservation


class MetricDefinition:
    """Describes a single metric."""

    def __init__(
        self,
        name: str,
        metric_type: MetricType,
        unit: str = "",
        description: str = "",
        additive: bool = True,
    ):
        self.name = name
        self.metric_type = metric_type
        self.unit = unit
        self.description = description
        self.additive = additive

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.metric_type.value})>"


# ─────────────────────────────────────────────
# TOTALS — Top-line additive metrics
# ─────────────────────────────────────────────

TOTAL_METRICS: Dict[str, MetricDefinition] = {
    "spend": MetricDefinition(
        "spend", MetricType.COST, "currency", "Total amount spent"
    ),
    "impressions": MetricDefinition(
        "impressions", MetricType.VOLUME, "count", "Number of times ad was shown"
    ),
    "clicks": MetricDefinition("clicks", MetricType.VOLUME, "count", "Total clicks"),
    "conversions": MetricDefinition(
        "conversions", MetricType.CONVERSION, "count", "Total conversions"
    ),
}


# ─────────────────────────────────────────────
# CONVERSION SUB-METRICS — Additive funnel breakdown
# ─────────────────────────────────────────────

CONVERSION_METRICS: Dict[str, MetricDefinition] = {
    "click_to_call": MetricDefinition(
        "click_to_call", MetricType.CONVERSION, "count", "Phone call clicks"
    ),
    "email_contacts": MetricDefinition(
        "email_contacts", MetricType.CONVERSION, "count", "Email / lead contacts"
    ),
    "booking_step_1": MetricDefinition(
        "booking_step_1", MetricType.CONVERSION, "count", "Booking funnel: search"
    ),
    "booking_step_2": MetricDefinition(
        "booking_step_2", MetricType.CONVERSION, "count", "Booking funnel: view"
    ),
    "booking_step_3": MetricDefinition(
        "booking_step_3", MetricType.CONVERSION, "count", "Booking funnel: checkout"
    ),
    "reservations": MetricDefinition(
        "reservations", MetricType.CONVERSION, "count", "Completed reservations"
    ),
    "reservation_value": MetricDefinition(
        "reservation_value",
        MetricType.REVENUE,
        "currency",
        "Total reservation conversion value",
    ),
    # Summed like the other volumes, so a total over several days or campaigns
    # is an upper bound: users reached more than once are counted again.
    "reach": MetricDefinition(
        "reach",
        MetricType.VOLUME,
        "count",
        "Users who saw ad; upper bound when summed across rows",
    ),
}


# ─────────────────────────────────────────────
# RATES & DERIVED — Never summed, always recomputed
# ─────────────────────────────────────────────

RATE_METRICS: Dict[str, MetricDefinition] = {
    "ctr": MetricDefinition(
        "ctr", MetricType.RATE, "%", "clicks / impressions * 100", additive=False
    ),
    "cpc": MetricDefinition(
        "cpc", MetricType.RATE, "currency", "spend / clicks", additive=False
    ),
}

DERIVED_METRICS: Dict[str, MetricDefinition] = {
    "roas": MetricDefinition(
        "roas", MetricType.DERIVED, "ratio", "reservation_value / spend", additive=False
    ),
    "cost_per_reservation": MetricDefinition(
        "cost_per_reservation",
        MetricType.DERIVED,
        "currency",
        "spend / reservations",
        additive=False,
    ),
}


# ─────────────────────────────────────────────
# AGGREGATION KEYS
# ─────────────────────────────────────────────

# Summation order is fixed by these lists
ADDITIVE_METRICS: List[str] = [
    name for name, m in {**TOTAL_METRICS, **CONVERSION_METRICS}.items() if m.additive
]

# Sub-metrics whose all-zero state signals missing conversion data
FUNNEL_METRICS: List[str] = [
    name for name in CONVERSION_METRICS if name != "reach"
]

