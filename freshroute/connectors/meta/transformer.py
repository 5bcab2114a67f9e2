"""FRESHROUTE — Meta Raw → Line Item Transformer.

Converts raw Meta campaign insight rows into LineItem records, parsing the
``actions`` / ``action_values`` arrays into conversion sub-metrics.

Meta reports the same event under several action types (omni_*, pixel,
base name). The omni_* variant is authoritative; the pixel variant is only
used when omni_* is absent, so events are never double counted.
"""

from typing import Any, Dict, List

from freshroute.analyzer.kpi_engine import line_item_rates
from freshroute.models.payload_models import LineItem
from freshroute.core.logging import get_logger

logger = get_logger("meta.transformer")

# sub-metric → (preferred action type, fallback action type)
FUNNEL_ACTIONS: Dict[str, tuple[str, str]] = {
    "booking_step_1": ("omni_search", "offsite_conversion.fb_pixel_search"),
    "booking_step_2": ("omni_view_content", "offsite_conversion.fb_pixel_view_content"),
    "booking_step_3": (
        "omni_initiated_checkout",
        "offsite_conversion.fb_pixel_initiate_checkout",
    ),
    "reservations": ("omni_purchase", "offsite_conversion.fb_pixel_purchase"),
}
RESERVATION_VALUE_ACTIONS = ("omni_purchase", "offsite_conversion.fb_pixel_purchase")
CALL_ACTIONS = ("click_to_call_call_confirm",)
EMAIL_ACTIONS = ("lead", "onsite_conversion.lead_grouped")

# Funnel ordering used for inversion warnings
FUNNEL_ORDER = ["booking_step_1", "booking_step_2", "booking_step_3", "reservations"]


def _safe_float(value: Any) -> float:
    """Safely convert a value to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _action_map(rows: Any) -> Dict[str, float]:
    """Sum values per lower-cased action type, skipping invalid entries."""
    totals: Dict[str, float] = {}
    if not isinstance(rows, list):
        return totals
    for action in rows:
        action_type = str(action.get("action_type", "")).lower()
        value = _safe_float(action.get("value", 0))
        if value < 0:
            continue
        totals[action_type] = totals.get(action_type, 0.0) + value
    return totals


def _pick(actions: Dict[str, float], preferred: str, fallback: str) -> float:
    if preferred in actions:
        return actions[preferred]
    return actions.get(fallback, 0.0)


def parse_actions(
    actions: Any,
    action_values: Any,
    campaign_name: str = "",
) -> Dict[str, float]:
    """Parse Meta action arrays into conversion sub-metrics."""
    if actions is not None and not isinstance(actions, list):
        logger.warning(f"actions is not a list for campaign '{campaign_name or 'unknown'}'")
    counts = _action_map(actions)
    values = _action_map(action_values)

    metrics: Dict[str, float] = {
        "click_to_call": sum(counts.get(a, 0.0) for a in CALL_ACTIONS),
        "email_contacts": sum(counts.get(a, 0.0) for a in EMAIL_ACTIONS),
    }
    for name, (preferred, fallback) in FUNNEL_ACTIONS.items():
        metrics[name] = _pick(counts, preferred, fallback)
    metrics["reservation_value"] = _pick(values, *RESERVATION_VALUE_ACTIONS)

    for upper, lower in zip(FUNNEL_ORDER, FUNNEL_ORDER[1:]):
        if metrics[lower] > metrics[upper] > 0:
            logger.warning(
                f"Funnel inversion for campaign '{campaign_name or 'unknown'}': "
                f"{lower} ({metrics[lower]}) > {upper} ({metrics[upper]})"
            )
    return metrics


def insight_row_to_line_item(row: Dict[str, Any]) -> LineItem:
    """Transform a single campaign insight row."""
    campaign_name = row.get("campaign_name", "")
    conversions_raw = row.get("conversions")
    metrics = parse_actions(row.get("actions"), row.get("action_values"), campaign_name)

    if isinstance(conversions_raw, list):
        conversions = sum(_action_map(conversions_raw).values())
    elif conversions_raw is not None:
        conversions = _safe_float(conversions_raw)
    else:
        conversions = metrics["reservations"]

    item = LineItem(
        campaign_id=row.get("campaign_id", ""),
        campaign_name=campaign_name,
        date_start=row.get("date_start", ""),
        date_stop=row.get("date_stop", ""),
        spend=_safe_float(row.get("spend")),
        impressions=_safe_float(row.get("impressions")),
        clicks=_safe_float(row.get("clicks")),
        conversions=conversions,
        reach=_safe_float(row.get("reach")),
        **metrics,
    )
    # Meta's own ctr/cpc are rounded; recompute from volumes
    return line_item_rates(item)


def transform_insights(raw_data: List[Dict[str, Any]]) -> List[LineItem]:
    """Transform raw Meta insight rows into LineItem records."""
    items = [insight_row_to_line_item(row) for row in raw_data]
    logger.info(f"Transformed {len(items)} campaign rows into line items")
    return items
