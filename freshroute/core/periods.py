"""FRESHROUTE — Period Classifier.

Pure date logic: classifies a request window relative to "now" and derives
the canonical period identifiers used as cache and summary keys.
No I/O, no hidden state.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import NamedTuple, Optional, Union

from freshroute.config import settings
from freshroute.models.enums import PeriodClassification, SummaryType
from freshroute.models.payload_models import DateWindow


class CanonicalPeriod(NamedTuple):
    """Summary granularity + key date + period id for a window."""

    summary_type: SummaryType
    summary_date: date
    period_id: str


CURRENT_PERIODS = frozenset(
    {PeriodClassification.CURRENT_MONTH, PeriodClassification.CURRENT_WEEK}
)

ALL_TIME_HINTS = frozenset({"all-time", "all_time", "alltime"})

# A calendar week can straddle a month boundary in upstream's accounting
WEEKLY_SHAPE_MAX_DAYS = 8


def _as_date(now: Union[date, datetime]) -> date:
    return now.date() if isinstance(now, datetime) else now


# ── Calendar Helpers ──


def iso_week_start(d: date) -> date:
    """Monday of the ISO week containing ``d``."""
    return d - timedelta(days=d.weekday())


def iso_week_end(d: date) -> date:
    """Sunday of the ISO week containing ``d``."""
    return iso_week_start(d) + timedelta(days=6)


def month_period_id(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def week_period_id(d: date) -> str:
    """ISO week id, e.g. 2024-W11 (uses the ISO year, not the calendar year)."""
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def subtract_months(d: date, months: int) -> date:
    """Shift ``d`` back by whole months, clamping the day to the target month."""
    month_index = d.year * 12 + (d.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


# ── Classification ──


def is_all_time(
    window: DateWindow,
    hint: Optional[str] = None,
    epoch_year: Optional[int] = None,
    large_window_days: Optional[int] = None,
) -> bool:
    """True for explicit all-time requests and windows too old or too long."""
    epoch_year = settings.all_time_epoch_year if epoch_year is None else epoch_year
    large_window_days = (
        settings.large_window_days if large_window_days is None else large_window_days
    )
    if hint and hint.strip().lower() in ALL_TIME_HINTS:
        return True
    return window.start.year <= epoch_year or window.length_days > large_window_days


def is_current_week(window: DateWindow, now: Union[date, datetime]) -> bool:
    today = _as_date(now)
    return (
        window.length_days == 7
        and window.start.weekday() == 0
        and window.start == iso_week_start(today)
        and window.end == iso_week_end(today)
        and window.end >= today
    )


def is_current_month(window: DateWindow, now: Union[date, datetime]) -> bool:
    today = _as_date(now)
    return (
        window.start.year == today.year
        and window.start.month == today.month
        and window.end.year == today.year
        and window.end.month == today.month
        and window.end >= today
    )


def classify(
    window: DateWindow,
    now: Union[date, datetime],
    hint: Optional[str] = None,
    epoch_year: Optional[int] = None,
    large_window_days: Optional[int] = None,
) -> PeriodClassification:
    """Classify ``window`` relative to ``now``.

    Order: all-time/large first, then the current ISO week (weekly-shaped
    windows only), then the current month, else historical. A window that
    ends before today is never current, even inside the current month.
    """
    if is_all_time(window, hint, epoch_year, large_window_days):
        return PeriodClassification.ALL_TIME

    if window.length_days <= WEEKLY_SHAPE_MAX_DAYS and is_current_week(window, now):
        return PeriodClassification.CURRENT_WEEK

    if is_current_month(window, now):
        return PeriodClassification.CURRENT_MONTH

    return PeriodClassification.HISTORICAL


def is_current(classification: PeriodClassification) -> bool:
    return classification in CURRENT_PERIODS


# ── Period Keys ──


def canonical_period(window: DateWindow) -> CanonicalPeriod:
    """Summary granularity and key for a window (<= 7 days → weekly)."""
    if window.length_days <= 7:
        return CanonicalPeriod(
            SummaryType.WEEKLY,
            iso_week_start(window.start),
            week_period_id(window.start),
        )
    return CanonicalPeriod(
        SummaryType.MONTHLY,
        window.start.replace(day=1),
        month_period_id(window.start),
    )


def period_id_for(window: DateWindow, classification: PeriodClassification) -> str:
    """Cache key for a classified window."""
    if classification == PeriodClassification.CURRENT_WEEK:
        return week_period_id(window.start)
    if classification == PeriodClassification.CURRENT_MONTH:
        return month_period_id(window.start)
    return canonical_period(window).period_id


def exceeds_lookback(
    window: DateWindow,
    now: Union[date, datetime],
    months: Optional[int] = None,
) -> bool:
    """True when the window starts before upstream's supported history."""
    months = settings.upstream_lookback_months if months is None else months
    return window.start < subtract_months(_as_date(now), months)


def current_week_window(now: Union[date, datetime]) -> DateWindow:
    today = _as_date(now)
    return DateWindow(start=iso_week_start(today), end=iso_week_end(today))


def current_month_window(now: Union[date, datetime]) -> DateWindow:
    """Month-to-date window ending today."""
    today = _as_date(now)
    return DateWindow(start=today.replace(day=1), end=today)
