"""FRESHROUTE — Shared Enumerations."""

from enum import Enum


class Platform(str, Enum):
    """Upstream advertising platform."""

    META = "meta"
    GOOGLE = "google"


class PeriodClassification(str, Enum):
    """Where a window sits relative to the present."""

    CURRENT_MONTH = "current_month"
    CURRENT_WEEK = "current_week"
    HISTORICAL = "historical"
    ALL_TIME = "all_time"  # AllTimeOrLarge


class SummaryType(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class DataSource(str, Enum):
    """Where a response was actually answered from."""

    DATABASE = "database"
    LIVE_HISTORICAL = "live-historical"
    CACHE_FRESH = "cache-fresh"
    CACHE_STALE = "cache-stale"
    LIVE_CACHED = "live-cached"
    LIVE_FRESH = "live-fresh"
    CACHE_ERROR = "cache-error"
    NONE = "none"


class ResponseStatus(str, Enum):
    SUCCESS = "success"
    NO_DATA = "no_data"  # NoDataAvailable: cache-first blocked the fallback
    DEGRADED = "degraded"  # cache read failed, explicit zero payload
    ERROR = "error"
