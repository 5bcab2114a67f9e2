"""FRESHROUTE — Routing Decision Table.

The fallback order lives here as data: an ordered tuple of rules, first
match wins. The router never re-derives "is this current" on its own.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Tuple

from freshroute.models.enums import DataSource, PeriodClassification


class Action(str, Enum):
    QUERY_DATABASE = "query_database"
    LIVE_HISTORICAL = "live_historical"  # live fetch, never written back
    CACHE_FIRST = "cache_first"  # cache, else live + write-back
    LIVE_REFRESH = "live_refresh"  # live fetch + write-back


@dataclass(frozen=True)
class DecisionRule:
    classifications: FrozenSet[PeriodClassification]
    force_fresh: bool
    action: Action
    expected_source: DataSource

    def matches(self, classification: PeriodClassification, force_fresh: bool) -> bool:
        return classification in self.classifications and force_fresh == self.force_fresh


_PAST = frozenset({PeriodClassification.HISTORICAL, PeriodClassification.ALL_TIME})
_CURRENT = frozenset(
    {PeriodClassification.CURRENT_WEEK, PeriodClassification.CURRENT_MONTH}
)

DECISION_TABLE: Tuple[DecisionRule, ...] = (
    DecisionRule(_PAST, False, Action.QUERY_DATABASE, DataSource.DATABASE),
    DecisionRule(
        frozenset({PeriodClassification.HISTORICAL}),
        True,
        Action.LIVE_HISTORICAL,
        DataSource.LIVE_HISTORICAL,
    ),
    DecisionRule(_CURRENT, False, Action.CACHE_FIRST, DataSource.CACHE_FRESH),
    DecisionRule(_CURRENT, True, Action.LIVE_REFRESH, DataSource.LIVE_FRESH),
    # Upstream cannot serve beyond its lookback, so force is ignored here
    DecisionRule(
        frozenset({PeriodClassification.ALL_TIME}),
        True,
        Action.QUERY_DATABASE,
        DataSource.DATABASE,
    ),
)


def decide(
    classification: PeriodClassification,
    force_fresh: bool,
    table: Tuple[DecisionRule, ...] = DECISION_TABLE,
) -> DecisionRule:
    """Return the first rule matching the state."""
    for rule in table:
        if rule.matches(classification, force_fresh):
            return rule
    raise LookupError(
        f"No routing rule for {classification.value} (force_fresh={force_fresh})"
    )
