"""Historical store lookups over summaries and daily records."""

from datetime import date

import pytest
from sqlmodel import SQLModel

from freshroute.core.errors import StoreError
from freshroute.models.enums import SummaryType
from freshroute.models.payload_models import DateWindow
from freshroute.stores.historical_store import HistoricalStore

from conftest import ENTITY, add_rows, make_daily, make_summary, sample_derived, sample_line_item


def window(start: str, end: str) -> DateWindow:
    return DateWindow(start=date.fromisoformat(start), end=date.fromisoformat(end))


@pytest.fixture
def store(storage):
    return HistoricalStore(storage, tolerance_days=3)


class TestWeekly:
    def test_exact_match(self, engine, store):
        add_rows(
            engine,
            make_summary("weekly", date(2024, 3, 4), total_spend=210.0, line_items=[sample_line_item()]),
        )
        payload = store.load(ENTITY, window("2024-03-04", "2024-03-10"))
        assert payload.totals.spend == 210.0
        assert payload.provenance.from_database
        assert payload.provenance.summary_type == SummaryType.WEEKLY
        assert len(payload.line_items) == 1
        assert payload.date_range_start == date(2024, 3, 4)

    def test_broadened_match_within_tolerance(self, engine, store):
        # Upstream week keyed on Sunday before the ISO Monday
        add_rows(engine, make_summary("weekly", date(2024, 3, 3), total_spend=99.0))
        payload = store.load(ENTITY, window("2024-03-04", "2024-03-10"))
        assert payload.totals.spend == 99.0

    def test_outside_tolerance_is_not_found(self, engine, store):
        add_rows(engine, make_summary("weekly", date(2024, 2, 26)))
        assert store.load(ENTITY, window("2024-03-04", "2024-03-10")) is None

    def test_other_entity_is_not_found(self, engine, store):
        add_rows(engine, make_summary("weekly", date(2024, 3, 4), entity_id="someone-else"))
        assert store.load(ENTITY, window("2024-03-04", "2024-03-10")) is None


class TestMonthly:
    def test_monthly_summary(self, engine, store):
        add_rows(engine, make_summary("monthly", date(2024, 2, 1), derived=sample_derived()))
        payload = store.load(ENTITY, window("2024-02-01", "2024-02-29"))
        assert payload.totals.spend == 500.0
        assert payload.derived_metrics.roas == 7.5
        assert not payload.provenance.aggregated_from_daily

    def test_missing_derived_block_stays_absent(self, engine, store):
        add_rows(engine, make_summary("monthly", date(2024, 2, 1)))
        payload = store.load(ENTITY, window("2024-02-01", "2024-02-29"))
        assert payload.derived_metrics is None

    def test_falls_back_to_daily_records(self, engine, store):
        add_rows(
            engine,
            make_daily(date(2024, 2, 1)),
            make_daily(date(2024, 2, 2)),
            make_daily(date(2024, 3, 1)),
        )
        payload = store.load(ENTITY, window("2024-02-01", "2024-02-29"))
        assert payload.provenance.aggregated_from_daily
        assert payload.totals.spend == 100.0
        assert payload.derived_metrics.reservations == 4.0
        assert [item.campaign_id for item in payload.line_items] == [
            "daily-2024-02-01",
            "daily-2024-02-02",
        ]

    def test_brand_new_entity_is_not_found(self, store):
        assert store.load("brand-new", window("2024-02-01", "2024-02-29")) is None


class TestFailures:
    def test_driver_error_becomes_store_error(self, engine, store):
        SQLModel.metadata.drop_all(engine)
        with pytest.raises(StoreError):
            store.load(ENTITY, window("2024-02-01", "2024-02-29"))

    def test_corrupt_line_items_become_store_error(self, engine, store):
        summary = make_summary("weekly", date(2024, 3, 4))
        summary.line_items_json = "{not json"
        add_rows(engine, summary)
        with pytest.raises(StoreError):
            store.load(ENTITY, window("2024-03-04", "2024-03-10"))
