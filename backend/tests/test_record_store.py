"""
Record Store Tests

The same behavioural checks run against SqlRecordStore (in-memory SQLite)
and InMemoryRecordStore.
"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

import cashflow_models
import database
from analytics_errors import ExternalFetchError, ValidationError
from record_models import ItemStatus, SeasonalPattern
from record_store import InMemoryRecordStore, RecordStore, SqlRecordStore
from conftest import make_forecast, make_payable, make_receivable, make_snapshot


pytestmark = pytest.mark.integration


@pytest.fixture(params=["sql", "memory"])
def store(request, session_factory, sample_organization):
    if request.param == "sql":
        return SqlRecordStore(session_factory)
    return InMemoryRecordStore()


class TestReceivablesAndPayables:

    def test_round_trip_preserves_fields(self, store):
        original = make_receivable(
            "INV-1", date(2024, 5, 1), "1250.50", "250.50", status="partial",
            customer="Globex", payment_date=date(2024, 5, 3),
        )
        store.save_receivable(original)

        [loaded] = store.get_receivables(1)
        assert loaded.counterpart_name == "Globex"
        assert loaded.amount_due == Decimal("1250.50")
        assert loaded.outstanding == Decimal("1000.00")
        assert loaded.status is ItemStatus.PARTIAL
        assert loaded.payment_date == date(2024, 5, 3)

    def test_due_date_filter_and_order(self, store):
        for ref, due in [("B", date(2024, 3, 1)), ("A", date(2024, 1, 1)), ("C", date(2024, 5, 1))]:
            store.save_payable(make_payable(ref, due, "10"))

        assert [p.reference_number for p in store.get_payables(1)] == ["A", "B", "C"]
        assert [p.reference_number for p in store.get_payables(1, start=date(2024, 2, 1))] == ["B", "C"]
        assert [p.reference_number for p in store.get_payables(1, end=date(2024, 3, 1))] == ["A", "B"]

    def test_saving_same_id_replaces(self, store):
        store.save_receivable(make_receivable("INV-1", date(2024, 5, 1), "100"))
        store.save_receivable(make_receivable("INV-1", date(2024, 5, 1), "100", "100", status="paid"))
        [loaded] = store.get_receivables(1)
        assert loaded.status is ItemStatus.PAID

    def test_organizations_are_separate(self, store):
        store.save_receivable(make_receivable("INV-1", date(2024, 5, 1), "100", org=2))
        assert store.get_receivables(1) == []


class TestSnapshots:

    def test_latest_snapshot_on_or_before(self, store):
        store.save_snapshot(make_snapshot(date(2024, 3, 31), "1000", "400", "100"))
        store.save_snapshot(make_snapshot(date(2024, 6, 30), "1200", "500", "150"))

        assert store.get_latest_snapshot(1, date(2024, 6, 29)).snapshot_date == date(2024, 3, 31)
        assert store.get_latest_snapshot(1, date(2024, 6, 30)).inventory == Decimal("150")
        assert store.get_latest_snapshot(1, date(2024, 1, 1)) is None

    def test_snapshots_in_range(self, store):
        for d in (date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)):
            store.save_snapshot(make_snapshot(d, "100", "50"))
        found = store.get_snapshots(1, date(2024, 2, 1), date(2024, 3, 31))
        assert [s.snapshot_date for s in found] == [date(2024, 2, 29), date(2024, 3, 31)]

    def test_snapshots_are_immutable(self, store):
        store.save_snapshot(make_snapshot(date(2024, 3, 31), "1000", "400"))
        with pytest.raises(ValidationError, match="already exists"):
            store.save_snapshot(make_snapshot(date(2024, 3, 31), "9999", "1"))
        assert store.get_latest_snapshot(1, date(2024, 3, 31)).current_assets == Decimal("1000")


class TestForecastEntries:

    def test_supersede_keeps_history(self, store):
        store.save_forecast_entry(make_forecast("f-1", date(2024, 7, 1), "outflow", "500"))
        store.supersede_forecast_entry("f-1", make_forecast("f-2", date(2024, 7, 1), "outflow", "650"))

        active = store.get_forecast_entries(1)
        assert [e.id for e in active] == ["f-2"]

        history = {e.id: e for e in store.get_forecast_entries(1, include_superseded=True)}
        assert history["f-1"].superseded
        assert history["f-1"].superseded_by == "f-2"
        assert history["f-1"].amount == Decimal("500")

    def test_cannot_supersede_twice(self, store):
        store.save_forecast_entry(make_forecast("f-1", date(2024, 7, 1), "outflow", "500"))
        store.supersede_forecast_entry("f-1", make_forecast("f-2", date(2024, 7, 1), "outflow", "650"))
        with pytest.raises(ValidationError, match="already superseded"):
            store.supersede_forecast_entry("f-1", make_forecast("f-3", date(2024, 7, 1), "outflow", "1"))

    def test_stale_copy_cannot_reactivate_superseded_entry(self, store):
        original = make_forecast("f-1", date(2024, 7, 1), "outflow", "500")
        store.save_forecast_entry(original)
        store.supersede_forecast_entry("f-1", make_forecast("f-2", date(2024, 7, 1), "outflow", "650"))

        with pytest.raises(ValidationError, match="cannot be reactivated"):
            store.save_forecast_entry(original)

        assert [e.id for e in store.get_forecast_entries(1)] == ["f-2"]
        history = {e.id: e for e in store.get_forecast_entries(1, include_superseded=True)}
        assert history["f-1"].superseded_by == "f-2"

    def test_active_entry_can_be_updated(self, store):
        store.save_forecast_entry(make_forecast("f-1", date(2024, 7, 1), "outflow", "500"))
        store.save_forecast_entry(make_forecast("f-1", date(2024, 7, 1), "outflow", "550"))
        [entry] = store.get_forecast_entries(1)
        assert entry.amount == Decimal("550")

    def test_supersede_unknown_entry(self, store):
        with pytest.raises(ValidationError, match="not found"):
            store.supersede_forecast_entry("nope", make_forecast("f-2", date(2024, 7, 1), "outflow", "1"))

    def test_date_window(self, store):
        for i, d in enumerate([date(2024, 6, 30), date(2024, 7, 1), date(2025, 7, 1)]):
            store.save_forecast_entry(make_forecast(f"f-{i}", d, "inflow", "1"))
        found = store.get_forecast_entries(1, date(2024, 7, 1), date(2025, 7, 1))
        assert [e.id for e in found] == ["f-1", "f-2"]


class TestSeasonalPatterns:

    def test_upsert_and_active_filter(self, store):
        store.save_seasonal_pattern(SeasonalPattern(1, "revenue", 12, Decimal("1.4")))
        store.save_seasonal_pattern(SeasonalPattern(1, "revenue", 12, Decimal("1.5")))
        store.save_seasonal_pattern(SeasonalPattern(1, "revenue", 1, Decimal("0.7"), is_active=False))

        active = store.get_seasonal_patterns(1)
        assert [(p.month, p.factor) for p in active] == [(12, Decimal("1.5"))]
        assert len(store.get_seasonal_patterns(1, active_only=False)) == 2


class TestSqlFailures:

    def test_storage_errors_become_external_fetch_errors(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        store = SqlRecordStore(lambda: session)

        with pytest.raises(ExternalFetchError) as exc_info:
            store.get_receivables(1)

        assert exc_info.value.source == "get_receivables"
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_store_is_a_record_store(self, session_factory):
        assert isinstance(SqlRecordStore(session_factory), RecordStore)
        assert isinstance(InMemoryRecordStore(), RecordStore)


class TestDatabase:

    def test_init_db_creates_record_tables(self):
        engine = database.build_engine("sqlite://")
        database.init_db(bind=engine)

        tables = set(inspect(engine).get_table_names())
        assert set(cashflow_models.Base.metadata.tables) <= tables

        Session = database.make_session_factory(engine)
        store = SqlRecordStore(Session)
        store.save_snapshot(make_snapshot(date(2024, 1, 31), "10", "5"))
        assert store.get_latest_snapshot(1, date(2024, 2, 1)).working_capital == Decimal("5")

    def test_engine_comes_only_from_caller(self):
        assert not hasattr(database, "engine")
        assert not hasattr(database, "SessionLocal")

        engine = database.build_engine("sqlite://")
        Session = database.make_session_factory(engine)
        assert Session.kw["bind"] is engine
