"""
Record Store

Interface through which the analytics layer reads and writes records, plus
two adapters: SqlRecordStore (SQLAlchemy sessions) and InMemoryRecordStore.

Adapters hand back record_models dataclasses, never ORM rows. Storage
failures surface as ExternalFetchError; they are not retried and are never
replaced by empty results.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple
import logging
import threading

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import cashflow_models as tables
from analytics_errors import ExternalFetchError, ValidationError
from record_models import ForecastEntry, Payable, Receivable, SeasonalPattern, WorkingCapitalSnapshot

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """
    Source of receivables, payables, snapshots, forecast entries and seasonal
    patterns for one or more organizations.

    Date filters are inclusive and optional: receivables and payables filter
    on due_date, snapshots on snapshot_date, forecasts on forecast_date.
    """

    @abstractmethod
    def get_receivables(self, organization_id: int, start: Optional[date] = None,
                        end: Optional[date] = None) -> List[Receivable]:
        pass

    @abstractmethod
    def get_payables(self, organization_id: int, start: Optional[date] = None,
                     end: Optional[date] = None) -> List[Payable]:
        pass

    @abstractmethod
    def get_snapshots(self, organization_id: int, start: Optional[date] = None,
                      end: Optional[date] = None) -> List[WorkingCapitalSnapshot]:
        pass

    @abstractmethod
    def get_latest_snapshot(self, organization_id: int, as_of: date) -> Optional[WorkingCapitalSnapshot]:
        """Most recent snapshot dated on or before as_of, or None."""
        pass

    @abstractmethod
    def get_forecast_entries(self, organization_id: int, start: Optional[date] = None,
                             end: Optional[date] = None,
                             include_superseded: bool = False) -> List[ForecastEntry]:
        pass

    @abstractmethod
    def get_seasonal_patterns(self, organization_id: int, active_only: bool = True) -> List[SeasonalPattern]:
        pass

    @abstractmethod
    def save_receivable(self, receivable: Receivable) -> Receivable:
        pass

    @abstractmethod
    def save_payable(self, payable: Payable) -> Payable:
        pass

    @abstractmethod
    def save_snapshot(self, snapshot: WorkingCapitalSnapshot) -> WorkingCapitalSnapshot:
        """Snapshots are immutable: a second one for the same date is rejected."""
        pass

    @abstractmethod
    def save_forecast_entry(self, entry: ForecastEntry) -> ForecastEntry:
        pass

    @abstractmethod
    def supersede_forecast_entry(self, old_id: str, new_entry: ForecastEntry) -> ForecastEntry:
        """
        Flag an active entry as superseded by new_entry and store new_entry.
        The old entry is kept for history. Returns the stored new entry.
        """
        pass

    @abstractmethod
    def save_seasonal_pattern(self, pattern: SeasonalPattern) -> SeasonalPattern:
        """Insert or replace the factor for (organization, metric, month)."""
        pass


def _in_range(value: date, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


def _check_superseded_update(superseded: bool, superseded_by: Optional[str], entry: ForecastEntry) -> None:
    """A superseded entry stays flagged; updates may not reactivate or re-point it."""
    if superseded and (not entry.superseded or entry.superseded_by != superseded_by):
        raise ValidationError(
            f"Forecast entry {entry.id} is superseded by {superseded_by} and cannot be reactivated"
        )


# =============================================================================
# SQLALCHEMY ADAPTER
# =============================================================================

def _receivable_from_row(row: tables.ReceivableRow) -> Receivable:
    return Receivable(
        id=row.id,
        organization_id=row.organization_id,
        counterpart_name=row.customer_name,
        reference_number=row.invoice_number,
        issue_date=row.invoice_date,
        due_date=row.due_date,
        amount_due=row.amount_due,
        amount_paid=row.amount_paid,
        status=row.status,
        contact_email=row.contact_email,
        payment_date=row.payment_date,
    )


def _payable_from_row(row: tables.PayableRow) -> Payable:
    return Payable(
        id=row.id,
        organization_id=row.organization_id,
        counterpart_name=row.vendor_name,
        reference_number=row.bill_number,
        issue_date=row.bill_date,
        due_date=row.due_date,
        amount_due=row.amount_due,
        amount_paid=row.amount_paid,
        status=row.status,
        contact_email=row.contact_email,
        payment_date=row.payment_date,
    )


def _snapshot_from_row(row: tables.WorkingCapitalSnapshotRow) -> WorkingCapitalSnapshot:
    return WorkingCapitalSnapshot(
        organization_id=row.organization_id,
        snapshot_date=row.snapshot_date,
        current_assets=row.current_assets,
        current_liabilities=row.current_liabilities,
        inventory=row.inventory,
    )


def _forecast_from_row(row: tables.ForecastEntryRow) -> ForecastEntry:
    return ForecastEntry(
        id=row.id,
        organization_id=row.organization_id,
        forecast_date=row.forecast_date,
        direction=row.direction,
        amount=row.forecast_amount,
        category=row.category,
        superseded=row.superseded,
        superseded_by=row.superseded_by,
    )


def _pattern_from_row(row: tables.SeasonalPatternRow) -> SeasonalPattern:
    return SeasonalPattern(
        organization_id=row.organization_id,
        metric_name=row.metric_name,
        month=row.month,
        factor=row.seasonal_factor,
        is_active=row.is_active,
    )


class SqlRecordStore(RecordStore):
    """
    RecordStore over SQLAlchemy. Each call opens its own session from
    session_factory, so one store can serve concurrent reads from a thread pool.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, operation: str):
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"Record store {operation} failed: {e}")
            raise ExternalFetchError(f"Record store {operation} failed: {e}", source=operation) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_receivables(self, organization_id, start=None, end=None):
        with self._session("get_receivables") as db:
            query = db.query(tables.ReceivableRow).filter(tables.ReceivableRow.organization_id == organization_id)
            if start is not None:
                query = query.filter(tables.ReceivableRow.due_date >= start)
            if end is not None:
                query = query.filter(tables.ReceivableRow.due_date <= end)
            rows = query.order_by(tables.ReceivableRow.due_date, tables.ReceivableRow.invoice_number).all()
            return [_receivable_from_row(r) for r in rows]

    def get_payables(self, organization_id, start=None, end=None):
        with self._session("get_payables") as db:
            query = db.query(tables.PayableRow).filter(tables.PayableRow.organization_id == organization_id)
            if start is not None:
                query = query.filter(tables.PayableRow.due_date >= start)
            if end is not None:
                query = query.filter(tables.PayableRow.due_date <= end)
            rows = query.order_by(tables.PayableRow.due_date, tables.PayableRow.bill_number).all()
            return [_payable_from_row(r) for r in rows]

    def get_snapshots(self, organization_id, start=None, end=None):
        with self._session("get_snapshots") as db:
            Row = tables.WorkingCapitalSnapshotRow
            query = db.query(Row).filter(Row.organization_id == organization_id)
            if start is not None:
                query = query.filter(Row.snapshot_date >= start)
            if end is not None:
                query = query.filter(Row.snapshot_date <= end)
            return [_snapshot_from_row(r) for r in query.order_by(Row.snapshot_date).all()]

    def get_latest_snapshot(self, organization_id, as_of):
        with self._session("get_latest_snapshot") as db:
            Row = tables.WorkingCapitalSnapshotRow
            row = db.query(Row).filter(
                Row.organization_id == organization_id,
                Row.snapshot_date <= as_of,
            ).order_by(Row.snapshot_date.desc()).first()
            return _snapshot_from_row(row) if row else None

    def get_forecast_entries(self, organization_id, start=None, end=None, include_superseded=False):
        with self._session("get_forecast_entries") as db:
            Row = tables.ForecastEntryRow
            query = db.query(Row).filter(Row.organization_id == organization_id)
            if not include_superseded:
                query = query.filter(Row.superseded == False)  # noqa: E712
            if start is not None:
                query = query.filter(Row.forecast_date >= start)
            if end is not None:
                query = query.filter(Row.forecast_date <= end)
            rows = query.order_by(Row.forecast_date, Row.id).all()
            return [_forecast_from_row(r) for r in rows]

    def get_seasonal_patterns(self, organization_id, active_only=True):
        with self._session("get_seasonal_patterns") as db:
            Row = tables.SeasonalPatternRow
            query = db.query(Row).filter(Row.organization_id == organization_id)
            if active_only:
                query = query.filter(Row.is_active == True)  # noqa: E712
            rows = query.order_by(Row.metric_name, Row.month).all()
            return [_pattern_from_row(r) for r in rows]

    def save_receivable(self, receivable):
        with self._session("save_receivable") as db:
            db.merge(tables.ReceivableRow(
                id=receivable.id,
                organization_id=receivable.organization_id,
                customer_name=receivable.counterpart_name,
                invoice_number=receivable.reference_number,
                invoice_date=receivable.issue_date,
                due_date=receivable.due_date,
                amount_due=receivable.amount_due,
                amount_paid=receivable.amount_paid,
                payment_date=receivable.payment_date,
                status=receivable.status,
                contact_email=receivable.contact_email,
            ))
        return receivable

    def save_payable(self, payable):
        with self._session("save_payable") as db:
            db.merge(tables.PayableRow(
                id=payable.id,
                organization_id=payable.organization_id,
                vendor_name=payable.counterpart_name,
                bill_number=payable.reference_number,
                bill_date=payable.issue_date,
                due_date=payable.due_date,
                amount_due=payable.amount_due,
                amount_paid=payable.amount_paid,
                payment_date=payable.payment_date,
                status=payable.status,
                contact_email=payable.contact_email,
            ))
        return payable

    def save_snapshot(self, snapshot):
        with self._session("save_snapshot") as db:
            Row = tables.WorkingCapitalSnapshotRow
            existing = db.query(Row).filter(
                Row.organization_id == snapshot.organization_id,
                Row.snapshot_date == snapshot.snapshot_date,
            ).first()
            if existing:
                raise ValidationError(
                    f"Snapshot for organization {snapshot.organization_id} on "
                    f"{snapshot.snapshot_date} already exists and cannot be modified"
                )
            db.add(Row(
                organization_id=snapshot.organization_id,
                snapshot_date=snapshot.snapshot_date,
                current_assets=snapshot.current_assets,
                current_liabilities=snapshot.current_liabilities,
                inventory=snapshot.inventory,
            ))
        return snapshot

    def save_forecast_entry(self, entry):
        with self._session("save_forecast_entry") as db:
            existing = db.query(tables.ForecastEntryRow).filter(tables.ForecastEntryRow.id == entry.id).first()
            if existing is not None:
                _check_superseded_update(existing.superseded, existing.superseded_by, entry)
            db.merge(tables.ForecastEntryRow(
                id=entry.id,
                organization_id=entry.organization_id,
                forecast_date=entry.forecast_date,
                direction=entry.direction,
                forecast_amount=entry.amount,
                category=entry.category,
                superseded=entry.superseded,
                superseded_by=entry.superseded_by,
            ))
        return entry

    def supersede_forecast_entry(self, old_id, new_entry):
        with self._session("supersede_forecast_entry") as db:
            old = db.query(tables.ForecastEntryRow).filter(tables.ForecastEntryRow.id == old_id).first()
            if old is None:
                raise ValidationError(f"Forecast entry {old_id} not found")
            if old.superseded:
                raise ValidationError(f"Forecast entry {old_id} is already superseded by {old.superseded_by}")
            if new_entry.superseded:
                raise ValidationError(f"Replacement forecast entry {new_entry.id} must be active")

            old.superseded = True
            old.superseded_by = new_entry.id
            old.superseded_at = datetime.utcnow()
            db.add(tables.ForecastEntryRow(
                id=new_entry.id,
                organization_id=new_entry.organization_id,
                forecast_date=new_entry.forecast_date,
                direction=new_entry.direction,
                forecast_amount=new_entry.amount,
                category=new_entry.category,
            ))
        logger.info(f"Forecast entry {old_id} superseded by {new_entry.id}")
        return new_entry

    def save_seasonal_pattern(self, pattern):
        with self._session("save_seasonal_pattern") as db:
            Row = tables.SeasonalPatternRow
            row = db.query(Row).filter(
                Row.organization_id == pattern.organization_id,
                Row.metric_name == pattern.metric_name,
                Row.month == pattern.month,
            ).first()
            if row is None:
                row = Row(
                    organization_id=pattern.organization_id,
                    metric_name=pattern.metric_name,
                    month=pattern.month,
                )
                db.add(row)
            row.seasonal_factor = pattern.factor
            row.is_active = pattern.is_active
        return pattern


# =============================================================================
# IN-MEMORY ADAPTER
# =============================================================================

class InMemoryRecordStore(RecordStore):
    """Dictionary-backed store for tests and embedding."""

    def __init__(self):
        self._lock = threading.Lock()
        self._receivables: Dict[str, Receivable] = {}
        self._payables: Dict[str, Payable] = {}
        self._snapshots: Dict[Tuple[int, date], WorkingCapitalSnapshot] = {}
        self._forecasts: Dict[str, ForecastEntry] = {}
        self._patterns: Dict[Tuple[int, str, int], SeasonalPattern] = {}

    def get_receivables(self, organization_id, start=None, end=None):
        with self._lock:
            items = [
                r for r in self._receivables.values()
                if r.organization_id == organization_id and _in_range(r.due_date, start, end)
            ]
        return sorted(items, key=lambda r: (r.due_date, r.reference_number))

    def get_payables(self, organization_id, start=None, end=None):
        with self._lock:
            items = [
                p for p in self._payables.values()
                if p.organization_id == organization_id and _in_range(p.due_date, start, end)
            ]
        return sorted(items, key=lambda p: (p.due_date, p.reference_number))

    def get_snapshots(self, organization_id, start=None, end=None):
        with self._lock:
            items = [
                s for (org, _), s in self._snapshots.items()
                if org == organization_id and _in_range(s.snapshot_date, start, end)
            ]
        return sorted(items, key=lambda s: s.snapshot_date)

    def get_latest_snapshot(self, organization_id, as_of):
        snapshots = self.get_snapshots(organization_id, end=as_of)
        return snapshots[-1] if snapshots else None

    def get_forecast_entries(self, organization_id, start=None, end=None, include_superseded=False):
        with self._lock:
            items = [
                e for e in self._forecasts.values()
                if e.organization_id == organization_id
                and (include_superseded or not e.superseded)
                and _in_range(e.forecast_date, start, end)
            ]
        return sorted(items, key=lambda e: (e.forecast_date, e.id))

    def get_seasonal_patterns(self, organization_id, active_only=True):
        with self._lock:
            items = [
                p for p in self._patterns.values()
                if p.organization_id == organization_id and (p.is_active or not active_only)
            ]
        return sorted(items, key=lambda p: (p.metric_name, p.month))

    def save_receivable(self, receivable):
        with self._lock:
            self._receivables[receivable.id] = receivable
        return receivable

    def save_payable(self, payable):
        with self._lock:
            self._payables[payable.id] = payable
        return payable

    def save_snapshot(self, snapshot):
        key = (snapshot.organization_id, snapshot.snapshot_date)
        with self._lock:
            if key in self._snapshots:
                raise ValidationError(
                    f"Snapshot for organization {snapshot.organization_id} on "
                    f"{snapshot.snapshot_date} already exists and cannot be modified"
                )
            self._snapshots[key] = snapshot
        return snapshot

    def save_forecast_entry(self, entry):
        with self._lock:
            existing = self._forecasts.get(entry.id)
            if existing is not None:
                _check_superseded_update(existing.superseded, existing.superseded_by, entry)
            self._forecasts[entry.id] = entry
        return entry

    def supersede_forecast_entry(self, old_id, new_entry):
        with self._lock:
            old = self._forecasts.get(old_id)
            if old is None:
                raise ValidationError(f"Forecast entry {old_id} not found")
            if old.superseded:
                raise ValidationError(f"Forecast entry {old_id} is already superseded by {old.superseded_by}")
            if new_entry.superseded:
                raise ValidationError(f"Replacement forecast entry {new_entry.id} must be active")

            self._forecasts[old_id] = ForecastEntry(
                id=old.id,
                organization_id=old.organization_id,
                forecast_date=old.forecast_date,
                direction=old.direction,
                amount=old.amount,
                category=old.category,
                superseded=True,
                superseded_by=new_entry.id,
            )
            self._forecasts[new_entry.id] = new_entry
        logger.info(f"Forecast entry {old_id} superseded by {new_entry.id}")
        return new_entry

    def save_seasonal_pattern(self, pattern):
        with self._lock:
            self._patterns[(pattern.organization_id, pattern.metric_name, pattern.month)] = pattern
        return pattern
