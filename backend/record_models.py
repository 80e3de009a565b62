"""
Record Model

Canonical, storage-agnostic shapes for the records the analytics engine reads:
receivables, payables, working-capital snapshots, forecast entries and
seasonal patterns. Records validate themselves on construction and are
immutable afterwards; malformed input raises ValidationError and is never
clamped.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from analytics_errors import ValidationError
from analytics_models import ItemKind


class ItemStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


OPEN_STATUSES = frozenset({ItemStatus.PENDING, ItemStatus.PARTIAL, ItemStatus.OVERDUE})


class FlowDirection(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Coerce a numeric input to Decimal without going through binary floats."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a number, got {value!r}")
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"{field_name} must be a number, got {value!r}") from e
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be finite, got {value!r}")
    return result


def _to_enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field_name} must be one of {allowed}, got {value!r}") from e


def _require_date(value: Any, field_name: str) -> None:
    if not isinstance(value, date):
        raise ValidationError(f"{field_name} must be a date, got {value!r}")


@dataclass(frozen=True)
class LedgerItem:
    """
    An invoice-like open item: a receivable (customer owes us) or a payable
    (we owe a vendor).
    """
    id: str
    organization_id: int
    counterpart_name: str
    reference_number: str
    issue_date: date
    due_date: date
    amount_due: Decimal
    amount_paid: Decimal = Decimal("0")
    status: ItemStatus = ItemStatus.PENDING
    contact_email: Optional[str] = None
    payment_date: Optional[date] = None

    kind = None  # Set by subclasses

    def __post_init__(self):
        object.__setattr__(self, "amount_due", to_decimal(self.amount_due, "amount_due"))
        object.__setattr__(self, "amount_paid", to_decimal(self.amount_paid, "amount_paid"))
        object.__setattr__(self, "status", _to_enum(ItemStatus, self.status, "status"))
        _require_date(self.issue_date, "issue_date")
        _require_date(self.due_date, "due_date")
        if self.payment_date is not None:
            _require_date(self.payment_date, "payment_date")

        if self.amount_due < 0:
            raise ValidationError(f"{self.reference_number}: amount_due must be >= 0, got {self.amount_due}")
        if self.amount_paid < 0:
            raise ValidationError(f"{self.reference_number}: amount_paid must be >= 0, got {self.amount_paid}")
        if self.amount_paid > self.amount_due:
            raise ValidationError(
                f"{self.reference_number}: amount_paid ({self.amount_paid}) exceeds "
                f"amount_due ({self.amount_due})"
            )
        if self.status == ItemStatus.PAID and self.amount_paid != self.amount_due:
            raise ValidationError(
                f"{self.reference_number}: status is paid but amount_paid ({self.amount_paid}) "
                f"!= amount_due ({self.amount_due})"
            )

    @property
    def outstanding(self) -> Decimal:
        return self.amount_due - self.amount_paid

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


@dataclass(frozen=True)
class Receivable(LedgerItem):
    kind = ItemKind.RECEIVABLE


@dataclass(frozen=True)
class Payable(LedgerItem):
    kind = ItemKind.PAYABLE


@dataclass(frozen=True)
class WorkingCapitalSnapshot:
    """Point-in-time balance sheet extract; one per (organization, date)"""
    organization_id: int
    snapshot_date: date
    current_assets: Decimal
    current_liabilities: Decimal
    inventory: Decimal = Decimal("0")

    def __post_init__(self):
        _require_date(self.snapshot_date, "snapshot_date")
        for name in ("current_assets", "current_liabilities", "inventory"):
            value = to_decimal(getattr(self, name), name)
            if value < 0:
                raise ValidationError(f"{name} must be >= 0, got {value}")
            object.__setattr__(self, name, value)
        if self.inventory > self.current_assets:
            raise ValidationError(
                f"inventory ({self.inventory}) cannot exceed current_assets ({self.current_assets})"
            )

    @property
    def working_capital(self) -> Decimal:
        return self.current_assets - self.current_liabilities


@dataclass(frozen=True)
class ForecastEntry:
    """A forecast cash movement; superseded entries are flagged, never deleted"""
    id: str
    organization_id: int
    forecast_date: date
    direction: FlowDirection
    amount: Decimal
    category: str = "general"
    superseded: bool = False
    superseded_by: Optional[str] = None

    def __post_init__(self):
        _require_date(self.forecast_date, "forecast_date")
        object.__setattr__(self, "direction", _to_enum(FlowDirection, self.direction, "direction"))
        amount = to_decimal(self.amount, "amount")
        if amount < 0:
            raise ValidationError(f"forecast {self.id}: amount must be >= 0, got {amount}")
        object.__setattr__(self, "amount", amount)
        if self.superseded_by is not None and not self.superseded:
            raise ValidationError(f"forecast {self.id}: superseded_by set on an active entry")

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == FlowDirection.INFLOW else -self.amount


@dataclass(frozen=True)
class SeasonalPattern:
    organization_id: int
    metric_name: str
    month: int
    factor: Decimal
    is_active: bool = True

    def __post_init__(self):
        if isinstance(self.month, bool) or not isinstance(self.month, int) or not 1 <= self.month <= 12:
            raise ValidationError(f"month must be an integer 1-12, got {self.month!r}")
        factor = to_decimal(self.factor, "factor")
        if factor <= 0:
            raise ValidationError(f"factor must be > 0, got {factor}")
        object.__setattr__(self, "factor", factor)
