"""
Analytics Result Models

Immutable result structures returned by the analytics engine, plus the two
named sentinels: UNDEFINED (a ratio whose denominator was zero) and
UNBOUNDED_RUNWAY (cash is not being burned).
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


# =============================================================================
# SENTINELS
# =============================================================================

class UndefinedMetric:
    """
    Marker for a metric that cannot be computed (e.g. DSO with zero credit sales).

    Distinguishable from zero: it is never equal to a number, serializes to
    None, and refuses truth testing like pandas.NA. Check with is_defined().
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        raise TypeError("truth value of UNDEFINED is ambiguous; use is_defined()")

    def __reduce__(self):
        return (UndefinedMetric, ())


UNDEFINED = UndefinedMetric()


class UnboundedRunway:
    """Marker for runway when the monthly burn rate is zero or negative"""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNBOUNDED_RUNWAY"

    def __reduce__(self):
        return (UnboundedRunway, ())


UNBOUNDED_RUNWAY = UnboundedRunway()

MetricValue = Union[Decimal, UndefinedMetric]


def is_defined(value: Any) -> bool:
    return value is not None and value is not UNDEFINED


def _serialize(value: Any) -> Any:
    if value is UNDEFINED or value is None:
        return None
    if value is UNBOUNDED_RUNWAY:
        return "unbounded"
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


# =============================================================================
# ENUMS
# =============================================================================

class Trend(str, Enum):
    """Direction of a metric versus the prior period"""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class VarianceTrend(str, Enum):
    """Direction of a variance versus the prior-period variance"""
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class Significance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WaterfallCategory(str, Enum):
    OPERATING = "operating"
    INVESTING = "investing"
    FINANCING = "financing"
    TOTAL = "total"


class CheckpointMode(str, Enum):
    """How a waterfall total is recomputed"""
    SEGMENT = "segment"        # Sum since the previous checkpoint
    CUMULATIVE = "cumulative"  # Sum since the first line


class ItemKind(str, Enum):
    RECEIVABLE = "receivable"
    PAYABLE = "payable"


# =============================================================================
# AGING
# =============================================================================

@dataclass(frozen=True)
class AgingBucket:
    label: str
    item_count: int
    total_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "item_count": self.item_count,
            "total_amount": str(self.total_amount),
        }


@dataclass(frozen=True)
class AgingReport:
    """Aging buckets for one entity set at one as-of date"""
    as_of: date
    buckets: Tuple[AgingBucket, ...]
    total_amount: Decimal
    item_count: int

    def bucket(self, label: str) -> AgingBucket:
        for b in self.buckets:
            if b.label == label:
                return b
        raise KeyError(label)

    def totals_by_label(self) -> Dict[str, Decimal]:
        return {b.label: b.total_amount for b in self.buckets}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "buckets": [b.to_dict() for b in self.buckets],
            "total_amount": str(self.total_amount),
            "item_count": self.item_count,
        }


@dataclass(frozen=True)
class OverdueItem:
    id: str
    kind: ItemKind
    name: str
    reference_number: str
    due_date: date
    amount_outstanding: Decimal
    days_overdue: int
    status: str
    contact_email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "reference_number": self.reference_number,
            "due_date": self.due_date.isoformat(),
            "amount_outstanding": str(self.amount_outstanding),
            "days_overdue": self.days_overdue,
            "status": self.status,
            "contact_email": self.contact_email,
        }


@dataclass(frozen=True)
class CounterpartySummary:
    name: str
    total_amount: Decimal
    transaction_count: int
    average_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "total_amount": str(self.total_amount),
            "transaction_count": self.transaction_count,
            "average_amount": str(self.average_amount),
        }


@dataclass(frozen=True)
class TimelinePoint:
    day: date
    receivables: Decimal
    payables: Decimal
    net_position: Decimal  # Cumulative receivables - payables

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "receivables": str(self.receivables),
            "payables": str(self.payables),
            "net_position": str(self.net_position),
        }


# =============================================================================
# CONVERSION CYCLE
# =============================================================================

@dataclass(frozen=True)
class ConversionCycleMetrics:
    """DSO / DPO / DIO / CCC in days, each possibly UNDEFINED"""
    dso: MetricValue
    dpo: MetricValue
    dio: MetricValue
    ccc: MetricValue
    dso_trend: Trend = Trend.STABLE
    dpo_trend: Trend = Trend.STABLE
    dio_trend: Trend = Trend.STABLE
    ccc_trend: Trend = Trend.STABLE
    period_days: int = 30

    @property
    def trends(self) -> Dict[str, Trend]:
        return {
            "dso": self.dso_trend,
            "dpo": self.dpo_trend,
            "dio": self.dio_trend,
            "ccc": self.ccc_trend,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dso": _serialize(self.dso),
            "dpo": _serialize(self.dpo),
            "dio": _serialize(self.dio),
            "ccc": _serialize(self.ccc),
            "trends": {k: v.value for k, v in self.trends.items()},
            "period_days": self.period_days,
        }


@dataclass(frozen=True)
class WorkingCapitalPosition:
    snapshot_date: date
    working_capital: Decimal
    current_ratio: MetricValue
    quick_ratio: MetricValue

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_date": self.snapshot_date.isoformat(),
            "working_capital": str(self.working_capital),
            "current_ratio": _serialize(self.current_ratio),
            "quick_ratio": _serialize(self.quick_ratio),
        }


# =============================================================================
# RUNWAY
# =============================================================================

@dataclass(frozen=True)
class RunwayEstimate:
    runway_days: Union[int, UnboundedRunway]
    monthly_burn_rate: Decimal  # Negative means cash-accreting
    estimated_depletion_date: Optional[date]
    current_cash: Decimal
    total_inflow: Decimal
    total_outflow: Decimal
    window_start: date
    window_end: date

    @property
    def is_unbounded(self) -> bool:
        return self.runway_days is UNBOUNDED_RUNWAY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runway_days": _serialize(self.runway_days),
            "is_unbounded": self.is_unbounded,
            "monthly_burn_rate": str(self.monthly_burn_rate),
            "estimated_depletion_date": _serialize(self.estimated_depletion_date),
            "current_cash": str(self.current_cash),
            "total_inflow": str(self.total_inflow),
            "total_outflow": str(self.total_outflow),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
        }


# =============================================================================
# WATERFALL
# =============================================================================

@dataclass(frozen=True)
class WaterfallLineItem:
    """
    One input row of a waterfall.

    For category TOTAL, `value` is whatever the caller supplied (may be None)
    and is only used to detect disagreement with the recomputed total.
    """
    label: str
    value: Optional[Decimal]
    category: WaterfallCategory
    mode: Optional[CheckpointMode] = None

    @property
    def is_total(self) -> bool:
        return self.category == WaterfallCategory.TOTAL


@dataclass(frozen=True)
class WaterfallStep:
    label: str
    category: WaterfallCategory
    value: Decimal
    running_total_before: Decimal
    running_total_after: Decimal
    mode: Optional[CheckpointMode] = None  # Set for totals only

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "category": self.category.value,
            "value": str(self.value),
            "running_total_before": str(self.running_total_before),
            "running_total_after": str(self.running_total_after),
            "mode": self.mode.value if self.mode else None,
        }


@dataclass(frozen=True)
class WaterfallResult:
    steps: Tuple[WaterfallStep, ...]
    net_total: Decimal  # Sum of every non-total line

    def checkpoints(self) -> Tuple[WaterfallStep, ...]:
        return tuple(s for s in self.steps if s.category == WaterfallCategory.TOTAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [s.to_dict() for s in self.steps],
            "net_total": str(self.net_total),
        }


# =============================================================================
# VARIANCE
# =============================================================================

@dataclass(frozen=True)
class VarianceRecord:
    metric_name: str
    actual: Decimal
    forecast: Decimal
    variance: Decimal  # actual - forecast
    variance_percent: MetricValue
    significance: Significance
    is_favorable: bool
    components: Tuple["VarianceRecord", ...] = field(default_factory=tuple)
    trend: Optional[VarianceTrend] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "actual": str(self.actual),
            "forecast": str(self.forecast),
            "variance": str(self.variance),
            "variance_percent": _serialize(self.variance_percent),
            "significance": self.significance.value,
            "is_favorable": self.is_favorable,
            "components": [c.to_dict() for c in self.components],
            "trend": self.trend.value if self.trend else None,
        }


# =============================================================================
# COMPOSITE VIEWS
# =============================================================================

@dataclass(frozen=True)
class AgingView:
    """Everything the collections dashboard shows for one as-of date"""
    receivables: AgingReport
    payables: AgingReport
    overdue_items: Tuple[OverdueItem, ...]
    top_customers: Tuple[CounterpartySummary, ...]
    top_vendors: Tuple[CounterpartySummary, ...]
    timeline: Tuple[TimelinePoint, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "receivables": self.receivables.to_dict(),
            "payables": self.payables.to_dict(),
            "overdue_items": [i.to_dict() for i in self.overdue_items],
            "top_customers": [c.to_dict() for c in self.top_customers],
            "top_vendors": [v.to_dict() for v in self.top_vendors],
            "timeline": [p.to_dict() for p in self.timeline],
        }


@dataclass(frozen=True)
class ConversionCycleView:
    metrics: ConversionCycleMetrics
    position: WorkingCapitalPosition
    prior_metrics: Optional[ConversionCycleMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": self.metrics.to_dict(),
            "position": self.position.to_dict(),
            "prior_metrics": self.prior_metrics.to_dict() if self.prior_metrics else None,
        }
