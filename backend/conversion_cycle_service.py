"""
Conversion Cycle Service

DSO / DPO / DIO / CCC with period-over-period trend classification, plus the
balance averaging and working-capital ratios that feed them.

    dso = avg_receivables / credit_sales * period_days
    dpo = avg_payables / cogs * period_days
    dio = avg_inventory / cogs * period_days
    ccc = dso + dio - dpo
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence
import logging

from analytics_config import AnalyticsConfig, resolve_config
from analytics_errors import InsufficientDataError, ValidationError
from analytics_models import (
    UNDEFINED, ConversionCycleMetrics, MetricValue, Trend, WorkingCapitalPosition, is_defined
)
from record_models import LedgerItem, WorkingCapitalSnapshot, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionCycleInputs:
    """Balances and flows for one averaging period"""
    avg_receivables: Decimal
    avg_payables: Decimal
    avg_inventory: Decimal
    credit_sales: Decimal
    cogs: Decimal
    period_days: int = 30

    def __post_init__(self):
        for name in ("avg_receivables", "avg_payables", "avg_inventory", "credit_sales", "cogs"):
            value = to_decimal(getattr(self, name), name)
            if value < 0:
                raise ValidationError(f"{name} must be >= 0, got {value}")
            object.__setattr__(self, name, value)
        if isinstance(self.period_days, bool) or not isinstance(self.period_days, int) or self.period_days <= 0:
            raise ValidationError(f"period_days must be a positive integer, got {self.period_days!r}")


def days_ratio(balance: Decimal, flow: Decimal, period_days: int) -> MetricValue:
    """balance / flow * period_days, or UNDEFINED when flow is zero."""
    if flow == 0:
        return UNDEFINED
    return balance / flow * period_days


def classify_trend(
    current: Optional[MetricValue],
    prior: Optional[MetricValue],
    tolerance_pct: Decimal,
) -> Trend:
    """
    Compare a value with the prior period's using a relative tolerance band.

    Within +/- tolerance_pct percent of the prior value is STABLE; otherwise
    UP or DOWN by sign of the change. Missing or undefined values are STABLE.
    """
    if not is_defined(current) or not is_defined(prior):
        return Trend.STABLE

    change = current - prior
    if prior == 0:
        if change == 0:
            return Trend.STABLE
        return Trend.UP if change > 0 else Trend.DOWN

    relative_pct = change / abs(prior) * 100
    if abs(relative_pct) <= tolerance_pct:
        return Trend.STABLE
    return Trend.UP if relative_pct > 0 else Trend.DOWN


def compute_conversion_cycle(
    inputs: ConversionCycleInputs,
    prior: Optional[ConversionCycleMetrics] = None,
    config: Optional[AnalyticsConfig] = None,
) -> ConversionCycleMetrics:
    """
    Compute the conversion cycle for one period.

    A zero credit_sales or cogs makes the dependent ratios UNDEFINED; CCC is
    UNDEFINED whenever any of its terms is.
    """
    config = resolve_config(config)

    dso = days_ratio(inputs.avg_receivables, inputs.credit_sales, inputs.period_days)
    dpo = days_ratio(inputs.avg_payables, inputs.cogs, inputs.period_days)
    dio = days_ratio(inputs.avg_inventory, inputs.cogs, inputs.period_days)

    if is_defined(dso) and is_defined(dpo) and is_defined(dio):
        ccc = dso + dio - dpo
    else:
        ccc = UNDEFINED

    tolerance = config.trend_tolerance_pct
    metrics = ConversionCycleMetrics(
        dso=dso,
        dpo=dpo,
        dio=dio,
        ccc=ccc,
        dso_trend=classify_trend(dso, prior.dso if prior else None, tolerance),
        dpo_trend=classify_trend(dpo, prior.dpo if prior else None, tolerance),
        dio_trend=classify_trend(dio, prior.dio if prior else None, tolerance),
        ccc_trend=classify_trend(ccc, prior.ccc if prior else None, tolerance),
        period_days=inputs.period_days,
    )

    logger.debug(f"Conversion cycle: dso={dso!r} dpo={dpo!r} dio={dio!r} ccc={ccc!r}")
    return metrics


# =============================================================================
# INPUT DERIVATION
# =============================================================================

def outstanding_as_of(item: LedgerItem, as_of: date) -> Decimal:
    """
    Balance of an item on a given day.

    Not yet issued: zero. Issued and paid after as_of: the full amount due.
    Otherwise: the current outstanding balance.
    """
    if item.issue_date > as_of:
        return Decimal("0")
    if item.payment_date is not None and item.payment_date > as_of:
        return item.amount_due
    return item.outstanding


def average_outstanding(items: Iterable[LedgerItem], start: date, end: date) -> Decimal:
    """Mean of the opening (start) and closing (end) outstanding balances."""
    if start > end:
        raise ValidationError(f"period start {start} is after period end {end}")
    items = list(items)
    opening = sum((outstanding_as_of(i, start) for i in items), Decimal("0"))
    closing = sum((outstanding_as_of(i, end) for i in items), Decimal("0"))
    return (opening + closing) / 2


def average_inventory(snapshots: Sequence[WorkingCapitalSnapshot]) -> Decimal:
    if not snapshots:
        raise InsufficientDataError("No working capital snapshots to average inventory from")
    total = sum((s.inventory for s in snapshots), Decimal("0"))
    return total / len(snapshots)


def working_capital_position(snapshot: WorkingCapitalSnapshot) -> WorkingCapitalPosition:
    """Working capital, current ratio and quick ratio for one snapshot."""
    liabilities = snapshot.current_liabilities
    if liabilities == 0:
        current_ratio = UNDEFINED
        quick_ratio = UNDEFINED
    else:
        current_ratio = snapshot.current_assets / liabilities
        quick_ratio = (snapshot.current_assets - snapshot.inventory) / liabilities

    return WorkingCapitalPosition(
        snapshot_date=snapshot.snapshot_date,
        working_capital=snapshot.working_capital,
        current_ratio=current_ratio,
        quick_ratio=quick_ratio,
    )
