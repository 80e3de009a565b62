"""
Runway Service

Burn rate and cash-depletion projection from forecast entries and the latest
working-capital snapshot.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import math

from dateutil.relativedelta import relativedelta

from analytics_config import AnalyticsConfig, resolve_config
from analytics_models import UNBOUNDED_RUNWAY, RunwayEstimate
from record_models import FlowDirection, ForecastEntry, SeasonalPattern, to_decimal

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30


def forecast_window(today: date, horizon_months: int) -> Tuple[date, date]:
    """[today, today + horizon_months] in calendar months."""
    return today, today + relativedelta(months=horizon_months)


def entries_in_window(entries: Iterable[ForecastEntry], start: date, end: date) -> List[ForecastEntry]:
    """Active (non-superseded) entries dated within [start, end]."""
    return [
        e for e in entries
        if not e.superseded and start <= e.forecast_date <= end
    ]


def apply_seasonality(
    entries: Iterable[ForecastEntry],
    patterns: Sequence[SeasonalPattern],
) -> List[ForecastEntry]:
    """
    Scale forecast amounts by the matching active seasonal factor.

    A pattern matches an entry when its month equals the entry's month and its
    metric name equals the entry's category; failing that, the entry's
    direction ("inflow"/"outflow"). Unmatched entries are returned unchanged.
    """
    factors: Dict[Tuple[str, int], Decimal] = {}
    for p in patterns:
        if p.is_active:
            factors[(p.metric_name, p.month)] = p.factor

    adjusted = []
    for entry in entries:
        month = entry.forecast_date.month
        factor = factors.get((entry.category, month))
        if factor is None:
            factor = factors.get((entry.direction.value, month))
        if factor is None or factor == 1:
            adjusted.append(entry)
            continue
        adjusted.append(ForecastEntry(
            id=entry.id,
            organization_id=entry.organization_id,
            forecast_date=entry.forecast_date,
            direction=entry.direction,
            amount=entry.amount * factor,
            category=entry.category,
            superseded=entry.superseded,
            superseded_by=entry.superseded_by,
        ))
    return adjusted


def estimate_runway(
    entries: Iterable[ForecastEntry],
    current_cash: Decimal,
    today: date,
    config: Optional[AnalyticsConfig] = None,
) -> RunwayEstimate:
    """
    Project how many days current cash lasts at the forecast burn rate.

    monthly_burn_rate = (outflows - inflows) / horizon_months over the window.
    A burn rate of zero or less (including an empty window) returns
    UNBOUNDED_RUNWAY with no depletion date.
    """
    config = resolve_config(config)
    current_cash = to_decimal(current_cash, "current_cash")
    horizon_months = config.forecast_horizon_months

    window_start, window_end = forecast_window(today, horizon_months)
    window = entries_in_window(entries, window_start, window_end)

    total_inflow = sum((e.amount for e in window if e.direction == FlowDirection.INFLOW), Decimal("0"))
    total_outflow = sum((e.amount for e in window if e.direction == FlowDirection.OUTFLOW), Decimal("0"))
    monthly_burn_rate = (total_outflow - total_inflow) / horizon_months

    if monthly_burn_rate <= 0:
        runway_days = UNBOUNDED_RUNWAY
        depletion_date = None
    elif current_cash <= 0:
        runway_days = 0
        depletion_date = today
    else:
        runway_days = math.floor(current_cash / monthly_burn_rate * DAYS_PER_MONTH)
        if runway_days > (date.max - today).days:
            # Beyond the calendar; the day count is still reported
            logger.warning(f"Depletion date for runway of {runway_days} days is past {date.max}")
            depletion_date = None
        else:
            depletion_date = today + timedelta(days=runway_days)

    logger.info(
        f"Runway from {len(window)} forecast entries: burn={monthly_burn_rate} "
        f"cash={current_cash} runway={runway_days!r}"
    )

    return RunwayEstimate(
        runway_days=runway_days,
        monthly_burn_rate=monthly_burn_rate,
        estimated_depletion_date=depletion_date,
        current_cash=current_cash,
        total_inflow=total_inflow,
        total_outflow=total_outflow,
        window_start=window_start,
        window_end=window_end,
    )
