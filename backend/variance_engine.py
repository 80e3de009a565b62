"""
Variance Engine

Actual-vs-forecast variance with significance classification, component
attribution that must reconcile to the parent, and period-over-period trend.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence
import logging

from analytics_config import AnalyticsConfig, resolve_config
from analytics_errors import ReconciliationError, ValidationError
from analytics_models import UNDEFINED, MetricValue, Significance, Trend, VarianceRecord, VarianceTrend, is_defined
from conversion_cycle_service import classify_trend
from record_models import to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VarianceInput:
    """One metric to analyse, optionally partitioned into named components"""
    metric_name: str
    actual: Decimal
    forecast: Decimal
    components: Sequence["VarianceInput"] = field(default_factory=tuple)
    prior_variance: Optional[Decimal] = None
    higher_is_better: bool = True


def variance_percent(variance: Decimal, forecast: Decimal) -> MetricValue:
    if forecast == 0:
        return UNDEFINED
    return variance / forecast * 100


def classify_significance(
    variance: Decimal,
    percent: MetricValue,
    config: AnalyticsConfig,
) -> Significance:
    """
    HIGH at or above significance_high_pct, MEDIUM at or above
    significance_medium_pct, LOW otherwise. With no forecast to measure
    against, any non-zero variance is HIGH.
    """
    if not is_defined(percent):
        return Significance.HIGH if variance != 0 else Significance.LOW

    magnitude = abs(percent)
    if magnitude >= config.significance_high_pct:
        return Significance.HIGH
    if magnitude >= config.significance_medium_pct:
        return Significance.MEDIUM
    return Significance.LOW


def classify_variance_trend(
    variance: Decimal,
    prior_variance: Optional[Decimal],
    higher_is_better: bool,
    config: AnalyticsConfig,
) -> Optional[VarianceTrend]:
    """Map the metric trend rule onto improving/declining for a variance."""
    if prior_variance is None:
        return None

    direction = classify_trend(variance, prior_variance, config.trend_tolerance_pct)
    if direction == Trend.STABLE:
        return VarianceTrend.STABLE

    moved_up = direction == Trend.UP
    if moved_up == higher_is_better:
        return VarianceTrend.IMPROVING
    return VarianceTrend.DECLINING


def analyze_variance(
    metric_name: str,
    actual,
    forecast,
    components: Optional[Iterable[VarianceInput]] = None,
    prior_variance=None,
    higher_is_better: bool = True,
    config: Optional[AnalyticsConfig] = None,
) -> VarianceRecord:
    """
    Variance of one metric.

    Components are analysed with the same rules; their variances must sum to
    the parent variance within config.reconciliation_epsilon, otherwise a
    ReconciliationError is raised.
    """
    config = resolve_config(config)
    if not metric_name:
        raise ValidationError("metric_name is required")

    actual = to_decimal(actual, f"{metric_name}.actual")
    forecast = to_decimal(forecast, f"{metric_name}.forecast")
    if prior_variance is not None:
        prior_variance = to_decimal(prior_variance, f"{metric_name}.prior_variance")

    variance = actual - forecast
    percent = variance_percent(variance, forecast)

    component_records = tuple(
        analyze_variance(
            metric_name=c.metric_name,
            actual=c.actual,
            forecast=c.forecast,
            components=c.components,
            prior_variance=c.prior_variance,
            higher_is_better=c.higher_is_better,
            config=config,
        )
        for c in (components or ())
    )

    if component_records:
        component_total = sum((c.variance for c in component_records), Decimal("0"))
        if abs(component_total - variance) > config.reconciliation_epsilon:
            raise ReconciliationError(
                f"Components of '{metric_name}' have variance {component_total} "
                f"but the metric variance is {variance}",
                expected=variance,
                actual=component_total,
            )

    if higher_is_better:
        is_favorable = variance > 0
    else:
        is_favorable = variance < 0

    return VarianceRecord(
        metric_name=metric_name,
        actual=actual,
        forecast=forecast,
        variance=variance,
        variance_percent=percent,
        significance=classify_significance(variance, percent, config),
        is_favorable=is_favorable,
        components=component_records,
        trend=classify_variance_trend(variance, prior_variance, higher_is_better, config),
    )


def analyze_variances(
    inputs: Iterable[VarianceInput],
    config: Optional[AnalyticsConfig] = None,
) -> List[VarianceRecord]:
    """Analyse a set of metrics, largest absolute variance first."""
    config = resolve_config(config)
    records = [
        analyze_variance(
            metric_name=i.metric_name,
            actual=i.actual,
            forecast=i.forecast,
            components=i.components,
            prior_variance=i.prior_variance,
            higher_is_better=i.higher_is_better,
            config=config,
        )
        for i in inputs
    ]
    records.sort(key=lambda r: (-abs(r.variance), r.metric_name))

    high_count = sum(1 for r in records if r.significance == Significance.HIGH)
    logger.info(f"Analysed {len(records)} variances, {high_count} high significance")
    return records
