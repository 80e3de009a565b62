"""
View Requests

Typed requests the presentation layer hands to CashFlowAnalyticsService.
Each names the organization, the as-of date (or period), an optional fetch
timeout and per-call config overrides.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from analytics_errors import ValidationError
from analytics_models import CheckpointMode, WaterfallCategory, WaterfallLineItem
from variance_engine import VarianceInput


class ViewRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    organization_id: int
    as_of: date
    timeout_seconds: Optional[float] = Field(default=None, gt=0)  # None: config.fetch_timeout_seconds
    config_overrides: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(cls, **data: Any):
        """Construct a request, reporting bad fields as analytics ValidationErrors."""
        try:
            return cls(**data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {cls.__name__}: {e}") from e


class AgingViewRequest(ViewRequest):
    top_limit: int = Field(default=10, gt=0)
    timeline_days: int = Field(default=30, ge=0)  # Days after as_of covered by the timeline


class ConversionCycleViewRequest(ViewRequest):
    """
    Conversion cycle over [period_start, period_end].

    Credit sales and COGS for the period come from the caller. Supplying the
    prior period (dates and flows together) adds trend classification.
    """
    period_start: date
    period_end: date
    credit_sales: Decimal = Field(ge=0)
    cogs: Decimal = Field(ge=0)

    prior_period_start: Optional[date] = None
    prior_period_end: Optional[date] = None
    prior_credit_sales: Optional[Decimal] = Field(default=None, ge=0)
    prior_cogs: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_periods(self) -> "ConversionCycleViewRequest":
        if self.period_start > self.period_end:
            raise ValidationError(f"period_start {self.period_start} is after period_end {self.period_end}")

        prior = (self.prior_period_start, self.prior_period_end, self.prior_credit_sales, self.prior_cogs)
        supplied = [v is not None for v in prior]
        if any(supplied) and not all(supplied):
            raise ValidationError(
                "prior_period_start, prior_period_end, prior_credit_sales and prior_cogs "
                "must be supplied together"
            )
        if all(supplied) and self.prior_period_start > self.prior_period_end:
            raise ValidationError(
                f"prior_period_start {self.prior_period_start} is after "
                f"prior_period_end {self.prior_period_end}"
            )
        return self

    @property
    def has_prior_period(self) -> bool:
        return self.prior_period_start is not None

    @property
    def period_days(self) -> int:
        return (self.period_end - self.period_start).days + 1

    @property
    def prior_period_days(self) -> Optional[int]:
        if not self.has_prior_period:
            return None
        return (self.prior_period_end - self.prior_period_start).days + 1


class RunwayViewRequest(ViewRequest):
    # None: liquid current assets of the latest snapshot on or before as_of
    current_cash: Optional[Decimal] = None
    apply_seasonality: bool = False


class WaterfallLineInput(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    label: str = Field(min_length=1)
    value: Optional[Decimal] = None
    category: WaterfallCategory
    mode: Optional[CheckpointMode] = None

    def to_line_item(self) -> WaterfallLineItem:
        return WaterfallLineItem(label=self.label, value=self.value, category=self.category, mode=self.mode)


class WaterfallViewRequest(ViewRequest):
    line_items: List[WaterfallLineInput]

    def to_line_items(self) -> List[WaterfallLineItem]:
        return [line.to_line_item() for line in self.line_items]


class VarianceMetricInput(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    metric_name: str = Field(min_length=1)
    actual: Decimal
    forecast: Decimal
    components: List["VarianceMetricInput"] = Field(default_factory=list)
    prior_variance: Optional[Decimal] = None
    higher_is_better: bool = True

    def to_variance_input(self) -> VarianceInput:
        return VarianceInput(
            metric_name=self.metric_name,
            actual=self.actual,
            forecast=self.forecast,
            components=tuple(c.to_variance_input() for c in self.components),
            prior_variance=self.prior_variance,
            higher_is_better=self.higher_is_better,
        )


VarianceMetricInput.model_rebuild()


class VarianceViewRequest(ViewRequest):
    metrics: List[VarianceMetricInput] = Field(min_length=1)

    def to_variance_inputs(self) -> List[VarianceInput]:
        return [m.to_variance_input() for m in self.metrics]
