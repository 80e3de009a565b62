"""
Analytics Configuration

Recognized options for the analytics engine. Every option has a documented
default, can be seeded from CASHFLOW_* environment variables and can be
overridden per call with AnalyticsConfig.with_overrides().
"""

import os
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from analytics_errors import ValidationError
from analytics_models import CheckpointMode


class AnalyticsConfig(BaseModel):
    """Per-call analytics options"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Aging: upper bounds (inclusive, in days past due) of every bucket but the last
    aging_boundaries: Tuple[int, ...] = (0, 30, 60)

    # Trend: relative change (in percent) treated as "stable"
    trend_tolerance_pct: Decimal = Field(default=Decimal("2"), ge=0)

    # Variance significance on |variance_percent|
    significance_high_pct: Decimal = Field(default=Decimal("15"), gt=0)
    significance_medium_pct: Decimal = Field(default=Decimal("5"), ge=0)

    # Waterfall
    checkpoint_mode: CheckpointMode = CheckpointMode.CUMULATIVE
    strict_waterfall: bool = False

    # Runway
    forecast_horizon_months: int = Field(default=12, gt=0)

    # Tolerance for sum-of-parts checks
    reconciliation_epsilon: Decimal = Field(default=Decimal("0.01"), ge=0)

    # Record store reads
    fetch_timeout_seconds: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _check_consistency(self) -> "AnalyticsConfig":
        bounds = self.aging_boundaries
        if not bounds:
            raise ValidationError("aging_boundaries must contain at least one boundary")
        if bounds[0] != 0:
            raise ValidationError(f"aging_boundaries must start at 0, got {bounds[0]}")
        if any(b <= a for a, b in zip(bounds, bounds[1:])):
            raise ValidationError(f"aging_boundaries must be strictly increasing, got {bounds}")
        if self.significance_medium_pct >= self.significance_high_pct:
            raise ValidationError(
                f"significance_medium_pct ({self.significance_medium_pct}) must be below "
                f"significance_high_pct ({self.significance_high_pct})"
            )
        return self

    @classmethod
    def build(cls, **options: Any) -> "AnalyticsConfig":
        """Construct a config, reporting bad values as analytics ValidationErrors."""
        try:
            return cls(**options)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid analytics configuration: {e}") from e

    def with_overrides(self, overrides: Optional[Dict[str, Any]] = None, **kwargs: Any) -> "AnalyticsConfig":
        """Return a new config with the given options replaced."""
        updates = dict(overrides or {})
        updates.update(kwargs)
        if not updates:
            return self
        merged = self.model_dump()
        merged.update(updates)
        return type(self).build(**merged)

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        """Defaults, with any CASHFLOW_* environment variables applied."""
        options: Dict[str, Any] = {}

        boundaries = os.getenv("CASHFLOW_AGING_BOUNDARIES")
        if boundaries:
            options["aging_boundaries"] = tuple(int(b) for b in boundaries.split(",") if b.strip())

        env_map = {
            "trend_tolerance_pct": "CASHFLOW_TREND_TOLERANCE_PCT",
            "significance_high_pct": "CASHFLOW_SIGNIFICANCE_HIGH_PCT",
            "significance_medium_pct": "CASHFLOW_SIGNIFICANCE_MEDIUM_PCT",
            "checkpoint_mode": "CASHFLOW_CHECKPOINT_MODE",
            "strict_waterfall": "CASHFLOW_STRICT_WATERFALL",
            "forecast_horizon_months": "CASHFLOW_FORECAST_HORIZON_MONTHS",
            "reconciliation_epsilon": "CASHFLOW_RECONCILIATION_EPSILON",
            "fetch_timeout_seconds": "CASHFLOW_FETCH_TIMEOUT_SECONDS",
        }
        for option, env_var in env_map.items():
            value = os.getenv(env_var)
            if value is not None and value != "":
                options[option] = value

        return cls.build(**options)


DEFAULT_CONFIG = AnalyticsConfig()


def resolve_config(config: Optional[AnalyticsConfig]) -> AnalyticsConfig:
    return config if config is not None else DEFAULT_CONFIG
