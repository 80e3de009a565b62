"""
Analytics Configuration Tests
"""

import pytest
from decimal import Decimal

from analytics_config import DEFAULT_CONFIG, AnalyticsConfig, resolve_config
from analytics_errors import ValidationError
from analytics_models import CheckpointMode


pytestmark = pytest.mark.unit


class TestDefaults:

    def test_documented_defaults(self):
        config = AnalyticsConfig()
        assert config.aging_boundaries == (0, 30, 60)
        assert config.trend_tolerance_pct == Decimal("2")
        assert config.significance_high_pct == Decimal("15")
        assert config.significance_medium_pct == Decimal("5")
        assert config.checkpoint_mode == CheckpointMode.CUMULATIVE
        assert config.forecast_horizon_months == 12
        assert config.reconciliation_epsilon == Decimal("0.01")
        assert config.strict_waterfall is False
        assert config.fetch_timeout_seconds == 10

    def test_resolve_config(self):
        assert resolve_config(None) is DEFAULT_CONFIG
        custom = AnalyticsConfig(forecast_horizon_months=6)
        assert resolve_config(custom) is custom


class TestValidation:

    @pytest.mark.parametrize("boundaries", [(), (5, 30), (0, 60, 30), (0, 30, 30)])
    def test_bad_boundaries(self, boundaries):
        with pytest.raises(ValidationError, match="aging_boundaries"):
            AnalyticsConfig.build(aging_boundaries=boundaries)

    def test_medium_must_be_below_high(self):
        with pytest.raises(ValidationError, match="significance_medium_pct"):
            AnalyticsConfig.build(significance_high_pct="10", significance_medium_pct="10")

    @pytest.mark.parametrize("options", [
        {"forecast_horizon_months": 0},
        {"reconciliation_epsilon": "-0.01"},
        {"checkpoint_mode": "rolling"},
        {"unknown_option": 1},
    ])
    def test_field_errors_are_analytics_validation_errors(self, options):
        with pytest.raises(ValidationError):
            AnalyticsConfig.build(**options)

    def test_config_is_frozen(self):
        config = AnalyticsConfig()
        with pytest.raises(Exception):
            config.strict_waterfall = True


class TestOverrides:

    def test_with_overrides_returns_new_config(self):
        base = AnalyticsConfig()
        updated = base.with_overrides({"checkpoint_mode": "segment"}, strict_waterfall=True)
        assert updated.checkpoint_mode == CheckpointMode.SEGMENT
        assert updated.strict_waterfall is True
        assert base.checkpoint_mode == CheckpointMode.CUMULATIVE

    def test_no_overrides_returns_same_instance(self):
        base = AnalyticsConfig()
        assert base.with_overrides({}) is base

    def test_overrides_are_validated(self):
        with pytest.raises(ValidationError):
            AnalyticsConfig().with_overrides(significance_medium_pct=50)


class TestFromEnv:

    def test_environment_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("CASHFLOW_AGING_BOUNDARIES", "0, 15, 45, 90")
        monkeypatch.setenv("CASHFLOW_TREND_TOLERANCE_PCT", "5")
        monkeypatch.setenv("CASHFLOW_CHECKPOINT_MODE", "segment")
        monkeypatch.setenv("CASHFLOW_STRICT_WATERFALL", "true")
        monkeypatch.setenv("CASHFLOW_FORECAST_HORIZON_MONTHS", "18")

        config = AnalyticsConfig.from_env()

        assert config.aging_boundaries == (0, 15, 45, 90)
        assert config.trend_tolerance_pct == Decimal("5")
        assert config.checkpoint_mode == CheckpointMode.SEGMENT
        assert config.strict_waterfall is True
        assert config.forecast_horizon_months == 18
        assert config.significance_high_pct == Decimal("15")

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("CASHFLOW_FORECAST_HORIZON_MONTHS", "soon")
        with pytest.raises(ValidationError):
            AnalyticsConfig.from_env()
