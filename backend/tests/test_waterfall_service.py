"""
Waterfall Reconciliation Tests

Checkpoint totals are recomputed from the lines before them, never trusted.
"""

import logging
import pytest
from decimal import Decimal

from analytics_config import AnalyticsConfig
from analytics_errors import ReconciliationError, ValidationError
from analytics_models import CheckpointMode, WaterfallCategory, WaterfallLineItem
from waterfall_service import line_items_from_dicts, reconcile_waterfall


pytestmark = pytest.mark.unit

OP = WaterfallCategory.OPERATING
INV = WaterfallCategory.INVESTING
FIN = WaterfallCategory.FINANCING
TOTAL = WaterfallCategory.TOTAL


def line(label, value, category=OP, mode=None):
    return WaterfallLineItem(
        label=label,
        value=Decimal(str(value)) if value is not None else None,
        category=category,
        mode=mode,
    )


def total(label, value=None, mode=None):
    return line(label, value, TOTAL, mode)


class TestReconcileWaterfall:

    def test_segment_then_cumulative(self):
        items = [
            line("Sales", 100),
            line("Opex", -40),
            total("Operating CF", mode=CheckpointMode.SEGMENT),
            line("Capex", -30, INV),
            total("Net CF", mode=CheckpointMode.CUMULATIVE),
        ]
        result = reconcile_waterfall(items)

        values = [s.value for s in result.steps]
        assert values == [Decimal("100"), Decimal("-40"), Decimal("60"), Decimal("-30"), Decimal("30")]
        assert result.net_total == Decimal("30")
        assert [c.value for c in result.checkpoints()] == [Decimal("60"), Decimal("30")]

    def test_display_accumulator_resets_after_segment_total(self):
        items = [
            line("Sales", 100),
            total("Operating CF", mode=CheckpointMode.SEGMENT),
            line("Capex", -30, INV),
        ]
        steps = reconcile_waterfall(items).steps
        assert (steps[2].running_total_before, steps[2].running_total_after) == (Decimal("0"), Decimal("-30"))

    def test_display_accumulator_continues_after_cumulative_total(self):
        items = [
            line("Sales", 100),
            total("Operating CF", mode=CheckpointMode.CUMULATIVE),
            line("Capex", -30, INV),
        ]
        steps = reconcile_waterfall(items).steps
        assert (steps[2].running_total_before, steps[2].running_total_after) == (Decimal("100"), Decimal("70"))

    def test_total_bars_start_at_zero(self):
        result = reconcile_waterfall([line("Sales", 100), line("Opex", -25), total("Net")])
        net = result.steps[-1]
        assert net.running_total_before == 0
        assert net.running_total_after == Decimal("75")
        assert net.category == TOTAL

    def test_segment_total_only_covers_lines_since_previous_checkpoint(self):
        items = [
            line("Sales", 100),
            total("Operating", mode=CheckpointMode.SEGMENT),
            line("Capex", -30, INV),
            line("Asset sale", 10, INV),
            total("Investing", mode=CheckpointMode.SEGMENT),
            line("Loan", 50, FIN),
            total("Financing", mode=CheckpointMode.SEGMENT),
        ]
        checkpoints = reconcile_waterfall(items).checkpoints()
        assert [c.value for c in checkpoints] == [Decimal("100"), Decimal("-20"), Decimal("50")]

    def test_mode_defaults_to_config(self):
        items = [line("Sales", 100), total("A"), line("Opex", -40), total("B")]

        cumulative = reconcile_waterfall(items)
        assert [c.value for c in cumulative.checkpoints()] == [Decimal("100"), Decimal("60")]
        assert cumulative.checkpoints()[0].mode == CheckpointMode.CUMULATIVE

        segment = reconcile_waterfall(items, AnalyticsConfig(checkpoint_mode="segment"))
        assert [c.value for c in segment.checkpoints()] == [Decimal("100"), Decimal("-40")]

    def test_supplied_literal_is_ignored_with_warning(self, caplog):
        items = [line("Sales", 100), line("Opex", -40), total("Net", value=75)]
        with caplog.at_level(logging.WARNING, logger="waterfall_service"):
            result = reconcile_waterfall(items)
        assert result.steps[-1].value == Decimal("60")
        assert "supplied as 75" in caplog.text

    def test_supplied_literal_within_epsilon_is_silent(self, caplog):
        items = [line("Sales", 100), total("Net", value="100.005")]
        with caplog.at_level(logging.WARNING, logger="waterfall_service"):
            reconcile_waterfall(items)
        assert caplog.text == ""

    def test_strict_mode_raises_on_disagreeing_literal(self):
        items = [line("Sales", 100), total("Net", value=75)]
        with pytest.raises(ReconciliationError) as exc_info:
            reconcile_waterfall(items, AnalyticsConfig(strict_waterfall=True))
        assert exc_info.value.expected == Decimal("100")
        assert exc_info.value.actual == Decimal("75")

    def test_line_without_value_rejected(self):
        with pytest.raises(ValidationError, match="Opex"):
            reconcile_waterfall([line("Sales", 100), line("Opex", None)])

    def test_empty_waterfall(self):
        result = reconcile_waterfall([])
        assert result.steps == ()
        assert result.net_total == 0

    def test_to_dict(self):
        data = reconcile_waterfall([line("Sales", 100), total("Net", mode=CheckpointMode.SEGMENT)]).to_dict()
        assert data["net_total"] == "100"
        assert data["steps"][1]["mode"] == "segment"
        assert data["steps"][0]["mode"] is None


class TestLineItemsFromDicts:

    def test_builds_items(self):
        items = line_items_from_dicts([
            {"label": "Sales", "value": "100", "category": "operating"},
            {"label": "Net", "category": "total", "mode": "segment"},
        ])
        assert items[0].value == Decimal("100")
        assert items[1].is_total
        assert items[1].value is None
        assert items[1].mode == CheckpointMode.SEGMENT

    @pytest.mark.parametrize("row", [
        {"value": "1", "category": "operating"},
        {"label": "X", "value": "1", "category": "misc"},
        {"label": "X", "value": "1", "category": "total", "mode": "rolling"},
    ])
    def test_malformed_rows_rejected(self, row):
        with pytest.raises(ValidationError, match="row 0"):
            line_items_from_dicts([row])
