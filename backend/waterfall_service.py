"""
Waterfall Service

Sequential running-total fold over categorized cash-flow lines with
checkpoint subtotals. Checkpoint (total) values are always recomputed from
the lines before them; a supplied literal is only compared, never used.
"""

from decimal import Decimal
from typing import Iterable, List, Optional
import logging

from analytics_config import AnalyticsConfig, resolve_config
from analytics_errors import ReconciliationError, ValidationError
from analytics_models import (
    CheckpointMode, WaterfallCategory, WaterfallLineItem, WaterfallResult, WaterfallStep
)
from record_models import to_decimal

logger = logging.getLogger(__name__)


def reconcile_waterfall(
    items: Iterable[WaterfallLineItem],
    config: Optional[AnalyticsConfig] = None,
) -> WaterfallResult:
    """
    Fold line items into waterfall steps.

    Three accumulators are tracked:
    - cumulative: every non-total line since the start (never reset)
    - segment: non-total lines since the previous checkpoint
    - display: what the chart positions bars against; reset to zero after a
      SEGMENT checkpoint, set to the cumulative sum after a CUMULATIVE one

    Totals take the mode on the line item, falling back to
    config.checkpoint_mode.
    """
    config = resolve_config(config)
    epsilon = config.reconciliation_epsilon

    cumulative = Decimal("0")
    segment = Decimal("0")
    display = Decimal("0")
    non_total_values: List[Decimal] = []
    steps: List[WaterfallStep] = []

    for index, item in enumerate(items):
        if item.is_total:
            mode = item.mode or config.checkpoint_mode
            value = segment if mode == CheckpointMode.SEGMENT else cumulative

            if item.value is not None:
                supplied = to_decimal(item.value, f"{item.label}.value")
                if abs(supplied - value) > epsilon:
                    message = (
                        f"Waterfall total '{item.label}' supplied as {supplied} "
                        f"but lines sum to {value} ({mode.value})"
                    )
                    if config.strict_waterfall:
                        raise ReconciliationError(message, expected=value, actual=supplied)
                    logger.warning(f"{message}; using recomputed value")

            steps.append(WaterfallStep(
                label=item.label,
                category=WaterfallCategory.TOTAL,
                value=value,
                running_total_before=Decimal("0"),
                running_total_after=value,
                mode=mode,
            ))

            segment = Decimal("0")
            display = Decimal("0") if mode == CheckpointMode.SEGMENT else cumulative
            continue

        if item.value is None:
            raise ValidationError(f"Waterfall line {index} ('{item.label}') has no value")
        value = to_decimal(item.value, f"{item.label}.value")

        before = display
        display += value
        segment += value
        cumulative += value
        non_total_values.append(value)

        steps.append(WaterfallStep(
            label=item.label,
            category=item.category,
            value=value,
            running_total_before=before,
            running_total_after=display,
        ))

    expected_net = sum(non_total_values, Decimal("0"))
    if cumulative != expected_net:
        raise ReconciliationError(
            f"Waterfall net total {cumulative} does not equal the sum of its lines {expected_net}",
            expected=expected_net,
            actual=cumulative,
        )

    logger.debug(f"Waterfall of {len(steps)} steps, net total {cumulative}")
    return WaterfallResult(steps=tuple(steps), net_total=cumulative)


def line_items_from_dicts(rows: Iterable[dict]) -> List[WaterfallLineItem]:
    """
    Build line items from plain mappings with keys label, value, category and
    optionally mode.
    """
    items = []
    for i, row in enumerate(rows):
        try:
            category = WaterfallCategory(row["category"])
            mode = CheckpointMode(row["mode"]) if row.get("mode") else None
            label = row["label"]
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Waterfall row {i} is malformed: {e}") from e
        raw_value = row.get("value")
        value = to_decimal(raw_value, f"{label}.value") if raw_value is not None else None
        items.append(WaterfallLineItem(label=label, value=value, category=category, mode=mode))
    return items
