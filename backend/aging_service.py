"""
Aging Service

Buckets open receivables/payables by days past due, and the supporting
collection views: overdue list, top counterparties, due-date timeline.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

import pandas as pd

from analytics_config import AnalyticsConfig, resolve_config
from analytics_errors import ValidationError
from analytics_models import AgingBucket, AgingReport, CounterpartySummary, OverdueItem, TimelinePoint
from record_models import LedgerItem

logger = logging.getLogger(__name__)

CURRENT_LABEL = "current"
CENTS = Decimal("0.01")


def bucket_labels(boundaries: Sequence[int]) -> List[str]:
    """
    Labels for the configured boundaries.

    (0, 30, 60) -> ["current", "1-30", "31-60", "60+"]
    """
    labels = [CURRENT_LABEL]
    for lower, upper in zip(boundaries, boundaries[1:]):
        labels.append(f"{lower + 1}-{upper}")
    labels.append(f"{boundaries[-1]}+")
    return labels


def bucket_index(days_outstanding: int, boundaries: Sequence[int]) -> int:
    """Index into bucket_labels() for a days-past-due value."""
    for i, upper in enumerate(boundaries):
        if days_outstanding <= upper:
            return i
    return len(boundaries)


def classify_aging(
    items: Iterable[LedgerItem],
    as_of: date,
    config: Optional[AnalyticsConfig] = None,
) -> AgingReport:
    """
    Classify every open item into exactly one aging bucket.

    days_outstanding = as_of - due_date; zero or negative is "current".
    Paid items are skipped. Every bucket is returned, empty ones with zero
    totals.
    """
    config = resolve_config(config)
    boundaries = config.aging_boundaries
    labels = bucket_labels(boundaries)

    counts = [0] * len(labels)
    totals = [Decimal("0")] * len(labels)
    open_count = 0

    for item in items:
        if not item.is_open:
            continue
        days_outstanding = (as_of - item.due_date).days
        idx = bucket_index(days_outstanding, boundaries)
        counts[idx] += 1
        totals[idx] += item.outstanding
        open_count += 1

    buckets = tuple(
        AgingBucket(label=label, item_count=count, total_amount=total)
        for label, count, total in zip(labels, counts, totals)
    )
    grand_total = sum(totals, Decimal("0"))

    logger.debug(f"Aged {open_count} open items as of {as_of}: {dict(zip(labels, totals))}")

    return AgingReport(
        as_of=as_of,
        buckets=buckets,
        total_amount=grand_total,
        item_count=open_count,
    )


def list_overdue_items(
    receivables: Iterable[LedgerItem],
    payables: Iterable[LedgerItem],
    as_of: date,
) -> List[OverdueItem]:
    """Open items past their due date, most overdue first."""
    overdue = []
    for item in list(receivables) + list(payables):
        if not item.is_open or item.due_date >= as_of:
            continue
        overdue.append(OverdueItem(
            id=item.id,
            kind=item.kind,
            name=item.counterpart_name,
            reference_number=item.reference_number,
            due_date=item.due_date,
            amount_outstanding=item.outstanding,
            days_overdue=(as_of - item.due_date).days,
            status=item.status.value,
            contact_email=item.contact_email,
        ))

    overdue.sort(key=_overdue_sort_key)
    return overdue


def _overdue_sort_key(item: OverdueItem) -> Tuple[int, str, str]:
    return (-item.days_overdue, item.kind.value, item.reference_number)


def top_counterparties(items: Iterable[LedgerItem], limit: int = 10) -> List[CounterpartySummary]:
    """
    Largest customers (for receivables) or vendors (for payables) by total
    amount billed.
    """
    if limit <= 0:
        raise ValidationError(f"limit must be positive, got {limit}")

    rows = [(item.counterpart_name, item.amount_due) for item in items]
    if not rows:
        return []

    df = pd.DataFrame(rows, columns=["name", "amount"])
    grouped = df.groupby("name")["amount"].agg(["sum", "size"])

    summaries = []
    for name, row in grouped.iterrows():
        total = Decimal(row["sum"])
        count = int(row["size"])
        summaries.append(CounterpartySummary(
            name=str(name),
            total_amount=total,
            transaction_count=count,
            average_amount=(total / count).quantize(CENTS, rounding=ROUND_HALF_UP),
        ))

    summaries.sort(key=lambda s: (-s.total_amount, s.name))
    return summaries[:limit]


def build_timeline(
    receivables: Iterable[LedgerItem],
    payables: Iterable[LedgerItem],
    start: date,
    end: date,
) -> List[TimelinePoint]:
    """
    Daily open amounts falling due between start and end (inclusive) with the
    cumulative net position (receivables - payables).
    """
    if start > end:
        return []

    rows: List[Tuple[date, Decimal, Decimal]] = []
    for item in receivables:
        if item.is_open and start <= item.due_date <= end:
            rows.append((item.due_date, item.outstanding, Decimal("0")))
    for item in payables:
        if item.is_open and start <= item.due_date <= end:
            rows.append((item.due_date, Decimal("0"), item.outstanding))

    days = [ts.date() for ts in pd.date_range(start=start, end=end, freq="D")]
    per_day: Dict[date, Tuple[Decimal, Decimal]] = {}

    if rows:
        frame = pd.DataFrame(rows, columns=["day", "receivables", "payables"])
        grouped = frame.groupby("day")[["receivables", "payables"]].sum()
        for day, row in grouped.iterrows():
            per_day[day] = (Decimal(row["receivables"]), Decimal(row["payables"]))

    timeline = []
    cumulative = Decimal("0")
    for day in days:
        rec, pay = per_day.get(day, (Decimal("0"), Decimal("0")))
        cumulative += rec - pay
        timeline.append(TimelinePoint(day=day, receivables=rec, payables=pay, net_position=cumulative))

    return timeline
