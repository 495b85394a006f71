"""Dashboard analytics built from the sale history.

Functions here are pure: they take a list of sales (and products, for the
stock tiles) plus an explicit anchor date, and return value objects. Nothing
reads the wall clock, so the same input always produces the same report.

Records whose ``created_at`` does not start with a valid ``YYYY-MM-DD`` are
left out of every total and listed in ``skipped_transaction_ids`` so the
caller can surface them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence, Tuple

from . import log
from .buckets import AnchorLike, TimeBucket, bucket_key, build_buckets, normalize_anchor, shift_anchor
from .constants import DEFAULT_LOW_STOCK_THRESHOLD, DEFAULT_RECENT_TRANSACTION_LIMIT, FilterMode
from .data_manager import ProductRow, TransactionRow


ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class AggregationResult:
    """Buckets filled with profit plus the records that could not be placed."""

    buckets: Tuple[TimeBucket, ...]
    total: Decimal
    skipped_transaction_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PeriodComparison:
    current_total: Decimal
    previous_total: Decimal
    percentage_change: Decimal


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Chart series and headline figures for one dashboard window."""

    mode: FilterMode
    anchor: date
    buckets: Tuple[TimeBucket, ...]
    total: Decimal
    previous_total: Decimal
    percentage_change: Decimal
    skipped_transaction_ids: Tuple[str, ...] = ()

    @property
    def labels(self) -> List[str]:
        return [bucket.label for bucket in self.buckets]

    @property
    def values(self) -> List[Decimal]:
        return [bucket.value for bucket in self.buckets]


@dataclass(frozen=True)
class DailySummary:
    """Sales count, revenue and profit for the anchor day versus the day before."""

    day: date
    sales_count: int
    revenue: Decimal
    profit: Decimal
    previous_profit: Decimal
    percentage_change: Decimal


@dataclass(frozen=True)
class StockSummary:
    total_products: int
    low_stock_count: int
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    low_stock_products: Tuple[ProductRow, ...] = field(default=(), repr=False)


def aggregate(
    transactions: Iterable[TransactionRow],
    buckets: Sequence[TimeBucket],
    mode: FilterMode,
) -> AggregationResult:
    """Fold each sale's ``total_profit`` into the bucket matching its date.

    Sales outside the window are dropped without comment. Sales with an
    unreadable timestamp are dropped as well but reported back. ``buckets``
    itself is left untouched; the returned buckets are new values starting
    from whatever each input bucket already held.

    Args:
        transactions (Iterable[TransactionRow]): Sales to aggregate.
        buckets (Sequence[TimeBucket]): Window produced by
            :func:`buysell.buckets.build_buckets` for the same ``mode``.
        mode (FilterMode): Decides whether sales are keyed by day or month.

    Returns:
        AggregationResult: Filled buckets in input order, their sum, and the
            ids of skipped records.
    """

    sums: Dict[str, Decimal] = {bucket.key: bucket.value for bucket in buckets}
    skipped: List[str] = []
    for transaction in transactions:
        key = bucket_key(transaction.created_at, mode)
        if key is None:
            log.warning(
                "Skipping transaction '%s' with unreadable timestamp '%s'",
                transaction.transaction_id,
                transaction.created_at,
            )
            skipped.append(transaction.transaction_id)
            continue
        if key in sums:
            sums[key] += transaction.total_profit

    filled = tuple(replace(bucket, value=sums[bucket.key]) for bucket in buckets)
    total = sum((bucket.value for bucket in filled), ZERO)
    return AggregationResult(buckets=filled, total=total, skipped_transaction_ids=tuple(skipped))


def percentage_change(current: Decimal, previous: Decimal) -> Decimal:
    """Return the change from ``previous`` to ``current`` in percent.

    A zero ``previous`` cannot be divided by, so the change is reported as
    ``100`` when ``current`` is positive and ``0`` otherwise.
    """

    if previous == 0:
        return HUNDRED if current > 0 else ZERO
    return (current - previous) / previous * HUNDRED


def _aggregate_windows(
    transactions: Sequence[TransactionRow],
    mode: FilterMode,
    day: date,
) -> Tuple[AggregationResult, AggregationResult]:
    """Aggregate the window ending at ``day`` and the one right before it."""

    current = aggregate(transactions, build_buckets(mode, day), mode)
    previous = aggregate(transactions, build_buckets(mode, shift_anchor(mode, day, -1)), mode)
    return current, previous


def compare_periods(
    transactions: Sequence[TransactionRow],
    mode: FilterMode,
    anchor: AnchorLike,
) -> PeriodComparison:
    """Compare the window ending at ``anchor`` with the window right before it."""

    current, previous = _aggregate_windows(list(transactions), mode, normalize_anchor(anchor))
    return PeriodComparison(
        current_total=current.total,
        previous_total=previous.total,
        percentage_change=percentage_change(current.total, previous.total),
    )


def build_snapshot(
    transactions: Sequence[TransactionRow],
    mode: FilterMode,
    anchor: AnchorLike,
) -> AnalyticsSnapshot:
    """Produce the chart buckets and period comparison for one dashboard view."""

    day = normalize_anchor(anchor)
    current, previous = _aggregate_windows(list(transactions), mode, day)
    log.debug(
        "Built %s snapshot anchored at %s: total=%s previous=%s",
        mode.value,
        day,
        current.total,
        previous.total,
    )
    return AnalyticsSnapshot(
        mode=mode,
        anchor=day,
        buckets=current.buckets,
        total=current.total,
        previous_total=previous.total,
        percentage_change=percentage_change(current.total, previous.total),
        skipped_transaction_ids=current.skipped_transaction_ids,
    )


def daily_summary(transactions: Iterable[TransactionRow], anchor: AnchorLike) -> DailySummary:
    """Summarise the anchor day's sales and compare its profit with the day before."""

    day = normalize_anchor(anchor)
    today_key = day.isoformat()
    yesterday_key = (day - timedelta(days=1)).isoformat()

    sales_count = 0
    revenue = ZERO
    profit = ZERO
    previous_profit = ZERO
    for transaction in transactions:
        key = bucket_key(transaction.created_at, FilterMode.WEEKLY)
        if key == today_key:
            sales_count += 1
            revenue += transaction.final_price
            profit += transaction.total_profit
        elif key == yesterday_key:
            previous_profit += transaction.total_profit

    return DailySummary(
        day=day,
        sales_count=sales_count,
        revenue=revenue,
        profit=profit,
        previous_profit=previous_profit,
        percentage_change=percentage_change(profit, previous_profit),
    )


def stock_summary(
    products: Iterable[ProductRow],
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> StockSummary:
    products = list(products)
    low = tuple(product for product in products if product.stock <= low_stock_threshold)
    return StockSummary(
        total_products=len(products),
        low_stock_count=len(low),
        low_stock_threshold=low_stock_threshold,
        low_stock_products=low,
    )


def recent_transactions(
    transactions: Iterable[TransactionRow],
    limit: int = DEFAULT_RECENT_TRANSACTION_LIMIT,
) -> List[TransactionRow]:
    """Return the ``limit`` newest sales, newest first."""

    ordered = sorted(transactions, key=lambda row: row.created_at, reverse=True)
    return ordered[: max(limit, 0)]


def format_money(amount: Decimal, currency: str) -> str:
    """Render ``amount`` in whole currency units, truncating the fraction."""

    return f"{int(amount)} {currency}"


def format_change(percent: Decimal) -> str:
    sign = "+" if percent >= 0 else ""
    return f"{sign}{percent:.1f}%"


__all__ = [
    "AggregationResult",
    "AnalyticsSnapshot",
    "DailySummary",
    "PeriodComparison",
    "StockSummary",
    "aggregate",
    "build_snapshot",
    "compare_periods",
    "daily_summary",
    "format_change",
    "format_money",
    "percentage_change",
    "recent_transactions",
    "stock_summary",
]
