"""Rolling reporting windows for the dashboard.

A window is an ordered list of :class:`TimeBucket` values, oldest first, each
seeded with zero so that empty days or months still show up in charts.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Union

from .constants import FilterMode


WEEK_LENGTH = 7
YEAR_LENGTH = 12

DAY_KEY_FORMAT = "%Y-%m-%d"
DAY_LABEL_FORMAT = "%b %d"
MONTH_LABEL_FORMAT = "%b"

AnchorLike = Union[datetime, date]


@dataclass(frozen=True)
class TimeBucket:
    """A day (``YYYY-MM-DD``) or month (``YYYY-MM``) slot and its value."""

    key: str
    label: str
    value: Decimal = Decimal("0")


def normalize_anchor(anchor: AnchorLike) -> date:
    """Reduce ``anchor`` to its UTC calendar date.

    Naive datetimes are taken to be UTC already; aware ones are converted.
    """

    if isinstance(anchor, datetime):
        if anchor.tzinfo is None:
            return anchor.date()
        return anchor.astimezone(UTC).date()
    return anchor


def add_months(day: date, months: int) -> date:
    """Move ``day`` by ``months`` calendar months, clamping to the month's end."""

    index = day.year * 12 + (day.month - 1) + months
    year, month_index = divmod(index, 12)
    month = month_index + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def shift_anchor(mode: FilterMode, anchor: AnchorLike, periods: int) -> date:
    """Move ``anchor`` by ``periods`` whole windows (7 days or 12 months)."""

    day = normalize_anchor(anchor)
    if mode is FilterMode.WEEKLY:
        return day + timedelta(days=WEEK_LENGTH * periods)
    return add_months(day, YEAR_LENGTH * periods)


def build_buckets(mode: FilterMode, anchor: AnchorLike) -> List[TimeBucket]:
    """Build the zero-filled window that ends on ``anchor``.

    Args:
        mode (FilterMode): ``WEEKLY`` yields 7 daily buckets covering
            ``anchor - 6 days`` through ``anchor``; ``MONTHLY`` yields 12
            monthly buckets covering the anchor's month and the 11 before it.
        anchor (datetime | date): Reference "now" of the report.

    Returns:
        list[TimeBucket]: Buckets in ascending key order, every value ``0``.
    """

    day = normalize_anchor(anchor)
    if mode is FilterMode.WEEKLY:
        days = [day - timedelta(days=offset) for offset in range(WEEK_LENGTH - 1, -1, -1)]
        return [
            TimeBucket(key=d.strftime(DAY_KEY_FORMAT), label=d.strftime(DAY_LABEL_FORMAT))
            for d in days
        ]

    first_of_month = day.replace(day=1)
    months = [add_months(first_of_month, -offset) for offset in range(YEAR_LENGTH - 1, -1, -1)]
    return [
        TimeBucket(key=f"{m.year:04d}-{m.month:02d}", label=m.strftime(MONTH_LABEL_FORMAT))
        for m in months
    ]


def bucket_key(timestamp: object, mode: FilterMode) -> Optional[str]:
    """Derive the bucket key of a stored timestamp.

    Only the leading ``YYYY-MM-DD`` is read, so trailing time, zone or junk
    never matters. Returns ``None`` when those ten characters are not a valid
    date.
    """

    text = str(timestamp or "")[:10]
    if len(text) < 10:
        return None
    try:
        day = datetime.strptime(text, DAY_KEY_FORMAT).date()
    except ValueError:
        return None
    if mode is FilterMode.WEEKLY:
        return day.strftime(DAY_KEY_FORMAT)
    return f"{day.year:04d}-{day.month:02d}"


__all__ = [
    "TimeBucket",
    "add_months",
    "bucket_key",
    "build_buckets",
    "normalize_anchor",
    "shift_anchor",
]
