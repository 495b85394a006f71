"""Enumerations and fixed values shared across the BuySell engine.

Centralises domain constants so that the workbook adapter, the sale
orchestrator, the analytics layer, and the CLI agree on identifiers that end
up persisted in the data file.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Wire format for timestamps exchanged with the stores (millisecond precision).
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

DEFAULT_CURRENCY = "TK"
DEFAULT_LOW_STOCK_THRESHOLD = 5
DEFAULT_RECENT_TRANSACTION_LIMIT = 5


class DiscountType(str, Enum):
    """Enumerate the mutually exclusive discount modes of a sale."""

    NONE = "NONE"
    PERCENTAGE = "PERCENTAGE"
    DIRECT_PRICE = "DIRECT_PRICE"

    @classmethod
    def parse(cls, value: object) -> "DiscountType":
        """Map stored text onto a member, treating unknown values as ``NONE``."""

        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        for member in cls:
            if member.value == text:
                return member
        return cls.NONE


class FilterMode(str, Enum):
    """Enumerate the rolling windows offered by the analytics dashboard."""

    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class DecrementResult(str, Enum):
    """Outcome of a conditional stock decrement at the product store."""

    SUCCESS = "SUCCESS"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    NOT_FOUND = "NOT_FOUND"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    PRODUCTS = "Products"
    SALE_TRANSACTIONS = "SaleTransactions"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "TIMESTAMP_FORMAT",
    "DEFAULT_CURRENCY",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "DEFAULT_RECENT_TRANSACTION_LIMIT",
    "DiscountType",
    "FilterMode",
    "DecrementResult",
    "SheetName",
]
