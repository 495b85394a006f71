"""Pricing rules for a single sale line.

Every function here is total: callers may pass any numeric input and always
receive a result. Range checks (percentage bounds, positive direct prices,
stock limits) belong to the sale orchestrator in :mod:`buysell.core_logic`,
which rejects bad input before anything reaches a store.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from .constants import DiscountType


Number = Union[Decimal, int, str]

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_decimal(value: Number) -> Decimal:
    """Coerce ints, strings, and floats into :class:`~decimal.Decimal`."""

    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class DiscountSpec:
    """Discount chosen for a sale.

    The variant holds a single ``value`` whose meaning depends on
    ``discount_type``: a percentage in ``[0, 100]`` for ``PERCENTAGE`` or the
    absolute final unit price for ``DIRECT_PRICE``. Selecting one mode
    therefore discards whatever the other mode held.
    """

    discount_type: DiscountType = DiscountType.NONE
    value: Decimal = ZERO

    @classmethod
    def none(cls) -> "DiscountSpec":
        return cls(DiscountType.NONE, ZERO)

    @classmethod
    def percentage(cls, percent: Number) -> "DiscountSpec":
        return cls(DiscountType.PERCENTAGE, to_decimal(percent))

    @classmethod
    def direct_price(cls, final_price: Number) -> "DiscountSpec":
        return cls(DiscountType.DIRECT_PRICE, to_decimal(final_price))

    @classmethod
    def from_values(cls, discount_type: object, value: object) -> "DiscountSpec":
        """Rebuild a spec from persisted ``DiscountType``/``DiscountValue`` cells."""

        parsed = DiscountType.parse(discount_type)
        if parsed is DiscountType.NONE:
            return cls.none()
        return cls(parsed, to_decimal(value if value is not None else ZERO))


@dataclass(frozen=True)
class PriceBreakdown:
    """Result of pricing one sale line."""

    final_unit_price: Decimal
    discount_amount: Decimal
    line_final_price: Decimal
    line_profit: Decimal


def final_unit_price(sell_price: Number, discount: DiscountSpec) -> Decimal:
    """Apply ``discount`` to ``sell_price``.

    ``DIRECT_PRICE`` replaces the price outright rather than subtracting from
    it, so a direct price above ``sell_price`` yields a negative discount.
    """

    price = to_decimal(sell_price)
    if discount.discount_type is DiscountType.PERCENTAGE:
        return price * (1 - discount.value / HUNDRED)
    if discount.discount_type is DiscountType.DIRECT_PRICE:
        return discount.value
    return price


def calculate_price(
    sell_price: Number,
    buy_price: Number,
    quantity: int,
    discount: DiscountSpec,
) -> PriceBreakdown:
    """Compute final price, discount and profit for ``quantity`` units.

    Args:
        sell_price (Decimal): Listed unit sell price.
        buy_price (Decimal): Unit acquisition cost.
        quantity (int): Units sold.
        discount (DiscountSpec): Discount chosen by the cashier.

    Returns:
        PriceBreakdown: Per-unit final price and discount, plus the line total
            and line profit. Profit may be negative when the discounted price
            drops below ``buy_price``.
    """

    unit_price = final_unit_price(sell_price, discount)
    cost = to_decimal(buy_price)
    return PriceBreakdown(
        final_unit_price=unit_price,
        discount_amount=to_decimal(sell_price) - unit_price,
        line_final_price=unit_price * quantity,
        line_profit=(unit_price - cost) * quantity,
    )


__all__ = [
    "DiscountSpec",
    "PriceBreakdown",
    "calculate_price",
    "final_unit_price",
    "to_decimal",
]
