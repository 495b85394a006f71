"""Shopping cart owned by a single checkout session.

The cart prices lines at the listed sell price. Discounts only exist for
single-item sales, so a cart checkout always sells at list price.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from . import log
from .data_manager import ProductRow


@dataclass(frozen=True)
class CartLine:
    """One product and the number of units the customer wants."""

    product: ProductRow
    quantity: int

    @property
    def product_id(self) -> Optional[str]:
        return self.product.product_id

    @property
    def line_total(self) -> Decimal:
        return self.product.sell_price * self.quantity


class Cart:
    """Mapping of product id to :class:`CartLine`.

    Lines are immutable; every mutation replaces or drops a line, and
    :meth:`total` is recomputed from the current lines on each call.
    """

    def __init__(self) -> None:
        self._lines: Dict[Optional[str], CartLine] = {}

    def set_line(self, product: ProductRow, quantity: int) -> None:
        """Upsert ``product`` with ``quantity``; a quantity of 0 or less removes it."""

        key = product.product_id
        if quantity <= 0:
            if self._lines.pop(key, None) is not None:
                log.debug("Removed '%s' from cart", key)
            return
        self._lines[key] = CartLine(product=product, quantity=quantity)
        log.debug("Cart line '%s' set to %d", key, quantity)

    def remove_line(self, product_id: Optional[str]) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def quantity_of(self, product_id: Optional[str]) -> int:
        line = self._lines.get(product_id)
        return line.quantity if line is not None else 0

    def total(self) -> Decimal:
        return sum((line.line_total for line in self._lines.values()), Decimal("0"))

    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._lines


__all__ = ["Cart", "CartLine"]
