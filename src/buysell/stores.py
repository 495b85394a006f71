"""Store contracts consumed by the sale orchestrator and the analytics layer.

The engine never talks to a database directly. It receives a product store and
a transaction store through :class:`buysell.core_logic.RuntimeContext` and
relies only on the methods declared here. :mod:`buysell.data_manager` provides
the workbook-backed implementations; the in-memory ones below serve tests and
scripted use.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .constants import DecrementResult
from .data_manager import ProductRow, TransactionRow


@runtime_checkable
class ProductStore(Protocol):
    """Read products and atomically take stock out of them."""

    def get_by_id(self, product_id: str) -> Optional[ProductRow]: ...

    def list_all(self) -> List[ProductRow]: ...

    def add(self, product: ProductRow) -> None: ...

    def conditional_decrement_stock(self, product_id: str, amount: int) -> DecrementResult:
        """Subtract ``amount`` only if the current stock covers it.

        Implementations must perform the check and the write as one atomic
        step on their side.
        """
        ...


@runtime_checkable
class TransactionStore(Protocol):
    """Append-only log of committed sales."""

    def append(self, transaction: TransactionRow) -> None:
        """Persist ``transaction``; raise on failure."""
        ...

    def list_all(self) -> List[TransactionRow]:
        """Return every sale, newest ``created_at`` first."""
        ...


class InMemoryProductStore:
    """Dictionary-backed product store guarded by a lock."""

    def __init__(self, products: Optional[List[ProductRow]] = None) -> None:
        self._lock = threading.Lock()
        self._products: Dict[str, ProductRow] = {}
        for product in products or []:
            self.add(product)

    def get_by_id(self, product_id: str) -> Optional[ProductRow]:
        with self._lock:
            return self._products.get(product_id)

    def list_all(self) -> List[ProductRow]:
        with self._lock:
            return list(self._products.values())

    def add(self, product: ProductRow) -> None:
        if product.product_id is None:
            raise ValueError("Products must carry an id before they are stored")
        with self._lock:
            self._products[product.product_id] = product

    def conditional_decrement_stock(self, product_id: str, amount: int) -> DecrementResult:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return DecrementResult.NOT_FOUND
            if product.stock < amount:
                return DecrementResult.INSUFFICIENT_STOCK
            self._products[product_id] = replace(product, stock=product.stock - amount)
            return DecrementResult.SUCCESS


class InMemoryTransactionStore:
    """List-backed transaction store."""

    def __init__(self, transactions: Optional[List[TransactionRow]] = None) -> None:
        self._lock = threading.Lock()
        self._transactions: List[TransactionRow] = list(transactions or [])

    def append(self, transaction: TransactionRow) -> None:
        with self._lock:
            self._transactions.append(transaction)

    def list_all(self) -> List[TransactionRow]:
        with self._lock:
            snapshot = list(self._transactions)
        return sorted(snapshot, key=lambda row: row.created_at, reverse=True)


__all__ = [
    "ProductStore",
    "TransactionStore",
    "InMemoryProductStore",
    "InMemoryTransactionStore",
]
