"""Business logic layer for the BuySell engine.

This module settles sales against the injected product and transaction stores
and assembles dashboard reports. A sale is committed in two steps: the
immutable sale record is appended first, then stock is taken out with a
conditional decrement that the product store performs atomically. The two
steps are not wrapped in a shared transaction; when the second one fails the
recorded sale stays in place and the caller receives an
:class:`InventoryConflictError` to reconcile by hand.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Tuple

from openpyxl.workbook import Workbook

from . import analytics, data_manager, log, pricing
from .buckets import AnchorLike
from .cart import Cart
from .constants import EXPECTED_SCHEMA_VERSION, DecrementResult, DiscountType, FilterMode
from .pricing import DiscountSpec
from .stores import ProductStore, TransactionStore


class SaleError(Exception):
    """Base class for every failure surfaced by the sale orchestrator."""


class ValidationError(SaleError):
    """Raised when a request is rejected before any store is touched."""


class MissingReferenceError(ValidationError):
    """Raised when a referenced product is unknown to the product store."""


class PersistenceError(SaleError):
    """Raised when the sale record could not be appended; stock is untouched."""


class InventoryConflictError(SaleError):
    """Raised when a sale was recorded but its stock could not be taken out.

    The recorded sale is available on :attr:`transaction`. The engine does
    not retry or reverse it; reconciliation is left to the operator.
    """

    def __init__(self, message: str, *, transaction: data_manager.TransactionRow) -> None:
        super().__init__(message)
        self.transaction = transaction


class PartialBatchFailure(SaleError):
    """Raised on request when one or more cart lines could not be sold."""

    def __init__(self, failures: List["LineFailure"]) -> None:
        names = ", ".join(failure.product_name for failure in failures)
        super().__init__(f"Checkout completed with errors. Failed: {names}")
        self.failures = failures


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and store handles used by the BLL."""

    settings: data_manager.ConfigSettings
    product_store: ProductStore
    transaction_store: TransactionStore
    workbook: Optional[Workbook] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class SaleCommand:
    """User intent for selling ``quantity`` units of one product."""

    product: data_manager.ProductRow
    quantity: int
    discount: DiscountSpec = field(default_factory=DiscountSpec.none)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class AddProductCommand:
    """User intent for registering a new product."""

    name: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int
    image_url: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class LineFailure:
    """One cart line that could not be sold and why."""

    product_id: Optional[str]
    product_name: str
    error: SaleError


@dataclass(frozen=True)
class BatchCheckoutResult:
    """Outcome of a cart checkout; successful lines stand regardless of failures."""

    succeeded: Tuple[data_manager.TransactionRow, ...]
    failures: Tuple[LineFailure, ...]

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed_product_names(self) -> List[str]:
        return [failure.product_name for failure in self.failures]

    def raise_for_failures(self) -> None:
        if self.failures:
            raise PartialBatchFailure(list(self.failures))


@dataclass(frozen=True)
class Dashboard:
    """Everything the reports screen shows, computed for one anchor date."""

    snapshot: analytics.AnalyticsSnapshot
    today: analytics.DailySummary
    stock: analytics.StockSummary
    recent: Tuple[data_manager.TransactionRow, ...]


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def format_timestamp(moment: datetime) -> str:
    """Render ``moment`` as UTC ISO-8601 with milliseconds and a ``Z`` suffix.

    Naive datetimes are assumed to be UTC already.
    """

    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def generate_transaction_id() -> str:
    """Return a fresh, globally unique sale identifier."""

    return uuid.uuid4().hex


def generate_product_id() -> str:
    return str(uuid.uuid4())


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and wire workbook-backed stores.

    The helper resolves ``config.ini``, parses settings, opens the Excel
    workbook, and wraps it in the product and transaction store adapters.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context ready for orchestration functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return context_from_workbook(settings, workbook)


def context_from_workbook(settings: data_manager.ConfigSettings, workbook: Workbook) -> RuntimeContext:
    """Wrap ``workbook`` in store adapters that share one lock."""
    lock = threading.Lock()
    return RuntimeContext(
        settings=settings,
        product_store=data_manager.WorkbookProductStore(workbook, lock),
        transaction_store=data_manager.WorkbookTransactionStore(workbook, lock),
        workbook=workbook,
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the workbook behind ``context``; a no-op for non-workbook stores."""
    if context.workbook is None:
        log.debug("No workbook attached to context; nothing to persist")
        return
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def list_products(
    context: RuntimeContext,
    *,
    query: Optional[str] = None,
    low_stock_only: bool = False,
) -> List[data_manager.ProductRow]:
    """Return products, optionally filtered by name and low stock.

    Args:
        context (RuntimeContext): Runtime context providing the product store.
        query (str | None): Case-insensitive substring matched against the
            product name. Blank queries match everything.
        low_stock_only (bool): When ``True`` keep only products whose stock is
            at or below ``settings.low_stock_threshold``.

    Returns:
        list[data_manager.ProductRow]: Matching products in store order.
    """
    products = context.product_store.list_all()
    if query and query.strip():
        needle = query.strip().casefold()
        products = [product for product in products if needle in product.name.casefold()]
    if low_stock_only:
        threshold = context.settings.low_stock_threshold
        products = [product for product in products if product.stock <= threshold]
    return products


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If the product store does not know ``product_id``.
    """
    product = context.product_store.get_by_id(product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return product


def list_transactions(context: RuntimeContext) -> List[data_manager.TransactionRow]:
    """Return the sale history, newest first."""
    return context.transaction_store.list_all()


def add_product(context: RuntimeContext, command: AddProductCommand) -> data_manager.ProductRow:
    """Validate and register a new product.

    Raises:
        ValidationError: If the name is blank, either price is not a positive
            finite number, or the opening stock is negative.
    """
    if not command.name or not command.name.strip():
        raise _reject("Product name is required")
    buy_price = pricing.to_decimal(command.buy_price)
    sell_price = pricing.to_decimal(command.sell_price)
    if not buy_price.is_finite() or buy_price <= 0:
        raise _reject("Invalid buy price")
    if not sell_price.is_finite() or sell_price <= 0:
        raise _reject("Invalid sell price")
    if command.stock < 0:
        raise _reject("Invalid stock quantity")

    timestamp = _resolve_timestamp(command.timestamp)
    product = data_manager.ProductRow(
        product_id=generate_product_id(),
        name=command.name.strip(),
        buy_price=buy_price,
        sell_price=sell_price,
        stock=command.stock,
        image_url=command.image_url,
        created_at=format_timestamp(timestamp),
    )
    context.product_store.add(product)
    log.info("Added product '%s' (%s) with stock %d", product.name, product.product_id, product.stock)
    return product


def _reject(message: str) -> ValidationError:
    log.error("Validation failed: %s", message)
    return ValidationError(message)


def validate_sale(command: SaleCommand) -> None:
    """Check a sale request before anything is persisted.

    Raises:
        ValidationError: If the product was never stored, the quantity is not
            positive or exceeds the known stock, a percentage discount lies
            outside ``[0, 100]``, a direct price is not positive, or the
            discount value is NaN or infinite.
    """
    product = command.product
    if product.product_id is None:
        raise _reject(f"Product '{product.name}' has no id")
    if command.quantity < 1:
        raise _reject("Quantity must be at least 1")
    if not product.has_stock(command.quantity):
        raise _reject(f"Insufficient stock for '{product.name}'. Available: {product.stock}")

    discount = command.discount
    if discount.discount_type is not DiscountType.NONE and not discount.value.is_finite():
        raise _reject(f"Discount value must be a finite number, got {discount.value}")
    if discount.discount_type is DiscountType.PERCENTAGE and not (0 <= discount.value <= 100):
        raise _reject("Percentage must be between 0 and 100")
    if discount.discount_type is DiscountType.DIRECT_PRICE and discount.value <= 0:
        raise _reject("Final price must be greater than 0")


def build_sale_transaction(
    command: SaleCommand,
    *,
    transaction_id: str,
    timestamp: datetime,
) -> data_manager.TransactionRow:
    """Materialize a :class:`SaleCommand` into an immutable sale record.

    Prices and profit come from :func:`buysell.pricing.calculate_price`;
    the product's name, sell price and buy price are copied in as they are
    at this moment.
    """
    product = command.product
    breakdown = pricing.calculate_price(
        product.sell_price,
        product.buy_price,
        command.quantity,
        command.discount,
    )
    return data_manager.TransactionRow(
        transaction_id=transaction_id,
        product_id=str(product.product_id),
        product_name=product.name,
        original_sell_price=product.sell_price,
        discount_type=command.discount.discount_type.value,
        discount_value=command.discount.value,
        final_price=breakdown.line_final_price,
        quantity=command.quantity,
        buy_price=product.buy_price,
        total_profit=breakdown.line_profit,
        created_at=format_timestamp(timestamp),
    )


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.TransactionRow:
    """Validate, record, and take stock out for a single-product sale.

    Args:
        context (RuntimeContext): Runtime context providing both stores.
        command (SaleCommand): Product snapshot, quantity and discount.

    Returns:
        data_manager.TransactionRow: The sale record that was appended.

    Raises:
        ValidationError: When the request is invalid; no store is called.
        PersistenceError: When appending the record fails; stock is untouched.
        InventoryConflictError: When the record was appended but the
            conditional stock decrement did not succeed, including when the
            decrement raised or was cancelled part way.
    """
    validate_sale(command)

    timestamp = _resolve_timestamp(command.timestamp)
    transaction = build_sale_transaction(
        command,
        transaction_id=generate_transaction_id(),
        timestamp=timestamp,
    )

    try:
        context.transaction_store.append(transaction)
    except Exception as exc:
        log.error("Failed to save transaction for '%s': %s", transaction.product_name, exc)
        raise PersistenceError(f"Could not record sale of '{transaction.product_name}': {exc}") from exc

    try:
        result = context.product_store.conditional_decrement_stock(
            transaction.product_id, transaction.quantity
        )
    except BaseException as exc:
        log.error(
            "Sale '%s' recorded but stock update for '%s' did not finish: %r",
            transaction.transaction_id,
            transaction.product_id,
            exc,
        )
        raise InventoryConflictError(
            f"Sale of '{transaction.product_name}' recorded but stock was not updated: {exc}",
            transaction=transaction,
        ) from exc

    if result is not DecrementResult.SUCCESS:
        log.error(
            "Sale '%s' recorded but stock not updated for '%s' (%s)",
            transaction.transaction_id,
            transaction.product_id,
            result.value,
        )
        raise InventoryConflictError(
            f"Sale of '{transaction.product_name}' recorded but stock was not updated ({result.value})",
            transaction=transaction,
        )

    log.info(
        "Recorded sale '%s' of '%s' (quantity=%d, final=%s, profit=%s)",
        transaction.transaction_id,
        transaction.product_name,
        transaction.quantity,
        transaction.final_price,
        transaction.total_profit,
    )
    return transaction


def checkout_cart(
    context: RuntimeContext,
    cart: Cart,
    *,
    timestamp: Optional[datetime] = None,
    clear: bool = True,
) -> BatchCheckoutResult:
    """Sell every cart line at list price, one line after another.

    A failing line never rolls back the lines sold before it. The cart is
    emptied afterwards whether or not every line succeeded, unless ``clear``
    is ``False``.

    Returns:
        BatchCheckoutResult: Recorded sales and per-line failures, both in
            cart order.
    """
    succeeded: List[data_manager.TransactionRow] = []
    failures: List[LineFailure] = []
    try:
        for line in cart.lines():
            command = SaleCommand(
                product=line.product,
                quantity=line.quantity,
                discount=DiscountSpec.none(),
                timestamp=timestamp,
            )
            try:
                succeeded.append(record_sale(context, command))
            except SaleError as exc:
                failures.append(
                    LineFailure(product_id=line.product_id, product_name=line.product.name, error=exc)
                )
    finally:
        if clear:
            cart.clear()

    if failures:
        log.warning(
            "Checkout completed with errors. Failed: %s",
            ", ".join(failure.product_name for failure in failures),
        )
    else:
        log.info("Checkout completed: %d line(s) sold", len(succeeded))
    return BatchCheckoutResult(succeeded=tuple(succeeded), failures=tuple(failures))


def build_dashboard(
    context: RuntimeContext,
    mode: FilterMode,
    anchor: AnchorLike,
) -> Dashboard:
    """Assemble the reports view for ``anchor`` from both stores."""
    transactions = context.transaction_store.list_all()
    products = context.product_store.list_all()
    return Dashboard(
        snapshot=analytics.build_snapshot(transactions, mode, anchor),
        today=analytics.daily_summary(transactions, anchor),
        stock=analytics.stock_summary(products, context.settings.low_stock_threshold),
        recent=tuple(
            analytics.recent_transactions(transactions, context.settings.recent_transaction_limit)
        ),
    )
