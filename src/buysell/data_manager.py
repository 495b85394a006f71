"""Data access layer for the BuySell engine.

This module provides low-level helpers that read from and write to the
``buysell_data.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending or updating
   individual rows.
4. Store adapters: :class:`WorkbookProductStore` and
   :class:`WorkbookTransactionStore` expose the workbook through the store
   contracts consumed by the sale orchestrator.
"""


from __future__ import annotations

import configparser
import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_RECENT_TRANSACTION_LIMIT,
    TIMESTAMP_FORMAT,
    DecrementResult,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
TRANSACTIONS_SHEET = SheetName.SALE_TRANSACTIONS.value

PRODUCT_COLUMNS = (
    "ProductID",
    "Name",
    "BuyPrice",
    "SellPrice",
    "Stock",
    "ImageURL",
    "CreatedAt",
)

TRANSACTION_COLUMNS = (
    "TransactionID",
    "ProductID",
    "ProductName",
    "OriginalSellPrice",
    "DiscountType",
    "DiscountValue",
    "FinalPrice",
    "Quantity",
    "BuyPrice",
    "TotalProfit",
    "CreatedAt",
)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    currency: str = DEFAULT_CURRENCY
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    recent_transaction_limit: int = DEFAULT_RECENT_TRANSACTION_LIMIT


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: Optional[str]
    name: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int
    image_url: Optional[str] = None
    created_at: Optional[str] = None

    def has_stock(self, quantity: int) -> bool:
        return self.stock >= quantity

    def profit_per_unit(self) -> Decimal:
        return self.sell_price - self.buy_price


@dataclass(frozen=True)
class TransactionRow:
    """Immutable record of one committed sale line.

    ``final_price`` and ``total_profit`` cover the whole line (unit price
    after discount multiplied by ``quantity``). ``product_name``,
    ``original_sell_price`` and ``buy_price`` are snapshots taken at checkout
    time so later product edits never rewrite history.
    """

    transaction_id: str
    product_id: str
    product_name: str
    original_sell_price: Decimal
    discount_type: str
    discount_value: Decimal
    final_price: Decimal
    quantity: int
    buy_price: Decimal
    total_profit: Decimal
    created_at: str

    def unit_final_price(self) -> Decimal:
        if self.quantity <= 0:
            return self.final_price
        return self.final_price / self.quantity

    def discount_amount(self) -> Decimal:
        """Per-unit discount in currency; negative when sold above list price."""

        return self.original_sell_price - self.unit_final_price()

    def discount_percentage(self) -> Decimal:
        if self.original_sell_price == 0:
            return Decimal("0")
        return self.discount_amount() / self.original_sell_price * 100


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. When no explicit path is given the function
    walks up from the current working directory toward the filesystem root
    looking for a file named ``CONFIG_FILE_NAME``. The first match that exists
    on disk is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` entries are optional and
    fall back to the package defaults in :mod:`buysell.constants`. Relative
    ``DataFile`` paths are expanded against ``base_path`` when provided, or
    against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If a numeric default cannot be parsed as an integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    currency = parser.get("Defaults", "Currency", fallback=DEFAULT_CURRENCY)
    low_stock = parser.getint("Defaults", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)
    recent_limit = parser.getint(
        "Defaults", "RecentTransactionLimit", fallback=DEFAULT_RECENT_TRANSACTION_LIMIT
    )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        currency=currency,
        low_stock_threshold=low_stock,
        recent_transaction_limit=recent_limit,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The iterator skips the header row and any fully empty rows. Rows whose
    price or stock cells cannot be parsed are logged and skipped.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    sheet = workbook[PRODUCTS_SHEET]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if not any(cell is not None for cell in raw):
            continue
        try:
            yield deserialize_product(raw)
        except (InvalidOperation, ValueError, TypeError) as exc:
            log.warning("Skipping unreadable product row %d: %s", row_idx, exc)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream sale records from the ``SaleTransactions`` worksheet.

    Rows whose numeric cells cannot be parsed are logged and skipped so that a
    single hand-edited row does not hide the rest of the history.

    Yields:
        TransactionRow: Normalized transaction record for each populated row.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if not any(cell is not None for cell in raw):
            continue
        try:
            yield deserialize_transaction(raw)
        except (InvalidOperation, ValueError, TypeError) as exc:
            log.warning("Skipping unreadable transaction row %d: %s", row_idx, exc)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    sheet = workbook[PRODUCTS_SHEET]
    sheet.append(serialize_product(record))


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a sale record to the ``SaleTransactions`` worksheet.

    Numerical fields remain :class:`~decimal.Decimal` instances after
    serialization, allowing Excel to preserve precision when the workbook is
    saved.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    sheet.append(serialize_transaction(record))


def header_map(workbook: Workbook, sheet_name: str) -> dict[Any, int]:
    """Map header titles of ``sheet_name`` to 1-based column indices."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    columns = header_map(workbook, sheet_name)
    if key_column not in columns:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = columns[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.buy_price,
        record.sell_price,
        record.stock,
        record.image_url,
        record.created_at,
    ]


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a sale dataclass into the ``SaleTransactions`` column order."""

    return [
        record.transaction_id,
        record.product_id,
        record.product_name,
        record.original_sell_price,
        record.discount_type,
        record.discount_value,
        record.final_price,
        record.quantity,
        record.buy_price,
        record.total_profit,
        record.created_at,
    ]


def _decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _integer(raw: object) -> int:
    return int(Decimal(str(raw))) if raw is not None else 0


def _optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _timestamp_text(raw: object) -> str:
    # Cells edited by hand in Excel come back as datetimes instead of text.
    if isinstance(raw, datetime):
        return raw.strftime(TIMESTAMP_FORMAT)[:-4] + "Z"
    if isinstance(raw, date):
        return raw.isoformat()
    return str(raw) if raw is not None else ""


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Prices become :class:`~decimal.Decimal`, stock becomes ``int`` and blank
    optional cells stay ``None``.
    """

    product_id, name, buy_raw, sell_raw, stock_raw, image_url, created_at = tuple(raw_row[:7])
    return ProductRow(
        product_id=_optional_text(product_id),
        name=str(name) if name is not None else "",
        buy_price=_decimal(buy_raw),
        sell_price=_decimal(sell_raw),
        stock=_integer(stock_raw),
        image_url=_optional_text(image_url),
        created_at=_timestamp_text(created_at) if created_at is not None else None,
    )


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed sale record."""

    (
        transaction_id,
        product_id,
        product_name,
        original_sell_price,
        discount_type,
        discount_value,
        final_price,
        quantity,
        buy_price,
        total_profit,
        created_at,
    ) = tuple(raw_row[:11])

    return TransactionRow(
        transaction_id=str(transaction_id),
        product_id=str(product_id) if product_id is not None else "",
        product_name=str(product_name) if product_name is not None else "",
        original_sell_price=_decimal(original_sell_price),
        discount_type=str(discount_type) if discount_type is not None else "NONE",
        discount_value=_decimal(discount_value),
        final_price=_decimal(final_price),
        quantity=_integer(quantity),
        buy_price=_decimal(buy_price),
        total_profit=_decimal(total_profit),
        created_at=_timestamp_text(created_at),
    )


class WorkbookProductStore:
    """Product store backed by the ``Products`` worksheet.

    ``conditional_decrement_stock`` performs the stock check and the write
    while holding the store lock, so two concurrent sales of the last unit
    cannot both succeed.
    """

    def __init__(self, workbook: Workbook, lock: Optional[threading.Lock] = None) -> None:
        self.workbook = workbook
        self._lock = lock or threading.Lock()

    def get_by_id(self, product_id: str) -> Optional[ProductRow]:
        with self._lock:
            for product in iter_products(self.workbook):
                if product.product_id == product_id:
                    return product
        return None

    def list_all(self) -> List[ProductRow]:
        with self._lock:
            return list(iter_products(self.workbook))

    def add(self, product: ProductRow) -> None:
        with self._lock:
            append_product(self.workbook, product)

    def conditional_decrement_stock(self, product_id: str, amount: int) -> DecrementResult:
        with self._lock:
            row_index = locate_row(self.workbook, PRODUCTS_SHEET, "ProductID", product_id)
            if row_index is None:
                return DecrementResult.NOT_FOUND
            stock_column = header_map(self.workbook, PRODUCTS_SHEET)["Stock"]
            cell = self.workbook[PRODUCTS_SHEET].cell(row=row_index, column=stock_column)
            current = _integer(cell.value)
            if current < amount:
                log.warning(
                    "Stock decrement refused for '%s': requested %d, available %d",
                    product_id,
                    amount,
                    current,
                )
                return DecrementResult.INSUFFICIENT_STOCK
            cell.value = current - amount
            return DecrementResult.SUCCESS


class WorkbookTransactionStore:
    """Append-only sale store backed by the ``SaleTransactions`` worksheet."""

    def __init__(self, workbook: Workbook, lock: Optional[threading.Lock] = None) -> None:
        self.workbook = workbook
        self._lock = lock or threading.Lock()

    def append(self, transaction: TransactionRow) -> None:
        with self._lock:
            append_transaction(self.workbook, transaction)

    def list_all(self) -> List[TransactionRow]:
        with self._lock:
            rows = list(iter_transactions(self.workbook))
        return sorted(rows, key=lambda row: row.created_at, reverse=True)
