"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from buysell import constants, data_manager
from buysell.constants import DecrementResult

from conftest import make_product, make_transaction


@pytest.fixture
def workbook_path(workbook_factory) -> Path:
    return workbook_factory()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=buysell_data.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_read_config_loads_sections(config_file: Path):
    parser = data_manager.read_config(config_file)

    assert parser.get("System", "ShopName") == "Test Shop"
    assert parser.get("Defaults", "Currency") == "TK"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True, low_stock_threshold=3)
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.shop_name == "Test Shop"
    assert settings.low_stock_threshold == 3
    assert settings.recent_transaction_limit == 5


def test_parse_settings_defaults_section_is_optional(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=/tmp/data.xlsx\nShopName=Shop\nSchemaVersion=1.0.0\n")

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.currency == constants.DEFAULT_CURRENCY
    assert settings.low_stock_threshold == constants.DEFAULT_LOW_STOCK_THRESHOLD


def test_parse_settings_requires_system_entries(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=data.xlsx\n")

    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_created_workbook_has_expected_sheets(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)

    assert isinstance(workbook, OpenpyxlWorkbook)
    assert workbook.sheetnames == ["Products", "SaleTransactions"]
    header = [cell.value for cell in workbook["SaleTransactions"][1]]
    assert tuple(header) == data_manager.TRANSACTION_COLUMNS


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_and_reopen_round_trip(workbook_path, tmp_path):
    """Saved rows should be visible after reloading from disk."""

    workbook = data_manager.open_workbook(workbook_path)
    data_manager.append_product(workbook, make_product("P100", name="Chips"))
    copy_path = tmp_path / "copies" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    refreshed = data_manager.open_workbook(copy_path)

    assert refreshed is not workbook
    assert [row.product_id for row in data_manager.iter_products(refreshed)] == ["P100"]
    assert list(data_manager.iter_products(openpyxl.load_workbook(workbook_path))) == []


# ---------------------------------------------------------------------------
# Sheet operations
# ---------------------------------------------------------------------------


def test_iter_products_converts_cell_types(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    workbook["Products"].append(["P300", "Soda", 12, "20.50", 7.0, None, "2024-01-01T00:00:00.000Z"])

    rows = list(data_manager.iter_products(workbook))

    assert rows == [
        data_manager.ProductRow(
            product_id="P300",
            name="Soda",
            buy_price=Decimal("12"),
            sell_price=Decimal("20.50"),
            stock=7,
            image_url=None,
            created_at="2024-01-01T00:00:00.000Z",
        )
    ]


def test_iter_products_skips_unreadable_rows(workbook_path, caplog):
    """A hand-edited product row with bad numbers does not hide the catalogue."""

    workbook = data_manager.open_workbook(workbook_path)
    sheet = workbook["Products"]
    sheet.append(data_manager.serialize_product(make_product("P1")))
    sheet.append(["P2", "Cake", "cheap", 20, 3, None, "2024-01-01T00:00:00.000Z"])
    sheet.append(["P3", "Soda", 10, 20, "plenty", None, "2024-01-01T00:00:00.000Z"])
    sheet.append(data_manager.serialize_product(make_product("P4", name="Chips")))
    store = data_manager.WorkbookProductStore(workbook)

    assert [row.product_id for row in store.list_all()] == ["P1", "P4"]
    assert store.get_by_id("P4").name == "Chips"
    assert store.get_by_id("P2") is None
    assert "row 3" in caplog.text


def test_iter_transactions_survives_saved_workbook(workbook_path):
    """Decimals written by the data layer should read back as equal values."""

    workbook = data_manager.open_workbook(workbook_path)
    record = make_transaction("T1", total_profit="15.5", final_price="115.5")
    data_manager.append_transaction(workbook, record)
    data_manager.save_workbook(workbook, workbook_path)

    rows = list(data_manager.iter_transactions(data_manager.open_workbook(workbook_path)))

    assert rows == [record]


def test_iter_transactions_skips_unreadable_rows(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    sheet = workbook["SaleTransactions"]
    sheet.append(data_manager.serialize_transaction(make_transaction("T-good")))
    sheet.append(["T-bad", "P1", "Tea", "abc", "NONE", 0, 100, 1, 60, 40, "2024-03-10"])
    sheet.append([None] * len(data_manager.TRANSACTION_COLUMNS))

    rows = list(data_manager.iter_transactions(workbook))

    assert [row.transaction_id for row in rows] == ["T-good"]


def test_deserialize_transaction_accepts_excel_datetimes():
    """Cells retyped by hand in Excel come back as datetime objects."""

    raw = data_manager.serialize_transaction(make_transaction("T1"))
    raw[-1] = datetime(2024, 3, 10, 14, 5, 6, 789000)

    record = data_manager.deserialize_transaction(raw)

    assert record.created_at == "2024-03-10T14:05:06.789Z"


def test_locate_row_finds_products_by_id(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    data_manager.append_product(workbook, make_product("P1"))
    data_manager.append_product(workbook, make_product("P2", name="Cake"))

    assert data_manager.locate_row(workbook, "Products", "ProductID", "P2") == 3
    assert data_manager.locate_row(workbook, "Products", "ProductID", "P9") is None
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, "Products", "Missing", "P1")


def test_transaction_row_discount_helpers():
    record = data_manager.TransactionRow(
        transaction_id="T1",
        product_id="P1",
        product_name="Tea",
        original_sell_price=Decimal("100"),
        discount_type="PERCENTAGE",
        discount_value=Decimal("10"),
        final_price=Decimal("270"),
        quantity=3,
        buy_price=Decimal("60"),
        total_profit=Decimal("90"),
        created_at="2024-03-10T00:00:00.000Z",
    )

    assert record.unit_final_price() == Decimal("90")
    assert record.discount_amount() == Decimal("10")
    assert record.discount_percentage() == Decimal("10")


# ---------------------------------------------------------------------------
# Store adapters
# ---------------------------------------------------------------------------


def test_workbook_product_store_round_trip(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    store = data_manager.WorkbookProductStore(workbook)
    store.add(make_product("P1", stock=2))

    assert store.get_by_id("P1").stock == 2
    assert store.get_by_id("P2") is None
    assert [row.product_id for row in store.list_all()] == ["P1"]


def test_workbook_product_store_reads_under_lock(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    data_manager.append_product(workbook, make_product("P1"))
    lock = MagicMock()
    store = data_manager.WorkbookProductStore(workbook, lock)

    store.get_by_id("P1")
    store.list_all()

    assert lock.__enter__.call_count == 2
    assert lock.__exit__.call_count == 2


def test_workbook_product_store_conditional_decrement(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    store = data_manager.WorkbookProductStore(workbook)
    store.add(make_product("P1", stock=2))

    assert store.conditional_decrement_stock("P1", 3) is DecrementResult.INSUFFICIENT_STOCK
    assert store.conditional_decrement_stock("P1", 2) is DecrementResult.SUCCESS
    assert store.conditional_decrement_stock("P1", 1) is DecrementResult.INSUFFICIENT_STOCK
    assert store.conditional_decrement_stock("missing", 1) is DecrementResult.NOT_FOUND
    assert store.get_by_id("P1").stock == 0


def test_workbook_product_store_concurrent_last_unit(workbook_path):
    """Only one of two racing decrements may take the last unit."""

    workbook = data_manager.open_workbook(workbook_path)
    store = data_manager.WorkbookProductStore(workbook)
    store.add(make_product("P1", stock=1))
    barrier = threading.Barrier(2)
    results = []

    def attempt():
        barrier.wait()
        results.append(store.conditional_decrement_stock("P1", 1))

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(result.value for result in results) == ["INSUFFICIENT_STOCK", "SUCCESS"]
    assert store.get_by_id("P1").stock == 0


def test_workbook_transaction_store_orders_newest_first(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    store = data_manager.WorkbookTransactionStore(workbook)
    store.append(make_transaction("T-old", created_at="2024-03-01T00:00:00.000Z"))
    store.append(make_transaction("T-new", created_at="2024-03-02T00:00:00.000Z"))

    assert [row.transaction_id for row in store.list_all()] == ["T-new", "T-old"]
