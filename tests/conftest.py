"""Shared pytest fixtures and utilities for BuySell tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from buysell import cli, constants, core_logic, data_manager  # noqa: E402
from buysell.setup_excel import create_master_workbook  # noqa: E402
from buysell.stores import InMemoryProductStore, InMemoryTransactionStore  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "Currency = TK\n"
    "LowStockThreshold = {low_stock_threshold}\n"
    "RecentTransactionLimit = 5\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


def make_product(
    product_id: Optional[str] = "P1",
    *,
    name: str = "Tea",
    buy_price: str = "60",
    sell_price: str = "100",
    stock: int = 10,
) -> data_manager.ProductRow:
    """Build a product row with sensible defaults."""

    return data_manager.ProductRow(
        product_id=product_id,
        name=name,
        buy_price=Decimal(buy_price),
        sell_price=Decimal(sell_price),
        stock=stock,
        created_at="2024-01-01T00:00:00.000Z",
    )


def make_transaction(
    transaction_id: str = "T1",
    *,
    created_at: str = "2024-03-10T12:00:00.000Z",
    total_profit: str = "40",
    final_price: str = "100",
    quantity: int = 1,
    product_id: str = "P1",
    product_name: str = "Tea",
) -> data_manager.TransactionRow:
    """Build a sale record with sensible defaults."""

    return data_manager.TransactionRow(
        transaction_id=transaction_id,
        product_id=product_id,
        product_name=product_name,
        original_sell_price=Decimal("100"),
        discount_type=constants.DiscountType.NONE.value,
        discount_value=Decimal("0"),
        final_price=Decimal(final_price),
        quantity=quantity,
        buy_price=Decimal("60"),
        total_profit=Decimal(total_profit),
        created_at=created_at,
    )


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "buysell_data.xlsx",
        products: Iterable[data_manager.ProductRow] = (),
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, products=products, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        low_stock_threshold: int = 5,
        products: Iterable[data_manager.ProductRow] = (),
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", products=products)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                low_stock_threshold=low_stock_threshold,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="buysell-cli", description="BuySell CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "buysell_data.xlsx",
        shop_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def product() -> data_manager.ProductRow:
    return make_product()


@pytest.fixture
def product_store(product: data_manager.ProductRow) -> InMemoryProductStore:
    return InMemoryProductStore([product])


@pytest.fixture
def transaction_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def context(
    settings: data_manager.ConfigSettings,
    product_store: InMemoryProductStore,
    transaction_store: InMemoryTransactionStore,
) -> core_logic.RuntimeContext:
    """Assemble a runtime context over in-memory stores."""

    return core_logic.RuntimeContext(
        settings=settings,
        product_store=product_store,
        transaction_store=transaction_store,
    )


@pytest.fixture
def mock_context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Runtime context whose stores are ``Mock`` objects."""

    return core_logic.RuntimeContext(
        settings=settings,
        product_store=Mock(name="product_store"),
        transaction_store=Mock(name="transaction_store"),
    )


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
