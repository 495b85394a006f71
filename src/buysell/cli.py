"""Command-line entry points for the BuySell engine.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing what the business layer returns. The same parser
configuration can be reused by tests or scripts.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, TextIO, Tuple

from . import analytics, core_logic, log
from .cart import Cart
from .constants import DiscountType, FilterMode
from .data_manager import ProductRow, TransactionRow
from .pricing import DiscountSpec


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="buysell-cli",
        description="Command-line tools for the BuySell shop workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and new products."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "sell": register_sell_command(subparsers),
        "checkout": register_checkout_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "report": register_report_command(subparsers),
        "today": register_today_command(subparsers),
        "log": register_log_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--buy-price", required=True)
        parser.add_argument("--sell-price", required=True)
        parser.add_argument("--stock", required=True)
        parser.add_argument("--image-url", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_sell_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Sell one product, optionally with a discount."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True)
        discount = parser.add_mutually_exclusive_group()
        discount.add_argument("--percentage", default=None, help="Percentage off the sell price (0-100).")
        discount.add_argument("--direct-price", default=None, help="Final unit price to charge instead.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell)


def register_checkout_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``checkout``."""
    name = "checkout"
    help_text = "Sell a cart of products at list price."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--line",
            dest="lines",
            action="append",
            required=True,
            metavar="PRODUCT_ID=QTY",
            help="Cart line; repeat for each product.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_checkout)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None, help="Only show products whose name contains this text.")
        parser.add_argument("--low-stock", action="store_true", help="Only show products at or below the threshold.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display profit per day or month with the period comparison."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--filter", dest="filter_mode", choices=["weekly", "monthly"], default="weekly")
        parser.add_argument("--anchor", default=None, help="Report end date as YYYY-MM-DD (defaults to today, UTC).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_profit_report)


def register_today_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``today``."""
    name = "today"
    help_text = "Display today's sales, revenue and profit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--anchor", default=None, help="Day to summarise as YYYY-MM-DD.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_today_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the most recent sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=None, help="Number of sales to show.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_decimal(raw: str, label: str) -> Decimal:
    """Parse ``raw`` or raise :class:`core_logic.ValidationError` naming ``label``."""
    try:
        return Decimal(raw)
    except (InvalidOperation, TypeError) as exc:
        raise core_logic.ValidationError(f"Invalid {label}: {raw!r}") from exc


def parse_quantity(raw: str, label: str = "quantity") -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise core_logic.ValidationError(f"Invalid {label}: {raw!r}") from exc


def parse_anchor(raw: Optional[str]) -> date:
    """Return the date in ``raw`` or today's UTC date when ``raw`` is empty."""
    if not raw:
        return datetime.now(UTC).date()
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise core_logic.ValidationError(f"Invalid anchor date: {raw!r}") from exc


def parse_cart_line(raw: str) -> Tuple[str, int]:
    """Split a ``PRODUCT_ID=QTY`` token."""
    product_id, sep, quantity = raw.partition("=")
    if not sep or not product_id.strip():
        raise core_logic.ValidationError(f"Cart lines must look like PRODUCT_ID=QTY, got {raw!r}")
    return product_id.strip(), parse_quantity(quantity.strip())


def translate_add_product(args: argparse.Namespace) -> core_logic.AddProductCommand:
    """Translate CLI args into an add-product command object."""
    return core_logic.AddProductCommand(
        name=args.name,
        buy_price=parse_decimal(args.buy_price, "buy price"),
        sell_price=parse_decimal(args.sell_price, "sell price"),
        stock=parse_quantity(args.stock, "stock quantity"),
        image_url=args.image_url,
    )


def translate_discount(args: argparse.Namespace) -> DiscountSpec:
    """Pick the discount variant from the mutually exclusive flags."""
    if getattr(args, "percentage", None) is not None:
        return DiscountSpec.percentage(parse_decimal(args.percentage, "percentage"))
    if getattr(args, "direct_price", None) is not None:
        return DiscountSpec.direct_price(parse_decimal(args.direct_price, "direct price"))
    return DiscountSpec.none()


def translate_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command for the current product snapshot."""
    return core_logic.SaleCommand(
        product=core_logic.get_product(context, args.product_id),
        quantity=parse_quantity(args.quantity),
        discount=translate_discount(args),
    )


def translate_checkout(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Cart:
    """Fill a cart from repeated ``--line`` options; repeated ids accumulate."""
    cart = Cart()
    for raw in args.lines:
        product_id, quantity = parse_cart_line(raw)
        product = core_logic.get_product(context, product_id)
        cart.set_line(product, cart.quantity_of(product_id) + quantity)
    return cart


def write_transaction(row: TransactionRow, currency: str, stream: TextIO) -> None:
    spec = DiscountSpec.from_values(row.discount_type, row.discount_value)
    discount = ""
    if spec.discount_type is DiscountType.PERCENTAGE:
        discount = f" (-{spec.value}%)"
    elif spec.discount_type is DiscountType.DIRECT_PRICE:
        discount = f" (at {analytics.format_money(spec.value, currency)} each)"
    print(
        f"{row.created_at}  {row.product_name} x{row.quantity}  "
        f"{analytics.format_money(row.final_price, currency)}  "
        f"profit {analytics.format_money(row.total_profit, currency)}{discount}",
        file=stream,
    )


def write_products(products: List[ProductRow], currency: str, stream: TextIO) -> None:
    for product in products:
        print(
            f"{product.product_id}  {product.name}  stock {product.stock}  "
            f"sell {analytics.format_money(product.sell_price, currency)}",
            file=stream,
        )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    command = translate_add_product(args)
    product = core_logic.add_product(context, command)
    print(f"Added {product.name} ({product.product_id})")
    return 0


def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the single-product sale workflow via the BLL."""
    command = translate_sell(context, args)
    transaction = core_logic.record_sale(context, command)
    write_transaction(transaction, context.settings.currency, sys.stdout)
    return 0


def run_checkout(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the cart checkout workflow via the BLL."""
    cart = translate_checkout(context, args)
    result = core_logic.checkout_cart(context, cart)
    for transaction in result.succeeded:
        write_transaction(transaction, context.settings.currency, sys.stdout)
    result.raise_for_failures()
    print("Checkout completed successfully")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock listing workflow."""
    products = core_logic.list_products(context, query=args.search, low_stock_only=args.low_stock)
    write_products(products, context.settings.currency, sys.stdout)
    summary = analytics.stock_summary(context.product_store.list_all(), context.settings.low_stock_threshold)
    print(f"Total products: {summary.total_products}  Low stock: {summary.low_stock_count}")
    return 0


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the profit chart workflow."""
    mode = FilterMode.MONTHLY if args.filter_mode == "monthly" else FilterMode.WEEKLY
    dashboard = core_logic.build_dashboard(context, mode, parse_anchor(args.anchor))
    snapshot = dashboard.snapshot
    currency = context.settings.currency
    for bucket in snapshot.buckets:
        print(f"{bucket.label}  {analytics.format_money(bucket.value, currency)}")
    print(
        f"Total profit: {analytics.format_money(snapshot.total, currency)} "
        f"({analytics.format_change(snapshot.percentage_change)} vs previous period)"
    )
    if snapshot.skipped_transaction_ids:
        print(f"Skipped {len(snapshot.skipped_transaction_ids)} sale(s) with unreadable dates")
    return 0


def run_today_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily summary workflow."""
    dashboard = core_logic.build_dashboard(context, FilterMode.WEEKLY, parse_anchor(args.anchor))
    today = dashboard.today
    currency = context.settings.currency
    print(f"Sales today: {today.sales_count}")
    print(f"Revenue: {analytics.format_money(today.revenue, currency)}")
    print(
        f"Profit: {analytics.format_money(today.profit, currency)} "
        f"({analytics.format_change(today.percentage_change)} vs yesterday)"
    )
    print(f"Low stock items: {dashboard.stock.low_stock_count}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction log reporting workflow."""
    limit = args.limit if args.limit is not None else context.settings.recent_transaction_limit
    for transaction in analytics.recent_transactions(core_logic.list_transactions(context), limit):
        write_transaction(transaction, context.settings.currency, sys.stdout)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.ValidationError):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    if isinstance(error, core_logic.InventoryConflictError):
        return 4
    if isinstance(error, core_logic.PartialBatchFailure):
        return 5
    if isinstance(error, core_logic.PersistenceError):
        return 6
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        try:
            exit_code = dispatch_command(context, args, command_table)
        except (core_logic.InventoryConflictError, core_logic.PartialBatchFailure):
            # Recorded sales stand even when part of the command failed.
            persist_workbook(context)
            raise
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    raise SystemExit(main())
