"""Command-line entry points for Wings Inventory.

This module only wires argparse and turns arguments into calls on the
business and report layers. Each sub-command is described by a
:class:`CommandSpec` so tests and alternative front-ends can reuse the
parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence
import sys

from . import core_logic, log, reports
from .constants import DEFAULT_CURRENCY_SYMBOL
from .images import RawUpload


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.SessionState, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="wings-cli",
        description="Inventory, sales and reports for the Wings shop workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
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
    """Declare commands that change the catalog or the ledger."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "edit-product": register_edit_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "sale": register_sale_command(subparsers),
        "sell": register_sell_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only listing and report commands."""
    specs = {
        "products": register_products_command(subparsers),
        "sales": register_sales_command(subparsers),
        "edits": register_edits_command(subparsers),
        "report": register_report_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def quantity_arg(value: str) -> int:
    """argparse type for whole-number quantities."""
    try:
        return int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a whole number: {value!r}") from exc


def price_arg(value: str) -> Decimal:
    """argparse type for prices, parsed as ``Decimal``."""
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from exc


def sale_line_arg(value: str) -> core_logic.SaleLine:
    """argparse type for ``PRODUCT_ID:QUANTITY`` pairs."""
    product_id, sep, quantity = value.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected PRODUCT_ID:QUANTITY, got {value!r}")
    try:
        return core_logic.SaleLine(product_id=int(product_id), quantity=int(quantity))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected whole numbers in {value!r}") from exc


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--quantity", type=quantity_arg, required=True)
        parser.add_argument("--price", type=price_arg, required=True)
        parser.add_argument("--image", type=Path, default=None, help="Image file to embed.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_edit_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-product``."""
    name = "edit-product"
    help_text = "Change a product's name, quantity or price."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--quantity", type=quantity_arg, default=None)
        parser.add_argument("--price", type=price_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Sell a quantity of one product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--quantity", type=quantity_arg, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_sell_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Confirm a multi-line sale; lines without enough stock are skipped."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--line",
            dest="lines",
            type=sale_line_arg,
            action="append",
            required=True,
            metavar="PRODUCT_ID:QUANTITY",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell)


def _register_plain_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.SessionState, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    return _register_plain_command("products", "List the catalog.", run_products)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    return _register_plain_command("sales", "List recorded sales.", run_sales)


def register_edits_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edits``."""
    return _register_plain_command("edits", "List the full edit history.", run_edits)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    return _register_plain_command(
        "report", "Show totals, per-product sales and latest edits.", run_report
    )


def dispatch_command(
    state: core_logic.SessionState,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(state, args)


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


def _currency(state: core_logic.SessionState) -> str:
    if state.settings is None:
        return DEFAULT_CURRENCY_SYMBOL
    return state.settings.currency_symbol


def format_money(amount: Decimal, symbol: str = DEFAULT_CURRENCY_SYMBOL) -> str:
    return f"{symbol}{reports.round_money(amount)}"


def translate_add_product(args: argparse.Namespace) -> core_logic.ProductCandidate:
    """Translate CLI args into a product candidate."""
    image = RawUpload.from_path(args.image) if args.image is not None else None
    return core_logic.ProductCandidate(
        name=args.name,
        quantity=args.quantity,
        price=args.price,
        image=image,
    )


def translate_edit_product(
    state: core_logic.SessionState, args: argparse.Namespace
) -> Optional[core_logic.Product]:
    """Overlay the supplied fields on the stored product, or ``None`` if unknown."""
    current = core_logic.get_product(state, args.product_id)
    if current is None:
        return None
    changes = {
        field_name: value
        for field_name, value in (
            ("name", args.name),
            ("quantity", args.quantity),
            ("price", args.price),
        )
        if value is not None
    }
    return replace(current, **changes)


def run_add_product(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = core_logic.add_product(state, translate_add_product(args))
    print(f"Added product {product.product_id}: {product.name}")
    return 0


def run_edit_product(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Execute the edit-product workflow."""
    updated = translate_edit_product(state, args)
    if updated is None:
        print(f"No product with id {args.product_id}; nothing changed.")
        return 0
    core_logic.edit_product(state, updated)
    print(f"Updated product {updated.product_id}: {updated.name}")
    return 0


def run_delete_product(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow."""
    if core_logic.delete_product(state, args.product_id):
        print(f"Deleted product {args.product_id}")
    else:
        print(f"No product with id {args.product_id}; nothing changed.")
    return 0


def run_sale(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Execute a single-product sale."""
    sale = core_logic.record_sale(state, args.product_id, args.quantity)
    print(
        f"Sold {sale.quantity_sold} x {sale.product_name} for {format_money(sale.total, _currency(state))}",
    )
    return 0


def run_sell(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Execute a batch sale; exit code 2 when no line could be committed."""
    symbol = _currency(state)
    results = core_logic.record_sales(state, args.lines)
    for result in results:
        if result.committed and result.sale is not None:
            print(
                f"OK      {result.sale.quantity_sold} x {result.sale.product_name} "
                f"= {format_money(result.sale.total, symbol)}",
            )
        else:
            print(f"SKIPPED product {result.line.product_id}: {result.reason}")
    if not any(result.committed for result in results):
        print("No sale line could be committed.")
        return 2
    return 0


def run_products(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Print the catalog."""
    symbol = _currency(state)
    products = core_logic.list_products(state)
    if not products:
        print("No products in the catalog.")
    for product in products:
        print(
            f"{product.product_id}\t{product.name}\t{product.quantity}\t{format_money(product.price, symbol)}",
        )
    return 0


def run_sales(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Print the sales history."""
    symbol = _currency(state)
    sales = core_logic.list_sales(state)
    if not sales:
        print("No sales recorded yet.")
    for sale in sales:
        print(
            f"{sale.date}\t{sale.product_name}\t{sale.quantity_sold}\t{format_money(sale.total, symbol)}",
        )
    return 0


def run_edits(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Print the full edit history."""
    edits = core_logic.list_edits(state)
    if not edits:
        print("No edits made yet.")
    for edit in edits:
        print(
            f"{edit.date}\t{edit.name}\t{edit.old_quantity} -> {edit.new_quantity}\t"
            f"{edit.old_price} -> {edit.new_price}",
        )
    return 0


def render_report(report: reports.InventoryReport, symbol: str = DEFAULT_CURRENCY_SYMBOL) -> List[str]:
    """Render the report as plain text lines."""
    summary = report.summary
    lines = [
        f"Total Products: {summary.total_products}",
        f"Total Stock Value: {format_money(summary.total_stock_value, symbol)}",
        f"Total Items Sold: {summary.total_items_sold}",
        f"Total Revenue: {format_money(summary.total_revenue, symbol)}",
    ]
    if report.top_seller is not None:
        lines.append(
            f"Top Selling Product: {report.top_seller.name} (sold {report.top_seller.quantity_sold})"
        )
    lines.append("")
    lines.append("Product\tStock Left\tTotal Sold\tTotal Revenue")
    for row in report.products:
        lines.append(
            f"{row.name}\t{row.quantity}\t{row.total_sold}\t{format_money(row.total_revenue, symbol)}"
        )
    lines.append("")
    if not report.latest_edits:
        lines.append("No edits made yet.")
    else:
        lines.append("Product\tNew Quantity\tNew Price\tDate Edited")
        for edit in report.latest_edits:
            lines.append(
                f"{edit.name}\t{edit.new_quantity}\t{format_money(edit.new_price, symbol)}\t{edit.date}"
            )
    return lines


def run_report(state: core_logic.SessionState, args: argparse.Namespace) -> int:
    """Print the inventory report."""
    report = reports.build_report(
        core_logic.list_products(state),
        core_logic.list_sales(state),
        core_logic.list_edits(state),
    )
    for line in render_report(report, _currency(state)):
        print(line)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        state = core_logic.load_session(getattr(args, "config", None))
        core_logic.ensure_schema_version(state)
        return dispatch_command(state, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
