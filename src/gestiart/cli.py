"""Command-line entry points for GestiArt.

The CLI only wires argparse and turns arguments into the command objects of
:mod:`gestiart.core_logic`. Rendering of invoices and reports is delegated to
:mod:`gestiart.reports`.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reports
from .constants import PaymentMode
from .errors import ConflictError, InsufficientStock, NotFound, PersistenceError, ValidationError
from .stores import SaleFilter


SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    ``writes`` marks commands whose successful run must be persisted.
    """

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    writes: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gestiart-cli",
        description="Sales and stock management for the GestiArt marketplace.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.ini (searched upwards from the working directory by default).",
    )
    return parser


def parse_item(raw: str) -> core_logic.SaleItemCommand:
    """Parse ``PRODUCT:QTY[:UNIT_PRICE[:DISCOUNT]]`` into a sale item command."""

    parts = raw.split(":")
    if len(parts) < 2 or len(parts) > 4 or not parts[0]:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT:QTY[:PRICE[:DISCOUNT]], got '{raw}'")
    try:
        quantity = int(parts[1])
        unit_price = Decimal(parts[2]) if len(parts) > 2 and parts[2] else None
        discount = Decimal(parts[3]) if len(parts) > 3 and parts[3] else Decimal("0")
    except (ValueError, InvalidOperation) as exc:
        raise argparse.ArgumentTypeError(f"Invalid sale item '{raw}': {exc}") from exc
    return core_logic.SaleItemCommand(
        product_id=parts[0],
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
    )


def parse_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got '{raw}'") from exc


def _add_sale_header_arguments(parser: argparse.ArgumentParser, *, defaults: bool) -> None:
    parser.add_argument("--client", dest="client_name", default="" if defaults else None)
    parser.add_argument("--artisan-id", default=None)
    parser.add_argument(
        "--payment-mode",
        choices=[member.value for member in PaymentMode],
        default=PaymentMode.CASH.value if defaults else None,
    )
    parser.add_argument("--notes", default=None)


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--artisan-id", default=None)
    parser.add_argument("--search", default=None, help="Match client name or invoice number.")
    parser.add_argument("--from", dest="date_from", type=parse_date, default=None)
    parser.add_argument("--to", dest="date_to", type=parse_date, default=None)


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto ``parser`` and return the command table."""

    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [*write_command_specs(), *read_command_specs()]
    for spec in specs:
        spec.register(subparsers)
    return build_command_table(specs)


def _simple_registrar(name: str, help_text: str, *configure: Callable[[argparse.ArgumentParser], None]):
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        for step in configure:
            step(parser)
        parser.set_defaults(command=name)
        return parser

    return registrar


def write_command_specs() -> Sequence[CommandSpec]:
    """Declare mutating commands: catalog, restock and sale changes."""

    def add_product_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--price", required=True, type=Decimal)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--artisan-id", default=None)
        parser.add_argument("--category", default=None)

    def restock_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True, type=int)

    def sale_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            metavar="PRODUCT:QTY[:PRICE[:DISCOUNT]]",
        )
        _add_sale_header_arguments(parser, defaults=True)

    def update_sale_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sale-id", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            default=None,
            metavar="PRODUCT:QTY[:PRICE[:DISCOUNT]]",
            help="Replaces every line item of the sale when given.",
        )
        _add_sale_header_arguments(parser, defaults=False)

    def sale_id_arg(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sale-id", required=True)

    table = [
        ("add-product", "Register a product in the catalog.", add_product_args, run_add_product),
        ("restock", "Add units to a product's stock.", restock_args, run_restock),
        ("sale", "Record a multi-item sale.", sale_args, run_sale),
        ("update-sale", "Edit a sale; new items replace the old ones.", update_sale_args, run_update_sale),
        ("delete-sale", "Delete a sale and give its stock back.", sale_id_arg, run_delete_sale),
    ]
    return [
        CommandSpec(name, help_text, _simple_registrar(name, help_text, configure), execute, writes=True)
        for name, help_text, configure, execute in table
    ]


def read_command_specs() -> Sequence[CommandSpec]:
    """Declare read-only commands: listings, statistics and documents."""

    def nothing(parser: argparse.ArgumentParser) -> None:
        return None

    def sale_id_arg(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sale-id", required=True)

    def summary_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--artisan-id", default=None)

    def invoice_args(parser: argparse.ArgumentParser) -> None:
        sale_id_arg(parser)
        parser.add_argument("--output", type=Path, default=None, help="Defaults to Facture_<invoice>.xlsx.")

    def report_args(parser: argparse.ArgumentParser) -> None:
        _add_filter_arguments(parser)
        parser.add_argument("--output", type=Path, default=None, help="Defaults to Rapport_Ventes_<date>.xlsx.")

    table = [
        ("stock", "Display current stock levels.", nothing, run_stock),
        ("sales", "List sales, optionally filtered.", _add_filter_arguments, run_sales),
        ("show-sale", "Print the invoice of one sale.", sale_id_arg, run_show_sale),
        ("summary", "Display revenue statistics.", summary_args, run_summary),
        ("invoice", "Write the invoice workbook of one sale.", invoice_args, run_invoice),
        ("report", "Write a sales report workbook.", report_args, run_report),
    ]
    return [
        CommandSpec(name, help_text, _simple_registrar(name, help_text, configure), execute)
        for name, help_text, configure, execute in table
    ]


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Index command specifications by name, rejecting duplicates."""

    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    if getattr(args, "command", None) is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def translate_sale(args: argparse.Namespace) -> core_logic.CreateSaleCommand:
    return core_logic.CreateSaleCommand(
        items=tuple(args.items),
        client_name=args.client_name,
        artisan_id=args.artisan_id,
        payment_mode=PaymentMode(args.payment_mode),
        notes=args.notes,
    )


def translate_update_sale(args: argparse.Namespace) -> core_logic.UpdateSaleCommand:
    return core_logic.UpdateSaleCommand(
        sale_id=args.sale_id,
        items=tuple(args.items) if args.items is not None else None,
        client_name=args.client_name,
        artisan_id=args.artisan_id,
        payment_mode=PaymentMode(args.payment_mode) if args.payment_mode is not None else None,
        notes=args.notes,
    )


def translate_filter(args: argparse.Namespace) -> SaleFilter:
    return SaleFilter(
        artisan_id=args.artisan_id,
        search=args.search,
        date_from=args.date_from,
        date_to=args.date_to,
    )


def _currency(context: core_logic.RuntimeContext) -> str:
    return context.settings.currency


def _print_sale(context: core_logic.RuntimeContext, sale) -> None:
    products = {product.product_id: product for product in core_logic.list_products(context)}
    for line in reports.invoice_lines(
        sale, products, shop_name=context.settings.shop_name, currency=_currency(context)
    ):
        print(line)


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.register_product(
        context,
        product_id=args.product_id,
        product_name=args.product_name,
        price=args.price,
        stock=args.stock,
        artisan_id=args.artisan_id,
        category=args.category,
    )
    print(f"Added {product.product_id} ({product.product_name}), stock {product.stock}")
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.restock_product(context, args.product_id, args.quantity)
    print(f"{product.product_id}: stock now {product.stock}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sale = core_logic.create_sale(context, translate_sale(args))
    print(f"Sale {sale.sale_id} recorded as {sale.invoice_number}")
    _print_sale(context, sale)
    return 0


def run_update_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sale = core_logic.update_sale(context, translate_update_sale(args))
    print(f"Sale {sale.sale_id} updated")
    _print_sale(context, sale)
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sale = core_logic.delete_sale(context, args.sale_id)
    print(f"Sale {sale.sale_id} ({sale.invoice_number}) deleted, stock restored")
    return 0


def run_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for product in sorted(core_logic.list_products(context), key=lambda item: item.product_id):
        print(
            f"{product.product_id}\t{product.product_name}\t{product.stock}\t"
            f"{reports.format_amount(product.price, _currency(context))}"
        )
    return 0


def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sales = core_logic.list_sales(context, translate_filter(args))
    for sale in sales:
        print(
            f"{sale.sale_id}\t{reports.format_sale_date(sale)}\t{sale.invoice_number}\t"
            f"{sale.client_name or '-'}\t{reports.format_amount(sale.total_amount, _currency(context))}"
        )
    print(f"{len(sales)} sale(s)")
    return 0


def run_show_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _print_sale(context, core_logic.get_sale(context, args.sale_id))
    return 0


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = core_logic.summarize_sales(context, artisan_id=args.artisan_id)
    currency = _currency(context)
    print(f"Chiffre d'affaires: {reports.format_amount(summary['total_revenue'], currency)}")
    print(f"Ventes: {summary['sales_count']}")
    print(f"Panier moyen: {reports.format_amount(summary['average_sale'], currency)}")
    for month, amount in summary["revenue_by_month"].items():
        print(f"  {month}: {reports.format_amount(amount, currency)}")
    for product_id, units in summary["top_products"]:
        print(f"  {product_id}: {units} unit(s)")
    return 0


def run_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sale = core_logic.get_sale(context, args.sale_id)
    products = {product.product_id: product for product in core_logic.list_products(context)}
    workbook = reports.render_invoice(
        sale, products, shop_name=context.settings.shop_name, currency=_currency(context)
    )
    destination = args.output or Path.cwd() / reports.invoice_file_name(sale)
    print(reports.save_document(workbook, destination))
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    generated_at = datetime.now(UTC)
    sales = core_logic.list_sales(context, translate_filter(args))
    workbook = reports.render_sales_report(
        sales,
        shop_name=context.settings.shop_name,
        currency=_currency(context),
        generated_at=generated_at,
    )
    destination = args.output or Path.cwd() / reports.report_file_name(generated_at)
    print(reports.save_document(workbook, destination))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into exit codes."""

    if isinstance(error, (ValidationError, InsufficientStock, ConflictError)):
        log.error("%s", error)
        return 2
    if isinstance(error, NotFound):
        log.error("%s", error)
        return 4
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, PersistenceError):
        log.critical("%s", error)
        return 1
    log.error("%s", error)
    return 1


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].writes:
            core_logic.persist_context(context)
        return exit_code
    except Exception as error:
        return handle_cli_error(error)
