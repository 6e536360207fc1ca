"""Initialise the GestiArt workbook.

Usable as the ``gestiart-setup`` script and as a library from tests. The
sheet layout comes from :data:`gestiart.data_manager.SHEET_COLUMNS` so the
bootstrap and the data access layer cannot drift apart.
"""

from __future__ import annotations

import argparse
import sys
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import INVOICE_SEQUENCE_COUNTER
from .data_manager import ProductRow


DEMO_CATALOG: Sequence[ProductRow] = (
    ProductRow("prod-1", "Vase en terre cuite", Decimal("15000"), 12, "artisan-1", "Poterie"),
    ProductRow("prod-2", "Bol décoratif", Decimal("8000"), 20, "artisan-1", "Poterie"),
    ProductRow("prod-3", "Sculpture Lion", Decimal("45000"), 3, "artisan-2", "Sculpture"),
    ProductRow("prod-4", "Masque traditionnel", Decimal("25000"), 8, "artisan-2", "Sculpture"),
    ProductRow("prod-5", "Collier en perles", Decimal("12000"), 15, "artisan-3", "Bijouterie"),
    ProductRow("prod-6", "Bracelet en argent", Decimal("18000"), 10, "artisan-3", "Bijouterie"),
)


def create_master_workbook(
    destination: Path,
    *,
    products: Iterable[ProductRow] = (),
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty workbook with bold headers, optionally seeding products.

    The ``Counters`` sheet starts with the invoice sequence at zero.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index, value=column_name)
            cell.font = bold_font

    data_manager.write_counter(workbook, INVOICE_SEQUENCE_COUNTER, 0)
    seeded = 0
    for product in products:
        data_manager.append_product(workbook, product)
        seeded += 1

    workbook.save(destination)
    log.info("Created workbook '%s' with %d product(s)", destination, seeded)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False, demo_catalog: bool = False) -> Path:
    """Create the workbook named by ``DataFile`` in ``config_path``."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=Path(config_path).expanduser().resolve().parent)
    return create_master_workbook(
        settings.data_file,
        products=DEMO_CATALOG if demo_catalog else (),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="gestiart-setup", description="Initialise the GestiArt workbook")
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--demo-catalog",
        action="store_true",
        help="Seed the Products sheet with the six sample artisan products.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- GestiArt Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force, demo_catalog=args.demo_catalog)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
