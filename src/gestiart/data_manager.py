"""Data access layer for GestiArt.

This module provides low-level helpers that read from and write to the
GestiArt workbook. Business rules (stock checks, compensation, invoice
allocation policy) belong elsewhere.

The public API covers three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: loading typed records and appending, updating or
   deleting individual rows.
"""

from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_INVOICE_PREFIX,
    SheetName,
    StoreBackend,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
SALES_SHEET = SheetName.SALES.value
SALE_ITEMS_SHEET = SheetName.SALE_ITEMS.value
COUNTERS_SHEET = SheetName.COUNTERS.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "ProductName",
        "Price",
        "Stock",
        "ArtisanID",
        "Category",
    ],
    SALES_SHEET: [
        "SaleID",
        "InvoiceNumber",
        "ClientName",
        "ArtisanID",
        "TotalAmount",
        "SaleDate",
        "Status",
        "PaymentMode",
        "Notes",
    ],
    SALE_ITEMS_SHEET: [
        "SaleID",
        "LineNo",
        "ProductID",
        "Quantity",
        "UnitPrice",
        "Discount",
        "LineAmount",
    ],
    COUNTERS_SHEET: [
        "CounterName",
        "Value",
    ],
}

# Maps SaleRow attribute names onto the Sales sheet headers for partial updates.
SALE_FIELD_COLUMNS: Mapping[str, str] = {
    "client_name": "ClientName",
    "artisan_id": "ArtisanID",
    "total_amount": "TotalAmount",
    "sale_date_iso": "SaleDate",
    "status": "Status",
    "payment_mode": "PaymentMode",
    "notes": "Notes",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    backend: StoreBackend = StoreBackend.WORKBOOK
    invoice_prefix: str = DEFAULT_INVOICE_PREFIX
    currency: str = DEFAULT_CURRENCY


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    price: Decimal
    stock: int
    artisan_id: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class SaleItemRow:
    """One line of a sale; ``line_amount`` is stored, not derived on read."""

    product_id: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    line_amount: Decimal


@dataclass(frozen=True)
class SaleRow:
    """A persisted sale together with its ordered line items."""

    sale_id: str
    invoice_number: str
    client_name: str
    artisan_id: Optional[str]
    items: Tuple[SaleItemRow, ...]
    total_amount: Decimal
    sale_date_iso: str
    status: str
    payment_mode: str
    notes: Optional[str] = None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    An explicit path is returned as-is. Otherwise the search walks from the
    current working directory up to the filesystem root and returns the first
    ``config.ini`` it finds.

    Args:
        explicit_path (Path | None): Path given on the command line, if any.

    Returns:
        Path: The configuration file to read.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return the raw ``ConfigParser``.

    Required entries are validated later by :func:`parse_settings`.

    Args:
        config_path (Path): Location of the ``config.ini`` file.

    Returns:
        configparser.ConfigParser: The parsed, unvalidated configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile``, ``ShopName`` and ``SchemaVersion``.
    ``Backend`` and the ``[Invoices]`` section are optional. Relative data
    files are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Configuration read by
            :func:`read_config`.
        base_path (Path | None): Directory that relative paths resolve
            against, usually the folder holding ``config.ini``.

    Returns:
        ConfigSettings: Validated settings for the runtime context.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``Backend`` names an unknown store implementation.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    backend_raw = parser.get("System", "Backend", fallback=StoreBackend.WORKBOOK.value)
    try:
        backend = StoreBackend(backend_raw.strip().lower())
    except ValueError as exc:
        choices = ", ".join(member.value for member in StoreBackend)
        raise ValueError(f"Unknown backend '{backend_raw}' (expected one of: {choices})") from exc

    invoice_prefix = parser.get("Invoices", "Prefix", fallback=DEFAULT_INVOICE_PREFIX)
    currency = parser.get("Invoices", "Currency", fallback=DEFAULT_CURRENCY)

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        backend=backend,
        invoice_prefix=invoice_prefix,
        currency=currency,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the GestiArt workbook and check that every managed sheet exists.

    Args:
        data_file (Path): Location of the ``.xlsx`` workbook.

    Returns:
        Workbook: The loaded openpyxl workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        KeyError: If one of the sheets in :data:`SHEET_COLUMNS` is missing.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    workbook = openpyxl.load_workbook(data_file)
    missing = [name for name in SHEET_COLUMNS if name not in workbook.sheetnames]
    if missing:
        raise KeyError(f"Workbook {data_file} is missing sheets: {', '.join(missing)}")
    return workbook


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist ``workbook`` at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def _header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Return a header title -> 1-based column index map for ``sheet_name``."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def _iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[object, ...]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Yield typed product records in sheet order, skipping blank rows."""

    for raw in _iter_raw_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_sale_items(workbook: Workbook) -> Iterable[Tuple[str, int, SaleItemRow]]:
    """Yield ``(sale_id, line_no, item)`` triples from the ``SaleItems`` sheet."""

    for raw in _iter_raw_rows(workbook, SALE_ITEMS_SHEET):
        yield deserialize_sale_item(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Yield sales in sheet order with their line items attached.

    Items are grouped by ``SaleID`` and ordered by ``LineNo`` so the sale
    keeps the item order it was created with.
    """

    grouped: Dict[str, List[Tuple[int, SaleItemRow]]] = {}
    for sale_id, line_no, item in iter_sale_items(workbook):
        grouped.setdefault(sale_id, []).append((line_no, item))

    for raw in _iter_raw_rows(workbook, SALES_SHEET):
        lines = grouped.get(str(raw[0]), [])
        items = tuple(item for _, item in sorted(lines, key=lambda pair: pair[0]))
        yield deserialize_sale(raw, items)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find the first row whose ``key_column`` equals ``key_value``.

    Returns:
        int | None: 1-based Excel row index, or ``None`` when nothing matches.

    Raises:
        KeyError: If ``key_column`` is not present in the header row.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def locate_rows(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> List[int]:
    """Like :func:`locate_row` but returns every matching row index."""

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    return [
        row_idx
        for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
        if row[key_col_index - 1] is not None and str(row[key_col_index - 1]) == key_value
    ]


def _update_row(workbook: Workbook, sheet_name: str, row_index: int, field_values: Mapping[str, Any]) -> None:
    header_map = _header_map(workbook, sheet_name)
    sheet = workbook[sheet_name]
    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def update_product(workbook: Workbook, product_id: str, *, field_values: Mapping[str, Any]) -> None:
    """Overwrite selected columns of an existing product row.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")
    _update_row(workbook, PRODUCTS_SHEET, row_index, field_values)


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sale header row and one ``SaleItems`` row per line item."""

    workbook[SALES_SHEET].append(serialize_sale(record))
    write_sale_items(workbook, record.sale_id, record.items)


def write_sale_items(workbook: Workbook, sale_id: str, items: Sequence[SaleItemRow]) -> None:
    """Append ``items`` for ``sale_id``, numbering lines from 1."""

    sheet = workbook[SALE_ITEMS_SHEET]
    for line_no, item in enumerate(items, start=1):
        sheet.append(serialize_sale_item(sale_id, line_no, item))


def update_sale(workbook: Workbook, sale_id: str, *, field_values: Mapping[str, Any]) -> None:
    """Overwrite selected columns of an existing ``Sales`` row.

    Raises:
        KeyError: If the sale or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, SALES_SHEET, "SaleID", sale_id)
    if row_index is None:
        raise KeyError(f"Sale not found: {sale_id}")
    _update_row(workbook, SALES_SHEET, row_index, field_values)


def delete_sale_items(workbook: Workbook, sale_id: str) -> int:
    """Remove every ``SaleItems`` row for ``sale_id``; returns the count."""

    rows = locate_rows(workbook, SALE_ITEMS_SHEET, "SaleID", sale_id)
    sheet = workbook[SALE_ITEMS_SHEET]
    # Bottom-up so earlier indices stay valid.
    for row_index in sorted(rows, reverse=True):
        sheet.delete_rows(row_index, 1)
    return len(rows)


def delete_sale(workbook: Workbook, sale_id: str) -> None:
    """Remove a sale header row and its line items.

    Raises:
        KeyError: If the sale header row does not exist.
    """

    row_index = locate_row(workbook, SALES_SHEET, "SaleID", sale_id)
    if row_index is None:
        raise KeyError(f"Sale not found: {sale_id}")
    workbook[SALES_SHEET].delete_rows(row_index, 1)
    removed = delete_sale_items(workbook, sale_id)
    log.debug("Removed sale row %d and %d item rows for '%s'", row_index, removed, sale_id)


def read_counter(workbook: Workbook, name: str) -> int:
    """Return the integer stored under ``name`` in ``Counters`` (0 if unset)."""

    row_index = locate_row(workbook, COUNTERS_SHEET, "CounterName", name)
    if row_index is None:
        return 0
    raw = workbook[COUNTERS_SHEET].cell(row=row_index, column=2).value
    return int(raw) if raw is not None else 0


def write_counter(workbook: Workbook, name: str, value: int) -> None:
    """Store ``value`` under ``name`` in ``Counters``, adding the row if needed."""

    row_index = locate_row(workbook, COUNTERS_SHEET, "CounterName", name)
    sheet = workbook[COUNTERS_SHEET]
    if row_index is None:
        sheet.append([name, value])
    else:
        sheet.cell(row=row_index, column=2, value=value)


def serialize_product(record: ProductRow) -> list[object]:
    """Order a product as ``[ProductID, ProductName, Price, Stock, ArtisanID, Category]``."""

    return [
        record.product_id,
        record.product_name,
        record.price,
        record.stock,
        record.artisan_id,
        record.category,
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    """Order a sale header following the ``Sales`` sheet columns."""

    return [
        record.sale_id,
        record.invoice_number,
        record.client_name,
        record.artisan_id,
        record.total_amount,
        record.sale_date_iso,
        record.status,
        record.payment_mode,
        record.notes,
    ]


def serialize_sale_item(sale_id: str, line_no: int, item: SaleItemRow) -> list[object]:
    return [
        sale_id,
        line_no,
        item.product_id,
        item.quantity,
        item.unit_price,
        item.discount,
        item.line_amount,
    ]


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw ``Products`` row into a :class:`ProductRow`.

    Ids and names are coerced to ``str`` because Excel happily turns numeric
    looking identifiers into numbers. Blank stock reads as zero.
    """

    product_id, product_name, price_raw, stock_raw, artisan_id, category = tuple(raw_row[:6])
    return ProductRow(
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        price=_to_decimal(price_raw),
        stock=int(stock_raw) if stock_raw is not None else 0,
        artisan_id=_to_optional_str(artisan_id),
        category=_to_optional_str(category),
    )


def deserialize_sale_item(raw_row: Sequence[object]) -> Tuple[str, int, SaleItemRow]:
    """Convert a raw ``SaleItems`` row into ``(sale_id, line_no, item)``."""

    sale_id, line_no, product_id, quantity, unit_price, discount, line_amount = tuple(raw_row[:7])
    item = SaleItemRow(
        product_id=str(product_id),
        quantity=int(quantity) if quantity is not None else 0,
        unit_price=_to_decimal(unit_price),
        discount=_to_decimal(discount),
        line_amount=_to_decimal(line_amount),
    )
    return str(sale_id), int(line_no) if line_no is not None else 0, item


def deserialize_sale(raw_row: Sequence[object], items: Tuple[SaleItemRow, ...]) -> SaleRow:
    """Convert a raw ``Sales`` row plus its items into a :class:`SaleRow`."""

    (
        sale_id,
        invoice_number,
        client_name,
        artisan_id,
        total_amount,
        sale_date,
        status,
        payment_mode,
        notes,
    ) = tuple(raw_row[:9])
    return SaleRow(
        sale_id=str(sale_id),
        invoice_number=str(invoice_number) if invoice_number is not None else "",
        client_name=str(client_name) if client_name is not None else "",
        artisan_id=_to_optional_str(artisan_id),
        items=items,
        total_amount=_to_decimal(total_amount),
        sale_date_iso=str(sale_date) if sale_date is not None else "",
        status=str(status) if status is not None else "",
        payment_mode=str(payment_mode) if payment_mode is not None else "",
        notes=_to_optional_str(notes),
    )
