"""Product stock and sale record stores.

The sale transaction manager only talks to the two protocols declared here.
Which implementation backs them is decided once, when the runtime context is
built: the workbook stores read and write the openpyxl workbook, while the
in-memory stores hold plain dictionaries (the console's mock mode, also used
heavily by the tests).

Every public store method runs under the store's re-entrant lock. The
in-memory stores validate before writing, so a failed call changes nothing.
The workbook stores write several rows for one sale and do not undo them
when a later row fails; the failure surfaces as a PersistenceError and the
half-written workbook is only in memory. Nothing reaches disk until
``core_logic.persist_context`` runs, which the CLI does only after a
command succeeds.
"""

from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from datetime import UTC, date, datetime
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import DEFAULT_INVOICE_PREFIX, INVOICE_SEQUENCE_COUNTER
from .data_manager import ProductRow, SaleRow
from .errors import (
    GestiArtError,
    InsufficientStock,
    NotFound,
    PersistenceError,
    StockShortfall,
    ValidationError,
)


IMMUTABLE_SALE_FIELDS = frozenset({"sale_id", "invoice_number"})
SALE_FIELDS = frozenset(field.name for field in fields(SaleRow))
_TRAILING_DIGITS = re.compile(r"(\d+)$")


@runtime_checkable
class ProductStockStore(Protocol):
    """Single source of truth for product stock quantities."""

    def get_by_id(self, product_id: str) -> ProductRow:
        ...

    def adjust_stock(self, product_id: str, delta: int) -> ProductRow:
        ...

    def list_all(self) -> List[ProductRow]:
        ...

    def add_product(self, record: ProductRow) -> ProductRow:
        ...


@runtime_checkable
class SaleRecordStore(Protocol):
    """Persistence of sales and allocation of invoice numbers."""

    def next_invoice_number(self, *, when: Optional[datetime] = None) -> str:
        ...

    def release_invoice_number(self, invoice_number: str) -> bool:
        ...

    def create(self, sale: SaleRow) -> SaleRow:
        ...

    def update(self, sale_id: str, patch: Mapping[str, Any]) -> SaleRow:
        ...

    def delete(self, sale_id: str) -> None:
        ...

    def get_all(self, sale_filter: Optional["SaleFilter"] = None) -> List[SaleRow]:
        ...

    def get_by_id(self, sale_id: str) -> SaleRow:
        ...


@dataclass(frozen=True)
class SaleFilter:
    """Optional criteria for :meth:`SaleRecordStore.get_all`.

    ``search`` matches client names and invoice numbers case-insensitively;
    the date bounds are inclusive and compared on the calendar date of the
    sale.
    """

    artisan_id: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def matches(self, sale: SaleRow) -> bool:
        if self.artisan_id is not None and sale.artisan_id != self.artisan_id:
            return False
        if self.search:
            needle = self.search.strip().lower()
            haystack = (sale.client_name.lower(), sale.invoice_number.lower())
            if not any(needle in value for value in haystack):
                return False
        if self.date_from is not None or self.date_to is not None:
            sale_day = sale_date(sale)
            if sale_day is None:
                return False
            if self.date_from is not None and sale_day < self.date_from:
                return False
            if self.date_to is not None and sale_day > self.date_to:
                return False
        return True


def sale_date(sale: SaleRow) -> Optional[date]:
    """Return the calendar date of ``sale`` or ``None`` if it is unparsable."""

    try:
        return datetime.fromisoformat(sale.sale_date_iso).date()
    except ValueError:
        return None


def format_invoice_number(prefix: str, year: int, sequence: int) -> str:
    """Build ``"{prefix}-{year}-{sequence:03d}"``, e.g. ``FACT-2026-007``."""

    return f"{prefix}-{year}-{sequence:03d}"


def invoice_sequence(invoice_number: str) -> int:
    """Extract the trailing sequence number of an invoice (0 if none)."""

    match = _TRAILING_DIGITS.search(invoice_number or "")
    return int(match.group(1)) if match else 0


def require_stock_delta(delta: int) -> None:
    """Reject non-integer deltas (``bool`` included) before touching stock."""

    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError(f"Stock delta must be an integer, got {delta!r}")


def validate_new_product(record: ProductRow) -> None:
    """Check the catalog invariants of a product about to be registered."""

    if not record.product_id:
        raise ValidationError("Product id must not be empty")
    if record.price < 0:
        raise ValidationError(f"Price of '{record.product_id}' must be zero or positive")
    if isinstance(record.stock, bool) or not isinstance(record.stock, int) or record.stock < 0:
        raise ValidationError(f"Stock of '{record.product_id}' must be a non-negative integer")


def validate_sale_patch(patch: Mapping[str, Any]) -> None:
    """Refuse patches that touch identity fields or unknown attributes."""

    frozen = IMMUTABLE_SALE_FIELDS.intersection(patch)
    if frozen:
        raise ValidationError(f"Sale fields are immutable: {', '.join(sorted(frozen))}")
    unknown = set(patch) - SALE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown sale fields: {', '.join(sorted(unknown))}")


def _apply_sale_patch(sale: SaleRow, patch: Mapping[str, Any]) -> SaleRow:
    values = dict(patch)
    if "items" in values:
        values["items"] = tuple(values["items"])
    return replace(sale, **values)


class InMemoryProductStore:
    """Dictionary-backed :class:`ProductStockStore`."""

    def __init__(self, products: Iterable[ProductRow] = ()):
        self._lock = threading.RLock()
        self._products: Dict[str, ProductRow] = {}
        for product in products:
            self.add_product(product)

    def get_by_id(self, product_id: str) -> ProductRow:
        with self._lock:
            try:
                return self._products[product_id]
            except KeyError as exc:
                raise NotFound(f"Unknown product id: {product_id}") from exc

    def list_all(self) -> List[ProductRow]:
        with self._lock:
            return list(self._products.values())

    def add_product(self, record: ProductRow) -> ProductRow:
        validate_new_product(record)
        with self._lock:
            if record.product_id in self._products:
                raise ValidationError(f"Product id already registered: {record.product_id}")
            self._products[record.product_id] = record
        return record

    def adjust_stock(self, product_id: str, delta: int) -> ProductRow:
        require_stock_delta(delta)
        with self._lock:
            current = self.get_by_id(product_id)
            new_stock = current.stock + delta
            if new_stock < 0:
                raise InsufficientStock([StockShortfall(product_id, -delta, current.stock)])
            updated = replace(current, stock=new_stock)
            self._products[product_id] = updated
            return updated


class InMemorySaleStore:
    """Dictionary-backed :class:`SaleRecordStore`.

    The invoice sequence only ever grows; it starts above the highest
    sequence found among the seeded sales so reloaded snapshots never reuse
    a number.
    """

    def __init__(
        self,
        sales: Iterable[SaleRow] = (),
        *,
        invoice_prefix: str = DEFAULT_INVOICE_PREFIX,
        invoice_sequence_start: int = 0,
    ):
        self._lock = threading.RLock()
        self._sales: Dict[str, SaleRow] = {}
        self.invoice_prefix = invoice_prefix
        self._sequence = invoice_sequence_start
        for sale in sales:
            self.create(sale)
            self._sequence = max(self._sequence, invoice_sequence(sale.invoice_number))

    def next_invoice_number(self, *, when: Optional[datetime] = None) -> str:
        when = when or datetime.now(UTC)
        with self._lock:
            self._sequence += 1
            return format_invoice_number(self.invoice_prefix, when.year, self._sequence)

    def release_invoice_number(self, invoice_number: str) -> bool:
        """Hand back ``invoice_number`` if no later number was allocated since."""

        sequence = invoice_sequence(invoice_number)
        with self._lock:
            if sequence != self._sequence:
                log.warning("Invoice %s left unused; later numbers were already allocated", invoice_number)
                return False
            self._sequence -= 1
        log.debug("Released invoice number %s", invoice_number)
        return True

    def create(self, sale: SaleRow) -> SaleRow:
        with self._lock:
            if sale.sale_id in self._sales:
                raise ValidationError(f"Sale id already exists: {sale.sale_id}")
            if any(existing.invoice_number == sale.invoice_number for existing in self._sales.values()):
                raise ValidationError(f"Invoice number already used: {sale.invoice_number}")
            self._sales[sale.sale_id] = sale
            return sale

    def update(self, sale_id: str, patch: Mapping[str, Any]) -> SaleRow:
        validate_sale_patch(patch)
        with self._lock:
            updated = _apply_sale_patch(self.get_by_id(sale_id), patch)
            self._sales[sale_id] = updated
            return updated

    def delete(self, sale_id: str) -> None:
        with self._lock:
            if self._sales.pop(sale_id, None) is None:
                raise NotFound(f"Unknown sale id: {sale_id}")

    def get_all(self, sale_filter: Optional[SaleFilter] = None) -> List[SaleRow]:
        with self._lock:
            sales = list(self._sales.values())
        if sale_filter is None:
            return sales
        return [sale for sale in sales if sale_filter.matches(sale)]

    def get_by_id(self, sale_id: str) -> SaleRow:
        with self._lock:
            try:
                return self._sales[sale_id]
            except KeyError as exc:
                raise NotFound(f"Unknown sale id: {sale_id}") from exc


@contextmanager
def _workbook_errors(action: str) -> Iterator[None]:
    """Translate workbook level failures into :class:`PersistenceError`."""

    try:
        yield
    except GestiArtError:
        raise
    except (KeyError, ValueError, TypeError, IndexError) as exc:
        log.error("Workbook failure while trying to %s: %s", action, exc)
        raise PersistenceError(f"Unable to {action}: {exc}") from exc


class WorkbookProductStore:
    """:class:`ProductStockStore` backed by the ``Products`` sheet."""

    def __init__(self, workbook: Workbook, *, lock: Optional[threading.RLock] = None):
        self.workbook = workbook
        self._lock = lock or threading.RLock()

    def _read(self, product_id: str) -> ProductRow:
        row_index = data_manager.locate_row(self.workbook, data_manager.PRODUCTS_SHEET, "ProductID", product_id)
        if row_index is None:
            raise NotFound(f"Unknown product id: {product_id}")
        sheet = self.workbook[data_manager.PRODUCTS_SHEET]
        return data_manager.deserialize_product([cell.value for cell in sheet[row_index]])

    def get_by_id(self, product_id: str) -> ProductRow:
        with self._lock, _workbook_errors(f"read product '{product_id}'"):
            return self._read(product_id)

    def list_all(self) -> List[ProductRow]:
        with self._lock, _workbook_errors("list products"):
            return list(data_manager.iter_products(self.workbook))

    def add_product(self, record: ProductRow) -> ProductRow:
        validate_new_product(record)
        with self._lock, _workbook_errors(f"register product '{record.product_id}'"):
            existing = data_manager.locate_row(
                self.workbook, data_manager.PRODUCTS_SHEET, "ProductID", record.product_id
            )
            if existing is not None:
                raise ValidationError(f"Product id already registered: {record.product_id}")
            data_manager.append_product(self.workbook, record)
        return record

    def adjust_stock(self, product_id: str, delta: int) -> ProductRow:
        require_stock_delta(delta)
        with self._lock, _workbook_errors(f"adjust stock of '{product_id}'"):
            current = self._read(product_id)
            new_stock = current.stock + delta
            if new_stock < 0:
                raise InsufficientStock([StockShortfall(product_id, -delta, current.stock)])
            data_manager.update_product(self.workbook, product_id, field_values={"Stock": new_stock})
            return replace(current, stock=new_stock)


class WorkbookSaleStore:
    """:class:`SaleRecordStore` backed by the ``Sales``/``SaleItems`` sheets.

    The invoice sequence lives in the ``Counters`` sheet so deleting sales or
    reopening the workbook never hands out a number twice.
    """

    def __init__(
        self,
        workbook: Workbook,
        *,
        invoice_prefix: str = DEFAULT_INVOICE_PREFIX,
        lock: Optional[threading.RLock] = None,
    ):
        self.workbook = workbook
        self.invoice_prefix = invoice_prefix
        self._lock = lock or threading.RLock()

    def next_invoice_number(self, *, when: Optional[datetime] = None) -> str:
        when = when or datetime.now(UTC)
        with self._lock, _workbook_errors("allocate an invoice number"):
            sequence = data_manager.read_counter(self.workbook, INVOICE_SEQUENCE_COUNTER) + 1
            data_manager.write_counter(self.workbook, INVOICE_SEQUENCE_COUNTER, sequence)
        return format_invoice_number(self.invoice_prefix, when.year, sequence)

    def release_invoice_number(self, invoice_number: str) -> bool:
        sequence = invoice_sequence(invoice_number)
        with self._lock, _workbook_errors(f"release invoice number '{invoice_number}'"):
            if data_manager.read_counter(self.workbook, INVOICE_SEQUENCE_COUNTER) != sequence:
                log.warning("Invoice %s left unused; later numbers were already allocated", invoice_number)
                return False
            data_manager.write_counter(self.workbook, INVOICE_SEQUENCE_COUNTER, sequence - 1)
        log.debug("Released invoice number %s", invoice_number)
        return True

    def _exists(self, sale_id: str) -> bool:
        return data_manager.locate_row(self.workbook, data_manager.SALES_SHEET, "SaleID", sale_id) is not None

    def create(self, sale: SaleRow) -> SaleRow:
        with self._lock, _workbook_errors(f"create sale '{sale.sale_id}'"):
            if self._exists(sale.sale_id):
                raise ValidationError(f"Sale id already exists: {sale.sale_id}")
            clash = data_manager.locate_row(
                self.workbook, data_manager.SALES_SHEET, "InvoiceNumber", sale.invoice_number
            )
            if clash is not None:
                raise ValidationError(f"Invoice number already used: {sale.invoice_number}")
            data_manager.append_sale(self.workbook, sale)
        return sale

    def update(self, sale_id: str, patch: Mapping[str, Any]) -> SaleRow:
        validate_sale_patch(patch)
        with self._lock, _workbook_errors(f"update sale '{sale_id}'"):
            updated = _apply_sale_patch(self.get_by_id(sale_id), patch)
            header_values = {
                data_manager.SALE_FIELD_COLUMNS[name]: getattr(updated, name)
                for name in patch
                if name in data_manager.SALE_FIELD_COLUMNS
            }
            if header_values:
                data_manager.update_sale(self.workbook, sale_id, field_values=header_values)
            if "items" in patch:
                data_manager.delete_sale_items(self.workbook, sale_id)
                data_manager.write_sale_items(self.workbook, sale_id, updated.items)
            return updated

    def delete(self, sale_id: str) -> None:
        with self._lock, _workbook_errors(f"delete sale '{sale_id}'"):
            if not self._exists(sale_id):
                raise NotFound(f"Unknown sale id: {sale_id}")
            data_manager.delete_sale(self.workbook, sale_id)

    def get_all(self, sale_filter: Optional[SaleFilter] = None) -> List[SaleRow]:
        with self._lock, _workbook_errors("list sales"):
            sales = list(data_manager.iter_sales(self.workbook))
        if sale_filter is None:
            return sales
        return [sale for sale in sales if sale_filter.matches(sale)]

    def get_by_id(self, sale_id: str) -> SaleRow:
        with self._lock, _workbook_errors(f"read sale '{sale_id}'"):
            for sale in data_manager.iter_sales(self.workbook):
                if sale.sale_id == sale_id:
                    return sale
        raise NotFound(f"Unknown sale id: {sale_id}")


def open_workbook_stores(workbook: Workbook, *, invoice_prefix: str = DEFAULT_INVOICE_PREFIX) -> Tuple[WorkbookProductStore, WorkbookSaleStore]:
    """Build both workbook stores around one shared lock.

    openpyxl workbooks are not thread-safe, so the two stores serialise on
    the same lock rather than on one each.
    """

    lock = threading.RLock()
    return (
        WorkbookProductStore(workbook, lock=lock),
        WorkbookSaleStore(workbook, invoice_prefix=invoice_prefix, lock=lock),
    )


def snapshot_stores(workbook: Optional[Workbook], *, invoice_prefix: str = DEFAULT_INVOICE_PREFIX) -> Tuple[InMemoryProductStore, InMemorySaleStore]:
    """Copy the workbook contents (if any) into fresh in-memory stores."""

    if workbook is None:
        return InMemoryProductStore(), InMemorySaleStore(invoice_prefix=invoice_prefix)

    with _workbook_errors("load the workbook snapshot"):
        products = list(data_manager.iter_products(workbook))
        sales = list(data_manager.iter_sales(workbook))
        sequence = data_manager.read_counter(workbook, INVOICE_SEQUENCE_COUNTER)
    log.info("Loaded snapshot with %d products and %d sales", len(products), len(sales))
    return (
        InMemoryProductStore(products),
        InMemorySaleStore(sales, invoice_prefix=invoice_prefix, invoice_sequence_start=sequence),
    )
