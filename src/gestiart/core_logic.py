"""Business logic layer for GestiArt.

This module holds the sale transaction manager. Every sale mutation goes
through :func:`create_sale`, :func:`update_sale` or :func:`delete_sale`, which
validate the request, move stock through the product store and persist the
sale through the sale store as one logical unit. Stock movements are recorded
in a :class:`CompensationLog` so that a failure at any step can be reverted
structurally instead of by convention.

The stores are injected through :class:`RuntimeContext`; nothing in here
knows whether it is talking to the workbook or to the in-memory mock.
"""

from __future__ import annotations

import threading
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, PaymentMode, SaleStatus, StoreBackend
from .data_manager import ProductRow, SaleItemRow, SaleRow
from .errors import (
    ConflictError,
    GestiArtError,
    InsufficientStock,
    NotFound,
    PersistenceError,
    StockShortfall,
    ValidationError,
)
from .stores import (
    ProductStockStore,
    SaleFilter,
    SaleRecordStore,
    open_workbook_stores,
    snapshot_stores,
)


ZERO = Decimal("0")


class LockRegistry:
    """Hand out one lock per key and acquire groups of them deadlock-free.

    Keys are always acquired in sorted order. Callers that need a sale lock
    take it in its own :meth:`hold` before asking for product locks, so no
    thread ever waits for a sale lock while holding product locks.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def __contains__(self, key: str) -> bool:
        with self._guard:
            return key in self._locks

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def discard(self, key: str) -> None:
        """Forget ``key`` once the record it guards no longer exists."""

        with self._guard:
            self._locks.pop(key, None)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        acquired: List[threading.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


@dataclass(frozen=True)
class RuntimeContext:
    """Settings plus the store implementations selected at startup.

    ``workbook`` is only set for the workbook backend; the in-memory backend
    has nothing to persist.
    """

    settings: data_manager.ConfigSettings
    product_store: ProductStockStore
    sale_store: SaleRecordStore
    workbook: Optional[Workbook] = None
    locks: LockRegistry = field(default_factory=LockRegistry, repr=False, compare=False)


@dataclass(frozen=True)
class SaleItemCommand:
    """One requested sale line. ``unit_price`` defaults to the catalog price."""

    product_id: str
    quantity: int
    unit_price: Optional[Decimal] = None
    discount: Decimal = ZERO


@dataclass(frozen=True)
class CreateSaleCommand:
    """User intent for recording a new sale."""

    items: Sequence[SaleItemCommand]
    client_name: str = ""
    artisan_id: Optional[str] = None
    payment_mode: PaymentMode = PaymentMode.CASH
    timestamp: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class UpdateSaleCommand:
    """User intent for editing a sale; ``None`` means "leave unchanged".

    When ``items`` is given it replaces the sale's line items entirely.
    """

    sale_id: str
    items: Optional[Sequence[SaleItemCommand]] = None
    client_name: Optional[str] = None
    artisan_id: Optional[str] = None
    payment_mode: Optional[PaymentMode] = None
    timestamp: Optional[datetime] = None
    notes: Optional[str] = None


class CompensationLog:
    """Apply stock deltas and remember how to undo every step of a call.

    Besides stock deltas, callers can :meth:`record` any other undo step
    (such as handing back an allocated invoice number). :meth:`rollback`
    runs the undo steps in reverse order. Steps that fail are logged and
    reported together once every other step has been attempted.
    """

    def __init__(self, store: ProductStockStore):
        self.store = store
        self.applied: List[Tuple[str, int]] = []
        self._undo: List[Tuple[str, Callable[[], Any]]] = []

    def apply(self, product_id: str, delta: int) -> ProductRow:
        product = self.store.adjust_stock(product_id, delta)
        self.applied.append((product_id, delta))
        self._undo.append((f"{product_id} ({delta:+d})", partial(self._revert_stock, product_id, delta)))
        log.debug("Stock of '%s' adjusted by %+d (now %d)", product_id, delta, product.stock)
        return product

    def record(self, description: str, undo: Callable[[], Any]) -> None:
        self._undo.append((description, undo))

    def _revert_stock(self, product_id: str, delta: int) -> None:
        self.store.adjust_stock(product_id, -delta)

    def net_changes(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for product_id, delta in self.applied:
            totals[product_id] = totals.get(product_id, 0) + delta
        return totals

    def rollback(self) -> None:
        if not self._undo:
            return
        log.warning("Reverting %d step(s)", len(self._undo))
        failures: List[str] = []
        while self._undo:
            description, undo = self._undo.pop()
            try:
                undo()
            except Exception as exc:
                log.critical("Could not revert %s: %s", description, exc)
                failures.append(description)
        self.applied.clear()
        if failures:
            raise PersistenceError(f"Compensation incomplete for: {', '.join(failures)}")


@contextmanager
def compensating(ledger: CompensationLog, action: str) -> Iterator[CompensationLog]:
    """Run every undo step in ``ledger`` if the wrapped block raises.

    Domain errors are re-raised unchanged; anything else is wrapped in
    :class:`PersistenceError`.
    """

    try:
        yield ledger
    except GestiArtError:
        ledger.rollback()
        raise
    except Exception as exc:
        ledger.rollback()
        log.error("Unexpected failure while trying to %s: %s", action, exc)
        raise PersistenceError(f"Unable to {action}: {exc}") from exc


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _product_key(product_id: str) -> str:
    return f"product:{product_id}"


def _sale_key(sale_id: str) -> str:
    return f"sale:{sale_id}"


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Read ``config.ini`` and build the runtime context it describes.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upwards
            from the current working directory.

    Returns:
        RuntimeContext: Settings plus the stores selected by ``Backend``.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
        ValueError: When ``Backend`` names an unknown store implementation.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    return build_runtime_context(settings)


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    *,
    workbook: Optional[Workbook] = None,
) -> RuntimeContext:
    """Instantiate the stores selected by ``settings.backend``.

    The workbook backend reads and writes ``settings.data_file``. The memory
    backend copies the workbook (when it exists) into in-memory stores and
    never writes back.

    Args:
        settings (ConfigSettings): Parsed configuration.
        workbook (Workbook | None): An already opened workbook to use instead
            of loading ``settings.data_file``.

    Returns:
        RuntimeContext: Context whose ``workbook`` is only set for the
            workbook backend.

    Raises:
        FileNotFoundError: If the workbook backend is selected and the data
            file does not exist.
        KeyError: If the workbook lacks one of the managed sheets.
    """

    if settings.backend is StoreBackend.MEMORY:
        if workbook is None and settings.data_file.exists():
            workbook = data_manager.open_workbook(settings.data_file)
        product_store, sale_store = snapshot_stores(workbook, invoice_prefix=settings.invoice_prefix)
        log.info("Using in-memory stores (changes are not written back)")
        return RuntimeContext(settings=settings, product_store=product_store, sale_store=sale_store)

    if workbook is None:
        workbook = data_manager.open_workbook(settings.data_file)
    product_store, sale_store = open_workbook_stores(workbook, invoice_prefix=settings.invoice_prefix)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(
        settings=settings,
        product_store=product_store,
        sale_store=sale_store,
        workbook=workbook,
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to run against a workbook declared with another schema version.

    Raises:
        RuntimeError: If ``config.ini`` declares a different schema version.
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
    """Save the workbook behind ``context`` to its configured location.

    Raises:
        PersistenceError: If the file cannot be written.
    """

    if context.workbook is None:
        log.info("In-memory backend: nothing to persist")
        return
    try:
        data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    except OSError as exc:
        log.error("Unable to save workbook '%s': %s", context.settings.data_file, exc)
        raise PersistenceError(f"Unable to save workbook: {exc}") from exc
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Return a new context built from what is currently on disk.

    Unsaved changes held by ``context`` are discarded. The memory backend
    takes a fresh snapshot of the data file.
    """

    if context.workbook is None:
        return build_runtime_context(context.settings)
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.debug("Reloaded workbook '%s'", context.settings.data_file)
    return build_runtime_context(context.settings, workbook=workbook)


def get_product(context: RuntimeContext, product_id: str) -> ProductRow:
    return context.product_store.get_by_id(product_id)


def list_products(context: RuntimeContext) -> List[ProductRow]:
    return context.product_store.list_all()


def register_product(
    context: RuntimeContext,
    *,
    product_id: str,
    product_name: str,
    price: Decimal,
    stock: int = 0,
    artisan_id: Optional[str] = None,
    category: Optional[str] = None,
) -> ProductRow:
    """Add a product to the catalog with its opening stock.

    Args:
        context (RuntimeContext): Stores to write to.
        product_id (str): Unique identifier of the new product.
        product_name (str): Display name used on invoices.
        price (Decimal): Current unit price.
        stock (int): Opening stock level, zero or more.
        artisan_id (str | None): Artisan who makes the product.
        category (str | None): Free-form catalog category.

    Returns:
        ProductRow: The stored product.

    Raises:
        ValidationError: The id is already taken or a field is invalid.
    """

    record = ProductRow(
        product_id=product_id,
        product_name=product_name,
        price=price,
        stock=stock,
        artisan_id=artisan_id,
        category=category,
    )
    with context.locks.hold(_product_key(product_id)):
        context.product_store.add_product(record)
    log.info("Registered product '%s' (price=%s, stock=%d)", product_id, price, stock)
    return record


def restock_product(context: RuntimeContext, product_id: str, quantity: int) -> ProductRow:
    """Add ``quantity`` units to a product's stock.

    Args:
        context (RuntimeContext): Stores and locks to operate on.
        product_id (str): Product to restock.
        quantity (int): Units received.

    Returns:
        ProductRow: The product with its new stock level.

    Raises:
        ValidationError: If ``quantity`` is not a positive integer.
        NotFound: If the product does not exist.
    """

    require_positive_quantity(quantity)
    with context.locks.hold(_product_key(product_id)):
        product = context.product_store.adjust_stock(product_id, quantity)
    log.info("Restocked product '%s' by %d (now %d)", product_id, quantity, product.stock)
    return product


def get_sale(context: RuntimeContext, sale_id: str) -> SaleRow:
    return context.sale_store.get_by_id(sale_id)


def list_sales(context: RuntimeContext, sale_filter: Optional[SaleFilter] = None) -> List[SaleRow]:
    return context.sale_store.get_all(sale_filter)


def generate_sale_id(*, prefix: str = "S", when: Optional[datetime] = None) -> str:
    """Generate a sortable sale identifier.

    The timestamp part keeps ids in creation order; the random suffix keeps
    back-to-back sales within the same microsecond distinct.
    """

    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:4].upper()}"


def require_positive_quantity(quantity: int) -> None:
    """Raise :class:`ValidationError` unless ``quantity`` is an integer above zero."""

    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")


def validate_sale_items(items: Sequence[SaleItemCommand]) -> None:
    """Check the shape of requested line items before any store is touched.

    Raises:
        ValidationError: On an empty list, a non-positive quantity, a repeated
            product, a negative unit price, or a discount outside
            ``[0, unit_price * quantity]``.
    """

    if not items:
        raise ValidationError("A sale must contain at least one item")

    seen = set()
    for item in items:
        if not item.product_id:
            raise ValidationError("Every sale item needs a product id")
        require_positive_quantity(item.quantity)
        if item.product_id in seen:
            raise ValidationError(f"Product '{item.product_id}' appears more than once")
        seen.add(item.product_id)
        if item.unit_price is not None and item.unit_price < ZERO:
            raise ValidationError(f"Unit price of '{item.product_id}' must be zero or positive")
        if item.discount < ZERO:
            raise ValidationError(f"Discount of '{item.product_id}' must be zero or positive")
        if item.unit_price is not None and item.discount > item.unit_price * item.quantity:
            raise ValidationError(f"Discount of '{item.product_id}' exceeds the line amount")


def resolve_products(context: RuntimeContext, items: Sequence[SaleItemCommand]) -> Dict[str, ProductRow]:
    """Fetch every referenced product, reporting all unknown ids at once."""

    products: Dict[str, ProductRow] = {}
    unknown: List[str] = []
    for item in items:
        try:
            products[item.product_id] = context.product_store.get_by_id(item.product_id)
        except NotFound:
            unknown.append(item.product_id)
    if unknown:
        log.warning("Sale references unknown products: %s", ", ".join(unknown))
        raise ValidationError(f"Unknown product: {', '.join(unknown)}")
    return products


def find_shortfalls(items: Sequence[SaleItemCommand], products: Mapping[str, ProductRow]) -> List[StockShortfall]:
    return [
        StockShortfall(item.product_id, item.quantity, products[item.product_id].stock)
        for item in items
        if products[item.product_id].stock < item.quantity
    ]


def require_available_stock(items: Sequence[SaleItemCommand], products: Mapping[str, ProductRow]) -> None:
    """Raise one :class:`InsufficientStock` naming every short line."""

    shortfalls = find_shortfalls(items, products)
    if shortfalls:
        error = InsufficientStock(shortfalls)
        log.warning("%s", error)
        raise error


def build_line_items(
    items: Sequence[SaleItemCommand],
    products: Mapping[str, ProductRow],
    *,
    previous_prices: Optional[Mapping[str, Decimal]] = None,
) -> Tuple[SaleItemRow, ...]:
    """Snapshot prices and compute line amounts.

    The unit price is, in order of preference: the price given on the
    command, the price already snapshotted on the sale being edited, the
    current catalog price.
    """

    previous_prices = previous_prices or {}
    rows: List[SaleItemRow] = []
    for item in items:
        if item.unit_price is not None:
            unit_price = item.unit_price
        else:
            unit_price = previous_prices.get(item.product_id, products[item.product_id].price)
        gross = unit_price * item.quantity
        if item.discount > gross:
            raise ValidationError(f"Discount of '{item.product_id}' exceeds the line amount")
        rows.append(
            SaleItemRow(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=unit_price,
                discount=item.discount,
                line_amount=gross - item.discount,
            )
        )
    return tuple(rows)


def compute_total(items: Sequence[SaleItemRow]) -> Decimal:
    return sum((item.line_amount for item in items), ZERO)


def _infer_artisan(products: Mapping[str, ProductRow]) -> Optional[str]:
    artisans = {product.artisan_id for product in products.values() if product.artisan_id}
    return artisans.pop() if len(artisans) == 1 else None


def _require_payment_mode(candidate: Any) -> PaymentMode:
    if not isinstance(candidate, PaymentMode):
        log.error("Unsupported payment mode provided: %s", candidate)
        raise ValidationError(f"Unsupported payment mode: {candidate}")
    return candidate


def create_sale(context: RuntimeContext, command: CreateSaleCommand) -> SaleRow:
    """Validate stock, decrement it and persist a new sale as one unit.

    Nothing is written until every line has passed the existence and stock
    checks. If a stock adjustment or the final persistence fails, every
    stock delta applied so far is reverted and the allocated invoice number
    is handed back before the error propagates.

    Args:
        context (RuntimeContext): Stores and locks to operate on.
        command (CreateSaleCommand): Line items plus the sale header fields.

    Returns:
        SaleRow: The persisted sale with its generated id and invoice number.

    Raises:
        ValidationError: Malformed items or unknown products.
        InsufficientStock: One or more lines exceed the available stock.
        PersistenceError: The sale store failed; stock has been restored.
    """

    validate_sale_items(command.items)
    payment_mode = _require_payment_mode(command.payment_mode)

    with context.locks.hold(*(_product_key(item.product_id) for item in command.items)):
        products = resolve_products(context, command.items)
        require_available_stock(command.items, products)
        line_items = build_line_items(command.items, products)

        timestamp = _resolve_timestamp(command.timestamp)
        ledger = CompensationLog(context.product_store)
        with compensating(ledger, "create sale"):
            for item in command.items:
                ledger.apply(item.product_id, -item.quantity)

            invoice_number = context.sale_store.next_invoice_number(when=timestamp)
            ledger.record(
                f"invoice {invoice_number}",
                partial(context.sale_store.release_invoice_number, invoice_number),
            )
            sale = SaleRow(
                sale_id=generate_sale_id(when=timestamp),
                invoice_number=invoice_number,
                client_name=command.client_name,
                artisan_id=command.artisan_id if command.artisan_id is not None else _infer_artisan(products),
                items=line_items,
                total_amount=compute_total(line_items),
                sale_date_iso=timestamp.isoformat(),
                status=SaleStatus.VALIDATED.value,
                payment_mode=payment_mode.value,
                notes=command.notes,
            )
            persisted = context.sale_store.create(sale)

    log.info(
        "Recorded sale '%s' invoice '%s' (%d item(s), total=%s)",
        persisted.sale_id,
        persisted.invoice_number,
        len(persisted.items),
        persisted.total_amount,
    )
    return persisted


def _header_patch(command: UpdateSaleCommand) -> Dict[str, Any]:
    patch: Dict[str, Any] = {}
    if command.client_name is not None:
        patch["client_name"] = command.client_name
    if command.artisan_id is not None:
        patch["artisan_id"] = command.artisan_id
    if command.payment_mode is not None:
        patch["payment_mode"] = _require_payment_mode(command.payment_mode).value
    if command.timestamp is not None:
        patch["sale_date_iso"] = command.timestamp.isoformat()
    if command.notes is not None:
        patch["notes"] = command.notes
    return patch


def _persist_update(context: RuntimeContext, sale_id: str, patch: Mapping[str, Any]) -> SaleRow:
    try:
        return context.sale_store.update(sale_id, patch)
    except NotFound as exc:
        log.error("Sale '%s' disappeared while it was being updated", sale_id)
        raise ConflictError(f"Sale '{sale_id}' was removed during the update") from exc


def update_sale(context: RuntimeContext, command: UpdateSaleCommand) -> SaleRow:
    """Edit a sale; a new item list fully replaces the old one.

    With new items, the old items' stock is restored first, then the new
    items are validated against the restored levels and decremented. Any
    failure reverts every adjustment, leaving stock exactly as it was before
    the call. ``sale_id`` and ``invoice_number`` never change. Unless the
    command names an artisan, the artisan is inferred again from the new
    products.

    Args:
        context (RuntimeContext): Stores and locks to operate on.
        command (UpdateSaleCommand): Sale id plus the fields to change;
            ``None`` fields are left as they are.

    Returns:
        SaleRow: The sale as persisted after the update.

    Raises:
        NotFound: The sale does not exist.
        ValidationError: Malformed items or unknown products.
        InsufficientStock: The new items exceed the stock available once the
            old items are given back.
        ConflictError: The sale vanished between load and persist.
        PersistenceError: A store failed; stock has been restored.
    """

    if command.items is not None:
        validate_sale_items(command.items)
    patch = _header_patch(command)

    with context.locks.hold(_sale_key(command.sale_id)):
        existing = context.sale_store.get_by_id(command.sale_id)

        if command.items is None:
            if not patch:
                return existing
            updated = _persist_update(context, command.sale_id, patch)
            log.info("Updated sale '%s' fields: %s", updated.sale_id, ", ".join(sorted(patch)))
            return updated

        touched = {item.product_id for item in existing.items} | {item.product_id for item in command.items}
        with context.locks.hold(*(_product_key(product_id) for product_id in touched)):
            ledger = CompensationLog(context.product_store)
            with compensating(ledger, f"update sale '{command.sale_id}'"):
                for item in existing.items:
                    ledger.apply(item.product_id, item.quantity)

                products = resolve_products(context, command.items)
                require_available_stock(command.items, products)
                line_items = build_line_items(
                    command.items,
                    products,
                    previous_prices={item.product_id: item.unit_price for item in existing.items},
                )
                for item in command.items:
                    ledger.apply(item.product_id, -item.quantity)

                patch["items"] = line_items
                patch["total_amount"] = compute_total(line_items)
                if command.artisan_id is None:
                    patch["artisan_id"] = _infer_artisan(products)
                updated = _persist_update(context, command.sale_id, patch)

    log.info(
        "Updated sale '%s' items (net stock change: %s, total=%s)",
        updated.sale_id,
        ledger.net_changes(),
        updated.total_amount,
    )
    return updated


def delete_sale(context: RuntimeContext, sale_id: str) -> SaleRow:
    """Give the sale's stock back, then remove the sale record.

    A restore that fails part way reverts the restores already applied and
    leaves the sale in place. If the record cannot be removed once the stock
    is back, the restored stock is kept and a :class:`PersistenceError`
    reports the inconsistency.

    Args:
        context (RuntimeContext): Stores and locks to operate on.
        sale_id (str): Identifier of the sale to delete.

    Returns:
        SaleRow: The sale as it was before deletion.

    Raises:
        NotFound: The sale does not exist.
        PersistenceError: Stock could not be restored (nothing changed), or
            the record could not be removed after the stock was restored.
    """

    with context.locks.hold(_sale_key(sale_id)):
        sale = context.sale_store.get_by_id(sale_id)

        with context.locks.hold(*(_product_key(item.product_id) for item in sale.items)):
            ledger = CompensationLog(context.product_store)
            with compensating(ledger, f"restore stock for sale '{sale_id}'"):
                for item in sale.items:
                    ledger.apply(item.product_id, item.quantity)

            try:
                context.sale_store.delete(sale_id)
            except Exception as exc:
                log.error(
                    "Inconsistency: stock for sale '%s' (invoice '%s') was restored %s but the record could not be removed: %s",
                    sale_id,
                    sale.invoice_number,
                    ledger.net_changes(),
                    exc,
                )
                raise PersistenceError(
                    f"Stock for sale '{sale_id}' was restored but the record could not be removed: {exc}"
                ) from exc

        # Sale ids are never reused, so the lock entry can go with the record.
        context.locks.discard(_sale_key(sale_id))

    log.info("Deleted sale '%s' invoice '%s'", sale_id, sale.invoice_number)
    return sale


def summarize_sales(context: RuntimeContext, *, artisan_id: Optional[str] = None) -> Dict[str, Any]:
    """Compute the dashboard figures over all sales (or one artisan's).

    Args:
        context (RuntimeContext): Stores to read from.
        artisan_id (str | None): Restrict the figures to one artisan.

    Returns:
        dict[str, Any]: ``total_revenue``, ``sales_count``, ``average_sale``,
            ``revenue_by_month`` (``"YYYY-MM"`` -> amount, chronological) and
            ``top_products`` (up to five ``(product_id, units)`` pairs).
    """

    sales = context.sale_store.get_all(SaleFilter(artisan_id=artisan_id))
    total_revenue = compute_total_revenue(sales)
    count = len(sales)
    average = (total_revenue / count).quantize(Decimal("0.01")) if count else ZERO

    by_month: Dict[str, Decimal] = {}
    units: Counter[str] = Counter()
    for sale in sales:
        month = sale.sale_date_iso[:7] or "unknown"
        by_month[month] = by_month.get(month, ZERO) + sale.total_amount
        for item in sale.items:
            units[item.product_id] += item.quantity

    top_products = sorted(units.items(), key=lambda pair: (-pair[1], pair[0]))[:5]
    log.debug("Summarised %d sales (revenue=%s)", count, total_revenue)
    return {
        "total_revenue": total_revenue,
        "sales_count": count,
        "average_sale": average,
        "revenue_by_month": dict(sorted(by_month.items())),
        "top_products": top_products,
    }


def compute_total_revenue(sales: Sequence[SaleRow]) -> Decimal:
    return sum((sale.total_amount for sale in sales), ZERO)
