"""Contract tests run against both store implementations."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from gestiart import constants, data_manager
from gestiart.data_manager import ProductRow, SaleItemRow, SaleRow
from gestiart.errors import InsufficientStock, NotFound, PersistenceError, ValidationError
from gestiart.stores import (
    InMemoryProductStore,
    InMemorySaleStore,
    ProductStockStore,
    SaleFilter,
    SaleRecordStore,
    format_invoice_number,
    invoice_sequence,
    open_workbook_stores,
    snapshot_stores,
)

from conftest import PRODUCT_P


def _sale(sale_id: str, invoice: str, *, client: str = "Awa", artisan: str = "artisan-1", when: str = "2026-03-14T10:00:00+00:00") -> SaleRow:
    return SaleRow(
        sale_id=sale_id,
        invoice_number=invoice,
        client_name=client,
        artisan_id=artisan,
        items=(SaleItemRow("prod-1", 1, Decimal("15000"), Decimal("0"), Decimal("15000")),),
        total_amount=Decimal("15000"),
        sale_date_iso=when,
        status=constants.SaleStatus.VALIDATED.value,
        payment_mode=constants.PaymentMode.CASH.value,
    )


@pytest.fixture(params=["memory", "workbook"])
def stores(request, workbook_path):
    if request.param == "memory":
        workbook = data_manager.open_workbook(workbook_path)
        return snapshot_stores(workbook, invoice_prefix="FACT")
    return open_workbook_stores(data_manager.open_workbook(workbook_path), invoice_prefix="FACT")


@pytest.fixture
def products(stores) -> ProductStockStore:
    return stores[0]


@pytest.fixture
def sales(stores) -> SaleRecordStore:
    return stores[1]


def test_implementations_satisfy_protocols(products, sales):
    assert isinstance(products, ProductStockStore)
    assert isinstance(sales, SaleRecordStore)


def test_get_by_id_unknown_product_raises(products):
    with pytest.raises(NotFound):
        products.get_by_id("missing")


def test_adjust_stock_applies_delta(products):
    assert products.adjust_stock("P", -2).stock == 3
    assert products.adjust_stock("P", 4).stock == 7
    assert products.get_by_id("P").stock == 7


def test_adjust_stock_refuses_negative_result_without_change(products):
    with pytest.raises(InsufficientStock) as excinfo:
        products.adjust_stock("P", -6)

    [shortfall] = excinfo.value.shortfalls
    assert (shortfall.product_id, shortfall.requested, shortfall.available) == ("P", 6, 5)
    assert products.get_by_id("P").stock == 5


def test_adjust_stock_rejects_non_integer_delta(products):
    with pytest.raises(ValidationError):
        products.adjust_stock("P", 1.5)
    with pytest.raises(ValidationError):
        products.adjust_stock("P", True)


def test_add_product_rejects_duplicates_and_negative_stock(products):
    with pytest.raises(ValidationError):
        products.add_product(PRODUCT_P)
    with pytest.raises(ValidationError):
        products.add_product(ProductRow("new", "Nouveau", Decimal("10"), -1))

    added = products.add_product(ProductRow("new", "Nouveau", Decimal("10"), 3))
    assert products.get_by_id("new") == added


def test_invoice_numbers_are_sequential(sales):
    when = datetime(2026, 5, 1, tzinfo=UTC)
    assert sales.next_invoice_number(when=when) == "FACT-2026-001"
    assert sales.next_invoice_number(when=when) == "FACT-2026-002"


def test_release_hands_back_only_the_latest_invoice_number(sales):
    when = datetime(2026, 5, 1, tzinfo=UTC)
    first = sales.next_invoice_number(when=when)
    second = sales.next_invoice_number(when=when)

    assert sales.release_invoice_number(first) is False
    assert sales.release_invoice_number(second) is True
    assert sales.next_invoice_number(when=when) == second


def test_invoice_numbers_survive_deletion(sales):
    when = datetime(2026, 5, 1, tzinfo=UTC)
    first = sales.next_invoice_number(when=when)
    sales.create(_sale("S1", first))
    sales.delete("S1")

    assert sales.next_invoice_number(when=when) != first


def test_create_rejects_duplicate_ids_and_invoices(sales):
    sales.create(_sale("S1", "FACT-2026-001"))
    with pytest.raises(ValidationError):
        sales.create(_sale("S1", "FACT-2026-009"))
    with pytest.raises(ValidationError):
        sales.create(_sale("S2", "FACT-2026-001"))


def test_update_merges_patch_and_keeps_identity(sales):
    sales.create(_sale("S1", "FACT-2026-001"))
    new_items = (SaleItemRow("prod-2", 2, Decimal("8000"), Decimal("0"), Decimal("16000")),)

    updated = sales.update("S1", {"client_name": "Moussa", "items": new_items, "total_amount": Decimal("16000")})

    assert updated.invoice_number == "FACT-2026-001"
    assert updated.client_name == "Moussa"
    assert sales.get_by_id("S1").items == new_items
    assert sales.get_by_id("S1").total_amount == Decimal("16000")


def test_update_rejects_immutable_fields(sales):
    sales.create(_sale("S1", "FACT-2026-001"))
    with pytest.raises(ValidationError):
        sales.update("S1", {"invoice_number": "FACT-2026-999"})
    with pytest.raises(ValidationError):
        sales.update("S1", {"colour": "blue"})


def test_update_and_delete_unknown_sale_raise(sales):
    with pytest.raises(NotFound):
        sales.update("ghost", {"client_name": "x"})
    with pytest.raises(NotFound):
        sales.delete("ghost")
    with pytest.raises(NotFound):
        sales.get_by_id("ghost")


def test_get_all_applies_filter(sales):
    sales.create(_sale("S1", "FACT-2026-001", client="Awa Traoré", artisan="artisan-1", when="2026-01-05T09:00:00+00:00"))
    sales.create(_sale("S2", "FACT-2026-002", client="Moussa Diop", artisan="artisan-2", when="2026-02-10T09:00:00+00:00"))
    sales.create(_sale("S3", "FACT-2026-003", client="Fatou", artisan="artisan-1", when="2026-03-15T09:00:00+00:00"))

    assert {s.sale_id for s in sales.get_all()} == {"S1", "S2", "S3"}
    assert {s.sale_id for s in sales.get_all(SaleFilter(artisan_id="artisan-1"))} == {"S1", "S3"}
    assert {s.sale_id for s in sales.get_all(SaleFilter(search="diop"))} == {"S2"}
    assert {s.sale_id for s in sales.get_all(SaleFilter(search="2026-003"))} == {"S3"}
    window = SaleFilter(date_from=date(2026, 2, 1), date_to=date(2026, 3, 15))
    assert {s.sale_id for s in sales.get_all(window)} == {"S2", "S3"}


def test_format_and_parse_invoice_sequence():
    assert format_invoice_number("FACT", 2026, 7) == "FACT-2026-007"
    assert format_invoice_number("FACT", 2026, 1234) == "FACT-2026-1234"
    assert invoice_sequence("FACT-2026-042") == 42
    assert invoice_sequence("") == 0


def test_memory_store_resumes_sequence_after_seeded_sales():
    store = InMemorySaleStore([_sale("S1", "FACT-2025-041")], invoice_prefix="FACT")
    assert store.next_invoice_number(when=datetime(2026, 1, 1, tzinfo=UTC)) == "FACT-2026-042"


def test_snapshot_stores_do_not_touch_workbook(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    products, _ = snapshot_stores(workbook)

    products.adjust_stock("P", -5)

    assert next(p for p in data_manager.iter_products(workbook) if p.product_id == "P").stock == 5


def test_snapshot_stores_without_workbook_are_empty():
    products, sales = snapshot_stores(None)
    assert isinstance(products, InMemoryProductStore)
    assert products.list_all() == []
    assert sales.get_all() == []


def test_workbook_store_wraps_sheet_failures(workbook_path):
    workbook = data_manager.open_workbook(workbook_path)
    del workbook[data_manager.PRODUCTS_SHEET]
    products, _ = open_workbook_stores(workbook)

    with pytest.raises(PersistenceError):
        products.list_all()
