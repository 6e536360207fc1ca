"""Tests for invoice and sales report rendering."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

import openpyxl
import pytest

from gestiart import constants, reports
from gestiart.data_manager import SaleItemRow, SaleRow
from gestiart.setup_excel import DEMO_CATALOG


PRODUCTS = {product.product_id: product for product in DEMO_CATALOG}


@pytest.fixture
def sale() -> SaleRow:
    return SaleRow(
        sale_id="S1",
        invoice_number="FACT-2026-004",
        client_name="Awa Traoré",
        artisan_id="artisan-1",
        items=(
            SaleItemRow("prod-1", 2, Decimal("15000"), Decimal("0"), Decimal("30000")),
            SaleItemRow("prod-2", 1, Decimal("8000"), Decimal("1000"), Decimal("7000")),
        ),
        total_amount=Decimal("37000"),
        sale_date_iso="2026-03-14T10:00:00+00:00",
        status=constants.SaleStatus.VALIDATED.value,
        payment_mode=constants.PaymentMode.TRANSFER.value,
        notes=None,
    )


@pytest.mark.parametrize(
    ("amount", "expected"),
    [
        (Decimal("30000"), "30 000 FCFA"),
        (Decimal("0"), "0 FCFA"),
        (Decimal("1234567"), "1 234 567 FCFA"),
        (Decimal("999.5"), "1 000 FCFA"),
    ],
)
def test_format_amount(amount, expected):
    assert reports.format_amount(amount) == expected


def test_format_amount_uses_given_currency():
    assert reports.format_amount(Decimal("1500"), "XOF") == "1 500 XOF"


def test_invoice_lines_layout(sale):
    lines = reports.invoice_lines(sale, PRODUCTS)

    assert lines[0] == "Facture FACT-2026-004"
    assert "Date : 14/03/2026" in lines
    assert "Facturé à : Awa Traoré" in lines
    assert "Artisan : artisan-1" in lines
    assert "Vase en terre cuite | 2 | 15 000 FCFA | 0 FCFA | 30 000 FCFA" in lines
    assert "TOTAL À PAYER : 37 000 FCFA" in lines
    assert lines[-1] == reports.INVOICE_FOOTER


def test_invoice_lines_fall_back_to_product_id(sale):
    lines = reports.invoice_lines(sale, {})
    assert any(line.startswith("prod-1 |") for line in lines)


def test_invoice_lines_do_not_mutate_inputs(sale):
    products = dict(PRODUCTS)
    reports.invoice_lines(sale, products)
    assert products == PRODUCTS


def test_render_invoice_workbook(sale, tmp_path):
    workbook = reports.render_invoice(sale, PRODUCTS, shop_name="GestiArt")
    path = reports.save_document(workbook, tmp_path / reports.invoice_file_name(sale))

    assert path.name == "Facture_FACT-2026-004.xlsx"
    sheet = openpyxl.load_workbook(path).active
    values = [row for row in sheet.iter_rows(values_only=True)]
    assert values[0][0] == "Facture"
    assert values[1][:2] == ("Numéro", "FACT-2026-004")
    assert values[10][:2] == ("Vase en terre cuite", 2)
    assert values[11][4] == 7000
    flat = [cell for row in values for cell in row if cell is not None]
    assert "TOTAL À PAYER" in flat
    assert 37000 in flat
    assert reports.INVOICE_FOOTER in flat


def test_render_sales_report(sale):
    other = replace(sale, sale_id="S2", invoice_number="FACT-2026-005", total_amount=Decimal("8000"))
    workbook = reports.render_sales_report(
        [sale, other],
        shop_name="GestiArt",
        generated_at=datetime(2026, 3, 31, tzinfo=UTC),
    )
    sheet = workbook.active

    assert "31/03/2026" in sheet.cell(row=1, column=1).value
    assert [cell.value for cell in sheet[3]] == ["ID", "Date", "Client", "N° Facture", "Montant (FCFA)"]
    assert all(cell.font.bold for cell in sheet[3])
    assert sheet.cell(row=4, column=1).value == "S1"
    assert sheet.cell(row=5, column=4).value == "FACT-2026-005"
    assert sheet.cell(row=6, column=4).value == "TOTAL"
    assert sheet.cell(row=6, column=5).value == Decimal("45000")


def test_report_file_name():
    assert reports.report_file_name(datetime(2026, 3, 31, tzinfo=UTC)) == "Rapport_Ventes_2026-03-31.xlsx"


def test_format_sale_date_keeps_unparsable_values(sale):
    odd = replace(sale, sale_date_iso="hier")
    assert reports.format_sale_date(odd) == "hier"

