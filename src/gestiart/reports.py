"""Invoice and sales report rendering.

Everything here is a projection: functions receive finalized sales and
product records and return text lines or fresh openpyxl workbooks. No sale,
product or stock value is ever modified.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Alignment, Font
from openpyxl.workbook import Workbook

from . import log
from .constants import DEFAULT_CURRENCY
from .data_manager import ProductRow, SaleRow


SHOP_NAME = "GestiArt"
SHOP_TAGLINE = "Marketplace d'artisanat"
INVOICE_TITLE = "Facture"
INVOICE_FOOTER = "Merci pour votre confiance !"
INVOICE_COLUMNS = ("Description", "Qté", "Prix unitaire", "Remise", "Total")
REPORT_COLUMNS = ("ID", "Date", "Client", "N° Facture", "Montant")


def format_amount(amount: Decimal, currency: str = DEFAULT_CURRENCY) -> str:
    """Render ``amount`` rounded to whole units with space thousand separators.

    >>> format_amount(Decimal("30000"))
    '30 000 FCFA'
    """

    whole = Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{int(whole):,}".replace(",", " ") + f" {currency}"


def format_sale_date(sale: SaleRow) -> str:
    try:
        return datetime.fromisoformat(sale.sale_date_iso).strftime("%d/%m/%Y")
    except ValueError:
        return sale.sale_date_iso


def invoice_file_name(sale: SaleRow) -> str:
    return f"Facture_{sale.invoice_number}.xlsx"


def report_file_name(when: datetime) -> str:
    return f"Rapport_Ventes_{when.strftime('%Y-%m-%d')}.xlsx"


def _describe(product_id: str, products: Mapping[str, ProductRow]) -> str:
    product = products.get(product_id)
    return product.product_name if product is not None else product_id


def invoice_lines(
    sale: SaleRow,
    products: Mapping[str, ProductRow],
    *,
    shop_name: str = SHOP_NAME,
    currency: str = DEFAULT_CURRENCY,
) -> List[str]:
    """Lay out an invoice as plain text lines.

    ``products`` maps product ids to records and is only used for the item
    descriptions; unknown ids fall back to the raw id so invoices for
    products removed from the catalog still render.
    """

    lines = [
        f"{INVOICE_TITLE} {sale.invoice_number}",
        f"Date : {format_sale_date(sale)}",
        f"{shop_name} - {SHOP_TAGLINE}",
        "",
        f"Facturé à : {sale.client_name or '-'}",
    ]
    if sale.artisan_id:
        lines.append(f"Artisan : {sale.artisan_id}")
    lines.append("")
    lines.append(" | ".join(INVOICE_COLUMNS))
    for item in sale.items:
        lines.append(
            " | ".join(
                (
                    _describe(item.product_id, products),
                    str(item.quantity),
                    format_amount(item.unit_price, currency),
                    format_amount(item.discount, currency),
                    format_amount(item.line_amount, currency),
                )
            )
        )
    lines.append("")
    lines.append(f"TOTAL À PAYER : {format_amount(sale.total_amount, currency)}")
    if sale.notes:
        lines.append(f"Notes : {sale.notes}")
    lines.append(INVOICE_FOOTER)
    return lines


def _new_workbook(title: str) -> Workbook:
    workbook = openpyxl.Workbook()
    workbook.active.title = title
    return workbook


def _write_header(worksheet, row: int, columns: Sequence[str]) -> None:
    bold = Font(bold=True)
    for column_index, title in enumerate(columns, start=1):
        cell = worksheet.cell(row=row, column=column_index, value=title)
        cell.font = bold
        cell.alignment = Alignment(horizontal="center")


def render_invoice(
    sale: SaleRow,
    products: Mapping[str, ProductRow],
    *,
    shop_name: str = SHOP_NAME,
    currency: str = DEFAULT_CURRENCY,
) -> Workbook:
    """Build a single-sheet invoice workbook for ``sale``.

    Amounts are written as numbers with the currency in the header row so the
    sheet stays usable for further calculation.
    """

    workbook = _new_workbook(INVOICE_TITLE)
    sheet = workbook.active

    sheet.cell(row=1, column=1, value=INVOICE_TITLE).font = Font(bold=True, size=16)
    sheet.cell(row=2, column=1, value="Numéro")
    sheet.cell(row=2, column=2, value=sale.invoice_number)
    sheet.cell(row=3, column=1, value="Date")
    sheet.cell(row=3, column=2, value=format_sale_date(sale))
    sheet.cell(row=4, column=1, value=shop_name).font = Font(bold=True)
    sheet.cell(row=4, column=2, value=SHOP_TAGLINE)
    sheet.cell(row=6, column=1, value="Facturé à").font = Font(bold=True)
    sheet.cell(row=6, column=2, value=sale.client_name or "-")
    sheet.cell(row=7, column=1, value="Artisan")
    sheet.cell(row=7, column=2, value=sale.artisan_id or "-")
    sheet.cell(row=8, column=1, value="Paiement")
    sheet.cell(row=8, column=2, value=sale.payment_mode)

    header_row = 10
    _write_header(sheet, header_row, [*INVOICE_COLUMNS[:2], *(f"{name} ({currency})" for name in INVOICE_COLUMNS[2:])])
    row = header_row
    for item in sale.items:
        row += 1
        sheet.append(
            [
                _describe(item.product_id, products),
                item.quantity,
                item.unit_price,
                item.discount,
                item.line_amount,
            ]
        )

    total_row = row + 2
    sheet.cell(row=total_row, column=4, value="TOTAL À PAYER").font = Font(bold=True)
    sheet.cell(row=total_row, column=5, value=sale.total_amount).font = Font(bold=True)
    if sale.notes:
        sheet.cell(row=total_row + 1, column=1, value=f"Notes : {sale.notes}")
    sheet.cell(row=total_row + 3, column=1, value=INVOICE_FOOTER).font = Font(italic=True)

    sheet.column_dimensions["A"].width = 32
    for letter in ("B", "C", "D", "E"):
        sheet.column_dimensions[letter].width = 18
    return workbook


def render_sales_report(
    sales: Sequence[SaleRow],
    *,
    shop_name: str = SHOP_NAME,
    currency: str = DEFAULT_CURRENCY,
    generated_at: Optional[datetime] = None,
) -> Workbook:
    """Tabulate ``sales`` with a bold header and a closing total row."""

    workbook = _new_workbook("Ventes")
    sheet = workbook.active
    title = f"Rapport des ventes - {shop_name}"
    if generated_at is not None:
        title += f" ({generated_at.strftime('%d/%m/%Y')})"
    sheet.cell(row=1, column=1, value=title).font = Font(bold=True, size=14)

    header_row = 3
    _write_header(sheet, header_row, [*REPORT_COLUMNS[:-1], f"{REPORT_COLUMNS[-1]} ({currency})"])
    for sale in sales:
        sheet.append(
            [
                sale.sale_id,
                format_sale_date(sale),
                sale.client_name,
                sale.invoice_number,
                sale.total_amount,
            ]
        )

    total = sum((sale.total_amount for sale in sales), Decimal("0"))
    total_row = header_row + len(sales) + 1
    sheet.cell(row=total_row, column=4, value="TOTAL").font = Font(bold=True)
    sheet.cell(row=total_row, column=5, value=total).font = Font(bold=True)
    return workbook


def save_document(workbook: Workbook, destination: Path) -> Path:
    """Write a rendered document, creating the parent directory if needed."""

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(destination)
    log.info("Wrote document '%s'", destination)
    return destination
