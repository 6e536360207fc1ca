"""Enumerations shared across the GestiArt modules.

The data access layer, the sale transaction manager, the formatter and the
CLI all rely on these values, so the workbook column names and the textual
values stored in cells are defined here once.
"""

from __future__ import annotations

from enum import Enum


# Schema version written by ``setup_excel`` and checked at startup.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_INVOICE_PREFIX = "FACT"
DEFAULT_CURRENCY = "FCFA"
INVOICE_SEQUENCE_COUNTER = "InvoiceSequence"


class PaymentMode(str, Enum):
    """Payment mechanisms accepted at the counter."""

    CASH = "cash"
    CHEQUE = "cheque"
    TRANSFER = "transfer"
    CARD = "card"


class SaleStatus(str, Enum):
    """Lifecycle state of a persisted sale.

    A sale only exists once it is validated; failed or deleted sales leave no
    record behind.
    """

    VALIDATED = "validated"


class StoreBackend(str, Enum):
    """Store implementations selectable from ``config.ini``."""

    WORKBOOK = "workbook"
    MEMORY = "memory"


class SheetName(str, Enum):
    """Workbook sheets managed by the data access layer."""

    PRODUCTS = "Products"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"
    COUNTERS = "Counters"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_INVOICE_PREFIX",
    "DEFAULT_CURRENCY",
    "INVOICE_SEQUENCE_COUNTER",
    "PaymentMode",
    "SaleStatus",
    "StoreBackend",
    "SheetName",
]
