"""Identifiers shared by the storage, business and CLI layers.

Storage keys double as the names the persistence adapter understands, and
each key maps onto exactly one worksheet of the master workbook.
"""

from __future__ import annotations

from enum import Enum


# Workbook layout version this code knows how to read and write.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CURRENCY_SYMBOL = "R"

# Most characters a single worksheet cell can hold.
EXCEL_CELL_CHAR_LIMIT = 32767


class StorageKey(str, Enum):
    """Keys of the collections persisted by the storage adapter."""

    PRODUCTS = "products"
    SALES = "sales"
    EDITS = "edits"


class SheetName(str, Enum):
    """Worksheet names inside the master workbook."""

    PRODUCTS = "Products"
    SALES = "Sales"
    EDITS = "Edits"


SHEET_FOR_KEY: dict[StorageKey, SheetName] = {
    StorageKey.PRODUCTS: SheetName.PRODUCTS,
    StorageKey.SALES: SheetName.SALES,
    StorageKey.EDITS: SheetName.EDITS,
}


class SaleLineStatus(str, Enum):
    """Outcome of a single line inside a batch sale."""

    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_CURRENCY_SYMBOL",
    "EXCEL_CELL_CHAR_LIMIT",
    "StorageKey",
    "SheetName",
    "SHEET_FOR_KEY",
    "SaleLineStatus",
]
