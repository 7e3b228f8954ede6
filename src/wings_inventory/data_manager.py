"""Data access layer for Wings Inventory.

This module owns everything that touches disk: locating and parsing
``config.ini``, opening and saving the master workbook, and translating the
``Products``, ``Sales`` and ``Edits`` worksheets to and from typed records.
Business rules live in :mod:`wings_inventory.core_logic`.

The public API is organised around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Key/value persistence: :class:`WorkbookStorage` reads and rewrites a whole
   collection per storage key, which is the only contract the business layer
   relies on.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CURRENCY_SYMBOL,
    EXCEL_CELL_CHAR_LIMIT,
    SHEET_FOR_KEY,
    SheetName,
    StorageKey,
)


CONFIG_FILE_NAME = "config.ini"

SHEET_COLUMNS: Dict[str, List[str]] = {
    SheetName.PRODUCTS.value: ["ProductID", "Name", "Quantity", "Price", "Image"],
    SheetName.SALES.value: [
        "SaleID",
        "ProductID",
        "ProductName",
        "QuantitySold",
        "UnitPrice",
        "Total",
        "Date",
    ],
    SheetName.EDITS.value: [
        "ProductID",
        "Name",
        "OldQuantity",
        "NewQuantity",
        "OldPrice",
        "NewPrice",
        "Date",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL


@dataclass(frozen=True)
class Product:
    """A live catalog entry."""

    product_id: int
    name: str
    quantity: int
    price: Decimal
    image: Optional[str] = None


@dataclass(frozen=True)
class SaleRecord:
    """One confirmed sale line, priced at the moment of sale."""

    sale_id: int
    product_id: int
    product_name: str
    quantity_sold: int
    unit_price: Decimal
    total: Decimal
    date: str


@dataclass(frozen=True)
class EditRecord:
    """Before/after snapshot of a product edit."""

    product_id: int
    name: str
    old_quantity: int
    new_quantity: int
    old_price: Decimal
    new_price: Decimal
    date: str


Record = Union[Product, SaleRecord, EditRecord]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls where data is stored.

    If the caller provides ``explicit_path`` it is returned untouched. Otherwise
    the function walks up from the current working directory toward the
    filesystem root and returns the first ``CONFIG_FILE_NAME`` it finds.

    Args:
        explicit_path (Path | None): Optional path to use instead of searching.

    Returns:
        Path: The explicit path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
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
    """Load ``config.ini`` and return a populated ``ConfigParser``.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. The ``[Display]`` section is optional
    and only supplies the currency symbol used when rendering amounts.
    Relative ``DataFile`` entries are anchored at ``base_path`` (or the
    working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used for relative ``DataFile``
            entries.

    Returns:
        ConfigSettings: Immutable settings with an absolute data file path.

    Raises:
        KeyError: If a required section or option is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    currency_symbol = parser.get(
        "Display", "CurrencySymbol", fallback=DEFAULT_CURRENCY_SYMBOL
    )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        currency_symbol=currency_symbol,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist ``workbook`` at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def validate_workbook(workbook: Workbook) -> None:
    """Check that every managed sheet exists with the expected header row.

    Raises:
        KeyError: If a sheet is missing or its header differs from
            :data:`SHEET_COLUMNS`.
    """

    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name not in workbook.sheetnames:
            raise KeyError(f"Workbook is missing sheet: {sheet_name}")
        header = [cell.value for cell in workbook[sheet_name][1]][: len(columns)]
        if header != columns:
            raise KeyError(
                f"Unexpected header on sheet '{sheet_name}': {header!r}"
            )


def _decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None and raw != "" else Decimal(default)


def _int(raw: object) -> int:
    return int(raw) if raw is not None and raw != "" else 0


def contains_illegal_characters(value: object) -> bool:
    """Return ``True`` when ``value`` holds control characters a worksheet rejects."""

    return isinstance(value, str) and ILLEGAL_CHARACTERS_RE.search(value) is not None


def split_cell_text(value: str, limit: int = EXCEL_CELL_CHAR_LIMIT) -> List[str]:
    """Cut ``value`` into pieces that each fit in one cell.

    Joining the pieces gives back ``value``. No piece after the first starts
    with ``=``, otherwise the cell would be stored as a formula.
    """

    chunks: List[str] = []
    start = 0
    while start < len(value):
        end = min(start + limit, len(value))
        while end < len(value) and end > start + 1 and value[end] == "=":
            end -= 1
        chunks.append(value[start:end])
        start = end
    return chunks


def serialize_product(record: Product) -> list[object]:
    """Convert a product into ``[ProductID, Name, Quantity, Price, Image...]``.

    Images longer than one cell continue into the columns after ``Image``.
    """

    image_cells: list[object] = split_cell_text(record.image) if record.image else [None]
    return [record.product_id, record.name, record.quantity, str(record.price), *image_cells]


def serialize_sale(record: SaleRecord) -> list[object]:
    """Convert a sale record into the ``Sales`` column order.

    Monetary amounts are written as decimal strings so that reading them back
    yields exactly the recorded value.
    """

    return [
        record.sale_id,
        record.product_id,
        record.product_name,
        record.quantity_sold,
        str(record.unit_price),
        str(record.total),
        record.date,
    ]


def serialize_edit(record: EditRecord) -> list[object]:
    """Convert an edit record into the ``Edits`` column order."""

    return [
        record.product_id,
        record.name,
        record.old_quantity,
        record.new_quantity,
        str(record.old_price),
        str(record.new_price),
        record.date,
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a ``Products`` row into a :class:`Product`.

    Excel may hand numbers back as floats, so ids and quantities go through
    ``int`` and prices through ``Decimal(str(...))``. The image is the
    ``Image`` cell joined with any continuation cells after it; a blank image
    stays ``None``.
    """

    product_id, name, quantity, price = (list(raw_row) + [None] * 4)[:4]
    image = "".join(str(part) for part in list(raw_row)[4:] if part not in (None, ""))
    return Product(
        product_id=_int(product_id),
        name=str(name) if name is not None else "",
        quantity=_int(quantity),
        price=_decimal(price, "0.00"),
        image=image or None,
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRecord:
    """Convert a ``Sales`` row into a :class:`SaleRecord`."""

    (
        sale_id,
        product_id,
        product_name,
        quantity_sold,
        unit_price,
        total,
        date,
    ) = (list(raw_row) + [None] * 7)[:7]

    return SaleRecord(
        sale_id=_int(sale_id),
        product_id=_int(product_id),
        product_name=str(product_name) if product_name is not None else "",
        quantity_sold=_int(quantity_sold),
        unit_price=_decimal(unit_price, "0.00"),
        total=_decimal(total, "0.00"),
        date=str(date) if date is not None else "",
    )


def deserialize_edit(raw_row: Sequence[object]) -> EditRecord:
    """Convert an ``Edits`` row into an :class:`EditRecord`."""

    (
        product_id,
        name,
        old_quantity,
        new_quantity,
        old_price,
        new_price,
        date,
    ) = (list(raw_row) + [None] * 7)[:7]

    return EditRecord(
        product_id=_int(product_id),
        name=str(name) if name is not None else "",
        old_quantity=_int(old_quantity),
        new_quantity=_int(new_quantity),
        old_price=_decimal(old_price, "0.00"),
        new_price=_decimal(new_price, "0.00"),
        date=str(date) if date is not None else "",
    )


_SERIALIZERS: Dict[StorageKey, Callable[[Any], list[object]]] = {
    StorageKey.PRODUCTS: serialize_product,
    StorageKey.SALES: serialize_sale,
    StorageKey.EDITS: serialize_edit,
}

_DESERIALIZERS: Dict[StorageKey, Callable[[Sequence[object]], Any]] = {
    StorageKey.PRODUCTS: deserialize_product,
    StorageKey.SALES: deserialize_sale,
    StorageKey.EDITS: deserialize_edit,
}


def iter_rows(workbook: Workbook, key: StorageKey) -> List[Record]:
    """Return the typed records stored under ``key``, skipping empty rows."""

    sheet = workbook[SHEET_FOR_KEY[key].value]
    deserialize = _DESERIALIZERS[key]
    return [
        deserialize(raw)
        for raw in sheet.iter_rows(min_row=2, values_only=True)
        if any(cell is not None for cell in raw)
    ]


def replace_rows(workbook: Workbook, key: StorageKey, records: Sequence[Record]) -> None:
    """Overwrite every data row of the sheet behind ``key`` with ``records``.

    The header row is left in place; everything below it is dropped and the
    full snapshot is written in order starting at row 2. Cells are addressed
    explicitly because ``Worksheet.append`` keeps counting from the old last
    row after ``delete_rows``.

    Every row is serialized and checked before the sheet is touched, so a
    record that cannot be stored leaves the previous snapshot in place.

    Raises:
        IllegalCharacterError: If a text value holds control characters.
        ValueError: If a text value does not fit in one cell.
    """

    serialize = _SERIALIZERS[key]
    rows = [serialize(record) for record in records]
    for row in rows:
        for value in row:
            if contains_illegal_characters(value):
                raise IllegalCharacterError(f"{value!r} cannot be used in a worksheet")
            if isinstance(value, str) and len(value) > EXCEL_CELL_CHAR_LIMIT:
                raise ValueError(
                    f"Text of {len(value)} characters exceeds the cell limit of {EXCEL_CELL_CHAR_LIMIT}"
                )

    sheet = workbook[SHEET_FOR_KEY[key].value]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            sheet.cell(row=row_index, column=column_index, value=value)


class WorkbookStorage:
    """Key/value persistence backed by the master workbook.

    ``read`` returns the full collection for a key and ``write`` replaces it
    and saves the workbook straight away, so disk always holds the last
    successfully written snapshot. Write failures are raised to the caller.
    """

    def __init__(self, workbook: Workbook, data_file: Path) -> None:
        self.workbook = workbook
        self.data_file = Path(data_file)

    @classmethod
    def open(cls, data_file: Path) -> "WorkbookStorage":
        workbook = open_workbook(data_file)
        validate_workbook(workbook)
        return cls(workbook, Path(data_file).expanduser().resolve())

    def read(self, key: StorageKey) -> List[Record]:
        records = iter_rows(self.workbook, StorageKey(key))
        log.debug("Read %d record(s) from '%s'", len(records), StorageKey(key).value)
        return records

    def write(self, key: StorageKey, records: Sequence[Record]) -> None:
        replace_rows(self.workbook, StorageKey(key), records)
        save_workbook(self.workbook, self.data_file)
        log.debug(
            "Wrote %d record(s) to '%s' in '%s'",
            len(records),
            StorageKey(key).value,
            self.data_file,
        )
