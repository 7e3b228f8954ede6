"""Business logic layer for Wings Inventory.

The module keeps three collections consistent with each other: the product
catalog, the append-only sales ledger and the append-only edit history. All
state for a session lives in an explicit :class:`SessionState`, loaded once
from storage and written back after every mutation through the storage
adapter from :mod:`wings_inventory.data_manager`.

Rules enforced here:

* stock never goes below zero;
* product names are unique regardless of case;
* a sale decrements stock through the regular edit path, so every sale
  leaves exactly one edit record and one sale record behind;
* an edit record is appended before the edited product replaces the old one.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from . import data_manager, log
from .constants import EXCEL_CELL_CHAR_LIMIT, EXPECTED_SCHEMA_VERSION, SaleLineStatus, StorageKey
from .data_manager import EditRecord, Product, SaleRecord
from .images import ImagePayload, resolve_image


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class DuplicateNameError(BusinessRuleViolation):
    """Raised when a product name is already taken (case-insensitive)."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale asks for more than the product has in stock."""


class InvalidProductError(BusinessRuleViolation, ValueError):
    """Raised when product fields are blank, negative or cannot be stored."""


class InvalidQuantityError(BusinessRuleViolation, ValueError):
    """Raised when a sale quantity is not strictly positive."""


class CatalogStore:
    """In-memory product set keyed by id, written through on every change.

    The store does not validate names or quantities; callers do that before
    handing products over.
    """

    def __init__(self, storage: Any, products: Iterable[Product] = ()) -> None:
        self._storage = storage
        self._products: Dict[int, Product] = {
            product.product_id: product for product in products
        }

    def __len__(self) -> int:
        return len(self._products)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products

    def list(self) -> List[Product]:
        return list(self._products.values())

    def get(self, product_id: int) -> Optional[Product]:
        return self._products.get(product_id)

    def find_by_name(self, name: str) -> Optional[Product]:
        """Return the product whose name matches ``name`` ignoring case."""

        wanted = _name_key(name)
        for product in self._products.values():
            if _name_key(product.name) == wanted:
                return product
        return None

    def add(self, product: Product) -> None:
        self._products[product.product_id] = product
        self._persist()

    def update(self, product: Product) -> bool:
        if product.product_id not in self._products:
            return False
        self._products[product.product_id] = product
        self._persist()
        return True

    def remove(self, product_id: int) -> bool:
        if self._products.pop(product_id, None) is None:
            return False
        self._persist()
        return True

    def _persist(self) -> None:
        self._storage.write(StorageKey.PRODUCTS, self.list())


class LedgerStore:
    """Append-only sale and edit sequences.

    Insertion order is the order of occurrence; the latest-edit report relies
    on it.
    """

    def __init__(
        self,
        storage: Any,
        sales: Iterable[SaleRecord] = (),
        edits: Iterable[EditRecord] = (),
    ) -> None:
        self._storage = storage
        self._sales: List[SaleRecord] = list(sales)
        self._edits: List[EditRecord] = list(edits)

    def sales(self) -> List[SaleRecord]:
        return list(self._sales)

    def edits(self) -> List[EditRecord]:
        return list(self._edits)

    def append_sale(self, record: SaleRecord) -> None:
        self._sales.append(record)
        self._storage.write(StorageKey.SALES, self.sales())

    def append_edit(self, record: EditRecord) -> None:
        self._edits.append(record)
        self._storage.write(StorageKey.EDITS, self.edits())


@dataclass(frozen=True)
class SessionState:
    """Everything one operator session works on.

    ``settings`` is ``None`` when a session is assembled directly from a
    storage object instead of ``config.ini``.
    """

    storage: Any
    catalog: CatalogStore
    ledger: LedgerStore
    settings: Optional[data_manager.ConfigSettings] = None
    _ids: Dict[str, int] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ProductCandidate:
    """User intent for adding a product to the catalog."""

    name: str
    quantity: int
    price: Union[Decimal, int, str]
    image: Optional[ImagePayload] = None


@dataclass(frozen=True)
class SaleLine:
    """One ``(product, quantity)`` pair of a multi-line sale."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class SaleLineResult:
    """Outcome of one sale line: the committed record or the reason it failed."""

    line: SaleLine
    status: SaleLineStatus
    sale: Optional[SaleRecord] = None
    reason: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.status is SaleLineStatus.COMMITTED


def _name_key(name: str) -> str:
    return name.strip().casefold()


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def open_session(storage: Any, settings: Optional[data_manager.ConfigSettings] = None) -> SessionState:
    """Seed a session from the three collections held by ``storage``.

    ``storage`` is anything exposing ``read(key)`` and ``write(key, records)``
    for the keys in :class:`~wings_inventory.constants.StorageKey`.
    """

    products = storage.read(StorageKey.PRODUCTS)
    sales = storage.read(StorageKey.SALES)
    edits = storage.read(StorageKey.EDITS)
    log.debug(
        "Opened session with %d product(s), %d sale(s), %d edit(s)",
        len(products),
        len(sales),
        len(edits),
    )
    return SessionState(
        storage=storage,
        catalog=CatalogStore(storage, products),
        ledger=LedgerStore(storage, sales, edits),
        settings=settings,
    )


def load_session(config_path: Optional[Path] = None) -> SessionState:
    """Resolve ``config.ini``, open the workbook and load the session.

    Args:
        config_path (Path | None): Optional explicit config file. When omitted
            the data layer searches upward from the working directory.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When configuration entries or workbook sheets are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    storage = data_manager.WorkbookStorage.open(settings.data_file)
    log.info("Loaded session for workbook '%s'", settings.data_file)
    return open_session(storage, settings=settings)


def refresh_session(state: SessionState) -> SessionState:
    """Reload every collection from storage, discarding the in-memory copy."""

    if state.settings is not None:
        storage = data_manager.WorkbookStorage.open(state.settings.data_file)
    else:
        storage = state.storage
    return open_session(storage, settings=state.settings)


def ensure_schema_version(state: SessionState) -> None:
    """Refuse to work on a workbook declared with another schema version.

    Raises:
        RuntimeError: If ``config.ini`` declares a different
            ``SchemaVersion`` than :data:`EXPECTED_SCHEMA_VERSION`.
    """

    if state.settings is None:
        return
    if state.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            state.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, state.settings.schema_version)
        )


def generate_id(state: SessionState, *, when: Optional[datetime] = None) -> int:
    """Allocate a collision-free, time-derived identifier.

    Identifiers are milliseconds since the epoch. When two allocations land on
    the same millisecond (or the clock goes backwards) the value is bumped
    past the last identifier handed out, so ids increase strictly within a
    session and never collide with product, sale or edit ids already in
    storage.
    """

    when = _resolve_timestamp(when)
    last = state._ids.get("last")
    if last is None:
        existing = [product.product_id for product in state.catalog.list()]
        existing.extend(sale.sale_id for sale in state.ledger.sales())
        existing.extend(sale.product_id for sale in state.ledger.sales())
        existing.extend(edit.product_id for edit in state.ledger.edits())
        last = max(existing, default=0)
    candidate = int(when.timestamp() * 1000)
    if candidate <= last:
        candidate = last + 1
    state._ids["last"] = candidate
    return candidate


def list_products(state: SessionState) -> List[Product]:
    return state.catalog.list()


def list_sales(state: SessionState) -> List[SaleRecord]:
    return state.ledger.sales()


def list_edits(state: SessionState) -> List[EditRecord]:
    return state.ledger.edits()


def get_product(state: SessionState, product_id: int) -> Optional[Product]:
    return state.catalog.get(product_id)


def require_valid_product_fields(name: str, quantity: int, price: Any) -> Decimal:
    """Validate product fields and return the price as a ``Decimal``.

    Raises:
        InvalidProductError: If the name is blank, too long or holds control
            characters, the quantity is negative or not a whole number, or the
            price is negative or not numeric.
    """

    if not name or not name.strip():
        log.error("Product validation failed: blank name")
        raise InvalidProductError("Product name must not be empty")
    if data_manager.contains_illegal_characters(name):
        log.error("Product validation failed: control characters in name %r", name)
        raise InvalidProductError("Product name must not contain control characters")
    if len(name.strip()) > EXCEL_CELL_CHAR_LIMIT:
        log.error("Product validation failed: name of %d characters", len(name.strip()))
        raise InvalidProductError(
            f"Product name must not be longer than {EXCEL_CELL_CHAR_LIMIT} characters"
        )
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        log.error("Product validation failed: quantity %r", quantity)
        raise InvalidProductError("Quantity must be a whole number of zero or more")
    try:
        money = price if isinstance(price, Decimal) else Decimal(str(price))
    except InvalidOperation as exc:
        log.error("Product validation failed: price %r", price)
        raise InvalidProductError(f"Price is not a number: {price!r}") from exc
    if not money.is_finite() or money < Decimal("0"):
        log.error("Product validation failed: price %s", money)
        raise InvalidProductError("Price must be zero or positive")
    return money


def require_storable_image(image: Optional[str]) -> None:
    """Reject encoded images the workbook cannot hold.

    Raises:
        InvalidProductError: If ``image`` contains control characters.
    """

    if data_manager.contains_illegal_characters(image):
        log.error("Product validation failed: control characters in image")
        raise InvalidProductError("Product image must not contain control characters")


def require_positive_quantity(quantity: int) -> None:
    """Validate that a sale quantity is a whole number above zero.

    Raises:
        InvalidQuantityError: If ``quantity`` is zero, negative or fractional.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise InvalidQuantityError("Quantity must be greater than zero")


def add_product(state: SessionState, candidate: ProductCandidate) -> Product:
    """Validate ``candidate`` and append it to the catalog.

    The name is checked against every live product ignoring case. The image
    payload is resolved to its encoded form before the product exists, and
    the new product receives a fresh id from :func:`generate_id`.

    Returns:
        Product: The stored product.

    Raises:
        InvalidProductError: If a field fails validation.
        DuplicateNameError: If a product with the same name already exists.
    """

    price = require_valid_product_fields(candidate.name, candidate.quantity, candidate.price)
    name = candidate.name.strip()
    existing = state.catalog.find_by_name(name)
    if existing is not None:
        log.warning(
            "Rejected product '%s': name already used by product %s",
            name,
            existing.product_id,
        )
        raise DuplicateNameError(f"A product named '{existing.name}' already exists")

    image = resolve_image(candidate.image)
    require_storable_image(image.value if image is not None else None)
    product = Product(
        product_id=generate_id(state),
        name=name,
        quantity=candidate.quantity,
        price=price,
        image=image.value if image is not None else None,
    )
    state.catalog.add(product)
    log.info(
        "Added product %s '%s' (quantity=%s, price=%s)",
        product.product_id,
        product.name,
        product.quantity,
        product.price,
    )
    return product


def _apply_edit(state: SessionState, current: Product, updated: Product, when: datetime) -> EditRecord:
    record = EditRecord(
        product_id=updated.product_id,
        name=updated.name,
        old_quantity=current.quantity,
        new_quantity=updated.quantity,
        old_price=current.price,
        new_price=updated.price,
        date=when.isoformat(),
    )
    # The edit record goes in first so stock never changes without its history entry.
    state.ledger.append_edit(record)
    state.catalog.update(updated)
    log.info(
        "Edited product %s '%s' (quantity %s -> %s, price %s -> %s)",
        updated.product_id,
        updated.name,
        record.old_quantity,
        record.new_quantity,
        record.old_price,
        record.new_price,
    )
    return record


def edit_product(
    state: SessionState,
    updated: Product,
    *,
    timestamp: Optional[datetime] = None,
) -> Optional[EditRecord]:
    """Replace a product and log the change in the edit history.

    Unknown ids are ignored: the call logs a warning and returns ``None``
    without touching any collection.

    Returns:
        EditRecord | None: The appended history entry, or ``None`` for an
            unknown id.

    Raises:
        InvalidProductError: If the new fields fail validation.
        DuplicateNameError: If the new name belongs to another product.
    """

    current = state.catalog.get(updated.product_id)
    if current is None:
        log.warning("Ignoring edit for unknown product id %s", updated.product_id)
        return None

    price = require_valid_product_fields(updated.name, updated.quantity, updated.price)
    require_storable_image(updated.image)
    updated = replace(updated, name=updated.name.strip(), price=price)
    clash = state.catalog.find_by_name(updated.name)
    if clash is not None and clash.product_id != updated.product_id:
        log.warning(
            "Rejected rename of product %s to '%s': name used by product %s",
            updated.product_id,
            updated.name,
            clash.product_id,
        )
        raise DuplicateNameError(f"A product named '{clash.name}' already exists")

    return _apply_edit(state, current, updated, _resolve_timestamp(timestamp))


def delete_product(state: SessionState, product_id: int) -> bool:
    """Remove a product from the catalog; the ledger keeps its history.

    Returns:
        bool: ``True`` when a product was removed, ``False`` for unknown ids.
    """

    removed = state.catalog.remove(product_id)
    if removed:
        log.info("Deleted product %s", product_id)
    else:
        log.warning("Ignoring delete for unknown product id %s", product_id)
    return removed


def record_sale(
    state: SessionState,
    product_id: int,
    quantity: int,
    *,
    timestamp: Optional[datetime] = None,
) -> SaleRecord:
    """Sell ``quantity`` units of a product.

    Both records are built before anything is mutated. The stock decrement
    then goes through the edit path and the sale record is appended, priced
    with the price in effect before the sale.

    Returns:
        SaleRecord: The appended sale.

    Raises:
        InvalidQuantityError: If ``quantity`` is not strictly positive.
        InsufficientStockError: If the product is unknown or has fewer than
            ``quantity`` units in stock.
    """

    require_positive_quantity(quantity)
    product = state.catalog.get(product_id)
    if product is None:
        log.warning("Rejected sale of %s unit(s): unknown product id %s", quantity, product_id)
        raise InsufficientStockError(f"Not enough stock: product {product_id} does not exist")
    if quantity > product.quantity:
        log.warning(
            "Rejected sale of %s unit(s) of '%s': only %s in stock",
            quantity,
            product.name,
            product.quantity,
        )
        raise InsufficientStockError(
            f"Not enough stock for {product.name}: requested {quantity}, available {product.quantity}"
        )

    when = _resolve_timestamp(timestamp)
    decremented = replace(product, quantity=product.quantity - quantity)
    sale = SaleRecord(
        sale_id=generate_id(state, when=when),
        product_id=product.product_id,
        product_name=product.name,
        quantity_sold=quantity,
        unit_price=product.price,
        total=product.price * quantity,
        date=when.isoformat(),
    )

    _apply_edit(state, product, decremented, when)
    state.ledger.append_sale(sale)
    log.info(
        "Recorded sale %s: %s x '%s' for %s",
        sale.sale_id,
        sale.quantity_sold,
        sale.product_name,
        sale.total,
    )
    return sale


def record_sales(
    state: SessionState,
    lines: Sequence[SaleLine],
    *,
    timestamp: Optional[datetime] = None,
) -> List[SaleLineResult]:
    """Commit a multi-line sale one line at a time.

    Each line is checked against the stock left after the lines before it.
    A line that fails is reported and skipped; the remaining lines still
    commit. Storage errors are not caught.

    Returns:
        list[SaleLineResult]: One result per input line, in input order.
    """

    results: List[SaleLineResult] = []
    for line in lines:
        try:
            sale = record_sale(state, line.product_id, line.quantity, timestamp=timestamp)
        except (InsufficientStockError, InvalidQuantityError) as exc:
            log.warning("Dropped sale line for product %s: %s", line.product_id, exc)
            results.append(
                SaleLineResult(line=line, status=SaleLineStatus.REJECTED, reason=str(exc))
            )
            continue
        results.append(SaleLineResult(line=line, status=SaleLineStatus.COMMITTED, sale=sale))

    committed = sum(1 for result in results if result.committed)
    log.info("Batch sale finished: %d of %d line(s) committed", committed, len(results))
    return results
