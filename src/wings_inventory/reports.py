"""Read-side aggregation over catalog and ledger snapshots.

Every function here is pure: it takes sequences of records and returns new
values without touching a session. Sales are joined to products by the
product's *current* name, so sales recorded before a rename stay attached
to the old name and drop out of the renamed product's statistics.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from . import log
from .data_manager import EditRecord, Product, SaleRecord


ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class ProductStatistics:
    """Per-product stock and sales figures."""

    product_id: int
    name: str
    quantity: int
    price: Decimal
    total_sold: int
    total_revenue: Decimal


@dataclass(frozen=True)
class ReportSummary:
    """Catalog-wide totals."""

    total_products: int
    total_stock_value: Decimal
    total_items_sold: int
    total_revenue: Decimal


@dataclass(frozen=True)
class TopSeller:
    name: str
    quantity_sold: int


@dataclass(frozen=True)
class InventoryReport:
    """Everything the report view shows."""

    summary: ReportSummary
    products: Tuple[ProductStatistics, ...]
    latest_edits: Tuple[EditRecord, ...]
    top_seller: Optional[TopSeller]


def round_money(amount: Decimal) -> Decimal:
    """Round ``amount`` half-up to two decimal places."""

    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def product_statistics(
    products: Sequence[Product],
    sales: Sequence[SaleRecord],
) -> List[ProductStatistics]:
    """Return sales totals for each product in catalog order."""

    sold: Dict[str, int] = {}
    revenue: Dict[str, Decimal] = {}
    for sale in sales:
        sold[sale.product_name] = sold.get(sale.product_name, 0) + sale.quantity_sold
        revenue[sale.product_name] = revenue.get(sale.product_name, ZERO) + sale.total

    return [
        ProductStatistics(
            product_id=product.product_id,
            name=product.name,
            quantity=product.quantity,
            price=product.price,
            total_sold=sold.get(product.name, 0),
            total_revenue=revenue.get(product.name, ZERO),
        )
        for product in products
    ]


def summarize(products: Sequence[Product], sales: Sequence[SaleRecord]) -> ReportSummary:
    """Compute catalog size, stock value, units sold and revenue."""

    return ReportSummary(
        total_products=len(products),
        total_stock_value=sum((product.price * product.quantity for product in products), ZERO),
        total_items_sold=sum(sale.quantity_sold for sale in sales),
        total_revenue=sum((sale.total for sale in sales), ZERO),
    )


def latest_edits(edits: Sequence[EditRecord]) -> List[EditRecord]:
    """Keep the most recently appended edit for each product name.

    Names are listed in the order they first appear in the history.
    """

    latest: Dict[str, EditRecord] = {}
    for edit in edits:
        latest[edit.name] = edit
    return list(latest.values())


def top_selling_product(sales: Sequence[SaleRecord]) -> Optional[TopSeller]:
    """Return the product name with the most units sold.

    Ties go to the name that was sold first. ``None`` when nothing has been
    sold.
    """

    totals: Dict[str, int] = {}
    for sale in sales:
        totals[sale.product_name] = totals.get(sale.product_name, 0) + sale.quantity_sold

    best: Optional[TopSeller] = None
    for name, quantity in totals.items():
        if quantity > 0 and (best is None or quantity > best.quantity_sold):
            best = TopSeller(name=name, quantity_sold=quantity)
    return best


def build_report(
    products: Sequence[Product],
    sales: Sequence[SaleRecord],
    edits: Sequence[EditRecord],
) -> InventoryReport:
    """Assemble the full report from the three snapshots."""

    report = InventoryReport(
        summary=summarize(products, sales),
        products=tuple(product_statistics(products, sales)),
        latest_edits=tuple(latest_edits(edits)),
        top_seller=top_selling_product(sales),
    )
    log.debug(
        "Built report: %d product(s), revenue=%s",
        report.summary.total_products,
        report.summary.total_revenue,
    )
    return report
