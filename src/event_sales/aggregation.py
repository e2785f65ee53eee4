"""Dashboard aggregations over a sale collection.

Every function is pure and recomputed from scratch on each call; callers
pre-filter the collection (for example by event) when they want a narrower
view. Mappings are returned as ordinary dicts whose insertion order is the
ranking: descending by the primary metric, ties in order of first
appearance.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from . import log
from .data_manager import Sale


V = TypeVar("V")


@dataclass(frozen=True)
class UserSummary:
    """Per-user totals: units across all line items and number of sales."""

    total_units: int
    sale_count: int


@dataclass(frozen=True)
class Dashboard:
    """Headline figures and rankings shown on the reporting dashboard."""

    total_sales: int
    total_units: int
    average_units: Decimal
    top_product: Optional[str]
    units_by_product: Dict[str, int]
    count_by_event: Dict[str, int]
    units_by_event: Dict[str, int]
    summary_by_user: Dict[str, UserSummary]

    def top_products(self, limit: int = 5) -> List[Tuple[str, int]]:
        return list(self.units_by_product.items())[:limit]


def _ranked(summary: Dict[str, V], metric: Callable[[V], int]) -> Dict[str, V]:
    # sorted() is stable, so ties keep first-encounter order
    return dict(sorted(summary.items(), key=lambda entry: metric(entry[1]), reverse=True))


def units_by_product(sales: Sequence[Sale]) -> Dict[str, int]:
    """Total units sold per product name, most sold first."""

    summary: Dict[str, int] = {}
    for sale in sales:
        for item in sale.line_items:
            summary[item.product_name] = summary.get(item.product_name, 0) + item.units
    return _ranked(summary, lambda units: units)


def count_by_event(sales: Sequence[Sale]) -> Dict[str, int]:
    """Number of sale records per event name (not units), busiest first."""

    summary: Dict[str, int] = {}
    for sale in sales:
        summary[sale.event_name] = summary.get(sale.event_name, 0) + 1
    return _ranked(summary, lambda count: count)


def units_by_event(sales: Sequence[Sale]) -> Dict[str, int]:
    """Total units sold per event name, most units first."""

    summary: Dict[str, int] = {}
    for sale in sales:
        summary[sale.event_name] = summary.get(sale.event_name, 0) + sale.total_units
    return _ranked(summary, lambda units: units)


def summary_by_user(sales: Sequence[Sale]) -> Dict[str, UserSummary]:
    """Units and sale count per user name, ranked by units."""

    units: Dict[str, int] = {}
    counts: Dict[str, int] = {}
    for sale in sales:
        units[sale.user_name] = units.get(sale.user_name, 0) + sale.total_units
        counts[sale.user_name] = counts.get(sale.user_name, 0) + 1
    summary = {name: UserSummary(total_units=units[name], sale_count=counts[name]) for name in units}
    return _ranked(summary, lambda entry: entry.total_units)


def build_dashboard(sales: Sequence[Sale]) -> Dashboard:
    """Compute every dashboard figure for ``sales``.

    Args:
        sales (Sequence[Sale]): Sales to summarize, already filtered by the
            caller when a per-event view is wanted.

    Returns:
        Dashboard: Totals, average units per sale (two decimal places, zero
            when there are no sales), the best-selling product, and the
            ranked mappings.
    """

    products = units_by_product(sales)
    total_units = sum(sale.total_units for sale in sales)
    average = Decimal(total_units) / len(sales) if sales else Decimal("0")
    dashboard = Dashboard(
        total_sales=len(sales),
        total_units=total_units,
        average_units=average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        top_product=next(iter(products), None),
        units_by_product=products,
        count_by_event=count_by_event(sales),
        units_by_event=units_by_event(sales),
        summary_by_user=summary_by_user(sales),
    )
    log.debug("Built dashboard over %d sales (%d units)", dashboard.total_sales, dashboard.total_units)
    return dashboard
