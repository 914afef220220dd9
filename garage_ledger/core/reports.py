"""
Inventory and sales reporting.

Aggregations shown on the shop's reports screen. Built on top of the
stock snapshots and the raw charge/payment records.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List

from .money import CENT, ZERO, sum_money
from .period import Period
from .stock import StockSnapshot
from garage_ledger.storage.models import Part, PaymentRecord, RepairOrder, Vehicle

UNKNOWN_BRAND = "Unknown"


@dataclass(frozen=True)
class PartValue:
    part: Part
    total_value: Decimal


@dataclass
class InventoryAnalytics:
    """Valuation of the stock currently on hand."""
    total_parts: int
    total_value: Decimal
    low_stock_items: int
    out_of_stock_items: int
    average_part_value: Decimal
    top_value_parts: List[PartValue] = field(default_factory=list)


@dataclass(frozen=True)
class InventoryReportRow:
    row: int
    part_id: str
    part_name: str
    begin_stock: int
    used: int
    end_stock: int


@dataclass(frozen=True)
class BrandSales:
    row: int
    brand: str
    repair_count: int
    revenue: Decimal
    share_percent: Decimal


@dataclass
class SalesReport:
    period: Period
    total_revenue: Decimal
    brands: List[BrandSales] = field(default_factory=list)


def inventory_analytics(
    parts: Iterable[Part],
    low_stock_threshold: int = 5,
    top_n: int = 10,
) -> InventoryAnalytics:
    """Value the current stock.

    A part is low on stock when 0 < stock <= ``low_stock_threshold`` and
    out of stock at exactly 0.
    """
    parts = list(parts)
    values = [PartValue(part=p, total_value=p.unit_price * p.current_stock) for p in parts]
    total_value = sum_money(v.total_value for v in values)

    average = ZERO
    if parts:
        average = (total_value / len(parts)).quantize(CENT, rounding=ROUND_HALF_UP)

    top = sorted(values, key=lambda v: v.total_value, reverse=True)[:top_n]

    return InventoryAnalytics(
        total_parts=len(parts),
        total_value=total_value,
        low_stock_items=sum(1 for p in parts if 0 < p.current_stock <= low_stock_threshold),
        out_of_stock_items=sum(1 for p in parts if p.current_stock == 0),
        average_part_value=average,
        top_value_parts=top,
    )


def inventory_report(
    parts: Iterable[Part],
    snapshots: Iterable[StockSnapshot],
) -> List[InventoryReportRow]:
    """Number the stock snapshots for display, joined to part names."""
    by_id = {s.part_id: s for s in snapshots}
    rows = []
    for part in parts:
        snapshot = by_id.get(part.id)
        if snapshot is None:
            continue
        rows.append(InventoryReportRow(
            row=len(rows) + 1,
            part_id=part.id,
            part_name=part.name,
            begin_stock=snapshot.begin_stock,
            used=snapshot.used_during_period,
            end_stock=snapshot.end_stock,
        ))
    return rows


def sales_report(
    vehicles: Iterable[Vehicle],
    orders: Iterable[RepairOrder],
    payments: Iterable[PaymentRecord],
    period: Period,
) -> SalesReport:
    """Revenue per vehicle brand for a period.

    Repairs are counted by reception date; revenue is the payments dated
    in the period from vehicles that had a repair received in it. A
    vehicle's revenue is credited to its brand once per repair, so a
    brand's revenue follows its repair volume.
    """
    brand_of = {v.id: v.brand or UNKNOWN_BRAND for v in vehicles}
    period_orders = [
        o for o in orders
        if o.reception_date is not None and period.contains(o.reception_date)
    ]
    order_vehicles = {o.vehicle_id for o in period_orders}

    paid: Dict[str, Decimal] = {}
    for payment in payments:
        if payment.vehicle_id in order_vehicles and period.contains(payment.occurred_at):
            paid[payment.vehicle_id] = paid.get(payment.vehicle_id, ZERO) + payment.amount

    stats: "OrderedDict[str, List]" = OrderedDict()
    for order in period_orders:
        brand = brand_of.get(order.vehicle_id, UNKNOWN_BRAND)
        entry = stats.setdefault(brand, [0, ZERO])
        entry[0] += 1
        entry[1] += paid.get(order.vehicle_id, ZERO)

    total_revenue = sum_money(amount for _, amount in stats.values())
    ranked = sorted(stats.items(), key=lambda item: item[1][1], reverse=True)

    brands = []
    for index, (brand, (count, revenue)) in enumerate(ranked, start=1):
        share = ZERO
        if total_revenue > ZERO:
            share = (revenue / total_revenue * 100).quantize(CENT, rounding=ROUND_HALF_UP)
        brands.append(BrandSales(
            row=index,
            brand=brand,
            repair_count=count,
            revenue=revenue.quantize(CENT),
            share_percent=share,
        ))

    return SalesReport(period=period, total_revenue=total_revenue, brands=brands)

