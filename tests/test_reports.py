"""
Tests for inventory valuation and the brand sales report.
"""
from datetime import date
from decimal import Decimal

from garage_ledger.core.period import Period
from garage_ledger.core.reports import (
    UNKNOWN_BRAND,
    inventory_analytics,
    inventory_report,
    sales_report,
)
from garage_ledger.core.stock import compute_stock_levels
from garage_ledger.storage.models import Part, PaymentRecord, RepairOrder, UsageEvent, Vehicle

JUNE = Period(start=date(2024, 6, 1), end=date(2024, 6, 30))


def make_part(part_id, price, stock):
    return Part(id=part_id, name=f"Part {part_id}", unit_price=price, current_stock=stock)


class TestInventoryAnalytics:
    """Valuation of stock on hand."""

    def test_totals_and_average(self):
        parts = [make_part("A", "10.00", 3), make_part("B", "2.50", 4), make_part("C", "99.99", 0)]

        analytics = inventory_analytics(parts)

        assert analytics.total_parts == 3
        assert analytics.total_value == Decimal("40.00")
        assert analytics.average_part_value == Decimal("13.33")

    def test_low_and_out_of_stock_counts(self):
        """Low stock is 0 < stock <= threshold; zero is out of stock only."""
        parts = [
            make_part("A", "1.00", 0),
            make_part("B", "1.00", 1),
            make_part("C", "1.00", 5),
            make_part("D", "1.00", 6),
        ]

        analytics = inventory_analytics(parts)

        assert analytics.low_stock_items == 2
        assert analytics.out_of_stock_items == 1

    def test_threshold_is_configurable(self):
        parts = [make_part("A", "1.00", 6), make_part("B", "1.00", 9)]
        assert inventory_analytics(parts, low_stock_threshold=8).low_stock_items == 1

    def test_top_value_parts(self):
        parts = [make_part(str(i), "1.00", i) for i in range(1, 15)]

        analytics = inventory_analytics(parts, top_n=3)

        assert [v.part.id for v in analytics.top_value_parts] == ["14", "13", "12"]
        assert analytics.top_value_parts[0].total_value == Decimal("14.00")

    def test_empty_inventory(self):
        analytics = inventory_analytics([])

        assert analytics.total_parts == 0
        assert analytics.total_value == Decimal("0.00")
        assert analytics.average_part_value == Decimal("0.00")
        assert analytics.top_value_parts == []


class TestInventoryReport:
    """Numbered begin/used/end rows."""

    def test_rows_follow_parts_and_are_numbered(self):
        parts = [make_part("B", "1.00", 2), make_part("A", "1.00", 20)]
        events = [UsageEvent(part_id="A", quantity=5, occurred_at=date(2024, 6, 10))]
        snapshots = compute_stock_levels(parts, events, JUNE)

        rows = inventory_report(parts, snapshots)

        assert [(r.row, r.part_id) for r in rows] == [(1, "B"), (2, "A")]
        assert (rows[1].begin_stock, rows[1].used, rows[1].end_stock) == (25, 5, 20)
        assert rows[1].part_name == "Part A"

    def test_parts_without_snapshot_are_skipped(self):
        parts = [make_part("A", "1.00", 2), make_part("B", "1.00", 3)]
        snapshots = compute_stock_levels(parts[1:], [])

        rows = inventory_report(parts, snapshots)

        assert [(r.row, r.part_id) for r in rows] == [(1, "B")]


class TestSalesReport:
    """Revenue per brand."""

    def setup_method(self):
        self.vehicles = [
            Vehicle(id="V1", license_plate="A-1", brand="Toyota", customer_name="An"),
            Vehicle(id="V2", license_plate="B-2", brand="Honda", customer_name="Binh"),
            Vehicle(id="V3", license_plate="C-3", brand="", customer_name="Chi"),
        ]

    def _payment(self, vehicle_id, amount, day):
        return PaymentRecord(vehicle_id=vehicle_id, amount=amount, method="cash", occurred_at=day)

    def test_revenue_share_and_ranking(self):
        orders = [
            RepairOrder(id="R1", vehicle_id="V1", reception_date=date(2024, 6, 3)),
            RepairOrder(id="R2", vehicle_id="V2", reception_date=date(2024, 6, 5)),
        ]
        payments = [
            self._payment("V1", "100.00", date(2024, 6, 4)),
            self._payment("V2", "300.00", date(2024, 6, 6)),
        ]

        report = sales_report(self.vehicles, orders, payments, JUNE)

        assert report.total_revenue == Decimal("400.00")
        assert [(b.row, b.brand) for b in report.brands] == [(1, "Honda"), (2, "Toyota")]
        assert report.brands[0].share_percent == Decimal("75.00")
        assert report.brands[1].share_percent == Decimal("25.00")
        assert report.brands[1].repair_count == 1

    def test_out_of_period_orders_and_payments_are_ignored(self):
        orders = [
            RepairOrder(id="R1", vehicle_id="V1", reception_date=date(2024, 6, 3)),
            RepairOrder(id="R2", vehicle_id="V2", reception_date=date(2024, 5, 30)),
        ]
        payments = [
            self._payment("V1", "100.00", date(2024, 7, 1)),
            self._payment("V2", "300.00", date(2024, 6, 6)),
        ]

        report = sales_report(self.vehicles, orders, payments, JUNE)

        assert [b.brand for b in report.brands] == ["Toyota"]
        assert report.brands[0].revenue == Decimal("0.00")
        assert report.brands[0].share_percent == Decimal("0.00")
        assert report.total_revenue == Decimal("0.00")

    def test_missing_brand_is_reported_as_unknown(self):
        orders = [RepairOrder(id="R1", vehicle_id="V3", reception_date=date(2024, 6, 3))]

        report = sales_report(self.vehicles, orders, [], JUNE)

        assert report.brands[0].brand == UNKNOWN_BRAND
