"""
Shop ledger façade.

Fetches rows from storage, hands them to the pure engines and returns
display-ready results. The only business logic here is filtering,
search and pagination; every calculation lives in ``garage_ledger.core``.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Union

from ..config.loader import LedgerConfig
from ..core.debts import DebtSnapshot, Rejected, compute_vehicle_debts, group_by_vehicle
from ..core.errors import DataIntegrityAnomaly, DataUnavailable
from ..core.period import Period
from ..core.reports import (
    InventoryAnalytics,
    InventoryReportRow,
    SalesReport,
    inventory_analytics,
    inventory_report,
    sales_report,
)
from ..core.stock import (
    StockSnapshot,
    compute_stock_levels,
    fallback_stock_levels,
    stock_anomalies,
)
from ..storage.models import Charge, Part, PaymentRecord, UsageChanges, UsageEvent, Vehicle
from ..storage.repository import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass
class StockReport:
    """Stock snapshots plus how much they can be trusted.

    ``degraded`` is set when usage history could not be read and every
    part fell back to its live counter.
    """
    snapshots: List[StockSnapshot]
    degraded: bool = False
    anomalies: List[DataIntegrityAnomaly] = field(default_factory=list)


@dataclass(frozen=True)
class VehicleDebt:
    """A vehicle's balance joined with its charges and payments."""
    vehicle: Vehicle
    debt: DebtSnapshot
    charges: List[Charge]
    payments: List[PaymentRecord]


class ShopLedger:
    """Entry point for the stock, debt and reporting screens.

    All reads and writes go through one ``LedgerRepository``.
    """

    def __init__(self, config: Optional[LedgerConfig] = None, repository: Optional[LedgerRepository] = None):
        """Initialize the ledger.

        Args:
            config: Ledger configuration (defaults when omitted)
            repository: Storage to use; built from ``config`` when omitted
        """
        self.config = config or LedgerConfig()
        self.repository = repository or LedgerRepository(
            self.config.database_path,
            max_retries=self.config.max_retries,
        )

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    def list_parts(self) -> List[Part]:
        return self.repository.fetch_parts()

    def list_usage_events(self, since: Optional[date] = None) -> List[UsageEvent]:
        return self.repository.fetch_usage_events(since=since)

    def list_vehicles(self) -> List[Vehicle]:
        return self.repository.fetch_vehicles()

    def charges_by_vehicle(self) -> Dict[str, List[Charge]]:
        """Every repair order total, keyed by vehicle id."""
        return group_by_vehicle(self.repository.fetch_charges())

    def payments_by_vehicle(self) -> Dict[str, List[PaymentRecord]]:
        """Every payment, keyed by vehicle id, in recording order."""
        return group_by_vehicle(self.repository.fetch_payments())

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def stock_levels(self, period: Optional[Period] = None) -> StockReport:
        """Stock snapshots for every part, as of now or for a period.

        A failure to read the usage history degrades the result instead
        of failing it. A failure to read the parts themselves propagates.
        """
        parts = self.list_parts()
        try:
            # Usage before the window never affects a bounded reconstruction.
            events = self.list_usage_events(
                since=period.start if period is not None else None
            )
        except DataUnavailable as e:
            logger.warning("Usage history unavailable, reporting current stock only: %s", e)
            return StockReport(snapshots=fallback_stock_levels(parts), degraded=True)

        snapshots = compute_stock_levels(parts, events, period)
        return StockReport(snapshots=snapshots, anomalies=stock_anomalies(snapshots))

    def inventory_report(self, period: Optional[Period] = None) -> List[InventoryReportRow]:
        parts = self.list_parts()
        return inventory_report(parts, self.stock_levels(period).snapshots)

    def inventory_analytics(self) -> InventoryAnalytics:
        return inventory_analytics(
            self.list_parts(),
            low_stock_threshold=self.config.inventory.low_stock_threshold,
            top_n=self.config.inventory.top_value_parts,
        )

    def apply_usage_changes(self, repair_order_id: str, changes: UsageChanges) -> Dict[str, int]:
        """Save a repair order's line-item edits and adjust stock with them."""
        if changes.is_empty():
            return {}
        return self.repository.apply_usage_changes(repair_order_id, changes)

    def correct_stock(self, part_id: str, new_stock: int) -> int:
        return self.repository.correct_stock(part_id, new_stock)

    # ------------------------------------------------------------------
    # Debts and payments
    # ------------------------------------------------------------------

    def vehicle_debts(
        self,
        period: Optional[Period] = None,
        search: Optional[str] = None,
        include_settled: Optional[bool] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> List[VehicleDebt]:
        """Balances per vehicle for the debt screen.

        Storage failures propagate: there is no safe fallback for a
        balance.

        Args:
            period: Optional window on charge dates
            search: Case-insensitive text matched against plate, brand and
                customer name, phone and email
            include_settled: Keep zero-debt rows (full ledger); defaults
                to the configured value
            page: 1-based page number
            page_size: Rows per page; defaults to the configured value
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size is None:
            page_size = self.config.debts.page_size
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        if include_settled is None:
            include_settled = self.config.debts.include_settled

        vehicles = self.list_vehicles()
        if search:
            vehicles = [v for v in vehicles if matches_search(v, search)]

        charges = self.charges_by_vehicle()
        payments = self.payments_by_vehicle()

        snapshots = compute_vehicle_debts(
            vehicles, charges, payments, period=period, include_settled=include_settled
        )
        by_id = {v.id: v for v in vehicles}
        rows = [
            VehicleDebt(
                vehicle=by_id[s.vehicle_id],
                debt=s,
                charges=[
                    c for c in charges.get(s.vehicle_id, [])
                    if period is None or (c.occurred_at is not None and period.contains(c.occurred_at))
                ],
                payments=payments.get(s.vehicle_id, []),
            )
            for s in snapshots
        ]
        start = (page - 1) * page_size
        return rows[start:start + page_size]

    def process_payment(
        self,
        vehicle_id: str,
        amount: Union[Decimal, str, int],
        method: str = "cash",
        created_by: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Union[PaymentRecord, Rejected]:
        """Take a payment against a vehicle's outstanding debt.

        Business rejections come back as ``Rejected``; they are not
        raised.
        """
        return self.repository.record_payment(
            vehicle_id,
            amount,
            method,
            created_by=created_by,
            idempotency_key=idempotency_key,
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def sales_report(self, period: Period) -> SalesReport:
        return sales_report(
            self.list_vehicles(),
            self.repository.fetch_repair_orders(),
            self.repository.fetch_payments(),
            period,
        )


def matches_search(vehicle: Vehicle, term: str) -> bool:
    """Case-insensitive substring match on the vehicle and its customer."""
    needle = term.strip().lower()
    if not needle:
        return True
    fields = (
        vehicle.license_plate,
        vehicle.brand,
        vehicle.customer_name,
        vehicle.customer_phone,
        vehicle.customer_email,
    )
    return any(needle in value.lower() for value in fields if value)
