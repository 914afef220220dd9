"""
Debt and payment reconciliation.

A vehicle owes the sum of its repair order totals (charges) minus the
sum of its payments. Charges can be scoped to a period; payments never
are, since a payment made this month may settle work done earlier.

Payment validation order (first failure wins):
1. Amount must be positive and in whole cents
2. The vehicle must have outstanding debt (unclamped charged - paid > 0)
3. Amount must not exceed that outstanding debt
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from .errors import DataIntegrityAnomaly
from .money import ZERO, format_money, is_whole_cents, sum_money, to_decimal, to_money
from .period import Period
from garage_ledger.storage.models import Charge, PaymentRecord, Vehicle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DebtSnapshot:
    """Derived balance of one vehicle, optionally scoped to a period."""
    vehicle_id: str
    total_charged: Decimal
    total_paid: Decimal
    remaining_debt: Decimal

    @property
    def outstanding(self) -> Decimal:
        """Unclamped balance; negative when the vehicle is overpaid."""
        return self.total_charged - self.total_paid


class RejectionReason(Enum):
    """Why a payment was refused."""
    INVALID_AMOUNT = "invalid_amount"
    NO_OUTSTANDING_DEBT = "no_outstanding_debt"
    AMOUNT_EXCEEDS_DEBT = "amount_exceeds_debt"


@dataclass(frozen=True)
class Rejected:
    """A payment refused by a business rule.

    Returned to the caller, never raised. ``message`` is shown to staff
    as is; ``limit`` carries the outstanding debt for
    AMOUNT_EXCEEDS_DEBT.
    """
    reason: RejectionReason
    message: str
    limit: Optional[Decimal] = None


def summarize_vehicle(
    vehicle_id: str,
    charges: Iterable[Charge],
    payments: Iterable[PaymentRecord],
    period: Optional[Period] = None,
) -> DebtSnapshot:
    """Reconcile one vehicle's charges against its payments."""
    charges = list(charges)
    payments = list(payments)
    _log_negative_amounts(vehicle_id, charges, payments)

    if period is not None:
        charges = [
            c for c in charges
            if c.occurred_at is not None and period.contains(c.occurred_at)
        ]

    total_charged = sum_money(c.amount for c in charges)
    total_paid = sum_money(p.amount for p in payments)
    return DebtSnapshot(
        vehicle_id=vehicle_id,
        total_charged=total_charged,
        total_paid=total_paid,
        remaining_debt=max(ZERO, total_charged - total_paid),
    )


def compute_vehicle_debts(
    vehicles: Iterable[Vehicle],
    charges_by_vehicle: Mapping[str, List[Charge]],
    payments_by_vehicle: Mapping[str, List[PaymentRecord]],
    period: Optional[Period] = None,
    include_settled: bool = False,
) -> List[DebtSnapshot]:
    """Compute balances for a set of vehicles.

    Vehicles with nothing charged and nothing paid are always left out.
    Vehicles whose remaining debt is zero are left out of the
    outstanding-debt view unless ``include_settled`` is set (full ledger).

    Args:
        vehicles: Vehicles to report on, in display order
        charges_by_vehicle: Charges keyed by vehicle id
        payments_by_vehicle: Payments keyed by vehicle id
        period: Optional window applied to charge dates only
        include_settled: Keep rows whose remaining debt is zero

    Returns:
        Snapshots in the order of ``vehicles``
    """
    snapshots = []
    for vehicle in vehicles:
        snapshot = summarize_vehicle(
            vehicle.id,
            charges_by_vehicle.get(vehicle.id, []),
            payments_by_vehicle.get(vehicle.id, []),
            period,
        )
        if snapshot.total_charged == ZERO and snapshot.total_paid == ZERO:
            continue
        if snapshot.remaining_debt == ZERO and not include_settled:
            continue
        snapshots.append(snapshot)
    return snapshots


def validate_payment(
    amount: Decimal,
    total_charged: Decimal,
    total_paid: Decimal,
) -> Optional[Rejected]:
    """Check a proposed payment against the live balance.

    Returns:
        None if the payment may be recorded, otherwise the rejection
    """
    rejection = check_amount(amount)
    if rejection is not None:
        return rejection
    amount = to_money(amount)

    outstanding = to_money(total_charged) - to_money(total_paid)
    if outstanding <= ZERO:
        return Rejected(
            reason=RejectionReason.NO_OUTSTANDING_DEBT,
            message="No outstanding debt found for this vehicle",
        )

    if amount > outstanding:
        return Rejected(
            reason=RejectionReason.AMOUNT_EXCEEDS_DEBT,
            message=(
                f"Payment amount ({format_money(amount)}) exceeds "
                f"remaining debt ({format_money(outstanding)})"
            ),
            limit=outstanding,
        )
    return None


def check_amount(amount) -> Optional[Rejected]:
    """Reject amounts that are not positive or carry a fraction of a cent."""
    if to_decimal(amount) <= ZERO:
        return Rejected(
            reason=RejectionReason.INVALID_AMOUNT,
            message="Payment amount must be greater than zero",
        )
    if not is_whole_cents(amount):
        return Rejected(
            reason=RejectionReason.INVALID_AMOUNT,
            message="Payment amount cannot include fractions of a cent",
        )
    return None


def group_by_vehicle(records: Iterable) -> Dict[str, List]:
    """Bucket charges or payments by their ``vehicle_id``."""
    grouped: Dict[str, List] = {}
    for record in records:
        grouped.setdefault(record.vehicle_id, []).append(record)
    return grouped


def _log_negative_amounts(
    vehicle_id: str,
    charges: List[Charge],
    payments: List[PaymentRecord],
) -> None:
    for charge in charges:
        if charge.amount < ZERO:
            DataIntegrityAnomaly(
                entity="vehicle",
                entity_id=vehicle_id,
                message=f"negative charge {charge.amount} on repair order {charge.repair_order_id}",
            ).log(logger)
    for payment in payments:
        if payment.amount < ZERO:
            DataIntegrityAnomaly(
                entity="vehicle",
                entity_id=vehicle_id,
                message=f"negative payment {payment.amount} (payment {payment.id})",
            ).log(logger)
