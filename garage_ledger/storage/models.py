"""
Data models for storage layer.

Defines the records the façade reads from storage and hands to the
engines. Event records are immutable once written.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from garage_ledger.core.money import to_money


@dataclass(frozen=True)
class Part:
    """A spare part with its live stock counter.

    ``current_stock`` always reflects "now"; history is reconstructed
    from usage events.
    """
    id: str
    name: str
    unit_price: Decimal
    current_stock: int
    initial_stock: Optional[int] = None
    version: int = 0

    def __post_init__(self):
        object.__setattr__(self, "unit_price", to_money(self.unit_price))
        if self.current_stock < 0:
            raise ValueError(f"current_stock of part {self.id} cannot be negative")


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of a quantity of a part consumed by a repair order.

    ``occurred_at`` is the business date the consumption is attributed to
    (the repair order's reception date), not the insertion time. Lines
    without a part (labor only) carry ``part_id=None``.
    """
    part_id: Optional[str]
    quantity: int
    occurred_at: Optional[date]
    item_id: Optional[str] = None
    repair_order_id: Optional[str] = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")


@dataclass(frozen=True)
class Vehicle:
    """A vehicle with its customer contact and denormalized paid total."""
    id: str
    license_plate: str
    brand: str
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    total_paid: Decimal = Decimal("0.00")
    version: int = 0


@dataclass(frozen=True)
class Charge:
    """Monetary total of one repair order, owed by its vehicle."""
    vehicle_id: str
    amount: Decimal
    occurred_at: Optional[date]
    status: str = "pending"
    repair_order_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "amount", to_money(self.amount))


@dataclass(frozen=True)
class PaymentRecord:
    """Immutable payment against a vehicle's debt."""
    vehicle_id: str
    amount: Decimal
    method: str
    occurred_at: date
    created_by: Optional[str] = None
    id: Optional[int] = None
    idempotency_key: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "amount", to_money(self.amount))


@dataclass(frozen=True)
class RepairOrder:
    id: str
    vehicle_id: str
    reception_date: Optional[date]
    status: str = "pending"
    total_amount: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class LineItemChange:
    """One edited line of a repair order.

    ``original_quantity`` (and ``original_part_id`` when the part was
    swapped) describe the line as it was before the edit; they are only
    meaningful for updated items.
    """
    quantity: int
    part_id: Optional[str] = None
    item_id: Optional[str] = None
    original_quantity: Optional[int] = None
    original_part_id: Optional[str] = None
    line_total: Decimal = Decimal("0.00")
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, "line_total", to_money(self.line_total))
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")
        if self.original_quantity is not None and self.original_quantity <= 0:
            raise ValueError("original_quantity must be > 0")


@dataclass
class UsageChanges:
    """Line-item edits submitted for a single repair order."""
    new_items: List[LineItemChange] = field(default_factory=list)
    updated_items: List[LineItemChange] = field(default_factory=list)
    deleted_items: List[LineItemChange] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.new_items or self.updated_items or self.deleted_items)
