# garage_ledger/demo/seed_demo_data.py

from datetime import date
from decimal import Decimal

from garage_ledger.sdk import ShopLedger
from garage_ledger.storage.models import LineItemChange, Part, RepairOrder, UsageChanges, Vehicle
from garage_ledger.storage.repository import initialize_schema

ledger = ShopLedger()
initialize_schema(ledger.config.database_path)
repository = ledger.repository

repository.add_part(Part(id="P-OIL", name="Engine oil 4L", unit_price=Decimal("32.00"), current_stock=28))
repository.add_part(Part(id="P-PAD", name="Brake pads (front)", unit_price=Decimal("45.50"), current_stock=6))
repository.add_vehicle(Vehicle(
    id="V-1",
    license_plate="51A-123.45",
    brand="Toyota",
    customer_name="Nguyen Van An",
    customer_phone="0901234567",
))

repository.create_repair_order(RepairOrder(id="RO-1", vehicle_id="V-1", reception_date=date(2024, 6, 10)))
ledger.apply_usage_changes("RO-1", UsageChanges(new_items=[
    LineItemChange(part_id="P-OIL", quantity=5, line_total=Decimal("300.00"), description="Oil change"),
]))

repository.create_repair_order(RepairOrder(id="RO-2", vehicle_id="V-1", reception_date=date(2024, 7, 2)))
ledger.apply_usage_changes("RO-2", UsageChanges(new_items=[
    LineItemChange(part_id="P-OIL", quantity=3, line_total=Decimal("200.00"), description="Top-up"),
]))

ledger.process_payment("V-1", Decimal("150.00"), "cash", created_by="demo")

print("Demo ledger data inserted")
