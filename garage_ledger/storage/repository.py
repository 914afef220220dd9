"""
Repository pattern for data access.

Handles database operations and data persistence logic.

The two shared counters, ``spare_parts.stock_quantity`` and
``vehicles.total_paid``, are written only here, and only inside a
``BEGIN IMMEDIATE`` transaction that also carries a version
compare-and-swap. A write either lands completely (event rows and
counters) or not at all.
"""

import logging
import sqlite3
import uuid
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, TypeVar, Union

from .db import DEFAULT_DB_PATH, get_connection, write_transaction
from .models import (
    Charge,
    LineItemChange,
    Part,
    PaymentRecord,
    RepairOrder,
    UsageChanges,
    UsageEvent,
    Vehicle,
)
from garage_ledger.core.debts import Rejected, check_amount, validate_payment
from garage_ledger.core.errors import (
    ConcurrencyConflict,
    DataIntegrityAnomaly,
    DataUnavailable,
    PartNotFound,
    RepairOrderNotFound,
    VehicleNotFound,
)
from garage_ledger.core.money import sum_money, to_money
from garage_ledger.core.period import as_date
from garage_ledger.core.stock import apply_delta, compute_usage_delta

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3


class StaleVersion(Exception):
    """A row changed between read and conditional write."""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    Usage events are the repair order items that reference a spare part;
    payments are append-only. Money is stored as decimal text.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS spare_parts (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                price TEXT NOT NULL,
                stock_quantity INTEGER NOT NULL CHECK (stock_quantity >= 0),
                initial_stock INTEGER,
                version INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS vehicles (
                id TEXT PRIMARY KEY,
                license_plate TEXT NOT NULL,
                brand TEXT NOT NULL,
                customer_name TEXT NOT NULL,
                customer_phone TEXT,
                customer_email TEXT,
                total_paid TEXT NOT NULL DEFAULT '0.00',
                version INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS repair_orders (
                id TEXT PRIMARY KEY,
                vehicle_id TEXT NOT NULL REFERENCES vehicles(id),
                status TEXT NOT NULL DEFAULT 'pending',
                reception_date TEXT,
                total_amount TEXT NOT NULL DEFAULT '0.00'
            );

            CREATE TABLE IF NOT EXISTS repair_order_items (
                id TEXT PRIMARY KEY,
                repair_order_id TEXT NOT NULL REFERENCES repair_orders(id),
                spare_part_id TEXT REFERENCES spare_parts(id),
                quantity INTEGER NOT NULL CHECK (quantity > 0),
                line_total TEXT NOT NULL DEFAULT '0.00',
                description TEXT NOT NULL DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                vehicle_id TEXT NOT NULL REFERENCES vehicles(id),
                amount TEXT NOT NULL,
                payment_method TEXT NOT NULL,
                payment_date TEXT NOT NULL,
                created_by TEXT,
                idempotency_key TEXT UNIQUE
            );

            CREATE INDEX IF NOT EXISTS idx_items_order ON repair_order_items(repair_order_id);
            CREATE INDEX IF NOT EXISTS idx_orders_vehicle ON repair_orders(vehicle_id);
            CREATE INDEX IF NOT EXISTS idx_payments_vehicle ON payments(vehicle_id);
        """)
    finally:
        conn.close()


class LedgerRepository:
    """Repository for the shop's parts, vehicles, orders and payments.

    Reads translate storage failures into ``DataUnavailable``. Guarded
    writes retry on version conflicts and give up with
    ``ConcurrencyConflict``.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, max_retries: int = DEFAULT_MAX_RETRIES):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            max_retries: Attempts for a guarded write before giving up
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.db_path = db_path
        self.max_retries = max_retries

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self, source: str, query: str, params=()) -> List[tuple]:
        try:
            conn = get_connection(self.db_path)
            try:
                return conn.execute(query, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise DataUnavailable(source, str(e)) from e

    def fetch_parts(self) -> List[Part]:
        """All spare parts with their current stock, ordered by name."""
        rows = self._read("spare_parts", """
            SELECT id, name, price, stock_quantity, initial_stock, version
            FROM spare_parts ORDER BY name, id
        """)
        return [
            Part(
                id=row[0],
                name=row[1],
                unit_price=Decimal(row[2]),
                current_stock=row[3],
                initial_stock=row[4],
                version=row[5],
            )
            for row in rows
        ]

    def fetch_usage_events(self, since: Optional[date] = None) -> List[UsageEvent]:
        """Usage events, i.e. repair order items that reference a part.

        Args:
            since: Optional lower bound on the owning order's reception date
        """
        query = """
            SELECT i.id, i.repair_order_id, i.spare_part_id, i.quantity, o.reception_date
            FROM repair_order_items i
            JOIN repair_orders o ON o.id = i.repair_order_id
            WHERE i.spare_part_id IS NOT NULL
        """
        params = []
        if since is not None:
            query += " AND o.reception_date >= ?"
            params.append(since.isoformat())
        query += " ORDER BY o.reception_date, i.id"

        rows = self._read("repair_order_items", query, params)
        return [
            UsageEvent(
                part_id=row[2],
                quantity=row[3],
                occurred_at=_parse_date(row[4]),
                item_id=row[0],
                repair_order_id=row[1],
            )
            for row in rows
        ]

    def fetch_vehicles(self) -> List[Vehicle]:
        rows = self._read("vehicles", """
            SELECT id, license_plate, brand, customer_name, customer_phone,
                   customer_email, total_paid, version
            FROM vehicles ORDER BY license_plate, id
        """)
        return [_vehicle_from_row(row) for row in rows]

    def get_vehicle(self, vehicle_id: str) -> Vehicle:
        rows = self._read("vehicles", """
            SELECT id, license_plate, brand, customer_name, customer_phone,
                   customer_email, total_paid, version
            FROM vehicles WHERE id = ?
        """, (vehicle_id,))
        if not rows:
            raise VehicleNotFound(vehicle_id)
        return _vehicle_from_row(rows[0])

    def fetch_repair_orders(self) -> List[RepairOrder]:
        rows = self._read("repair_orders", """
            SELECT id, vehicle_id, reception_date, status, total_amount
            FROM repair_orders ORDER BY reception_date, id
        """)
        return [
            RepairOrder(
                id=row[0],
                vehicle_id=row[1],
                reception_date=_parse_date(row[2]),
                status=row[3],
                total_amount=Decimal(row[4]),
            )
            for row in rows
        ]

    def fetch_charges(self, vehicle_id: Optional[str] = None) -> List[Charge]:
        """Repair order totals as charges, optionally for one vehicle."""
        return [
            Charge(
                vehicle_id=order.vehicle_id,
                amount=order.total_amount,
                occurred_at=order.reception_date,
                status=order.status,
                repair_order_id=order.id,
            )
            for order in self.fetch_repair_orders()
            if vehicle_id is None or order.vehicle_id == vehicle_id
        ]

    def fetch_payments(self, vehicle_id: Optional[str] = None) -> List[PaymentRecord]:
        """Payments in the order they were recorded."""
        query = """
            SELECT id, vehicle_id, amount, payment_method, payment_date,
                   created_by, idempotency_key
            FROM payments
        """
        params = []
        if vehicle_id is not None:
            query += " WHERE vehicle_id = ?"
            params.append(vehicle_id)
        query += " ORDER BY id"
        return [_payment_from_row(row) for row in self._read("payments", query, params)]

    # ------------------------------------------------------------------
    # Plain inserts (intake / settings screens)
    # ------------------------------------------------------------------

    def add_part(self, part: Part) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO spare_parts (id, name, price, stock_quantity, initial_stock, version)
                VALUES (?, ?, ?, ?, ?, 0)
            """, (part.id, part.name, str(part.unit_price), part.current_stock, part.initial_stock))
        finally:
            conn.close()

    def add_vehicle(self, vehicle: Vehicle) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO vehicles (id, license_plate, brand, customer_name,
                                      customer_phone, customer_email, total_paid, version)
                VALUES (?, ?, ?, ?, ?, ?, '0.00', 0)
            """, (
                vehicle.id,
                vehicle.license_plate,
                vehicle.brand,
                vehicle.customer_name,
                vehicle.customer_phone,
                vehicle.customer_email,
            ))
        finally:
            conn.close()

    def create_repair_order(self, order: RepairOrder) -> None:
        """Open a repair order with no line items and a zero total."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO repair_orders (id, vehicle_id, status, reception_date, total_amount)
                VALUES (?, ?, ?, ?, '0.00')
            """, (
                order.id,
                order.vehicle_id,
                order.status,
                order.reception_date.isoformat() if order.reception_date else None,
            ))
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Guarded writes
    # ------------------------------------------------------------------

    def _retrying(self, entity: str, entity_id: str, operation: Callable[[], T]) -> T:
        for attempt in range(1, self.max_retries + 1):
            try:
                return operation()
            except StaleVersion as e:
                logger.debug("Retrying write on %s %s (attempt %d): %s", entity, entity_id, attempt, e)
            except sqlite3.OperationalError as e:
                if "locked" not in str(e).lower():
                    raise
                logger.debug("Retrying write on %s %s (attempt %d): database locked", entity, entity_id, attempt)
        raise ConcurrencyConflict(entity, entity_id, self.max_retries)

    def apply_usage_changes(self, repair_order_id: str, changes: UsageChanges) -> Dict[str, int]:
        """Persist line-item edits and move stock counters with them.

        In a single transaction: insert, update and delete the line items,
        apply the net per-part delta (floored at zero) to each stock
        counter, and recompute the order total from its lines.

        Args:
            repair_order_id: Order owning the edited lines
            changes: New, updated and deleted line items

        Returns:
            New stock level per affected part

        Raises:
            RepairOrderNotFound: If the order doesn't exist
            PartNotFound: If a line references an unknown part
            ConcurrencyConflict: If a counter or line kept changing
        """
        # Assign ids once so a retry inserts the same rows.
        new_items = [
            item if item.item_id else _with_item_id(item, uuid.uuid4().hex)
            for item in changes.new_items
        ]
        changes = UsageChanges(
            new_items=new_items,
            updated_items=list(changes.updated_items),
            deleted_items=list(changes.deleted_items),
        )

        def operation():
            conn = get_connection(self.db_path)
            try:
                with write_transaction(conn):
                    _require_order(conn, repair_order_id)
                    _require_parts(conn, changes)
                    delta = _stored_delta(conn, repair_order_id, changes)
                    _write_line_items(conn, repair_order_id, changes)
                    new_levels = {
                        part_id: _move_stock(conn, part_id, part_delta)
                        for part_id, part_delta in sorted(delta.items())
                    }
                    _refresh_order_total(conn, repair_order_id)
                return delta, new_levels
            finally:
                conn.close()

        delta, new_levels = self._retrying("repair_order", repair_order_id, operation)
        for part_id, level in new_levels.items():
            logger.info("Stock of part %s moved by %+d to %d", part_id, delta[part_id], level)
        return new_levels

    def correct_stock(self, part_id: str, new_stock: int) -> int:
        """Administrative correction of a part's stock counter."""
        if new_stock < 0:
            raise ValueError("new_stock must be >= 0")

        def operation() -> int:
            conn = get_connection(self.db_path)
            try:
                with write_transaction(conn):
                    current, version = _read_stock(conn, part_id)
                    _cas_stock(conn, part_id, new_stock, version)
                return current
            finally:
                conn.close()

        previous = self._retrying("part", part_id, operation)
        logger.info("Stock of part %s corrected from %d to %d", part_id, previous, new_stock)
        return new_stock

    def record_payment(
        self,
        vehicle_id: str,
        amount: Decimal,
        method: str,
        created_by: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        paid_on: Optional[date] = None,
    ) -> Union[PaymentRecord, Rejected]:
        """Validate a payment against the live balance and record it.

        Balance is recomputed from the charge and payment streams inside
        the write transaction. On acceptance the payment row and the
        vehicle's ``total_paid`` counter are written together.

        When ``idempotency_key`` matches an earlier payment for the same
        vehicle, that payment is returned and nothing is written.

        Returns:
            The new (or replayed) PaymentRecord, or a Rejected result

        Raises:
            VehicleNotFound: If the vehicle doesn't exist
            ValueError: If the idempotency key belongs to another vehicle
            ConcurrencyConflict: If the counter kept changing
        """
        rejection = check_amount(amount)
        if rejection is not None:
            return rejection

        amount = to_money(amount)
        paid_on = paid_on or date.today()

        def operation() -> Union[PaymentRecord, Rejected]:
            conn = get_connection(self.db_path)
            try:
                with write_transaction(conn):
                    if idempotency_key is not None:
                        existing = _find_by_idempotency_key(conn, idempotency_key)
                        if existing is not None:
                            if existing.vehicle_id != vehicle_id:
                                raise ValueError(
                                    f"Idempotency key {idempotency_key!r} was used for vehicle {existing.vehicle_id}"
                                )
                            return existing

                    row = conn.execute(
                        "SELECT total_paid, version FROM vehicles WHERE id = ?", (vehicle_id,)
                    ).fetchone()
                    if row is None:
                        raise VehicleNotFound(vehicle_id)
                    cached_paid, version = Decimal(row[0]), row[1]

                    total_charged = sum_money(Decimal(r[0]) for r in conn.execute(
                        "SELECT total_amount FROM repair_orders WHERE vehicle_id = ?", (vehicle_id,)
                    ))
                    total_paid = sum_money(Decimal(r[0]) for r in conn.execute(
                        "SELECT amount FROM payments WHERE vehicle_id = ?", (vehicle_id,)
                    ))
                    if cached_paid != total_paid:
                        DataIntegrityAnomaly(
                            entity="vehicle",
                            entity_id=vehicle_id,
                            message=f"cached total_paid {cached_paid} differs from payment stream {total_paid}",
                        ).log(logger)

                    rejection = validate_payment(amount, total_charged, total_paid)
                    if rejection is not None:
                        return rejection

                    cursor = conn.execute("""
                        INSERT INTO payments (vehicle_id, amount, payment_method, payment_date,
                                              created_by, idempotency_key)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (vehicle_id, str(amount), method, paid_on.isoformat(), created_by, idempotency_key))
                    payment_id = cursor.lastrowid

                    updated = conn.execute("""
                        UPDATE vehicles SET total_paid = ?, version = version + 1
                        WHERE id = ? AND version = ?
                    """, (str(total_paid + amount), vehicle_id, version))
                    if updated.rowcount != 1:
                        raise StaleVersion(f"vehicle {vehicle_id} version {version}")

                return PaymentRecord(
                    id=payment_id,
                    vehicle_id=vehicle_id,
                    amount=amount,
                    method=method,
                    occurred_at=paid_on,
                    created_by=created_by,
                    idempotency_key=idempotency_key,
                )
            finally:
                conn.close()

        result = self._retrying("vehicle", vehicle_id, operation)
        if isinstance(result, PaymentRecord):
            logger.info("Payment %s of %s recorded for vehicle %s", result.id, result.amount, vehicle_id)
        else:
            logger.info("Payment of %s for vehicle %s rejected: %s", amount, vehicle_id, result.reason.value)
        return result


def _parse_date(value: Optional[str]) -> Optional[date]:
    return as_date(value) if value else None


def _vehicle_from_row(row) -> Vehicle:
    return Vehicle(
        id=row[0],
        license_plate=row[1],
        brand=row[2],
        customer_name=row[3],
        customer_phone=row[4],
        customer_email=row[5],
        total_paid=Decimal(row[6]),
        version=row[7],
    )


def _payment_from_row(row) -> PaymentRecord:
    return PaymentRecord(
        id=row[0],
        vehicle_id=row[1],
        amount=Decimal(row[2]),
        method=row[3],
        occurred_at=as_date(row[4]),
        created_by=row[5],
        idempotency_key=row[6],
    )


def _find_by_idempotency_key(conn: sqlite3.Connection, key: str) -> Optional[PaymentRecord]:
    row = conn.execute("""
        SELECT id, vehicle_id, amount, payment_method, payment_date,
               created_by, idempotency_key
        FROM payments WHERE idempotency_key = ?
    """, (key,)).fetchone()
    return _payment_from_row(row) if row else None


def _with_item_id(item: LineItemChange, item_id: str) -> LineItemChange:
    return LineItemChange(
        quantity=item.quantity,
        part_id=item.part_id,
        item_id=item_id,
        line_total=item.line_total,
        description=item.description,
    )


def _require_order(conn: sqlite3.Connection, repair_order_id: str) -> None:
    row = conn.execute("SELECT 1 FROM repair_orders WHERE id = ?", (repair_order_id,)).fetchone()
    if row is None:
        raise RepairOrderNotFound(repair_order_id)


def _require_parts(conn: sqlite3.Connection, changes: UsageChanges) -> None:
    referenced = {
        item.part_id for item in changes.new_items + changes.updated_items
        if item.part_id is not None
    }
    for part_id in sorted(referenced):
        _read_stock(conn, part_id)


def _stored_delta(
    conn: sqlite3.Connection,
    repair_order_id: str,
    changes: UsageChanges,
) -> Dict[str, int]:
    """Net stock delta of the edits, measured against the lines as stored.

    Updated and deleted lines give back what their stored row consumed;
    new and updated lines consume their new quantity.
    """
    released = []
    for item in changes.updated_items + changes.deleted_items:
        if item.item_id is None:
            raise ValueError("updated and deleted line items need an item_id")
        row = conn.execute(
            "SELECT spare_part_id, quantity FROM repair_order_items WHERE id = ? AND repair_order_id = ?",
            (item.item_id, repair_order_id),
        ).fetchone()
        if row is None:
            raise StaleVersion(f"line item {item.item_id} no longer exists")
        released.append(LineItemChange(part_id=row[0], quantity=row[1], item_id=item.item_id))

    return compute_usage_delta(UsageChanges(
        new_items=changes.new_items + changes.updated_items,
        deleted_items=released,
    ))


def _write_line_items(conn: sqlite3.Connection, repair_order_id: str, changes: UsageChanges) -> None:
    for item in changes.new_items:
        conn.execute("""
            INSERT INTO repair_order_items (id, repair_order_id, spare_part_id, quantity,
                                            line_total, description)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (item.item_id, repair_order_id, item.part_id, item.quantity,
              str(item.line_total), item.description))

    for item in changes.updated_items:
        if item.item_id is None:
            raise ValueError("updated line items need an item_id")
        query = """
            UPDATE repair_order_items
            SET spare_part_id = ?, quantity = ?, line_total = ?, description = ?
            WHERE id = ? AND repair_order_id = ?
        """
        original_part = item.original_part_id if item.original_part_id is not None else item.part_id
        params = [item.part_id, item.quantity, str(item.line_total), item.description,
                  item.item_id, repair_order_id, original_part]
        # The line must still hold the part and quantity the edit was based on.
        query += " AND spare_part_id IS ?"
        if item.original_quantity is not None:
            query += " AND quantity = ?"
            params.append(item.original_quantity)
        if conn.execute(query, params).rowcount != 1:
            raise StaleVersion(f"line item {item.item_id} changed since it was read")

    for item in changes.deleted_items:
        if item.item_id is None:
            raise ValueError("deleted line items need an item_id")
        deleted = conn.execute(
            """
            DELETE FROM repair_order_items
            WHERE id = ? AND repair_order_id = ? AND spare_part_id IS ? AND quantity = ?
            """,
            (item.item_id, repair_order_id, item.part_id, item.quantity),
        )
        if deleted.rowcount != 1:
            raise StaleVersion(f"line item {item.item_id} already changed or removed")


def _read_stock(conn: sqlite3.Connection, part_id: str):
    row = conn.execute(
        "SELECT stock_quantity, version FROM spare_parts WHERE id = ?", (part_id,)
    ).fetchone()
    if row is None:
        raise PartNotFound(part_id)
    return row[0], row[1]


def _cas_stock(conn: sqlite3.Connection, part_id: str, new_stock: int, version: int) -> None:
    updated = conn.execute("""
        UPDATE spare_parts SET stock_quantity = ?, version = version + 1
        WHERE id = ? AND version = ?
    """, (new_stock, part_id, version))
    if updated.rowcount != 1:
        raise StaleVersion(f"part {part_id} version {version}")


def _move_stock(conn: sqlite3.Connection, part_id: str, delta: int) -> int:
    current, version = _read_stock(conn, part_id)
    new_stock = apply_delta(current, delta)
    if current + delta < 0:
        logger.warning(
            "Stock of part %s floored at 0 (had %d, delta %+d)", part_id, current, delta
        )
    _cas_stock(conn, part_id, new_stock, version)
    return new_stock


def _refresh_order_total(conn: sqlite3.Connection, repair_order_id: str) -> None:
    total = sum_money(Decimal(r[0]) for r in conn.execute(
        "SELECT line_total FROM repair_order_items WHERE repair_order_id = ?", (repair_order_id,)
    ))
    conn.execute(
        "UPDATE repair_orders SET total_amount = ? WHERE id = ?", (str(total), repair_order_id)
    )
