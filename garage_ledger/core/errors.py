"""
Error taxonomy for the ledger core.

Exceptions are for failures the caller cannot treat as a normal outcome.
Business rejections of a payment are NOT exceptions; see
``garage_ledger.core.debts.Rejected``.

    LedgerError
    +-- DataUnavailable       upstream fetch failed
    +-- ConcurrencyConflict   counter changed underneath a write, retries exhausted
    +-- VehicleNotFound
    +-- PartNotFound
    +-- RepairOrderNotFound

``DataIntegrityAnomaly`` is a record, logged and attached to results.
"""

import logging
from dataclasses import dataclass


class LedgerError(Exception):
    """Base class for ledger failures."""


class DataUnavailable(LedgerError):
    """Raised when rows could not be fetched from storage."""
    def __init__(self, source: str, reason: str):
        super().__init__(f"Could not read {source}: {reason}")
        self.source = source
        self.reason = reason


class ConcurrencyConflict(LedgerError):
    """Raised when a versioned counter keeps changing during a write."""
    def __init__(self, entity: str, entity_id: str, attempts: int):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently; gave up after {attempts} attempts"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.attempts = attempts


class VehicleNotFound(LedgerError):
    def __init__(self, vehicle_id: str):
        super().__init__(f"Vehicle not found: {vehicle_id}")
        self.vehicle_id = vehicle_id


class PartNotFound(LedgerError):
    def __init__(self, part_id: str):
        super().__init__(f"Spare part not found: {part_id}")
        self.part_id = part_id


class RepairOrderNotFound(LedgerError):
    def __init__(self, repair_order_id: str):
        super().__init__(f"Repair order not found: {repair_order_id}")
        self.repair_order_id = repair_order_id


@dataclass(frozen=True)
class DataIntegrityAnomaly:
    """Evidence that stored data contradicts itself.

    Produced when a reconstructed stock level goes negative or a ledger
    input carries a negative amount. Results are reported as computed.
    """
    entity: str
    entity_id: str
    message: str

    def log(self, logger: logging.Logger) -> None:
        logger.warning("Data integrity anomaly on %s %s: %s", self.entity, self.entity_id, self.message)
