"""
Stock reconstruction.

Only the live ``current_stock`` counter of each part is persisted. Past
stock levels are recovered by walking usage events backward from "now":

    end_of_window   = current + Σ usage after the window
    start_of_window = end_of_window + Σ usage inside the window

Without a window the function reports totals-to-date, which doubles as
the self-healing recomputation path: it trusts only the counter and the
event stream, never a separately stored balance.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .errors import DataIntegrityAnomaly
from .period import Period, as_date
from garage_ledger.storage.models import LineItemChange, Part, UsageChanges, UsageEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockSnapshot:
    """Derived stock position of one part for one period."""
    part_id: str
    begin_stock: int
    used_during_period: int
    end_stock: int
    current_stock: int

    @property
    def is_anomalous(self) -> bool:
        """Negative balances mean the event history contradicts the counter."""
        return self.begin_stock < 0 or self.end_stock < 0


def compute_stock_levels(
    parts: Iterable[Part],
    usage_events: Iterable[UsageEvent],
    period: Optional[Period] = None,
) -> List[StockSnapshot]:
    """Compute begin/end stock for every part.

    Args:
        parts: Parts with their current stock counters
        usage_events: Usage events; those without a part are ignored
        period: Optional inclusive window. Without it, totals-to-date are
            reported: begin is ``initial_stock`` when set and non-zero,
            otherwise current stock plus everything ever used.

    Returns:
        One snapshot per part, in input order
    """
    events = [e for e in usage_events if e.part_id is not None]

    if period is None:
        used_to_date: Dict[str, int] = defaultdict(int)
        for event in events:
            used_to_date[event.part_id] += event.quantity
        snapshots = [_totals_to_date(part, used_to_date.get(part.id, 0)) for part in parts]
    else:
        during: Dict[str, int] = defaultdict(int)
        after: Dict[str, int] = defaultdict(int)
        for event in events:
            if event.occurred_at is None:
                continue
            day = as_date(event.occurred_at)
            if period.contains(day):
                during[event.part_id] += event.quantity
            elif period.is_after(day):
                after[event.part_id] += event.quantity
        snapshots = [
            _reconstruct(part, during.get(part.id, 0), after.get(part.id, 0))
            for part in parts
        ]

    for anomaly in stock_anomalies(snapshots):
        anomaly.log(logger)
    return snapshots


def stock_anomalies(snapshots: Iterable[StockSnapshot]) -> List[DataIntegrityAnomaly]:
    """Integrity anomalies for snapshots whose balances went negative."""
    return [
        DataIntegrityAnomaly(
            entity="part",
            entity_id=s.part_id,
            message=f"reconstructed stock is negative (begin={s.begin_stock}, end={s.end_stock})",
        )
        for s in snapshots
        if s.is_anomalous
    ]


def _totals_to_date(part: Part, used_to_date: int) -> StockSnapshot:
    if part.initial_stock:
        begin = part.initial_stock
    else:
        begin = part.current_stock + used_to_date
    return StockSnapshot(
        part_id=part.id,
        begin_stock=begin,
        used_during_period=used_to_date,
        end_stock=part.current_stock,
        current_stock=part.current_stock,
    )


def _reconstruct(part: Part, used_during: int, used_after: int) -> StockSnapshot:
    # Undo consumption after the window, then inside it.
    end_at_time = part.current_stock + used_after
    begin_at_time = end_at_time + used_during
    return StockSnapshot(
        part_id=part.id,
        begin_stock=begin_at_time,
        used_during_period=used_during,
        end_stock=end_at_time,
        current_stock=part.current_stock,
    )


def fallback_stock_levels(parts: Iterable[Part]) -> List[StockSnapshot]:
    """Degraded answer when the usage feed is unavailable.

    Every part reports its live counter as both begin and end stock.
    """
    return [
        StockSnapshot(
            part_id=part.id,
            begin_stock=part.current_stock,
            used_during_period=0,
            end_stock=part.current_stock,
            current_stock=part.current_stock,
        )
        for part in parts
    ]


def compute_usage_delta(changes: UsageChanges) -> Dict[str, int]:
    """Net signed stock change per part for a set of line-item edits.

    New consumption is negative, released consumption positive:

    - new item: ``-quantity``
    - updated item: ``-(quantity - original_quantity)``; when the part was
      swapped the original part gets ``+original_quantity`` back and the
      new part ``-quantity``
    - deleted item: ``+quantity``

    Lines without a part are ignored and zero deltas are dropped.
    """
    delta: Dict[str, int] = defaultdict(int)

    for item in changes.new_items:
        if item.part_id is not None:
            delta[item.part_id] -= item.quantity

    for item in changes.updated_items:
        _add_update_delta(delta, item)

    for item in changes.deleted_items:
        if item.part_id is not None:
            delta[item.part_id] += item.quantity

    return {part_id: value for part_id, value in delta.items() if value != 0}


def _add_update_delta(delta: Dict[str, int], item: LineItemChange) -> None:
    original_quantity = item.original_quantity if item.original_quantity is not None else item.quantity
    original_part = item.original_part_id if item.original_part_id is not None else item.part_id

    if original_part == item.part_id:
        if item.part_id is not None:
            delta[item.part_id] -= item.quantity - original_quantity
        return

    if original_part is not None:
        delta[original_part] += original_quantity
    if item.part_id is not None:
        delta[item.part_id] -= item.quantity


def apply_delta(current_stock: int, delta: int) -> int:
    """New counter value after a signed delta, floored at zero."""
    return max(0, current_stock + delta)
