"""
Inventory Module (``supply_modules.inventory``).

Responsibility
--------------
The inventory ledger: per-(warehouse, product, variant) stock positions,
the append-only movement history, reservations, transfers and
reconciliation.

Architecture position
---------------------
**Modules layer** -- ``InventoryLedger`` is the only writer of stock
positions.  Procurement reaches stock exclusively through it.

Invariants enforced
-------------------
* ``0 <= reserved <= physical`` for every position, always.
* SUM(movement deltas) == physical quantity for every position.
* Per-key serialization of writers; different keys run in parallel.
"""

from supply_modules.inventory.models import (
    DocumentRef,
    MovementReason,
    ReconciliationResult,
    StockKey,
    StockMovement,
    StockPosition,
    StockSummary,
    TransferItem,
    TransferResult,
)
from supply_modules.inventory.service import InventoryLedger

__all__ = [
    "DocumentRef",
    "InventoryLedger",
    "MovementReason",
    "ReconciliationResult",
    "StockKey",
    "StockMovement",
    "StockPosition",
    "StockSummary",
    "TransferItem",
    "TransferResult",
]
