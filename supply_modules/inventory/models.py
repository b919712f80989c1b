"""
Inventory Domain Models (``supply_modules.inventory.models``).

Responsibility
--------------
Frozen value objects for the inventory ledger: stock keys, positions,
movements, cross-warehouse summaries, transfer results and reconciliation
reports.

Architecture
------------
Layer: **Modules** -- pure domain data structures.  These models carry NO
database identity beyond the ids copied from persisted rows and NO I/O;
they are returned by ``InventoryLedger`` and ``StockSelector`` so callers
never hold live ORM instances.

Invariants
----------
- ``StockPosition`` rejects construction with negative quantities or with
  ``reserved_quantity > physical_quantity``.
- Stock quantities are whole units (``int``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from supply_kernel.logging_config import get_logger

logger = get_logger("modules.inventory.models")

NO_VARIANT = ""


class MovementReason(str, Enum):
    """Why a stock movement was written."""
    INITIAL_SETUP = "initial-setup"
    MANUAL_ADJUSTMENT = "manual-adjustment"
    GOODS_RECEIPT = "goods-receipt"
    SALE_RESERVATION = "sale-reservation"
    SALE_RELEASE = "sale-release"
    SALE_FULFILMENT = "sale-fulfilment"
    TRANSFER_IN = "transfer-in"
    TRANSFER_OUT = "transfer-out"


@dataclass(frozen=True)
class StockKey:
    """
    Identity of a stock position: (warehouse, product, variant).

    ``variant_id`` is None for products without variants.
    """
    warehouse_id: UUID
    product_id: UUID
    variant_id: UUID | None = None

    @property
    def variant_key(self) -> str:
        """Non-null column value used for uniqueness (NULLs never collide)."""
        return str(self.variant_id) if self.variant_id is not None else NO_VARIANT

    @property
    def lock_key(self) -> str:
        return f"{self.warehouse_id}:{self.product_id}:{self.variant_key or '-'}"

    def __str__(self) -> str:
        return self.lock_key

    def __lt__(self, other: StockKey) -> bool:
        return self.lock_key < other.lock_key


@dataclass(frozen=True)
class DocumentRef:
    """Pointer from a movement to the document that caused it."""
    document_type: str
    document_id: UUID

    def __str__(self) -> str:
        return f"{self.document_type}:{self.document_id}"


@dataclass(frozen=True)
class StockPosition:
    """Current stock of one key."""
    id: UUID
    key: StockKey
    physical_quantity: int
    reserved_quantity: int
    location: str
    version: int

    def __post_init__(self):
        if (
            self.physical_quantity < 0
            or self.reserved_quantity < 0
            or self.reserved_quantity > self.physical_quantity
        ):
            logger.warning(
                "stock_position_inconsistent",
                extra={
                    "stock_key": self.key.lock_key,
                    "physical_quantity": self.physical_quantity,
                    "reserved_quantity": self.reserved_quantity,
                },
            )
            raise ValueError(
                f"Inconsistent stock position {self.key}: "
                f"physical={self.physical_quantity} reserved={self.reserved_quantity}"
            )

    @property
    def available_quantity(self) -> int:
        return self.physical_quantity - self.reserved_quantity


@dataclass(frozen=True)
class StockMovement:
    """One immutable entry of the movement history."""
    id: UUID
    position_id: UUID
    key: StockKey
    delta: int
    reserved_delta: int
    reason: MovementReason
    actor_id: UUID
    occurred_at: datetime
    reference: DocumentRef | None = None
    transfer_id: UUID | None = None
    resulting_physical: int = 0
    resulting_reserved: int = 0


@dataclass(frozen=True)
class StockSummary:
    """Positions of a product across warehouses, with totals."""
    product_id: UUID
    variant_id: UUID | None
    positions: tuple[StockPosition, ...]

    @property
    def total_physical(self) -> int:
        return sum(p.physical_quantity for p in self.positions)

    @property
    def total_reserved(self) -> int:
        return sum(p.reserved_quantity for p in self.positions)

    @property
    def total_available(self) -> int:
        return self.total_physical - self.total_reserved


@dataclass(frozen=True)
class TransferItem:
    """One product line of a multi-item transfer request."""
    product_id: UUID
    quantity: int
    variant_id: UUID | None = None


@dataclass(frozen=True)
class TransferResult:
    """Both sides of a completed transfer, sharing one transfer id."""
    transfer_id: UUID
    from_warehouse_id: UUID
    to_warehouse_id: UUID
    outbound: tuple[StockMovement, ...]
    inbound: tuple[StockMovement, ...]


@dataclass(frozen=True)
class ReconciliationResult:
    """Stored quantities of a position compared with its movement history."""
    key: StockKey
    physical_quantity: int
    reserved_quantity: int
    movement_physical_total: int
    movement_reserved_total: int
    movement_count: int

    @property
    def is_balanced(self) -> bool:
        return (
            self.physical_quantity == self.movement_physical_total
            and self.reserved_quantity == self.movement_reserved_total
        )
