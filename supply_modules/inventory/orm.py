"""
Module: supply_modules.inventory.orm
Responsibility: SQLAlchemy ORM persistence models for the inventory ledger:
    one row per stock position and an append-only movement history.

Architecture position: Modules > Inventory > ORM.  Inherits from TrackedBase
    (supply_kernel.db.base).  Warehouses, products and variants are owned by
    the catalog/admin layer outside the core and are referenced by UUID
    columns with NO foreign key constraints.

Invariants enforced:
    - CHECK constraints: physical_quantity >= 0, reserved_quantity >= 0 and
      reserved_quantity <= physical_quantity.  The ledger validates first; the
      constraints make an invalid row impossible even for a buggy writer.
    - One position per (warehouse_id, product_id, variant_key).  variant_key
      is the variant UUID as text, or "" when the product has no variants,
      because NULLs never collide in a unique constraint.
    - ``version`` is SQLAlchemy's version_id_col: every UPDATE increments it
      and fails with StaleDataError if the row changed underneath.
    - StockMovementModel is append-only (``@append_only``).

Failure modes:
    - IntegrityError on a second position for the same key (concurrent
      first movement from another process); the ledger retries as an update.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import TrackedBase
from supply_kernel.db.immutability import append_only
from supply_kernel.db.types import UTCDateTime


# =============================================================================
# StockPositionModel
# =============================================================================

class StockPositionModel(TrackedBase):
    """
    ORM model for the current stock of one (warehouse, product, variant) key.

    Maps to: supply_modules.inventory.models.StockPosition (frozen dataclass).

    Guarantees:
        - Written only by InventoryLedger.
        - Never deleted; a position that runs out is zeroed.
    """

    __tablename__ = "stock_positions"

    __table_args__ = (
        UniqueConstraint(
            "warehouse_id", "product_id", "variant_key", name="uq_stock_position_key",
        ),
        CheckConstraint("physical_quantity >= 0", name="ck_stock_physical_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_stock_reserved_non_negative"),
        CheckConstraint(
            "reserved_quantity <= physical_quantity", name="ck_stock_reserved_within_physical",
        ),
        Index("idx_stock_position_product", "product_id", "variant_key"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_id: Mapped[UUID | None] = mapped_column(nullable=True)
    variant_key: Mapped[str] = mapped_column(String(36), nullable=False, default="")

    physical_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    reserved_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    location: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def stock_key(self):
        from supply_modules.inventory.models import StockKey
        return StockKey(self.warehouse_id, self.product_id, self.variant_id)

    def to_dto(self):
        """Convert ORM model to frozen StockPosition DTO."""
        from supply_modules.inventory.models import StockPosition
        return StockPosition(
            id=self.id,
            key=self.stock_key(),
            physical_quantity=self.physical_quantity,
            reserved_quantity=self.reserved_quantity,
            location=self.location,
            version=self.version,
        )

    def __repr__(self) -> str:
        return (
            f"<StockPositionModel {self.warehouse_id}/{self.product_id}/"
            f"{self.variant_key or '-'} physical={self.physical_quantity} "
            f"reserved={self.reserved_quantity} v{self.version}>"
        )


# =============================================================================
# StockMovementModel
# =============================================================================

@append_only("StockMovement")
class StockMovementModel(TrackedBase):
    """
    ORM model for one entry of the stock movement history.

    Maps to: supply_modules.inventory.models.StockMovement (frozen dataclass).

    Guarantees:
        - Immutable once flushed (UPDATE/DELETE rejected by listeners).
        - For every position: SUM(delta) == physical_quantity and
          SUM(reserved_delta) == reserved_quantity.
        - created_by_id is the actor of the movement.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_stock_movement_position", "position_id"),
        Index("idx_stock_movement_reference", "reference_type", "reference_id"),
        Index("idx_stock_movement_transfer", "transfer_id"),
    )

    position_id: Mapped[UUID] = mapped_column(
        ForeignKey("stock_positions.id"), nullable=False,
    )

    # Key copied for history queries without a join
    warehouse_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_id: Mapped[UUID | None] = mapped_column(nullable=True)

    delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reserved_delta: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    resulting_physical: Mapped[int] = mapped_column(BigInteger, nullable=False)
    resulting_reserved: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # MovementReason enum stored as string
    reason: Mapped[str] = mapped_column(String(50), nullable=False)

    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(nullable=True)
    transfer_id: Mapped[UUID | None] = mapped_column(nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self):
        """Convert ORM model to frozen StockMovement DTO."""
        from supply_modules.inventory.models import (
            DocumentRef,
            MovementReason,
            StockKey,
            StockMovement,
        )
        reference = None
        if self.reference_type is not None and self.reference_id is not None:
            reference = DocumentRef(self.reference_type, self.reference_id)
        return StockMovement(
            id=self.id,
            position_id=self.position_id,
            key=StockKey(self.warehouse_id, self.product_id, self.variant_id),
            delta=self.delta,
            reserved_delta=self.reserved_delta,
            reason=MovementReason(self.reason),
            actor_id=self.created_by_id,
            occurred_at=self.occurred_at,
            reference=reference,
            transfer_id=self.transfer_id,
            resulting_physical=self.resulting_physical,
            resulting_reserved=self.resulting_reserved,
        )

    def __repr__(self) -> str:
        return (
            f"<StockMovementModel {self.id} position={self.position_id} "
            f"delta={self.delta} reserved_delta={self.reserved_delta} reason={self.reason}>"
        )
