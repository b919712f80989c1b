"""
Module: supply_modules.inventory.selectors
Responsibility: Read-only queries over stock positions and the movement
    history.  Converts ORM models to frozen DTOs.
Architecture position: Modules > Inventory > Selectors.  Extends
    supply_kernel.selectors.base.BaseSelector.

Invariants enforced:
    - Read-only: no add/flush/commit.
    - Every public method issues a single SELECT (a snapshot read); no row
      locks are taken, so readers never block ledger writers.  A row can
      never show reserved > physical (CHECK constraint), so a snapshot is
      always internally consistent.

Failure modes:
    - Returns None or empty collections on absence of data; the ledger
      turns a missing position into NotFoundError.
"""

from uuid import UUID

from sqlalchemy import func, select

from supply_kernel.selectors.base import BaseSelector
from supply_modules.inventory.models import (
    ReconciliationResult,
    StockKey,
    StockMovement,
    StockPosition,
    StockSummary,
)
from supply_modules.inventory.orm import StockMovementModel, StockPositionModel


def position_filter(key: StockKey):
    """WHERE clause selecting the position row of ``key``."""
    return (
        (StockPositionModel.warehouse_id == key.warehouse_id)
        & (StockPositionModel.product_id == key.product_id)
        & (StockPositionModel.variant_key == key.variant_key)
    )


class StockSelector(BaseSelector):
    """Snapshot reads of stock state."""

    def position(self, key: StockKey) -> StockPosition | None:
        model = self.session.execute(
            select(StockPositionModel).where(position_filter(key))
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def positions_for_product(
        self,
        product_id: UUID,
        variant_id: UUID | None = None,
    ) -> list[StockPosition]:
        """
        Positions of a product in every warehouse.

        With ``variant_id`` only that variant's positions are returned;
        without it, positions of every variant of the product.
        """
        stmt = select(StockPositionModel).where(StockPositionModel.product_id == product_id)
        if variant_id is not None:
            stmt = stmt.where(StockPositionModel.variant_key == str(variant_id))
        stmt = stmt.order_by(StockPositionModel.warehouse_id, StockPositionModel.variant_key)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def summary(self, product_id: UUID, variant_id: UUID | None = None) -> StockSummary:
        return StockSummary(
            product_id=product_id,
            variant_id=variant_id,
            positions=tuple(self.positions_for_product(product_id, variant_id)),
        )

    def positions_in_warehouse(self, warehouse_id: UUID) -> list[StockPosition]:
        stmt = (
            select(StockPositionModel)
            .where(StockPositionModel.warehouse_id == warehouse_id)
            .order_by(StockPositionModel.product_id, StockPositionModel.variant_key)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def movements(self, key: StockKey, limit: int | None = None) -> list[StockMovement]:
        """Movement history of ``key``, oldest first."""
        stmt = (
            select(StockMovementModel)
            .join(StockPositionModel, StockMovementModel.position_id == StockPositionModel.id)
            .where(position_filter(key))
            .order_by(StockMovementModel.occurred_at, StockMovementModel.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def movements_for_reference(self, document_type: str, document_id: UUID) -> list[StockMovement]:
        stmt = (
            select(StockMovementModel)
            .where(
                StockMovementModel.reference_type == document_type,
                StockMovementModel.reference_id == document_id,
            )
            .order_by(StockMovementModel.occurred_at)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def movements_for_transfer(self, transfer_id: UUID) -> list[StockMovement]:
        stmt = (
            select(StockMovementModel)
            .where(StockMovementModel.transfer_id == transfer_id)
            .order_by(StockMovementModel.delta)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def reconciliation(self, key: StockKey | None = None) -> list[ReconciliationResult]:
        """
        Compare stored quantities with movement sums.

        One grouped SELECT over every position (or only ``key``'s).
        """
        sums = (
            select(
                StockMovementModel.position_id.label("position_id"),
                func.coalesce(func.sum(StockMovementModel.delta), 0).label("physical"),
                func.coalesce(func.sum(StockMovementModel.reserved_delta), 0).label("reserved"),
                func.count(StockMovementModel.id).label("movement_count"),
            )
            .group_by(StockMovementModel.position_id)
            .subquery()
        )
        stmt = (
            select(
                StockPositionModel,
                func.coalesce(sums.c.physical, 0),
                func.coalesce(sums.c.reserved, 0),
                func.coalesce(sums.c.movement_count, 0),
            )
            .outerjoin(sums, sums.c.position_id == StockPositionModel.id)
            .order_by(
                StockPositionModel.warehouse_id,
                StockPositionModel.product_id,
                StockPositionModel.variant_key,
            )
        )
        if key is not None:
            stmt = stmt.where(position_filter(key))
        return [
            ReconciliationResult(
                key=position.stock_key(),
                physical_quantity=position.physical_quantity,
                reserved_quantity=position.reserved_quantity,
                movement_physical_total=int(physical),
                movement_reserved_total=int(reserved),
                movement_count=int(count),
            )
            for position, physical, reserved, count in self.session.execute(stmt)
        ]
