"""
Inventory Ledger (``supply_modules.inventory.service``).

Responsibility
--------------
Single source of truth for stock across warehouses at (warehouse, product,
variant) granularity.  Every change to a ``StockPositionModel`` row goes
through this class and is paired with an append-only
``StockMovementModel`` row in the same transaction.

Architecture
------------
Layer: **Modules** -- stateful service on top of the kernel's
``BaseService`` transaction contract.

Invariants
----------
- ``0 <= reserved_quantity <= physical_quantity`` after every operation;
  violations raise before any write and are never clamped.
- For every position, SUM(movement.delta) == physical_quantity and
  SUM(movement.reserved_delta) == reserved_quantity.
- Writers of one stock key are serialized: a process-wide keyed lock
  (``STOCK_LOCKS``) plus ``SELECT ... FOR UPDATE`` on the row.  Writers of
  different keys never wait on each other.
- Keyed locks are taken before the transaction's first statement.
- Multi-key operations (transfers) lock their keys in sorted order and are
  all-or-nothing.

Failure Modes
-------------
- ``InvalidInputError``: non-integral or negative quantity, zero delta,
  same source and destination warehouse.
- ``NegativeStockError``: result would be physical < 0, reserved < 0 or
  reserved > physical.
- ``InsufficientStockError``: reservation or transfer beyond available.
- ``OptimisticLockError``: caller's ``expected_version`` is stale.
- ``NotFoundError``: read of a position that never received a movement.

Usage::

    ledger = InventoryLedger(session, clock)
    ledger.adjust_stock(warehouse_id, product_id, None, 100, actor_id=actor_id)
    ledger.reserve(warehouse_id, product_id, None, 30, actor_id=actor_id)
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from supply_config.schema import InventorySettings
from supply_kernel.domain.clock import Clock
from supply_kernel.domain.events import StockMovementEvent
from supply_kernel.domain.values import to_choice, to_signed_stock_delta, to_stock_quantity
from supply_kernel.exceptions import (
    InsufficientStockError,
    InvalidInputError,
    NegativeStockError,
    NotFoundError,
    OptimisticLockError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.services.base import BaseService
from supply_kernel.services.event_publisher import EventBus, EventPublisher
from supply_kernel.services.keyed_locks import STOCK_LOCKS
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
from supply_modules.inventory.orm import StockMovementModel, StockPositionModel
from supply_modules.inventory.selectors import StockSelector, position_filter

logger = get_logger("modules.inventory.service")

# Reasons that only move the reservation; post_movement never accepts them.
_RESERVATION_REASONS = frozenset({
    MovementReason.SALE_RESERVATION,
    MovementReason.SALE_RELEASE,
    MovementReason.SALE_FULFILMENT,
})


class InventoryLedger(BaseService):
    """
    Owner of stock positions and the movement history.

    Contract
    --------
    Public mutating methods validate input, take the keyed lock of every
    stock key they touch, then lock the rows and write positions, movements
    and stock-movement events in one transaction.

    With ``auto_commit=False`` the ledger joins the caller's transaction:
    it neither commits nor publishes, and it expects the caller to already
    hold the stock keys (``hold()``), taken before the caller's first
    statement.  Goods-receipt completion composes the ledger this way.

    Non-goals
    ---------
    - No valuation or costing; quantities only.
    - No cross-warehouse atomicity outside ``transfer``/``transfer_items``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        publisher: EventPublisher | None = None,
        auto_commit: bool = True,
        config: InventorySettings | None = None,
    ):
        super().__init__(session, clock, event_bus, publisher, auto_commit)
        self._config = config or InventorySettings.with_defaults()
        self._selector = StockSelector(session)

    # =========================================================================
    # Locking
    # =========================================================================

    @staticmethod
    def key(
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None = None,
    ) -> StockKey:
        return StockKey(warehouse_id, product_id, variant_id)

    @contextmanager
    def hold(self, keys: Iterable[StockKey]) -> Iterator[tuple[str, ...]]:
        """Hold the keyed locks of ``keys`` (sorted) for the block."""
        with STOCK_LOCKS.hold(k.lock_key for k in keys) as held:
            yield held

    @contextmanager
    def _locked(self, keys: Sequence[StockKey]) -> Iterator[None]:
        if not self._auto_commit:
            missing = [k.lock_key for k in keys if not STOCK_LOCKS.is_held(k.lock_key)]
            if missing:
                raise RuntimeError(
                    f"Composed ledger call without held stock keys: {sorted(missing)}"
                )
            yield
            return
        self._end_read_transaction()
        with self.hold(keys):
            yield

    def _lock_position(self, key: StockKey) -> StockPositionModel | None:
        return self._session.execute(
            select(StockPositionModel)
            .where(position_filter(key))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_position(
        self,
        key: StockKey,
        actor_id: UUID,
        location: str | None,
    ) -> StockPositionModel:
        """Insert an empty position, or lock the one a concurrent writer created."""
        savepoint = self._session.begin_nested()
        try:
            position = StockPositionModel(
                warehouse_id=key.warehouse_id,
                product_id=key.product_id,
                variant_id=key.variant_id,
                variant_key=key.variant_key,
                physical_quantity=0,
                reserved_quantity=0,
                location=location if location is not None else self._config.default_location,
                created_by_id=actor_id,
            )
            self._session.add(position)
            self._session.flush()
            savepoint.commit()
            logger.info("stock_position_created", extra={"stock_key": key.lock_key})
            return position
        except IntegrityError:
            savepoint.rollback()
            logger.debug("stock_position_create_race", extra={"stock_key": key.lock_key})
            position = self._lock_position(key)
            if position is None:
                raise
            return position

    # =========================================================================
    # Core write
    # =========================================================================

    def _write(
        self,
        position: StockPositionModel,
        delta: int,
        reserved_delta: int,
        reason: MovementReason,
        actor_id: UUID,
        reference: DocumentRef | None = None,
        transfer_id: UUID | None = None,
    ) -> StockMovementModel:
        key = position.stock_key()
        new_physical = position.physical_quantity + delta
        new_reserved = position.reserved_quantity + reserved_delta
        if new_physical < 0 or new_reserved < 0 or new_reserved > new_physical:
            logger.warning(
                "negative_stock_rejected",
                extra={
                    "stock_key": key.lock_key,
                    "reason": reason.value,
                    "delta": delta,
                    "reserved_delta": reserved_delta,
                    "resulting_physical": new_physical,
                    "resulting_reserved": new_reserved,
                },
            )
            raise NegativeStockError(key.lock_key, new_physical, new_reserved)

        position.physical_quantity = new_physical
        position.reserved_quantity = new_reserved
        position.updated_by_id = actor_id

        now = self._clock.now()
        movement = StockMovementModel(
            position_id=position.id,
            warehouse_id=key.warehouse_id,
            product_id=key.product_id,
            variant_id=key.variant_id,
            delta=delta,
            reserved_delta=reserved_delta,
            resulting_physical=new_physical,
            resulting_reserved=new_reserved,
            reason=reason.value,
            reference_type=reference.document_type if reference else None,
            reference_id=reference.document_id if reference else None,
            transfer_id=transfer_id,
            occurred_at=now,
            created_by_id=actor_id,
        )
        self._session.add(movement)
        try:
            self._session.flush()
        except StaleDataError:
            raise OptimisticLockError("StockPosition", key.lock_key) from None

        self._publisher.record(
            StockMovementEvent(
                occurred_at=now,
                stock_position_key=key.lock_key,
                delta=delta,
                reserved_delta=reserved_delta,
                reason=reason.value,
                reference_document=str(reference) if reference else None,
            ),
            actor_id=actor_id,
        )
        logger.info(
            "stock_movement_posted",
            extra={
                "stock_key": key.lock_key,
                "movement_id": str(movement.id),
                "reason": reason.value,
                "delta": delta,
                "reserved_delta": reserved_delta,
                "physical_quantity": new_physical,
                "reserved_quantity": new_reserved,
                "reference": str(reference) if reference else None,
            },
        )
        return movement

    @staticmethod
    def _reason(value: MovementReason | str) -> MovementReason:
        return to_choice(MovementReason, value, "reason")

    # =========================================================================
    # Adjustments and movements
    # =========================================================================

    def adjust_stock(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None,
        new_physical_quantity: int,
        actor_id: UUID,
        reason: MovementReason | str | None = None,
        location: str | None = None,
        expected_version: int | None = None,
        reference: DocumentRef | None = None,
    ) -> StockMovement | None:
        """
        Set the physical quantity of a position to an absolute value.

        Writes one movement with ``delta = new - current``.  A zero delta
        writes nothing and returns None.  The reason defaults to
        initial-setup for a new position and manual-adjustment otherwise.
        ``expected_version`` (0 for "no position yet") guards read-then-write
        callers against concurrent changes.

        Raises:
            NegativeStockError: new quantity below zero or below reserved.
            OptimisticLockError: ``expected_version`` is stale.
        """
        new_quantity = to_signed_stock_delta(new_physical_quantity, "new_physical_quantity")
        chosen_reason = self._reason(reason) if reason is not None else None
        key = self.key(warehouse_id, product_id, variant_id)

        with self._locked([key]), self._unit_of_work("adjust_stock", actor_id, stock_key=key.lock_key):
            position = self._lock_position(key)
            if expected_version is not None:
                actual = position.version if position is not None else 0
                if actual != expected_version:
                    logger.warning(
                        "stock_version_conflict",
                        extra={
                            "stock_key": key.lock_key,
                            "expected_version": expected_version,
                            "actual_version": actual,
                        },
                    )
                    raise OptimisticLockError(
                        "StockPosition", key.lock_key, expected_version, actual,
                    )

            current = position.physical_quantity if position is not None else 0
            delta = new_quantity - current
            if delta == 0:
                logger.debug("stock_adjustment_noop", extra={"stock_key": key.lock_key})
                return None

            if chosen_reason is None:
                chosen_reason = (
                    MovementReason.INITIAL_SETUP if position is None
                    else MovementReason.MANUAL_ADJUSTMENT
                )
            if position is None:
                if new_quantity < 0:
                    raise NegativeStockError(key.lock_key, new_quantity, 0)
                position = self._create_position(key, actor_id, location)
            elif location is not None:
                position.location = location

            movement = self._write(
                position, delta, 0, chosen_reason, actor_id, reference=reference,
            )
            logger.info(
                "stock_adjusted",
                extra={
                    "stock_key": key.lock_key,
                    "previous_quantity": current,
                    "new_quantity": new_quantity,
                },
            )
            return movement.to_dto()

    def post_movement(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None,
        delta: int,
        reason: MovementReason | str,
        actor_id: UUID,
        reference: DocumentRef | None = None,
        transfer_id: UUID | None = None,
        location: str | None = None,
    ) -> StockMovement:
        """
        Apply a signed change to the physical quantity.

        Used by goods-receipt completion and transfers.  Reservation reasons
        are rejected; use ``reserve``/``release``/``fulfil``.

        Raises:
            InvalidInputError: zero delta or reservation reason.
            NegativeStockError: physical would drop below zero or below reserved.
        """
        signed = to_signed_stock_delta(delta, "delta")
        if signed == 0:
            raise InvalidInputError("delta", delta, "must not be zero")
        movement_reason = self._reason(reason)
        if movement_reason in _RESERVATION_REASONS:
            raise InvalidInputError(
                "reason", movement_reason.value, "reservation reasons change reserved stock only",
            )
        key = self.key(warehouse_id, product_id, variant_id)

        with self._locked([key]), self._unit_of_work("post_movement", actor_id, stock_key=key.lock_key):
            movement = self._post(
                key, signed, movement_reason, actor_id, reference, transfer_id, location,
            )
            return movement.to_dto()

    def _post(
        self,
        key: StockKey,
        delta: int,
        reason: MovementReason,
        actor_id: UUID,
        reference: DocumentRef | None,
        transfer_id: UUID | None,
        location: str | None = None,
    ) -> StockMovementModel:
        position = self._lock_position(key)
        if position is None:
            if delta < 0:
                logger.warning(
                    "negative_stock_rejected",
                    extra={"stock_key": key.lock_key, "reason": reason.value, "delta": delta},
                )
                raise NegativeStockError(key.lock_key, delta, 0)
            position = self._create_position(key, actor_id, location)
        return self._write(
            position, delta, 0, reason, actor_id,
            reference=reference, transfer_id=transfer_id,
        )

    # =========================================================================
    # Reservations
    # =========================================================================

    def reserve(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None,
        quantity: int,
        actor_id: UUID,
        reference: DocumentRef | None = None,
    ) -> StockMovement:
        """
        Hold ``quantity`` units of available stock.

        Raises:
            InsufficientStockError: ``quantity`` exceeds available (or the
                position does not exist).
        """
        qty = to_stock_quantity(quantity, "quantity", allow_zero=False)
        key = self.key(warehouse_id, product_id, variant_id)

        with self._locked([key]), self._unit_of_work("reserve_stock", actor_id, stock_key=key.lock_key):
            position = self._lock_position(key)
            available = (
                position.physical_quantity - position.reserved_quantity
                if position is not None else 0
            )
            if position is None or qty > available:
                logger.warning(
                    "stock_reservation_rejected",
                    extra={
                        "stock_key": key.lock_key,
                        "requested": qty,
                        "available": available,
                    },
                )
                raise InsufficientStockError(key.lock_key, qty, available)
            movement = self._write(
                position, 0, qty, MovementReason.SALE_RESERVATION, actor_id, reference=reference,
            )
            return movement.to_dto()

    def release(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None,
        quantity: int,
        actor_id: UUID,
        reference: DocumentRef | None = None,
    ) -> StockMovement:
        """
        Return ``quantity`` reserved units to available stock.

        Raises:
            NegativeStockError: ``quantity`` exceeds the reserved quantity.
        """
        qty = to_stock_quantity(quantity, "quantity", allow_zero=False)
        key = self.key(warehouse_id, product_id, variant_id)

        with self._locked([key]), self._unit_of_work("release_stock", actor_id, stock_key=key.lock_key):
            position = self._require_locked_position(key, qty)
            movement = self._write(
                position, 0, -qty, MovementReason.SALE_RELEASE, actor_id, reference=reference,
            )
            return movement.to_dto()

    def fulfil(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None,
        quantity: int,
        actor_id: UUID,
        reference: DocumentRef | None = None,
    ) -> StockMovement:
        """
        Ship reserved stock: reserved and physical both drop by ``quantity``.

        Raises:
            NegativeStockError: ``quantity`` exceeds the reserved quantity.
        """
        qty = to_stock_quantity(quantity, "quantity", allow_zero=False)
        key = self.key(warehouse_id, product_id, variant_id)

        with self._locked([key]), self._unit_of_work("fulfil_stock", actor_id, stock_key=key.lock_key):
            position = self._require_locked_position(key, qty)
            movement = self._write(
                position, -qty, -qty, MovementReason.SALE_FULFILMENT, actor_id,
                reference=reference,
            )
            return movement.to_dto()

    def _require_locked_position(self, key: StockKey, releasing: int) -> StockPositionModel:
        position = self._lock_position(key)
        if position is None:
            raise NegativeStockError(key.lock_key, 0, -releasing)
        return position

    # =========================================================================
    # Transfers
    # =========================================================================

    def transfer(
        self,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None,
        quantity: int,
        actor_id: UUID,
        reference: DocumentRef | None = None,
    ) -> TransferResult:
        """Move ``quantity`` units between warehouses, all-or-nothing."""
        return self.transfer_items(
            from_warehouse_id,
            to_warehouse_id,
            [TransferItem(product_id=product_id, quantity=quantity, variant_id=variant_id)],
            actor_id,
            reference=reference,
        )

    def transfer_items(
        self,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        items: Sequence[TransferItem],
        actor_id: UUID,
        reference: DocumentRef | None = None,
    ) -> TransferResult:
        """
        Move several product lines between two warehouses in one transaction.

        Every line writes a transfer-out movement on the source and a
        transfer-in movement on the destination; all movements share one
        transfer id.  If any line fails nothing is written.  Only available
        (unreserved) stock can be transferred.

        Raises:
            InvalidInputError: same warehouse, no lines, too many lines,
                duplicate product lines, non-positive quantity.
            InsufficientStockError: a line exceeds available stock at the source.
        """
        if from_warehouse_id == to_warehouse_id:
            raise InvalidInputError(
                "to_warehouse_id", to_warehouse_id, "must differ from the source warehouse",
            )
        if not items:
            raise InvalidInputError("items", items, "at least one line is required")
        if len(items) > self._config.max_transfer_lines:
            raise InvalidInputError(
                "items", len(items), f"at most {self._config.max_transfer_lines} lines allowed",
            )

        lines: list[tuple[StockKey, StockKey, int]] = []
        seen: set[StockKey] = set()
        for item in items:
            qty = to_stock_quantity(item.quantity, "quantity", allow_zero=False)
            source = self.key(from_warehouse_id, item.product_id, item.variant_id)
            if source in seen:
                raise InvalidInputError("items", str(source), "duplicate transfer line")
            seen.add(source)
            destination = self.key(to_warehouse_id, item.product_id, item.variant_id)
            lines.append((source, destination, qty))

        keys = [k for source, destination, _ in lines for k in (source, destination)]
        transfer_id = uuid4()

        with self._locked(keys), self._unit_of_work("transfer_stock", actor_id):
            outbound: list[StockMovement] = []
            inbound: list[StockMovement] = []
            for source, destination, qty in lines:
                position = self._lock_position(source)
                available = (
                    position.physical_quantity - position.reserved_quantity
                    if position is not None else 0
                )
                if position is None or qty > available:
                    logger.warning(
                        "stock_transfer_rejected",
                        extra={
                            "stock_key": source.lock_key,
                            "requested": qty,
                            "available": available,
                            "transfer_id": str(transfer_id),
                        },
                    )
                    raise InsufficientStockError(source.lock_key, qty, available)
                out_movement = self._write(
                    position, -qty, 0, MovementReason.TRANSFER_OUT, actor_id,
                    reference=reference, transfer_id=transfer_id,
                )
                in_movement = self._post(
                    destination, qty, MovementReason.TRANSFER_IN, actor_id,
                    reference, transfer_id,
                )
                outbound.append(out_movement.to_dto())
                inbound.append(in_movement.to_dto())

            logger.info(
                "stock_transferred",
                extra={
                    "transfer_id": str(transfer_id),
                    "from_warehouse_id": str(from_warehouse_id),
                    "to_warehouse_id": str(to_warehouse_id),
                    "line_count": len(lines),
                },
            )
            return TransferResult(
                transfer_id=transfer_id,
                from_warehouse_id=from_warehouse_id,
                to_warehouse_id=to_warehouse_id,
                outbound=tuple(outbound),
                inbound=tuple(inbound),
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_position(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None = None,
    ) -> StockPosition:
        """
        Current stock of one key.

        Raises:
            NotFoundError: no movement was ever posted for the key.
        """
        key = self.key(warehouse_id, product_id, variant_id)
        self._begin_read_transaction()
        position = self._selector.position(key)
        self._end_read_transaction()
        if position is None:
            raise NotFoundError("StockPosition", key.lock_key)
        return position

    def get_across_warehouses(
        self,
        product_id: UUID,
        variant_id: UUID | None = None,
    ) -> StockSummary:
        """Snapshot of a product in every warehouse, with totals."""
        self._begin_read_transaction()
        summary = self._selector.summary(product_id, variant_id)
        self._end_read_transaction()
        return summary

    def list_movements(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None = None,
    ) -> list[StockMovement]:
        self._begin_read_transaction()
        movements = self._selector.movements(self.key(warehouse_id, product_id, variant_id))
        self._end_read_transaction()
        return movements

    def reconcile(
        self,
        warehouse_id: UUID,
        product_id: UUID,
        variant_id: UUID | None = None,
    ) -> ReconciliationResult:
        """
        Compare one position with the sum of its movements.

        Raises:
            NotFoundError: no such position.
        """
        key = self.key(warehouse_id, product_id, variant_id)
        self._begin_read_transaction()
        results = self._selector.reconciliation(key)
        self._end_read_transaction()
        if not results:
            raise NotFoundError("StockPosition", key.lock_key)
        self._log_mismatches(results)
        return results[0]

    def reconcile_all(self) -> list[ReconciliationResult]:
        """Reconciliation report over every position."""
        self._begin_read_transaction()
        results = self._selector.reconciliation()
        self._end_read_transaction()
        self._log_mismatches(results)
        return results

    @staticmethod
    def _log_mismatches(results: Iterable[ReconciliationResult]) -> None:
        for result in results:
            if not result.is_balanced:
                logger.error(
                    "stock_reconciliation_mismatch",
                    extra={
                        "stock_key": result.key.lock_key,
                        "physical_quantity": result.physical_quantity,
                        "movement_physical_total": result.movement_physical_total,
                        "reserved_quantity": result.reserved_quantity,
                        "movement_reserved_total": result.movement_reserved_total,
                    },
                )
