"""
Procurement Module Service (``supply_modules.procurement.service``).

Responsibility
--------------
Drives the purchase order and goods receipt (GRN) lifecycles: creation,
editing, submission, cancellation, goods receipt and its completion.  All
line math goes through the pricing engine; all stock changes go through the
inventory ledger.

Architecture
------------
Layer: **Modules** -- stateful orchestration on top of ``BaseService``.

1. ``price_lines`` / pricing engine for line and document totals.
2. ``PURCHASE_ORDER_WORKFLOW`` / ``GOODS_RECEIPT_WORKFLOW`` decide which
   action is legal from which status.
3. ``InventoryLedger`` (composed, ``auto_commit=False``) posts the
   goods-receipt movements inside this service's transaction.

Invariants
----------
- Each public method owns its transaction: commit on success, rollback on
  any failure.  GRN completion writes N stock movements, the GRN status,
  the PO line received quantities and the PO status atomically.
- A GRN completes at most once.  A repeated completion raises
  ``AlreadyCompletedError`` and writes nothing.
- PO status after a receipt is derived from accepted quantities over all
  completed GRNs: completed when every line is covered, else
  partially_received.
- Lock order: document keys (PO, then GRN) before stock keys, all taken
  before the transaction's first statement.

Failure Modes
-------------
- ``InvalidTransitionError``: action not allowed from the current status.
- ``AlreadyCompletedError``: GRN already completed.
- ``InvalidInputError``: bad line data, accepted > received, over-receipt
  beyond the configured tolerance.
- ``NotFoundError``: unknown PO, GRN or PO line.

Usage::

    service = ProcurementService(session, clock=clock)
    po = service.create_purchase_order(supplier_id, warehouse_id, lines, actor_id)
    service.submit_purchase_order(po.id, actor_id)
    grn = service.create_goods_receipt(po.id, [GoodsReceiptLineInput(line_id, 8)], actor_id)
    service.complete_goods_receipt(grn.id, actor_id)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import ROUND_DOWN, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from supply_config.schema import ProcurementSettings
from supply_engines.pricing import compute_line, compute_document_totals
from supply_kernel.domain.clock import Clock
from supply_kernel.domain.values import HUNDRED, ZERO, to_choice, to_stock_quantity
from supply_kernel.exceptions import (
    AlreadyCompletedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.services.base import BaseService
from supply_kernel.services.event_publisher import EventBus
from supply_kernel.services.keyed_locks import DOCUMENT_LOCKS
from supply_kernel.services.sequence_service import SequenceService
from supply_modules._line_items import LineItemInput, price_lines
from supply_modules.inventory.models import DocumentRef, MovementReason, StockKey
from supply_modules.inventory.service import InventoryLedger
from supply_modules.procurement.models import (
    GoodsReceipt,
    GoodsReceiptLineInput,
    GRNStatus,
    POStatus,
    PurchaseOrder,
)
from supply_modules.procurement.orm import (
    GoodsReceiptLineModel,
    GoodsReceiptModel,
    PurchaseOrderLineModel,
    PurchaseOrderModel,
)
from supply_modules.procurement.workflows import (
    GOODS_RECEIPT_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
)

logger = get_logger("modules.procurement.service")

_RECEIVABLE = frozenset({POStatus.SUBMITTED.value, POStatus.PARTIALLY_RECEIVED.value})
_CENT = Decimal("0.01")


def po_lock_key(po_id: UUID) -> str:
    return f"purchase_order:{po_id}"


def grn_lock_key(grn_id: UUID) -> str:
    return f"goods_receipt:{grn_id}"


class ProcurementService(BaseService):
    """
    Orchestrates purchase orders and goods receipts.

    Contract
    --------
    Every public mutating method validates its input, takes the document
    locks it needs, and runs in one transaction.  ``ledger``, when given,
    must be an ``InventoryLedger`` on the same session with
    ``auto_commit=False``; its publisher becomes this service's publisher
    so stock and status events are released together after commit.

    Non-goals
    ---------
    - No invoicing or payments -- see ``supply_modules.payables``.
    - No partial shipment modelling beyond one completion per GRN.
    """

    def __init__(
        self,
        session: Session,
        ledger: InventoryLedger | None = None,
        clock: Clock | None = None,
        config: ProcurementSettings | None = None,
        event_bus: EventBus | None = None,
        auto_commit: bool = True,
    ):
        if ledger is not None and ledger.session is not session:
            raise ValueError("ledger must share the procurement session")
        super().__init__(
            session,
            clock,
            event_bus,
            publisher=ledger.publisher if ledger is not None else None,
            auto_commit=auto_commit,
        )
        if ledger is None:
            ledger = InventoryLedger(
                session, clock=self._clock, publisher=self._publisher, auto_commit=False,
            )
        elif ledger._auto_commit:
            raise ValueError("ledger must be composed with auto_commit=False")
        self._ledger = ledger
        self._config = config or ProcurementSettings.with_defaults()
        self._sequences = SequenceService(session)

    # =========================================================================
    # Loading
    # =========================================================================

    def _load_po(self, po_id: UUID, for_update: bool = False) -> PurchaseOrderModel:
        stmt = select(PurchaseOrderModel).where(PurchaseOrderModel.id == po_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise NotFoundError("PurchaseOrder", po_id)
        return model

    def _load_grn(self, grn_id: UUID, for_update: bool = False) -> GoodsReceiptModel:
        stmt = select(GoodsReceiptModel).where(GoodsReceiptModel.id == grn_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise NotFoundError("GoodsReceipt", grn_id)
        return model

    def _line_models(self, actor_id: UUID, lines: Sequence[LineItemInput]):
        priced, totals = price_lines(lines)
        # Receipts post whole units, so an order line must be whole to complete.
        for p in priced:
            to_stock_quantity(p.computation.quantity, f"lines[{p.line_number}].quantity")
        models = [
            PurchaseOrderLineModel(
                line_number=p.line_number,
                product_id=p.product_id,
                variant_id=p.variant_id,
                description=p.description,
                quantity=p.computation.quantity,
                unit_price=p.computation.unit_price,
                tax_percentage=p.computation.tax_percentage,
                discount_amount=p.computation.discount_amount,
                tax_amount=p.computation.tax_amount,
                line_total=p.computation.line_total,
                quantity_received=ZERO,
                created_by_id=actor_id,
            )
            for p in priced
        ]
        return models, totals

    @staticmethod
    def _apply_totals(model, totals) -> None:
        model.subtotal = totals.subtotal
        model.tax_amount = totals.tax_amount
        model.discount_amount = totals.discount_amount
        model.total_amount = totals.total_amount

    # =========================================================================
    # Purchase orders
    # =========================================================================

    def create_purchase_order(
        self,
        supplier_id: UUID,
        warehouse_id: UUID,
        lines: Sequence[LineItemInput],
        actor_id: UUID,
        order_date: date | None = None,
        expected_date: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        """
        Create a draft purchase order with a new PO number.

        Lines are priced by the pricing engine; a draft may have no lines.
        Line quantities must be whole units, as goods receipts are.
        """
        ordered_on = order_date or self._clock.today()
        if expected_date is not None and expected_date < ordered_on:
            raise InvalidInputError("expected_date", expected_date, "is before the order date")

        with self._unit_of_work("create_purchase_order", actor_id):
            po = PurchaseOrderModel(
                po_number=self._sequences.next_document_number(
                    self._config.po_number_prefix, ordered_on,
                ),
                supplier_id=supplier_id,
                warehouse_id=warehouse_id,
                status=PURCHASE_ORDER_WORKFLOW.initial_state,
                order_date=ordered_on,
                expected_date=expected_date,
                notes=notes,
                created_by_id=actor_id,
            )
            line_models, totals = self._line_models(actor_id, lines)
            po.lines = line_models
            self._apply_totals(po, totals)
            self._session.add(po)
            self._session.flush()

            self._emit_transition(
                PURCHASE_ORDER_WORKFLOW.name, po.id, None, po.status, actor_id,
            )
            logger.info(
                "purchase_order_created",
                extra={
                    "po_id": str(po.id),
                    "po_number": po.po_number,
                    "supplier_id": str(supplier_id),
                    "line_count": len(line_models),
                    "total_amount": str(po.total_amount),
                },
            )
            return po.to_dto()

    def update_purchase_order(
        self,
        po_id: UUID,
        actor_id: UUID,
        lines: Sequence[LineItemInput] | None = None,
        expected_date: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        """
        Edit a draft purchase order.  ``lines`` replaces every line.

        Raises:
            InvalidTransitionError: the order is no longer a draft.
        """
        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([po_lock_key(po_id)]):
            with self._unit_of_work("update_purchase_order", actor_id):
                po = self._load_po(po_id, for_update=True)
                if po.status != POStatus.DRAFT.value:
                    raise InvalidTransitionError(
                        PURCHASE_ORDER_WORKFLOW.name, po_id, po.status, "update",
                    )
                if expected_date is not None:
                    if expected_date < po.order_date:
                        raise InvalidInputError(
                            "expected_date", expected_date, "is before the order date",
                        )
                    po.expected_date = expected_date
                if notes is not None:
                    po.notes = notes
                if lines is not None:
                    line_models, totals = self._line_models(actor_id, lines)
                    po.lines = line_models
                    self._apply_totals(po, totals)
                po.updated_by_id = actor_id
                self._session.flush()
                logger.info(
                    "purchase_order_updated",
                    extra={"po_id": str(po_id), "total_amount": str(po.total_amount)},
                )
                return po.to_dto()

    def _transition_po(
        self,
        po_id: UUID,
        action: str,
        actor_id: UUID,
        cancel_reason: str | None = None,
    ) -> PurchaseOrder:
        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([po_lock_key(po_id)]):
            with self._unit_of_work(f"{action}_purchase_order", actor_id, document_id=po_id):
                po = self._load_po(po_id, for_update=True)
                transition = PURCHASE_ORDER_WORKFLOW.require(po_id, po.status, action)
                if transition.system_only:
                    raise InvalidTransitionError(
                        PURCHASE_ORDER_WORKFLOW.name, po_id, po.status, action,
                    )
                if action == "submit" and not po.lines:
                    raise InvalidInputError(
                        "lines", 0, "a purchase order needs at least one line to be submitted",
                    )
                previous = po.status
                po.status = transition.to_state
                if cancel_reason is not None:
                    po.cancel_reason = cancel_reason
                po.updated_by_id = actor_id
                self._session.flush()
                self._emit_transition(
                    PURCHASE_ORDER_WORKFLOW.name, po_id, previous, po.status, actor_id,
                )
                return po.to_dto()

    def submit_purchase_order(self, po_id: UUID, actor_id: UUID) -> PurchaseOrder:
        """draft -> submitted.  The order must have at least one line."""
        return self._transition_po(po_id, "submit", actor_id)

    def cancel_purchase_order(
        self,
        po_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> PurchaseOrder:
        """draft/submitted -> cancelled.  Not allowed once receipt has begun."""
        return self._transition_po(po_id, "cancel", actor_id, cancel_reason=reason)

    # =========================================================================
    # Goods receipts
    # =========================================================================

    def _receipt_ceiling(self, quantity_ordered: Decimal) -> Decimal:
        tolerance = self._config.over_receipt_tolerance_percent
        return quantity_ordered * (HUNDRED + tolerance) / HUNDRED

    def _check_over_receipt(
        self,
        po_line: PurchaseOrderLineModel,
        accepted: int,
    ) -> None:
        ceiling = self._receipt_ceiling(po_line.quantity)
        if po_line.quantity_received + accepted > ceiling:
            logger.warning(
                "over_receipt_rejected",
                extra={
                    "po_line_id": str(po_line.id),
                    "quantity_ordered": str(po_line.quantity),
                    "quantity_received": str(po_line.quantity_received),
                    "quantity_accepted": accepted,
                    "tolerance_percent": str(self._config.over_receipt_tolerance_percent),
                },
            )
            raise InvalidInputError(
                "quantity_accepted",
                accepted,
                f"exceeds the ordered quantity {po_line.quantity} "
                f"(already received {po_line.quantity_received})",
            )

    @staticmethod
    def _prorated_discount(po_line: PurchaseOrderLineModel, accepted: int) -> Decimal:
        if po_line.quantity == ZERO or po_line.discount_amount == ZERO:
            return ZERO
        share = po_line.discount_amount * Decimal(accepted) / po_line.quantity
        return min(share, po_line.discount_amount).quantize(_CENT, rounding=ROUND_DOWN)

    def create_goods_receipt(
        self,
        po_id: UUID,
        lines: Sequence[GoodsReceiptLineInput],
        actor_id: UUID,
        receipt_date: date | None = None,
        notes: str | None = None,
    ) -> GoodsReceipt:
        """
        Record goods received against a submitted purchase order.

        Each line copies product and price fields from its PO line.
        Quantities are whole units; accepted defaults to received.

        Raises:
            InvalidTransitionError: the order is not submitted or partially
                received.
            InvalidInputError: no lines, duplicate PO line, accepted >
                received, over-receipt beyond tolerance.
            NotFoundError: unknown PO or PO line.
        """
        if not lines:
            raise InvalidInputError("lines", lines, "at least one line is required")
        parsed: list[tuple[UUID, int, int]] = []
        seen: set[UUID] = set()
        for line in lines:
            received = to_stock_quantity(line.quantity_received, "quantity_received", allow_zero=False)
            accepted = (
                received if line.quantity_accepted is None
                else to_stock_quantity(line.quantity_accepted, "quantity_accepted")
            )
            if accepted > received:
                raise InvalidInputError(
                    "quantity_accepted", accepted, f"exceeds quantity_received {received}",
                )
            if line.po_line_id in seen:
                raise InvalidInputError("po_line_id", line.po_line_id, "appears more than once")
            seen.add(line.po_line_id)
            parsed.append((line.po_line_id, received, accepted))
        received_on = receipt_date or self._clock.today()

        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([po_lock_key(po_id)]):
            with self._unit_of_work("create_goods_receipt", actor_id):
                po = self._load_po(po_id, for_update=True)
                if po.status not in _RECEIVABLE:
                    raise InvalidTransitionError(
                        PURCHASE_ORDER_WORKFLOW.name, po_id, po.status, "receive",
                    )
                po_lines = {ln.id: ln for ln in po.lines}

                grn_lines: list[GoodsReceiptLineModel] = []
                computations = []
                for number, (po_line_id, received, accepted) in enumerate(parsed, start=1):
                    po_line = po_lines.get(po_line_id)
                    if po_line is None:
                        raise NotFoundError("PurchaseOrderLine", po_line_id)
                    self._check_over_receipt(po_line, accepted)
                    computation = compute_line(
                        accepted,
                        po_line.unit_price,
                        po_line.tax_percentage,
                        self._prorated_discount(po_line, accepted),
                    )
                    computations.append(computation)
                    grn_lines.append(
                        GoodsReceiptLineModel(
                            po_line_id=po_line.id,
                            line_number=number,
                            product_id=po_line.product_id,
                            variant_id=po_line.variant_id,
                            description=po_line.description,
                            quantity_received=received,
                            quantity_accepted=accepted,
                            unit_price=computation.unit_price,
                            tax_percentage=computation.tax_percentage,
                            discount_amount=computation.discount_amount,
                            tax_amount=computation.tax_amount,
                            line_total=computation.line_total,
                            created_by_id=actor_id,
                        )
                    )

                grn = GoodsReceiptModel(
                    grn_number=self._sequences.next_document_number(
                        self._config.grn_number_prefix, received_on,
                    ),
                    purchase_order_id=po.id,
                    warehouse_id=po.warehouse_id,
                    status=GOODS_RECEIPT_WORKFLOW.initial_state,
                    receipt_date=received_on,
                    notes=notes,
                    created_by_id=actor_id,
                )
                grn.lines = grn_lines
                self._apply_totals(grn, compute_document_totals(computations))
                self._session.add(grn)
                self._session.flush()

                self._emit_transition(
                    GOODS_RECEIPT_WORKFLOW.name, grn.id, None, grn.status, actor_id,
                )
                logger.info(
                    "goods_receipt_created",
                    extra={
                        "grn_id": str(grn.id),
                        "grn_number": grn.grn_number,
                        "po_id": str(po_id),
                        "line_count": len(grn_lines),
                    },
                )
                return grn.to_dto()

    def complete_goods_receipt(self, grn_id: UUID, actor_id: UUID) -> GoodsReceipt:
        """
        Complete a draft GRN: post stock and advance the purchase order.

        For every line with accepted units, posts a goods-receipt movement of
        +quantity_accepted referencing the GRN, adds the accepted units to
        the PO line, then derives the PO status.  All in one transaction.

        Raises:
            AlreadyCompletedError: the GRN was completed before; nothing is
                posted.
            InvalidTransitionError: the purchase order is no longer receivable.
            InvalidInputError: over-receipt beyond tolerance (another GRN
                completed first).
        """
        # Planning read: learn which keys to lock, then end the transaction
        # so every lock is taken before the writing transaction starts.
        planned = self._load_grn(grn_id)
        po_id = planned.purchase_order_id
        stock_keys = [
            StockKey(planned.warehouse_id, line.product_id, line.variant_id)
            for line in planned.lines
            if line.quantity_accepted > 0
        ]
        self._end_read_transaction()

        reference = DocumentRef(GOODS_RECEIPT_WORKFLOW.name, grn_id)
        with DOCUMENT_LOCKS.hold([po_lock_key(po_id), grn_lock_key(grn_id)]):
            with self._ledger.hold(stock_keys):
                with self._unit_of_work("complete_goods_receipt", actor_id, document_id=grn_id):
                    grn = self._load_grn(grn_id, for_update=True)
                    if grn.status == GRNStatus.COMPLETED.value:
                        logger.warning(
                            "goods_receipt_already_completed",
                            extra={"grn_id": str(grn_id), "grn_number": grn.grn_number},
                        )
                        raise AlreadyCompletedError(GOODS_RECEIPT_WORKFLOW.name, grn_id)
                    GOODS_RECEIPT_WORKFLOW.require(grn_id, grn.status, "complete")

                    po = self._load_po(po_id, for_update=True)
                    if po.status not in _RECEIVABLE:
                        raise InvalidTransitionError(
                            PURCHASE_ORDER_WORKFLOW.name, po_id, po.status, "receive",
                        )
                    po_lines = {ln.id: ln for ln in po.lines}

                    posted = 0
                    for line in grn.lines:
                        po_line = po_lines[line.po_line_id]
                        self._check_over_receipt(po_line, line.quantity_accepted)
                        if line.quantity_accepted > 0:
                            self._ledger.post_movement(
                                grn.warehouse_id,
                                line.product_id,
                                line.variant_id,
                                line.quantity_accepted,
                                MovementReason.GOODS_RECEIPT,
                                actor_id,
                                reference=reference,
                            )
                            posted += 1
                        po_line.quantity_received = po_line.quantity_received + line.quantity_accepted

                    previous_grn_status = grn.status
                    grn.status = GRNStatus.COMPLETED.value
                    grn.completed_at = self._clock.now()
                    grn.updated_by_id = actor_id

                    fully_received = all(
                        ln.quantity_received >= ln.quantity for ln in po.lines
                    )
                    action = "receive_all" if fully_received else "receive_partial"
                    previous_po_status = po.status
                    po.status = PURCHASE_ORDER_WORKFLOW.require(po_id, po.status, action).to_state
                    po.updated_by_id = actor_id
                    self._session.flush()

                    self._emit_transition(
                        GOODS_RECEIPT_WORKFLOW.name, grn_id, previous_grn_status, grn.status,
                        actor_id,
                    )
                    if po.status != previous_po_status:
                        self._emit_transition(
                            PURCHASE_ORDER_WORKFLOW.name, po_id, previous_po_status, po.status,
                            actor_id,
                        )
                    logger.info(
                        "goods_receipt_completed",
                        extra={
                            "grn_id": str(grn_id),
                            "grn_number": grn.grn_number,
                            "po_id": str(po_id),
                            "movements_posted": posted,
                            "po_status": po.status,
                        },
                    )
                    return grn.to_dto()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_purchase_order(self, po_id: UUID) -> PurchaseOrder:
        self._begin_read_transaction()
        try:
            return self._load_po(po_id).to_dto()
        finally:
            self._end_read_transaction()

    def list_purchase_orders(
        self,
        supplier_id: UUID | None = None,
        status: POStatus | str | None = None,
    ) -> list[PurchaseOrder]:
        stmt = select(PurchaseOrderModel).order_by(PurchaseOrderModel.po_number)
        if supplier_id is not None:
            stmt = stmt.where(PurchaseOrderModel.supplier_id == supplier_id)
        if status is not None:
            stmt = stmt.where(PurchaseOrderModel.status == to_choice(POStatus, status, "status").value)
        self._begin_read_transaction()
        orders = [m.to_dto() for m in self._session.execute(stmt).scalars()]
        self._end_read_transaction()
        return orders

    def get_goods_receipt(self, grn_id: UUID) -> GoodsReceipt:
        self._begin_read_transaction()
        try:
            return self._load_grn(grn_id).to_dto()
        finally:
            self._end_read_transaction()

    def list_goods_receipts(
        self,
        po_id: UUID | None = None,
        status: GRNStatus | str | None = None,
    ) -> list[GoodsReceipt]:
        stmt = select(GoodsReceiptModel).order_by(GoodsReceiptModel.grn_number)
        if po_id is not None:
            stmt = stmt.where(GoodsReceiptModel.purchase_order_id == po_id)
        if status is not None:
            stmt = stmt.where(GoodsReceiptModel.status == to_choice(GRNStatus, status, "status").value)
        self._begin_read_transaction()
        receipts = [m.to_dto() for m in self._session.execute(stmt).scalars()]
        self._end_read_transaction()
        return receipts
