"""
Payables Module Service (``supply_modules.payables.service``).

Responsibility
--------------
Purchase invoices (ad hoc or "quick created" from a completed goods
receipt) and the supplier payments applied against them.  Keeps
``paid_amount`` equal to the sum of completed payments and the stored
invoice status equal to the derived balance status.

Architecture
------------
Layer: **Modules** -- stateful orchestration on top of ``BaseService``.

1. ``price_lines`` for invoice totals (same engine as purchase orders).
2. ``PAYMENT_WORKFLOW`` for payment transitions.
3. ``derive_balance_status`` for invoice status, recomputed on every
   payment mutation and again at read time.

Invariants
----------
- ``0 <= paid_amount <= total_amount`` for every invoice.
- A payment entering ``completed`` adds its amount to the invoice in the
  same transaction; leaving ``completed`` subtracts it.
- Creation rejects an amount above total - paid - open payments.
- At most one non-cancelled invoice per goods receipt.
- Invoice writers are serialized on the invoice's document key.

Failure Modes
-------------
- ``OverpaymentError``: amount above the outstanding balance.
- ``DuplicateInvoiceError``: open invoice already exists for the GRN.
- ``IdempotencyConflictError``: idempotency key reused with another payload.
- ``AlreadyCompletedError``: completing a completed payment.
- ``InvalidTransitionError``: payment action not allowed, invoice cancelled,
  GRN not completed, or invoice cancellation with money applied.
- ``InvalidInputError``: bad amounts, missing method reference fields.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supply_config.schema import PayablesSettings
from supply_engines.balance_status import outstanding
from supply_kernel.domain.clock import Clock
from supply_kernel.domain.values import ZERO, to_choice, to_positive_money
from supply_kernel.exceptions import (
    AlreadyCompletedError,
    DuplicateInvoiceError,
    IdempotencyConflictError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    OverpaymentError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.services.base import BaseService
from supply_kernel.services.event_publisher import EventBus, EventPublisher
from supply_kernel.services.keyed_locks import DOCUMENT_LOCKS
from supply_kernel.services.sequence_service import SequenceService
from supply_kernel.utils.idempotency import payload_fingerprint
from supply_modules._line_items import LineItemInput, price_lines
from supply_modules.payables.models import (
    OPEN_PAYMENT_STATUSES,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    PurchaseInvoice,
    SupplierBalance,
    SupplierPayment,
)
from supply_modules.payables.orm import (
    PurchaseInvoiceLineModel,
    PurchaseInvoiceModel,
    SupplierPaymentModel,
)
from supply_modules.payables.workflows import INVOICE_DOCUMENT_TYPE, PAYMENT_WORKFLOW
from supply_modules.procurement.models import GRNStatus
from supply_modules.procurement.orm import GoodsReceiptModel, PurchaseOrderModel
from supply_modules.procurement.service import grn_lock_key

logger = get_logger("modules.payables.service")

_CREATABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.COMPLETED)
_REFERENCE_FIELDS = ("reference_number", "bank_name", "cheque_number", "transaction_id")


def invoice_lock_key(invoice_id: UUID) -> str:
    return f"{INVOICE_DOCUMENT_TYPE}:{invoice_id}"


def _idempotency_lock_key(idempotency_key: str) -> str:
    return f"payment-key:{idempotency_key}"


class PayablesService(BaseService):
    """
    Orchestrates purchase invoices and supplier payments.

    Contract
    --------
    Every public mutating method validates input before writing, takes the
    invoice's document lock, and runs in one transaction: a payment write
    and its invoice update commit together or not at all.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: PayablesSettings | None = None,
        event_bus: EventBus | None = None,
        publisher: EventPublisher | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, event_bus, publisher, auto_commit)
        self._config = config or PayablesSettings.with_defaults()
        self._sequences = SequenceService(session)

    # =========================================================================
    # Loading
    # =========================================================================

    def _load_invoice(self, invoice_id: UUID, for_update: bool = False) -> PurchaseInvoiceModel:
        stmt = select(PurchaseInvoiceModel).where(PurchaseInvoiceModel.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise NotFoundError("PurchaseInvoice", invoice_id)
        return model

    def _load_payment(self, payment_id: UUID, for_update: bool = False) -> SupplierPaymentModel:
        stmt = select(SupplierPaymentModel).where(SupplierPaymentModel.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise NotFoundError("SupplierPayment", payment_id)
        return model

    def _open_invoice_for_receipt(self, grn_id: UUID) -> PurchaseInvoiceModel | None:
        return self._session.execute(
            select(PurchaseInvoiceModel).where(
                PurchaseInvoiceModel.goods_receipt_id == grn_id,
                PurchaseInvoiceModel.status != InvoiceStatus.CANCELLED.value,
            )
        ).scalars().first()

    def _open_payment_total(self, invoice_id: UUID) -> Decimal:
        amounts = self._session.execute(
            select(SupplierPaymentModel.amount).where(
                SupplierPaymentModel.invoice_id == invoice_id,
                SupplierPaymentModel.status.in_([s.value for s in OPEN_PAYMENT_STATUSES]),
            )
        ).scalars()
        return sum(amounts, ZERO)

    # =========================================================================
    # Status
    # =========================================================================

    def _apply_status(self, invoice: PurchaseInvoiceModel, actor_id: UUID) -> None:
        """Persist the derived status and emit a transition if it changed."""
        if not ZERO <= invoice.paid_amount <= invoice.total_amount:
            logger.critical(
                "invoice_paid_amount_out_of_range",
                extra={
                    "invoice_id": str(invoice.id),
                    "paid_amount": str(invoice.paid_amount),
                    "total_amount": str(invoice.total_amount),
                },
            )
            raise OverpaymentError(
                INVOICE_DOCUMENT_TYPE, invoice.id, invoice.paid_amount, invoice.total_amount,
            )
        derived = invoice.derived_status(self._clock.today()).value
        if derived == invoice.status:
            return
        previous = invoice.status
        invoice.status = derived
        invoice.updated_by_id = actor_id
        self._emit_transition(INVOICE_DOCUMENT_TYPE, invoice.id, previous, derived, actor_id)

    # =========================================================================
    # Invoices
    # =========================================================================

    def _insert_invoice(
        self,
        supplier_id: UUID,
        lines: Sequence[LineItemInput],
        actor_id: UUID,
        purchase_order_id: UUID | None,
        goods_receipt_id: UUID | None,
        invoice_date: date | None,
        due_date: date | None,
        supplier_invoice_number: str | None,
        notes: str | None,
    ) -> PurchaseInvoiceModel:
        invoiced_on = invoice_date or self._clock.today()
        if due_date is None:
            due_date = invoiced_on + timedelta(days=self._config.default_payment_terms_days)
        elif due_date < invoiced_on:
            raise InvalidInputError("due_date", due_date, "is before the invoice date")
        priced, totals = price_lines(lines, require_lines=True)

        if goods_receipt_id is not None:
            existing = self._open_invoice_for_receipt(goods_receipt_id)
            if existing is not None:
                logger.warning(
                    "duplicate_invoice_rejected",
                    extra={
                        "goods_receipt_id": str(goods_receipt_id),
                        "existing_invoice_id": str(existing.id),
                    },
                )
                raise DuplicateInvoiceError(goods_receipt_id, existing.id)

        invoice = PurchaseInvoiceModel(
            invoice_number=self._sequences.next_document_number(
                self._config.invoice_number_prefix, invoiced_on,
            ),
            supplier_id=supplier_id,
            purchase_order_id=purchase_order_id,
            goods_receipt_id=goods_receipt_id,
            supplier_invoice_number=supplier_invoice_number,
            invoice_date=invoiced_on,
            due_date=due_date,
            notes=notes,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
            paid_amount=ZERO,
            created_by_id=actor_id,
        )
        invoice.status = invoice.derived_status(self._clock.today()).value
        invoice.lines = [
            PurchaseInvoiceLineModel(
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
                created_by_id=actor_id,
            )
            for p in priced
        ]

        savepoint = self._session.begin_nested()
        try:
            self._session.add(invoice)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            if goods_receipt_id is None:
                raise
            existing = self._open_invoice_for_receipt(goods_receipt_id)
            logger.warning(
                "duplicate_invoice_rejected",
                extra={"goods_receipt_id": str(goods_receipt_id)},
            )
            raise DuplicateInvoiceError(
                goods_receipt_id, existing.id if existing is not None else None,
            ) from None

        self._emit_transition(INVOICE_DOCUMENT_TYPE, invoice.id, None, invoice.status, actor_id)
        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "supplier_id": str(supplier_id),
                "goods_receipt_id": str(goods_receipt_id) if goods_receipt_id else None,
                "total_amount": str(invoice.total_amount),
                "due_date": str(due_date),
            },
        )
        return invoice

    def create_invoice(
        self,
        supplier_id: UUID,
        lines: Sequence[LineItemInput],
        actor_id: UUID,
        purchase_order_id: UUID | None = None,
        goods_receipt_id: UUID | None = None,
        invoice_date: date | None = None,
        due_date: date | None = None,
        supplier_invoice_number: str | None = None,
        notes: str | None = None,
    ) -> PurchaseInvoice:
        """
        Create an invoice from explicit lines.

        The due date defaults to the invoice date plus the configured
        payment terms.  A referenced goods receipt must be completed and
        must not already carry an open invoice.
        """
        lock_keys = [grn_lock_key(goods_receipt_id)] if goods_receipt_id is not None else []
        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold(lock_keys):
            with self._unit_of_work("create_invoice", actor_id):
                if purchase_order_id is not None and (
                    self._session.get(PurchaseOrderModel, purchase_order_id) is None
                ):
                    raise NotFoundError("PurchaseOrder", purchase_order_id)
                if goods_receipt_id is not None:
                    grn = self._session.get(GoodsReceiptModel, goods_receipt_id)
                    if grn is None:
                        raise NotFoundError("GoodsReceipt", goods_receipt_id)
                    if grn.status != GRNStatus.COMPLETED.value:
                        raise InvalidTransitionError(
                            "goods_receipt", goods_receipt_id, grn.status, "invoice",
                        )
                    if purchase_order_id is None:
                        purchase_order_id = grn.purchase_order_id
                    elif purchase_order_id != grn.purchase_order_id:
                        raise InvalidInputError(
                            "purchase_order_id", purchase_order_id,
                            "does not match the goods receipt's purchase order",
                        )
                invoice = self._insert_invoice(
                    supplier_id, lines, actor_id, purchase_order_id, goods_receipt_id,
                    invoice_date, due_date, supplier_invoice_number, notes,
                )
                return invoice.to_dto()

    def create_invoice_from_goods_receipt(
        self,
        grn_id: UUID,
        actor_id: UUID,
        invoice_date: date | None = None,
        due_date: date | None = None,
        supplier_invoice_number: str | None = None,
        notes: str | None = None,
    ) -> PurchaseInvoice:
        """
        Quick-create an invoice from a completed goods receipt.

        Each GRN line with accepted units becomes an invoice line with the
        accepted quantity and the GRN's copied price fields, priced again
        through the pricing engine.

        Raises:
            DuplicateInvoiceError: an open invoice already exists for the GRN.
            InvalidTransitionError: the GRN is not completed.
            InvalidInputError: nothing was accepted on the GRN.
        """
        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([grn_lock_key(grn_id)]):
            with self._unit_of_work("create_invoice_from_goods_receipt", actor_id):
                grn = self._session.get(GoodsReceiptModel, grn_id)
                if grn is None:
                    raise NotFoundError("GoodsReceipt", grn_id)
                if grn.status != GRNStatus.COMPLETED.value:
                    raise InvalidTransitionError("goods_receipt", grn_id, grn.status, "invoice")
                po = self._session.get(PurchaseOrderModel, grn.purchase_order_id)
                lines = [
                    LineItemInput(
                        product_id=line.product_id,
                        variant_id=line.variant_id,
                        quantity=line.quantity_accepted,
                        unit_price=line.unit_price,
                        tax_percentage=line.tax_percentage,
                        discount_amount=line.discount_amount,
                        description=line.description,
                    )
                    for line in grn.lines
                    if line.quantity_accepted > 0
                ]
                if not lines:
                    raise InvalidInputError(
                        "goods_receipt_id", grn_id, "has no accepted quantity to invoice",
                    )
                invoice = self._insert_invoice(
                    po.supplier_id, lines, actor_id, po.id, grn_id,
                    invoice_date, due_date, supplier_invoice_number, notes,
                )
                return invoice.to_dto()

    def cancel_invoice(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> PurchaseInvoice:
        """
        Cancel an invoice that has no money applied and no open payment.

        Cancelling frees its goods receipt for a new invoice.
        """
        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([invoice_lock_key(invoice_id)]):
            with self._unit_of_work("cancel_invoice", actor_id, document_id=invoice_id):
                invoice = self._load_invoice(invoice_id, for_update=True)
                if (
                    invoice.is_cancelled
                    or invoice.paid_amount > ZERO
                    or self._open_payment_total(invoice_id) > ZERO
                ):
                    raise InvalidTransitionError(
                        INVOICE_DOCUMENT_TYPE, invoice_id, invoice.status, "cancel",
                    )
                previous = invoice.status
                invoice.status = InvoiceStatus.CANCELLED.value
                invoice.cancel_reason = reason
                invoice.updated_by_id = actor_id
                self._session.flush()
                self._emit_transition(
                    INVOICE_DOCUMENT_TYPE, invoice_id, previous, invoice.status, actor_id,
                )
                logger.info(
                    "invoice_cancelled",
                    extra={"invoice_id": str(invoice_id), "reason": reason},
                )
                return invoice.to_dto()

    def refresh_invoice_statuses(self, actor_id: UUID) -> list[PurchaseInvoice]:
        """
        Persist derived statuses that changed with the calendar.

        Pending and partial invoices whose due date has passed become
        overdue.  Returns the invoices that changed.
        """
        today = self._clock.today()
        candidate_ids = list(
            self._session.execute(
                select(PurchaseInvoiceModel.id).where(
                    PurchaseInvoiceModel.status.in_(
                        [InvoiceStatus.PENDING.value, InvoiceStatus.PARTIAL.value]
                    ),
                    PurchaseInvoiceModel.due_date < today,
                )
            ).scalars()
        )
        self._end_read_transaction()
        if not candidate_ids:
            return []

        changed: list[PurchaseInvoice] = []
        with DOCUMENT_LOCKS.hold(invoice_lock_key(i) for i in candidate_ids):
            with self._unit_of_work("refresh_invoice_statuses", actor_id):
                for invoice_id in candidate_ids:
                    invoice = self._load_invoice(invoice_id, for_update=True)
                    previous = invoice.status
                    self._apply_status(invoice, actor_id)
                    if invoice.status != previous:
                        changed.append(invoice)
                self._session.flush()
                result = [invoice.to_dto() for invoice in changed]
        logger.info(
            "invoice_statuses_refreshed",
            extra={"as_of": str(today), "changed_count": len(result)},
        )
        return result

    # =========================================================================
    # Payments
    # =========================================================================

    def _check_references(self, method: PaymentMethod, references: dict[str, str | None]) -> None:
        for field_name in self._config.required_fields_for(method.value):
            if not references.get(field_name):
                raise InvalidInputError(
                    field_name, references.get(field_name),
                    f"is required for {method.value} payments",
                )

    def _existing_for_key(
        self,
        idempotency_key: str,
        fingerprint: str,
    ) -> SupplierPaymentModel | None:
        existing = self._session.execute(
            select(SupplierPaymentModel).where(
                SupplierPaymentModel.idempotency_key == idempotency_key
            )
        ).scalar_one_or_none()
        if existing is None:
            return None
        if existing.request_fingerprint != fingerprint:
            logger.warning(
                "idempotency_conflict",
                extra={"idempotency_key": idempotency_key, "payment_id": str(existing.id)},
            )
            raise IdempotencyConflictError(idempotency_key, existing.id)
        logger.info(
            "payment_replayed",
            extra={"idempotency_key": idempotency_key, "payment_id": str(existing.id)},
        )
        return existing

    def create_payment(
        self,
        invoice_id: UUID,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        actor_id: UUID,
        status: PaymentStatus | str = PaymentStatus.PENDING,
        payment_date: date | None = None,
        reference_number: str | None = None,
        bank_name: str | None = None,
        cheque_number: str | None = None,
        transaction_id: str | None = None,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> SupplierPayment:
        """
        Create a payment against an invoice.

        A payment created as ``completed`` is applied to the invoice at
        once.  With ``idempotency_key``, a retry carrying the same payload
        returns the original payment without writing anything.

        Raises:
            OverpaymentError: amount > total - paid - open payments.
            IdempotencyConflictError: key reused with a different payload.
            InvalidTransitionError: invoice is cancelled.
            InvalidInputError: non-positive amount, unknown method or status,
                missing method reference fields.
        """
        value = to_positive_money(amount, "amount")
        payment_method = to_choice(PaymentMethod, method, "method")
        initial = to_choice(PaymentStatus, status, "status")
        if initial not in _CREATABLE_STATUSES:
            raise InvalidInputError("status", initial.value, "a payment cannot be created in this status")
        references = {
            "reference_number": reference_number,
            "bank_name": bank_name,
            "cheque_number": cheque_number,
            "transaction_id": transaction_id,
        }
        self._check_references(payment_method, references)
        fingerprint = payload_fingerprint({
            "invoice_id": invoice_id,
            "amount": value,
            "method": payment_method,
            "status": initial,
            "payment_date": payment_date,
            **references,
        })

        lock_keys = [invoice_lock_key(invoice_id)]
        if idempotency_key is not None:
            lock_keys.append(_idempotency_lock_key(idempotency_key))
        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold(lock_keys):
            with self._unit_of_work("create_payment", actor_id):
                if idempotency_key is not None:
                    existing = self._existing_for_key(idempotency_key, fingerprint)
                    if existing is not None:
                        return existing.to_dto()

                invoice = self._load_invoice(invoice_id, for_update=True)
                if invoice.is_cancelled:
                    raise InvalidTransitionError(
                        INVOICE_DOCUMENT_TYPE, invoice_id, invoice.status, "pay",
                    )
                open_total = self._open_payment_total(invoice_id)
                available = outstanding(invoice.total_amount, invoice.paid_amount) - open_total
                if value > available:
                    logger.warning(
                        "overpayment_rejected",
                        extra={
                            "invoice_id": str(invoice_id),
                            "amount": str(value),
                            "total_amount": str(invoice.total_amount),
                            "paid_amount": str(invoice.paid_amount),
                            "open_amount": str(open_total),
                        },
                    )
                    raise OverpaymentError(INVOICE_DOCUMENT_TYPE, invoice_id, value, available)

                paid_on = payment_date or self._clock.today()
                payment = SupplierPaymentModel(
                    payment_number=self._sequences.next_document_number(
                        self._config.payment_number_prefix, paid_on,
                    ),
                    invoice_id=invoice_id,
                    supplier_id=invoice.supplier_id,
                    amount=value,
                    method=payment_method.value,
                    status=initial.value,
                    payment_date=paid_on,
                    notes=notes,
                    idempotency_key=idempotency_key,
                    request_fingerprint=fingerprint if idempotency_key is not None else None,
                    created_by_id=actor_id,
                    **references,
                )
                if initial == PaymentStatus.COMPLETED:
                    payment.completed_at = self._clock.now()

                savepoint = self._session.begin_nested()
                try:
                    self._session.add(payment)
                    self._session.flush()
                    savepoint.commit()
                except IntegrityError:
                    savepoint.rollback()
                    if idempotency_key is None:
                        raise
                    existing = self._existing_for_key(idempotency_key, fingerprint)
                    if existing is None:
                        raise
                    return existing.to_dto()

                if initial == PaymentStatus.COMPLETED:
                    invoice.paid_amount = invoice.paid_amount + value

                self._emit_transition(
                    PAYMENT_WORKFLOW.name, payment.id, None, payment.status, actor_id,
                )
                self._apply_status(invoice, actor_id)
                self._session.flush()
                logger.info(
                    "payment_created",
                    extra={
                        "payment_id": str(payment.id),
                        "payment_number": payment.payment_number,
                        "invoice_id": str(invoice_id),
                        "amount": str(value),
                        "method": payment_method.value,
                        "status": payment.status,
                        "invoice_status": invoice.status,
                    },
                )
                return payment.to_dto()

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        actor_id: UUID,
        **kwargs: Any,
    ) -> SupplierPayment:
        """Create a payment directly in ``completed`` status."""
        return self.create_payment(
            invoice_id, amount, method, actor_id, status=PaymentStatus.COMPLETED, **kwargs,
        )

    def _transition_payment(
        self,
        payment_id: UUID,
        action: str,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SupplierPayment:
        planned = self._load_payment(payment_id)
        invoice_id = planned.invoice_id
        self._end_read_transaction()

        with DOCUMENT_LOCKS.hold([invoice_lock_key(invoice_id)]):
            with self._unit_of_work(f"{action}_payment", actor_id, document_id=payment_id):
                payment = self._load_payment(payment_id, for_update=True)
                if action == "complete" and payment.status == PaymentStatus.COMPLETED.value:
                    logger.warning(
                        "payment_already_completed",
                        extra={"payment_id": str(payment_id)},
                    )
                    raise AlreadyCompletedError(PAYMENT_WORKFLOW.name, payment_id)
                transition = PAYMENT_WORKFLOW.require(payment_id, payment.status, action)
                invoice = self._load_invoice(invoice_id, for_update=True)

                completed = PaymentStatus.COMPLETED.value
                if transition.to_state == completed:
                    if invoice.is_cancelled:
                        raise InvalidTransitionError(
                            INVOICE_DOCUMENT_TYPE, invoice_id, invoice.status, "pay",
                        )
                    balance = outstanding(invoice.total_amount, invoice.paid_amount)
                    if payment.amount > balance:
                        logger.warning(
                            "overpayment_rejected",
                            extra={
                                "invoice_id": str(invoice_id),
                                "payment_id": str(payment_id),
                                "amount": str(payment.amount),
                                "outstanding": str(balance),
                            },
                        )
                        raise OverpaymentError(
                            INVOICE_DOCUMENT_TYPE, invoice_id, payment.amount, balance,
                        )
                    invoice.paid_amount = invoice.paid_amount + payment.amount
                    payment.completed_at = self._clock.now()
                elif payment.status == completed:
                    invoice.paid_amount = invoice.paid_amount - payment.amount
                    logger.info(
                        "payment_reversed",
                        extra={
                            "payment_id": str(payment_id),
                            "invoice_id": str(invoice_id),
                            "amount": str(payment.amount),
                        },
                    )

                previous = payment.status
                payment.status = transition.to_state
                if reason is not None:
                    payment.status_reason = reason
                payment.updated_by_id = actor_id
                self._emit_transition(
                    PAYMENT_WORKFLOW.name, payment_id, previous, payment.status, actor_id,
                )
                self._apply_status(invoice, actor_id)
                self._session.flush()
                logger.info(
                    "payment_status_changed",
                    extra={
                        "payment_id": str(payment_id),
                        "action": action,
                        "from_status": previous,
                        "to_status": payment.status,
                        "invoice_paid_amount": str(invoice.paid_amount),
                        "invoice_status": invoice.status,
                    },
                )
                return payment.to_dto()

    def start_processing(self, payment_id: UUID, actor_id: UUID) -> SupplierPayment:
        return self._transition_payment(payment_id, "start_processing", actor_id)

    def complete_payment(self, payment_id: UUID, actor_id: UUID) -> SupplierPayment:
        """Complete a payment and apply it to its invoice."""
        return self._transition_payment(payment_id, "complete", actor_id)

    def fail_payment(
        self,
        payment_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SupplierPayment:
        """Mark a payment failed; a completed payment is taken back off the invoice."""
        return self._transition_payment(payment_id, "fail", actor_id, reason)

    def cancel_payment(
        self,
        payment_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SupplierPayment:
        return self._transition_payment(payment_id, "cancel", actor_id, reason)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_invoice(self, invoice_id: UUID) -> PurchaseInvoice:
        """Invoice with its status derived as of today."""
        self._begin_read_transaction()
        try:
            return self._load_invoice(invoice_id).to_dto(self._clock.today())
        finally:
            self._end_read_transaction()

    def list_invoices(
        self,
        supplier_id: UUID | None = None,
        status: InvoiceStatus | str | None = None,
        outstanding_only: bool = False,
    ) -> list[PurchaseInvoice]:
        """
        Invoices ordered by number.

        ``status`` filters on the status derived as of today, so an unpaid
        invoice past its due date is listed as overdue before any sweep.
        """
        wanted = to_choice(InvoiceStatus, status, "status") if status is not None else None
        stmt = select(PurchaseInvoiceModel).order_by(PurchaseInvoiceModel.invoice_number)
        if supplier_id is not None:
            stmt = stmt.where(PurchaseInvoiceModel.supplier_id == supplier_id)
        today = self._clock.today()
        self._begin_read_transaction()
        invoices = [m.to_dto(today) for m in self._session.execute(stmt).scalars()]
        self._end_read_transaction()
        if wanted is not None:
            invoices = [i for i in invoices if i.status == wanted]
        if outstanding_only:
            invoices = [i for i in invoices if i.balance_due > ZERO]
        return invoices

    def get_payment(self, payment_id: UUID) -> SupplierPayment:
        self._begin_read_transaction()
        try:
            return self._load_payment(payment_id).to_dto()
        finally:
            self._end_read_transaction()

    def list_payments(
        self,
        invoice_id: UUID | None = None,
        status: PaymentStatus | str | None = None,
    ) -> list[SupplierPayment]:
        stmt = select(SupplierPaymentModel).order_by(SupplierPaymentModel.payment_number)
        if invoice_id is not None:
            stmt = stmt.where(SupplierPaymentModel.invoice_id == invoice_id)
        if status is not None:
            stmt = stmt.where(SupplierPaymentModel.status == to_choice(PaymentStatus, status, "status").value)
        self._begin_read_transaction()
        payments = [m.to_dto() for m in self._session.execute(stmt).scalars()]
        self._end_read_transaction()
        return payments

    def supplier_balance(self, supplier_id: UUID) -> SupplierBalance:
        """Totals over the supplier's non-cancelled invoices."""
        invoices = [
            i for i in self.list_invoices(supplier_id=supplier_id)
            if i.status != InvoiceStatus.CANCELLED
        ]
        total = sum((i.total_amount for i in invoices), ZERO)
        paid = sum((i.paid_amount for i in invoices), ZERO)
        overdue = sum(
            (i.balance_due for i in invoices if i.status == InvoiceStatus.OVERDUE), ZERO,
        )
        return SupplierBalance(
            supplier_id=supplier_id,
            invoice_count=len(invoices),
            total_amount=total,
            paid_amount=paid,
            outstanding_amount=total - paid,
            overdue_amount=overdue,
        )
