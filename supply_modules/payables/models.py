"""
Payables Domain Models.

Purchase invoices and the supplier payments applied against them.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from supply_engines.balance_status import BalanceStatus
from supply_kernel.domain.values import ZERO
from supply_modules._line_items import LineItem

# Invoice status is the derived balance status; it is never set directly.
InvoiceStatus = BalanceStatus

# An invoice line has the shared document line shape.
InvoiceLine = LineItem


class PaymentStatus(Enum):
    """Supplier payment lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentMethod(Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    CARD = "card"
    OTHER = "other"


# Payments in these states hold part of the invoice balance.
OPEN_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})


@dataclass(frozen=True)
class PurchaseInvoice:
    """
    A supplier invoice.

    ``status`` is derived from the amounts, the due date and explicit
    cancellation as of the moment the DTO was built.
    """
    id: UUID
    invoice_number: str
    supplier_id: UUID
    status: InvoiceStatus
    invoice_date: date
    due_date: date | None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal = ZERO
    purchase_order_id: UUID | None = None
    goods_receipt_id: UUID | None = None
    supplier_invoice_number: str | None = None
    notes: str | None = None
    cancel_reason: str | None = None
    lines: tuple[InvoiceLine, ...] = field(default_factory=tuple)

    @property
    def balance_due(self) -> Decimal:
        if self.status == InvoiceStatus.CANCELLED:
            return ZERO
        return self.total_amount - self.paid_amount


@dataclass(frozen=True)
class SupplierPayment:
    """A payment made to a supplier against one invoice."""
    id: UUID
    payment_number: str
    invoice_id: UUID
    supplier_id: UUID
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    payment_date: date
    reference_number: str | None = None
    bank_name: str | None = None
    cheque_number: str | None = None
    transaction_id: str | None = None
    notes: str | None = None
    status_reason: str | None = None
    idempotency_key: str | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class SupplierBalance:
    """What is owed to one supplier over its non-cancelled invoices."""
    supplier_id: UUID
    invoice_count: int
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    overdue_amount: Decimal
