"""
Module: supply_modules.payables.orm
Responsibility: SQLAlchemy ORM persistence models for purchase invoices,
    their lines and supplier payments.

Architecture position: Modules > Payables > ORM.  Inherits from TrackedBase
    (supply_kernel.db.base).  Invoices reference their purchase order and
    goods receipt with real foreign keys; suppliers by UUID only.

Invariants enforced:
    - invoice_number, payment_number and idempotency_key are unique.
    - At most one non-cancelled invoice per goods receipt (partial unique
      index on goods_receipt_id WHERE status != 'cancelled').
    - Monetary fields use ExactDecimal (2 places), never float.
    - ``status`` on an invoice is the derived balance status persisted after
      every payment mutation; readers derive it again with the current date.

Failure modes:
    - IntegrityError on a second open invoice for the same goods receipt
      (mapped to DuplicateInvoiceError by the service).
    - IntegrityError on a reused idempotency key (resolved by the service).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Date, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supply_kernel.db.base import TrackedBase
from supply_kernel.db.types import LineQuantity, Money, UTCDateTime


# =============================================================================
# PurchaseInvoiceModel
# =============================================================================

class PurchaseInvoiceModel(TrackedBase):
    """
    ORM model for a purchase invoice header.

    Maps to: supply_modules.payables.models.PurchaseInvoice (frozen dataclass).
    """

    __tablename__ = "purchase_invoices"

    __table_args__ = (
        Index(
            "uq_invoice_open_goods_receipt",
            "goods_receipt_id",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
        Index("idx_invoice_supplier", "supplier_id"),
        Index("idx_invoice_status_due", "status", "due_date"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    supplier_id: Mapped[UUID] = mapped_column(nullable=False)
    purchase_order_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=True,
    )
    goods_receipt_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("goods_receipts.id"), nullable=True,
    )
    supplier_invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    lines: Mapped[list["PurchaseInvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseInvoiceLineModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    def derived_status(self, as_of: date):
        from supply_engines.balance_status import derive_balance_status
        return derive_balance_status(
            self.total_amount,
            self.paid_amount,
            self.due_date,
            as_of,
            cancelled=self.is_cancelled,
        )

    def to_dto(self, as_of: date | None = None):
        """
        Convert ORM model to frozen PurchaseInvoice DTO.

        With ``as_of`` the status is derived for that date; otherwise the
        stored status is used.
        """
        from supply_modules.payables.models import InvoiceStatus, PurchaseInvoice
        status = self.derived_status(as_of) if as_of is not None else InvoiceStatus(self.status)
        return PurchaseInvoice(
            id=self.id,
            invoice_number=self.invoice_number,
            supplier_id=self.supplier_id,
            status=status,
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            discount_amount=self.discount_amount,
            total_amount=self.total_amount,
            paid_amount=self.paid_amount,
            purchase_order_id=self.purchase_order_id,
            goods_receipt_id=self.goods_receipt_id,
            supplier_invoice_number=self.supplier_invoice_number,
            notes=self.notes,
            cancel_reason=self.cancel_reason,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return (
            f"<PurchaseInvoiceModel {self.invoice_number} status={self.status} "
            f"paid={self.paid_amount}/{self.total_amount}>"
        )


class PurchaseInvoiceLineModel(TrackedBase):
    """
    ORM model for a purchase invoice line.

    Maps to: supply_modules._line_items.LineItem.
    """

    __tablename__ = "purchase_invoice_lines"

    __table_args__ = (
        Index("idx_invoice_line_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_invoices.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)

    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_id: Mapped[UUID | None] = mapped_column(nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    quantity: Mapped[Decimal] = mapped_column(LineQuantity(), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(LineQuantity(), nullable=False)
    tax_percentage: Mapped[Decimal] = mapped_column(LineQuantity(), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Money(), nullable=False)

    invoice: Mapped["PurchaseInvoiceModel"] = relationship(back_populates="lines")

    def to_dto(self):
        from supply_modules._line_items import LineItem
        return LineItem(
            id=self.id,
            line_number=self.line_number,
            product_id=self.product_id,
            variant_id=self.variant_id,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_percentage=self.tax_percentage,
            discount_amount=self.discount_amount,
            tax_amount=self.tax_amount,
            line_total=self.line_total,
        )


# =============================================================================
# SupplierPaymentModel
# =============================================================================

class SupplierPaymentModel(TrackedBase):
    """
    ORM model for a supplier payment.

    Maps to: supply_modules.payables.models.SupplierPayment (frozen dataclass).

    Guarantees:
        - ``request_fingerprint`` is the SHA-256 of the creating request and
          is only meaningful together with ``idempotency_key``.
    """

    __tablename__ = "supplier_payments"

    __table_args__ = (
        Index("idx_payment_invoice", "invoice_id"),
        Index("idx_payment_supplier", "supplier_id"),
    )

    payment_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_invoices.id"), nullable=False,
    )
    supplier_id: Mapped[UUID] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    cheque_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True, unique=True)
    request_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen SupplierPayment DTO."""
        from supply_modules.payables.models import (
            PaymentMethod,
            PaymentStatus,
            SupplierPayment,
        )
        return SupplierPayment(
            id=self.id,
            payment_number=self.payment_number,
            invoice_id=self.invoice_id,
            supplier_id=self.supplier_id,
            amount=self.amount,
            method=PaymentMethod(self.method),
            status=PaymentStatus(self.status),
            payment_date=self.payment_date,
            reference_number=self.reference_number,
            bank_name=self.bank_name,
            cheque_number=self.cheque_number,
            transaction_id=self.transaction_id,
            notes=self.notes,
            status_reason=self.status_reason,
            idempotency_key=self.idempotency_key,
            completed_at=self.completed_at,
        )

    def __repr__(self) -> str:
        return f"<SupplierPaymentModel {self.payment_number} {self.amount} status={self.status}>"
