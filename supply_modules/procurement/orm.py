"""
Module: supply_modules.procurement.orm
Responsibility: SQLAlchemy ORM persistence models for purchase orders,
    their lines, goods receipt notes and GRN lines.

Architecture position: Modules > Procurement > ORM.  Inherits from
    TrackedBase (supply_kernel.db.base).  Suppliers, warehouses, products
    and variants are referenced by UUID with NO foreign keys; document to
    document references (GRN -> PO, GRN line -> PO line) are real foreign
    keys.

Invariants enforced:
    - po_number and grn_number are unique.
    - GRN lines: 0 <= quantity_accepted <= quantity_received (CHECK).
    - Monetary fields use ExactDecimal (2 places); quantities and
      percentages 4 places -- never float.
    - Status stored as the string value of POStatus / GRNStatus.
    - ``version`` is the optimistic concurrency counter of each header.

Failure modes:
    - IntegrityError on duplicate document number.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supply_kernel.db.base import TrackedBase
from supply_kernel.db.types import LineQuantity, Money, UTCDateTime


# =============================================================================
# PurchaseOrderModel
# =============================================================================

class PurchaseOrderModel(TrackedBase):
    """
    ORM model for a purchase order header.

    Maps to: supply_modules.procurement.models.PurchaseOrder (frozen dataclass).
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        Index("idx_po_supplier", "supplier_id"),
        Index("idx_po_status", "status"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    supplier_id: Mapped[UUID] = mapped_column(nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen PurchaseOrder DTO."""
        from supply_modules.procurement.models import POStatus, PurchaseOrder
        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            supplier_id=self.supplier_id,
            warehouse_id=self.warehouse_id,
            status=POStatus(self.status),
            order_date=self.order_date,
            expected_date=self.expected_date,
            notes=self.notes,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            discount_amount=self.discount_amount,
            total_amount=self.total_amount,
            cancel_reason=self.cancel_reason,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} status={self.status} total={self.total_amount}>"


class PurchaseOrderLineModel(TrackedBase):
    """
    ORM model for a purchase order line.

    Maps to: supply_modules.procurement.models.PurchaseOrderLine.

    Guarantees:
        - quantity_received is the accepted total over completed GRNs and is
          only written by goods receipt completion.
    """

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        Index("idx_po_line_order", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False,
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

    quantity_received: Mapped[Decimal] = mapped_column(
        LineQuantity(), nullable=False, default=Decimal("0"),
    )

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(back_populates="lines")

    def to_dto(self):
        """Convert ORM model to frozen PurchaseOrderLine DTO."""
        from supply_modules.procurement.models import PurchaseOrderLine
        return PurchaseOrderLine(
            id=self.id,
            line_number=self.line_number,
            product_id=self.product_id,
            variant_id=self.variant_id,
            description=self.description,
            quantity_ordered=self.quantity,
            unit_price=self.unit_price,
            tax_percentage=self.tax_percentage,
            discount_amount=self.discount_amount,
            tax_amount=self.tax_amount,
            line_total=self.line_total,
            quantity_received=self.quantity_received,
        )


# =============================================================================
# GoodsReceiptModel
# =============================================================================

class GoodsReceiptModel(TrackedBase):
    """
    ORM model for a goods receipt note header.

    Maps to: supply_modules.procurement.models.GoodsReceipt (frozen dataclass).

    Guarantees:
        - status moves draft -> completed exactly once; completed_at is set
          in the same transaction as the stock movements it posts.
    """

    __tablename__ = "goods_receipts"

    __table_args__ = (
        Index("idx_grn_purchase_order", "purchase_order_id"),
        Index("idx_grn_status", "status"),
    )

    grn_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False,
    )
    warehouse_id: Mapped[UUID] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    lines: Mapped[list["GoodsReceiptLineModel"]] = relationship(
        back_populates="goods_receipt",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="GoodsReceiptLineModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen GoodsReceipt DTO."""
        from supply_modules.procurement.models import GoodsReceipt, GRNStatus
        return GoodsReceipt(
            id=self.id,
            grn_number=self.grn_number,
            purchase_order_id=self.purchase_order_id,
            warehouse_id=self.warehouse_id,
            status=GRNStatus(self.status),
            receipt_date=self.receipt_date,
            completed_at=self.completed_at,
            notes=self.notes,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            discount_amount=self.discount_amount,
            total_amount=self.total_amount,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<GoodsReceiptModel {self.grn_number} status={self.status}>"


class GoodsReceiptLineModel(TrackedBase):
    """
    ORM model for a goods receipt line.

    Maps to: supply_modules.procurement.models.GoodsReceiptLine.
    """

    __tablename__ = "goods_receipt_lines"

    __table_args__ = (
        CheckConstraint("quantity_accepted >= 0", name="ck_grn_line_accepted_non_negative"),
        CheckConstraint(
            "quantity_accepted <= quantity_received", name="ck_grn_line_accepted_within_received",
        ),
        Index("idx_grn_line_receipt", "goods_receipt_id"),
        Index("idx_grn_line_po_line", "po_line_id"),
    )

    goods_receipt_id: Mapped[UUID] = mapped_column(
        ForeignKey("goods_receipts.id"), nullable=False,
    )
    po_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_order_lines.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)

    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_id: Mapped[UUID | None] = mapped_column(nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    quantity_received: Mapped[int] = mapped_column(BigInteger, nullable=False)
    quantity_accepted: Mapped[int] = mapped_column(BigInteger, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(LineQuantity(), nullable=False)
    tax_percentage: Mapped[Decimal] = mapped_column(LineQuantity(), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Money(), nullable=False)

    goods_receipt: Mapped["GoodsReceiptModel"] = relationship(back_populates="lines")

    def to_dto(self):
        """Convert ORM model to frozen GoodsReceiptLine DTO."""
        from supply_modules.procurement.models import GoodsReceiptLine
        return GoodsReceiptLine(
            id=self.id,
            line_number=self.line_number,
            po_line_id=self.po_line_id,
            product_id=self.product_id,
            variant_id=self.variant_id,
            description=self.description,
            quantity_received=self.quantity_received,
            quantity_accepted=self.quantity_accepted,
            unit_price=self.unit_price,
            tax_percentage=self.tax_percentage,
            discount_amount=self.discount_amount,
            tax_amount=self.tax_amount,
            line_total=self.line_total,
        )
