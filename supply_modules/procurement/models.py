"""
Procurement Domain Models.

The nouns of procurement: purchase orders and goods receipt notes (GRNs).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from supply_kernel.domain.values import ZERO
from supply_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.models")


class POStatus(Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PARTIALLY_RECEIVED = "partially_received"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class GRNStatus(Enum):
    """Goods receipt lifecycle states."""
    DRAFT = "draft"
    COMPLETED = "completed"


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A line item on a purchase order."""
    id: UUID
    line_number: int
    product_id: UUID
    variant_id: UUID | None
    description: str
    quantity_ordered: Decimal
    unit_price: Decimal
    tax_percentage: Decimal = ZERO
    discount_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    line_total: Decimal = ZERO
    # Accepted units over every completed GRN of the order
    quantity_received: Decimal = ZERO

    @property
    def quantity_outstanding(self) -> Decimal:
        return max(self.quantity_ordered - self.quantity_received, ZERO)

    @property
    def is_fully_received(self) -> bool:
        return self.quantity_received >= self.quantity_ordered


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order."""
    id: UUID
    po_number: str
    supplier_id: UUID
    warehouse_id: UUID
    status: POStatus
    order_date: date
    expected_date: date | None = None
    notes: str | None = None
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    cancel_reason: str | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)

    def line(self, line_id: UUID) -> PurchaseOrderLine | None:
        return next((ln for ln in self.lines if ln.id == line_id), None)


@dataclass(frozen=True)
class GoodsReceiptLineInput:
    """
    Caller-supplied GRN line.

    ``quantity_accepted`` defaults to ``quantity_received``.
    """
    po_line_id: UUID
    quantity_received: Decimal | int | str
    quantity_accepted: Decimal | int | str | None = None


@dataclass(frozen=True)
class GoodsReceiptLine:
    """
    A received line, copied from its PO line at GRN creation.

    Price fields are copies, so later PO edits cannot change a receipt.
    ``discount_amount`` is the PO line discount prorated to the accepted
    quantity; line math applies to accepted units.
    """
    id: UUID
    line_number: int
    po_line_id: UUID
    product_id: UUID
    variant_id: UUID | None
    description: str
    quantity_received: int
    quantity_accepted: int
    unit_price: Decimal
    tax_percentage: Decimal = ZERO
    discount_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    line_total: Decimal = ZERO

    def __post_init__(self):
        if not 0 <= self.quantity_accepted <= self.quantity_received:
            logger.warning(
                "grn_line_accepted_out_of_range",
                extra={
                    "grn_line_id": str(self.id),
                    "quantity_received": self.quantity_received,
                    "quantity_accepted": self.quantity_accepted,
                },
            )
            raise ValueError(
                f"quantity_accepted ({self.quantity_accepted}) must be between 0 "
                f"and quantity_received ({self.quantity_received})"
            )

    @property
    def quantity_rejected(self) -> int:
        return self.quantity_received - self.quantity_accepted


@dataclass(frozen=True)
class GoodsReceipt:
    """A goods receipt note against a purchase order."""
    id: UUID
    grn_number: str
    purchase_order_id: UUID
    warehouse_id: UUID
    status: GRNStatus
    receipt_date: date
    completed_at: datetime | None = None
    notes: str | None = None
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    lines: tuple[GoodsReceiptLine, ...] = field(default_factory=tuple)
