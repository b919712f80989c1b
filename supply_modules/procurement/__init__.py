"""
Procurement Module (``supply_modules.procurement``).

Responsibility
--------------
Purchase orders and goods receipt notes: draft, submit, cancel, receive,
and the completion step that posts received stock to the inventory ledger
and advances the purchase order.

Architecture position
---------------------
**Modules layer** -- ``ProcurementService`` composes ``InventoryLedger``
(``auto_commit=False``) so a GRN completion is one transaction.

Invariants enforced
-------------------
* A GRN completes at most once; replays raise ``AlreadyCompletedError``.
* PO line received quantity equals accepted units over completed GRNs.
* PO status follows received quantities: partially_received or completed.
"""

from supply_modules._line_items import LineItemInput
from supply_modules.procurement.models import (
    GoodsReceipt,
    GoodsReceiptLine,
    GoodsReceiptLineInput,
    GRNStatus,
    POStatus,
    PurchaseOrder,
    PurchaseOrderLine,
)
from supply_modules.procurement.service import ProcurementService
from supply_modules.procurement.workflows import (
    GOODS_RECEIPT_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
)

__all__ = [
    "GOODS_RECEIPT_WORKFLOW",
    "GRNStatus",
    "GoodsReceipt",
    "GoodsReceiptLine",
    "GoodsReceiptLineInput",
    "LineItemInput",
    "POStatus",
    "PURCHASE_ORDER_WORKFLOW",
    "ProcurementService",
    "PurchaseOrder",
    "PurchaseOrderLine",
]
