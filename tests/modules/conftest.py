"""
Document builders shared by the procurement and payables tests.
"""

from decimal import Decimal

import pytest

from supply_modules._line_items import LineItemInput
from supply_modules.procurement.models import GoodsReceiptLineInput


@pytest.fixture
def po_line(product_id) -> LineItemInput:
    """10 units at 5.00 with 5% tax: line total 52.50."""
    return LineItemInput(
        product_id=product_id,
        quantity=Decimal("10"),
        unit_price=Decimal("5.00"),
        tax_percentage=Decimal("5"),
    )


@pytest.fixture
def submitted_po(procurement_service, supplier_id, warehouse_id, po_line, test_actor_id):
    po = procurement_service.create_purchase_order(
        supplier_id, warehouse_id, [po_line], test_actor_id,
    )
    return procurement_service.submit_purchase_order(po.id, test_actor_id)


@pytest.fixture
def receive(procurement_service, test_actor_id):
    """Create and complete a GRN accepting ``quantity`` of every PO line."""

    def _receive(po, quantity, complete=True):
        grn = procurement_service.create_goods_receipt(
            po.id,
            [GoodsReceiptLineInput(line.id, quantity) for line in po.lines],
            test_actor_id,
        )
        if complete:
            grn = procurement_service.complete_goods_receipt(grn.id, test_actor_id)
        return grn

    return _receive


@pytest.fixture
def completed_grn(submitted_po, receive):
    """GRN accepting the whole order (total 52.50)."""
    return receive(submitted_po, 10)
