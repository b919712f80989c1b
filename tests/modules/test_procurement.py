"""
Tests for procurement: purchase orders and goods receipts.

Validates:
- PO lines are priced by the pricing engine
- PO lifecycle: draft edits, submit, cancel
- GRN completion posts accepted units exactly once and advances the PO
- Over-receipt is rejected at creation and completion
- Order lines are whole units, so every order can be received in full
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from supply_config.schema import ProcurementSettings
from supply_kernel.db.engine import get_session
from supply_kernel.exceptions import (
    AlreadyCompletedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from supply_modules._line_items import LineItemInput
from supply_modules.inventory.models import DocumentRef, MovementReason
from supply_modules.inventory.service import InventoryLedger
from supply_modules.procurement.models import GoodsReceiptLineInput, GRNStatus, POStatus
from supply_modules.procurement.service import ProcurementService


class TestPurchaseOrders:

    def test_create_prices_lines(self, procurement_service, supplier_id, warehouse_id, po_line, test_actor_id):
        po = procurement_service.create_purchase_order(
            supplier_id, warehouse_id, [po_line], test_actor_id,
        )

        assert po.status == POStatus.DRAFT
        assert po.po_number == "PO-2024-001"
        assert po.order_date == date(2024, 1, 1)
        assert po.lines[0].tax_amount == Decimal("2.50")
        assert po.lines[0].line_total == Decimal("52.50")
        assert po.subtotal == Decimal("50.00")
        assert po.total_amount == Decimal("52.50")

    def test_numbers_are_sequential(self, procurement_service, supplier_id, warehouse_id, test_actor_id):
        numbers = [
            procurement_service.create_purchase_order(supplier_id, warehouse_id, [], test_actor_id).po_number
            for _ in range(3)
        ]
        assert numbers == ["PO-2024-001", "PO-2024-002", "PO-2024-003"]

    def test_expected_date_before_order_date(self, procurement_service, supplier_id, warehouse_id, test_actor_id):
        with pytest.raises(InvalidInputError):
            procurement_service.create_purchase_order(
                supplier_id, warehouse_id, [], test_actor_id, expected_date=date(2023, 12, 31),
            )

    def test_invalid_line_rejected(self, procurement_service, supplier_id, warehouse_id, product_id, test_actor_id):
        with pytest.raises(InvalidInputError):
            procurement_service.create_purchase_order(
                supplier_id,
                warehouse_id,
                [LineItemInput(product_id, Decimal("1"), Decimal("5.00"), tax_percentage=Decimal("101"))],
                test_actor_id,
            )
        assert procurement_service.list_purchase_orders() == []

    def test_fractional_line_quantity_rejected(
        self, procurement_service, supplier_id, warehouse_id, product_id, test_actor_id,
    ):
        with pytest.raises(InvalidInputError) as exc_info:
            procurement_service.create_purchase_order(
                supplier_id,
                warehouse_id,
                [LineItemInput(product_id, Decimal("2.5"), Decimal("4.00"))],
                test_actor_id,
            )
        assert exc_info.value.field == "lines[1].quantity"
        assert procurement_service.list_purchase_orders() == []

    def test_update_with_fractional_quantity_rejected(
        self, procurement_service, supplier_id, warehouse_id, po_line, product_id, test_actor_id,
    ):
        po = procurement_service.create_purchase_order(
            supplier_id, warehouse_id, [po_line], test_actor_id,
        )

        with pytest.raises(InvalidInputError):
            procurement_service.update_purchase_order(
                po.id,
                test_actor_id,
                lines=[po_line, LineItemInput(product_id, Decimal("0.5"), Decimal("4.00"))],
            )
        assert procurement_service.get_purchase_order(po.id).lines[0].quantity == Decimal("10")
        assert len(procurement_service.get_purchase_order(po.id).lines) == 1

    def test_whole_quantity_with_scale_accepted(
        self, procurement_service, supplier_id, warehouse_id, product_id, test_actor_id,
    ):
        po = procurement_service.create_purchase_order(
            supplier_id,
            warehouse_id,
            [LineItemInput(product_id, Decimal("3.0000"), Decimal("4.00"))],
            test_actor_id,
        )

        assert po.lines[0].quantity == Decimal("3")

    def test_update_draft_replaces_lines(
        self, procurement_service, supplier_id, warehouse_id, po_line, product_id, test_actor_id,
    ):
        po = procurement_service.create_purchase_order(
            supplier_id, warehouse_id, [po_line], test_actor_id,
        )
        updated = procurement_service.update_purchase_order(
            po.id,
            test_actor_id,
            lines=[LineItemInput(product_id, Decimal("2"), Decimal("10.00"))],
            notes="revised",
        )

        assert len(updated.lines) == 1
        assert updated.total_amount == Decimal("20.00")
        assert updated.notes == "revised"

    def test_update_after_submit_rejected(self, procurement_service, submitted_po, test_actor_id):
        with pytest.raises(InvalidTransitionError) as exc_info:
            procurement_service.update_purchase_order(submitted_po.id, test_actor_id, notes="late")
        assert exc_info.value.document_type == "purchase_order"

    def test_submit_without_lines_rejected(self, procurement_service, supplier_id, warehouse_id, test_actor_id):
        po = procurement_service.create_purchase_order(supplier_id, warehouse_id, [], test_actor_id)

        with pytest.raises(InvalidInputError):
            procurement_service.submit_purchase_order(po.id, test_actor_id)
        assert procurement_service.get_purchase_order(po.id).status == POStatus.DRAFT

    def test_submit_twice_rejected(self, procurement_service, submitted_po, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            procurement_service.submit_purchase_order(submitted_po.id, test_actor_id)

    def test_cancel_submitted(self, procurement_service, submitted_po, test_actor_id):
        cancelled = procurement_service.cancel_purchase_order(
            submitted_po.id, test_actor_id, reason="supplier out of stock",
        )

        assert cancelled.status == POStatus.CANCELLED
        assert cancelled.cancel_reason == "supplier out of stock"

    def test_cancel_after_receipt_rejected(self, procurement_service, submitted_po, receive, test_actor_id):
        receive(submitted_po, 4)

        with pytest.raises(InvalidTransitionError):
            procurement_service.cancel_purchase_order(submitted_po.id, test_actor_id)

    def test_unknown_order(self, procurement_service, test_actor_id):
        with pytest.raises(NotFoundError):
            procurement_service.submit_purchase_order(uuid4(), test_actor_id)

    def test_status_events(self, published_events, procurement_service, submitted_po):
        transitions = [
            (e.document_type, e.from_status, e.to_status)
            for e in published_events
            if e.event_type == "document.status_changed"
        ]
        assert transitions == [
            ("purchase_order", None, "draft"),
            ("purchase_order", "draft", "submitted"),
        ]

    def test_list_filters(self, procurement_service, submitted_po, supplier_id, warehouse_id, test_actor_id):
        procurement_service.create_purchase_order(uuid4(), warehouse_id, [], test_actor_id)

        assert [p.id for p in procurement_service.list_purchase_orders(supplier_id=supplier_id)] == [
            submitted_po.id
        ]
        assert len(procurement_service.list_purchase_orders(status="draft")) == 1

    def test_unknown_status_filter_rejected(self, procurement_service):
        with pytest.raises(InvalidInputError) as exc_info:
            procurement_service.list_purchase_orders(status="shipped")
        assert exc_info.value.field == "status"


class TestGoodsReceipts:

    def test_partial_receipt(
        self, procurement_service, submitted_po, ledger, warehouse_id, product_id, test_actor_id,
    ):
        """10 ordered, 8 accepted: +8 stock, PO partially received."""
        line = submitted_po.lines[0]
        grn = procurement_service.create_goods_receipt(
            submitted_po.id, [GoodsReceiptLineInput(line.id, 8)], test_actor_id,
        )
        assert grn.status == GRNStatus.DRAFT
        assert grn.grn_number == "GRN-2024-001"
        assert grn.total_amount == Decimal("42.00")

        completed = procurement_service.complete_goods_receipt(grn.id, test_actor_id)

        assert completed.status == GRNStatus.COMPLETED
        assert completed.completed_at is not None
        assert ledger.get_position(warehouse_id, product_id).physical_quantity == 8
        po = procurement_service.get_purchase_order(submitted_po.id)
        assert po.status == POStatus.PARTIALLY_RECEIVED
        assert po.lines[0].quantity_received == 8
        assert po.lines[0].quantity_outstanding == 2

    def test_movement_references_receipt(
        self, procurement_service, completed_grn, ledger, warehouse_id, product_id,
    ):
        movements = ledger.list_movements(warehouse_id, product_id)

        assert len(movements) == 1
        assert movements[0].reason == MovementReason.GOODS_RECEIPT
        assert movements[0].delta == 10
        assert movements[0].reference == DocumentRef("goods_receipt", completed_grn.id)

    def test_full_receipt_completes_order(self, procurement_service, submitted_po, receive):
        receive(submitted_po, 6)
        receive(submitted_po, 4)

        assert procurement_service.get_purchase_order(submitted_po.id).status == POStatus.COMPLETED

    def test_complete_twice_posts_once(
        self, procurement_service, completed_grn, ledger, warehouse_id, product_id, test_actor_id,
    ):
        with pytest.raises(AlreadyCompletedError) as exc_info:
            procurement_service.complete_goods_receipt(completed_grn.id, test_actor_id)
        assert exc_info.value.code == "ALREADY_COMPLETED"

        assert ledger.get_position(warehouse_id, product_id).physical_quantity == 10
        assert len(ledger.list_movements(warehouse_id, product_id)) == 1

    def test_rejected_units_not_posted(
        self, procurement_service, submitted_po, ledger, warehouse_id, product_id, test_actor_id,
    ):
        line = submitted_po.lines[0]
        grn = procurement_service.create_goods_receipt(
            submitted_po.id,
            [GoodsReceiptLineInput(line.id, quantity_received=10, quantity_accepted=7)],
            test_actor_id,
        )
        assert grn.lines[0].quantity_rejected == 3

        procurement_service.complete_goods_receipt(grn.id, test_actor_id)
        assert ledger.get_position(warehouse_id, product_id).physical_quantity == 7

    def test_accepted_above_received_rejected(self, procurement_service, submitted_po, test_actor_id):
        line = submitted_po.lines[0]

        with pytest.raises(InvalidInputError):
            procurement_service.create_goods_receipt(
                submitted_po.id,
                [GoodsReceiptLineInput(line.id, quantity_received=5, quantity_accepted=6)],
                test_actor_id,
            )

    def test_over_receipt_rejected_at_creation(self, procurement_service, submitted_po, receive):
        receive(submitted_po, 8)

        with pytest.raises(InvalidInputError):
            receive(submitted_po, 3, complete=False)

    def test_over_receipt_rejected_at_completion(
        self, procurement_service, submitted_po, receive, ledger, warehouse_id, product_id, test_actor_id,
    ):
        first = receive(submitted_po, 6, complete=False)
        second = receive(submitted_po, 6, complete=False)
        procurement_service.complete_goods_receipt(first.id, test_actor_id)

        with pytest.raises(InvalidInputError):
            procurement_service.complete_goods_receipt(second.id, test_actor_id)
        assert ledger.get_position(warehouse_id, product_id).physical_quantity == 6
        assert procurement_service.get_goods_receipt(second.id).status == GRNStatus.DRAFT

    def test_tolerance_allows_over_receipt(
        self, session, deterministic_clock, supplier_id, warehouse_id, po_line, test_actor_id,
    ):
        service = ProcurementService(
            session,
            clock=deterministic_clock,
            config=ProcurementSettings(over_receipt_tolerance_percent=Decimal("10")),
        )
        po = service.create_purchase_order(supplier_id, warehouse_id, [po_line], test_actor_id)
        po = service.submit_purchase_order(po.id, test_actor_id)
        grn = service.create_goods_receipt(
            po.id, [GoodsReceiptLineInput(po.lines[0].id, 11)], test_actor_id,
        )
        service.complete_goods_receipt(grn.id, test_actor_id)

        assert service.get_purchase_order(po.id).status == POStatus.COMPLETED

    def test_draft_order_not_receivable(
        self, procurement_service, supplier_id, warehouse_id, po_line, test_actor_id,
    ):
        po = procurement_service.create_purchase_order(
            supplier_id, warehouse_id, [po_line], test_actor_id,
        )

        with pytest.raises(InvalidTransitionError):
            procurement_service.create_goods_receipt(
                po.id, [GoodsReceiptLineInput(po.lines[0].id, 1)], test_actor_id,
            )

    def test_cancelled_order_blocks_completion(
        self, procurement_service, submitted_po, receive, ledger, warehouse_id, product_id, test_actor_id,
    ):
        grn = receive(submitted_po, 5, complete=False)
        procurement_service.cancel_purchase_order(submitted_po.id, test_actor_id)

        with pytest.raises(InvalidTransitionError):
            procurement_service.complete_goods_receipt(grn.id, test_actor_id)
        with pytest.raises(NotFoundError):
            ledger.get_position(warehouse_id, product_id)

    def test_unknown_po_line(self, procurement_service, submitted_po, test_actor_id):
        with pytest.raises(NotFoundError):
            procurement_service.create_goods_receipt(
                submitted_po.id, [GoodsReceiptLineInput(uuid4(), 1)], test_actor_id,
            )

    def test_duplicate_po_line(self, procurement_service, submitted_po, test_actor_id):
        line_id = submitted_po.lines[0].id

        with pytest.raises(InvalidInputError):
            procurement_service.create_goods_receipt(
                submitted_po.id,
                [GoodsReceiptLineInput(line_id, 1), GoodsReceiptLineInput(line_id, 2)],
                test_actor_id,
            )

    def test_discount_prorated_to_accepted_units(
        self, procurement_service, supplier_id, warehouse_id, product_id, test_actor_id,
    ):
        po = procurement_service.create_purchase_order(
            supplier_id,
            warehouse_id,
            [LineItemInput(product_id, Decimal("3"), Decimal("10.00"), discount_amount=Decimal("1.00"))],
            test_actor_id,
        )
        po = procurement_service.submit_purchase_order(po.id, test_actor_id)
        grn = procurement_service.create_goods_receipt(
            po.id, [GoodsReceiptLineInput(po.lines[0].id, 1)], test_actor_id,
        )

        assert grn.lines[0].discount_amount == Decimal("0.33")
        assert grn.lines[0].line_total == Decimal("9.67")

    def test_completion_events_after_commit(
        self, procurement_service, submitted_po, receive, published_events,
    ):
        published_events.clear()
        receive(submitted_po, 10)

        kinds = [e.event_type for e in published_events]
        assert kinds.count("stock.moved") == 1
        transitions = [
            (e.document_type, e.to_status)
            for e in published_events
            if e.event_type == "document.status_changed"
        ]
        assert ("goods_receipt", "completed") in transitions
        assert ("purchase_order", "completed") in transitions

    def test_list_goods_receipts(self, procurement_service, submitted_po, receive):
        receive(submitted_po, 2)
        receive(submitted_po, 3, complete=False)

        assert len(procurement_service.list_goods_receipts(po_id=submitted_po.id)) == 2
        assert len(procurement_service.list_goods_receipts(status=GRNStatus.DRAFT)) == 1
        with pytest.raises(InvalidInputError):
            procurement_service.list_goods_receipts(status="posted")


class TestLedgerComposition:

    def test_ledger_on_other_session_rejected(self, procurement_service, session, engine):
        other = get_session()
        try:
            with pytest.raises(ValueError):
                ProcurementService(session, ledger=InventoryLedger(other, auto_commit=False))
        finally:
            other.close()

    def test_auto_commit_ledger_rejected(self, session):
        with pytest.raises(ValueError):
            ProcurementService(session, ledger=InventoryLedger(session))
