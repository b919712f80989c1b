"""
Tests for the Inventory Ledger.

Validates:
- Reservations: available = physical - reserved, never negative
- Adjustments: absolute set with one movement, version guard
- Movements: signed posts, rejected reasons, negative stock
- Transfers: all-or-nothing, only available stock moves
- Queries: positions, cross-warehouse summary, reconciliation
- Events: stock movement events only after commit
- Property: random operation sequences keep every invariant
"""

from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from supply_kernel.exceptions import (
    InsufficientStockError,
    InvalidInputError,
    NegativeStockError,
    NotFoundError,
    OptimisticLockError,
    StockError,
)
from supply_modules.inventory.models import (
    DocumentRef,
    MovementReason,
    StockPosition,
    TransferItem,
)
from supply_modules.inventory.service import InventoryLedger


@pytest.fixture
def stocked(ledger, warehouse_id, product_id, test_actor_id):
    """Position with 100 units on hand."""
    ledger.adjust_stock(warehouse_id, product_id, None, 100, test_actor_id)
    return ledger


# =============================================================================
# Reservations
# =============================================================================


class TestReservations:
    """Reserve / release / fulfil."""

    def test_reserve_and_reject_over_reservation(self, stocked, warehouse_id, product_id, test_actor_id):
        """physical=100: reserve 30 leaves 70; reserve 80 fails and changes nothing."""
        stocked.reserve(warehouse_id, product_id, None, 30, test_actor_id)
        position = stocked.get_position(warehouse_id, product_id)
        assert position.available_quantity == 70

        with pytest.raises(InsufficientStockError) as exc_info:
            stocked.reserve(warehouse_id, product_id, None, 80, test_actor_id)
        assert exc_info.value.requested == 80
        assert exc_info.value.available == 70

        position = stocked.get_position(warehouse_id, product_id)
        assert position.reserved_quantity == 30
        assert position.physical_quantity == 100

    def test_reserve_exact_available(self, stocked, warehouse_id, product_id, test_actor_id):
        stocked.reserve(warehouse_id, product_id, None, 100, test_actor_id)

        assert stocked.get_position(warehouse_id, product_id).available_quantity == 0

    def test_reserve_without_position(self, ledger, warehouse_id, product_id, test_actor_id):
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.reserve(warehouse_id, product_id, None, 1, test_actor_id)
        assert exc_info.value.available == 0

    def test_reserve_zero_rejected(self, stocked, warehouse_id, product_id, test_actor_id):
        with pytest.raises(InvalidInputError):
            stocked.reserve(warehouse_id, product_id, None, 0, test_actor_id)

    def test_release(self, stocked, warehouse_id, product_id, test_actor_id):
        stocked.reserve(warehouse_id, product_id, None, 30, test_actor_id)
        movement = stocked.release(warehouse_id, product_id, None, 10, test_actor_id)

        assert movement.reason == MovementReason.SALE_RELEASE
        assert movement.delta == 0
        assert movement.reserved_delta == -10
        assert stocked.get_position(warehouse_id, product_id).reserved_quantity == 20

    def test_release_more_than_reserved(self, stocked, warehouse_id, product_id, test_actor_id):
        stocked.reserve(warehouse_id, product_id, None, 5, test_actor_id)

        with pytest.raises(NegativeStockError):
            stocked.release(warehouse_id, product_id, None, 6, test_actor_id)

    def test_fulfil_reduces_physical_and_reserved(self, stocked, warehouse_id, product_id, test_actor_id):
        stocked.reserve(warehouse_id, product_id, None, 30, test_actor_id)
        movement = stocked.fulfil(warehouse_id, product_id, None, 30, test_actor_id)

        assert (movement.delta, movement.reserved_delta) == (-30, -30)
        position = stocked.get_position(warehouse_id, product_id)
        assert (position.physical_quantity, position.reserved_quantity) == (70, 0)

    def test_fulfil_more_than_reserved(self, stocked, warehouse_id, product_id, test_actor_id):
        with pytest.raises(NegativeStockError):
            stocked.fulfil(warehouse_id, product_id, None, 1, test_actor_id)


# =============================================================================
# Adjustments
# =============================================================================


class TestAdjustStock:

    def test_initial_setup_reason(self, ledger, warehouse_id, product_id, test_actor_id):
        movement = ledger.adjust_stock(warehouse_id, product_id, None, 25, test_actor_id)

        assert movement.reason == MovementReason.INITIAL_SETUP
        assert movement.delta == 25
        assert movement.resulting_physical == 25

    def test_later_adjustment_is_manual(self, stocked, warehouse_id, product_id, test_actor_id):
        movement = stocked.adjust_stock(warehouse_id, product_id, None, 90, test_actor_id)

        assert movement.reason == MovementReason.MANUAL_ADJUSTMENT
        assert movement.delta == -10

    def test_unchanged_quantity_writes_nothing(self, stocked, warehouse_id, product_id, test_actor_id):
        assert stocked.adjust_stock(warehouse_id, product_id, None, 100, test_actor_id) is None
        assert len(stocked.list_movements(warehouse_id, product_id)) == 1

    def test_cannot_drop_below_reserved(self, stocked, warehouse_id, product_id, test_actor_id):
        stocked.reserve(warehouse_id, product_id, None, 40, test_actor_id)

        with pytest.raises(NegativeStockError):
            stocked.adjust_stock(warehouse_id, product_id, None, 39, test_actor_id)

    def test_negative_quantity_rejected(self, ledger, warehouse_id, product_id, test_actor_id):
        with pytest.raises(NegativeStockError):
            ledger.adjust_stock(warehouse_id, product_id, None, -1, test_actor_id)

    def test_fractional_quantity_rejected(self, ledger, warehouse_id, product_id, test_actor_id):
        with pytest.raises(InvalidInputError):
            ledger.adjust_stock(warehouse_id, product_id, None, "10.5", test_actor_id)

    def test_expected_version_for_new_position(self, ledger, warehouse_id, product_id, test_actor_id):
        ledger.adjust_stock(warehouse_id, product_id, None, 5, test_actor_id, expected_version=0)

        assert ledger.get_position(warehouse_id, product_id).physical_quantity == 5

    def test_stale_version_rejected(self, stocked, warehouse_id, product_id, test_actor_id):
        version = stocked.get_position(warehouse_id, product_id).version
        stocked.reserve(warehouse_id, product_id, None, 1, test_actor_id)

        with pytest.raises(OptimisticLockError) as exc_info:
            stocked.adjust_stock(
                warehouse_id, product_id, None, 50, test_actor_id, expected_version=version,
            )
        assert exc_info.value.expected_version == version
        assert stocked.get_position(warehouse_id, product_id).physical_quantity == 100

    def test_current_version_accepted(self, stocked, warehouse_id, product_id, test_actor_id):
        version = stocked.get_position(warehouse_id, product_id).version
        stocked.adjust_stock(
            warehouse_id, product_id, None, 50, test_actor_id, expected_version=version,
        )

        position = stocked.get_position(warehouse_id, product_id)
        assert position.physical_quantity == 50
        assert position.version > version

    def test_location_recorded(self, ledger, warehouse_id, product_id, test_actor_id):
        ledger.adjust_stock(warehouse_id, product_id, None, 5, test_actor_id, location="A-01")

        assert ledger.get_position(warehouse_id, product_id).location == "A-01"

    def test_variants_are_separate_positions(self, ledger, warehouse_id, product_id, test_actor_id):
        red, blue = uuid4(), uuid4()
        ledger.adjust_stock(warehouse_id, product_id, red, 5, test_actor_id)
        ledger.adjust_stock(warehouse_id, product_id, blue, 7, test_actor_id)
        ledger.adjust_stock(warehouse_id, product_id, None, 1, test_actor_id)

        assert ledger.get_position(warehouse_id, product_id, red).physical_quantity == 5
        assert ledger.get_position(warehouse_id, product_id, blue).physical_quantity == 7
        assert ledger.get_position(warehouse_id, product_id).physical_quantity == 1


# =============================================================================
# Movements
# =============================================================================


class TestPostMovement:

    def test_receipt_with_reference(self, ledger, warehouse_id, product_id, test_actor_id):
        grn_id = uuid4()
        movement = ledger.post_movement(
            warehouse_id, product_id, None, 8, MovementReason.GOODS_RECEIPT, test_actor_id,
            reference=DocumentRef("goods_receipt", grn_id),
        )

        assert movement.reference == DocumentRef("goods_receipt", grn_id)
        assert ledger.get_position(warehouse_id, product_id).physical_quantity == 8

    def test_reason_accepted_as_string(self, ledger, warehouse_id, product_id, test_actor_id):
        movement = ledger.post_movement(
            warehouse_id, product_id, None, 3, "goods-receipt", test_actor_id,
        )
        assert movement.reason == MovementReason.GOODS_RECEIPT

    def test_zero_delta_rejected(self, ledger, warehouse_id, product_id, test_actor_id):
        with pytest.raises(InvalidInputError):
            ledger.post_movement(
                warehouse_id, product_id, None, 0, MovementReason.GOODS_RECEIPT, test_actor_id,
            )

    @pytest.mark.parametrize(
        "reason",
        [MovementReason.SALE_RESERVATION, MovementReason.SALE_RELEASE, MovementReason.SALE_FULFILMENT],
    )
    def test_reservation_reasons_rejected(self, ledger, warehouse_id, product_id, test_actor_id, reason):
        with pytest.raises(InvalidInputError):
            ledger.post_movement(warehouse_id, product_id, None, 1, reason, test_actor_id)

    def test_unknown_reason_rejected(self, ledger, warehouse_id, product_id, test_actor_id):
        with pytest.raises(InvalidInputError):
            ledger.post_movement(warehouse_id, product_id, None, 1, "theft", test_actor_id)

    def test_outbound_on_missing_position(self, ledger, warehouse_id, product_id, test_actor_id):
        with pytest.raises(NegativeStockError):
            ledger.post_movement(
                warehouse_id, product_id, None, -1, MovementReason.MANUAL_ADJUSTMENT, test_actor_id,
            )
        with pytest.raises(NotFoundError):
            ledger.get_position(warehouse_id, product_id)

    def test_outbound_cannot_eat_reserved_stock(self, stocked, warehouse_id, product_id, test_actor_id):
        stocked.reserve(warehouse_id, product_id, None, 95, test_actor_id)

        with pytest.raises(NegativeStockError):
            stocked.post_movement(
                warehouse_id, product_id, None, -6, MovementReason.MANUAL_ADJUSTMENT, test_actor_id,
            )


# =============================================================================
# Transfers
# =============================================================================


class TestTransfers:

    def test_transfer_moves_stock(
        self, stocked, warehouse_id, other_warehouse_id, product_id, test_actor_id,
    ):
        result = stocked.transfer(warehouse_id, other_warehouse_id, product_id, None, 40, test_actor_id)

        assert result.outbound[0].reason == MovementReason.TRANSFER_OUT
        assert result.inbound[0].reason == MovementReason.TRANSFER_IN
        assert result.outbound[0].transfer_id == result.inbound[0].transfer_id == result.transfer_id
        assert stocked.get_position(warehouse_id, product_id).physical_quantity == 60
        assert stocked.get_position(other_warehouse_id, product_id).physical_quantity == 40

    def test_reserved_stock_is_not_transferable(
        self, stocked, warehouse_id, other_warehouse_id, product_id, test_actor_id,
    ):
        stocked.reserve(warehouse_id, product_id, None, 70, test_actor_id)

        with pytest.raises(InsufficientStockError) as exc_info:
            stocked.transfer(warehouse_id, other_warehouse_id, product_id, None, 31, test_actor_id)
        assert exc_info.value.available == 30

    def test_multi_line_transfer_is_all_or_nothing(
        self, stocked, warehouse_id, other_warehouse_id, product_id, test_actor_id,
    ):
        scarce = uuid4()
        stocked.adjust_stock(warehouse_id, scarce, None, 2, test_actor_id)

        with pytest.raises(InsufficientStockError):
            stocked.transfer_items(
                warehouse_id,
                other_warehouse_id,
                [TransferItem(product_id, 10), TransferItem(scarce, 5)],
                test_actor_id,
            )

        assert stocked.get_position(warehouse_id, product_id).physical_quantity == 100
        with pytest.raises(NotFoundError):
            stocked.get_position(other_warehouse_id, product_id)

    def test_same_warehouse_rejected(self, stocked, warehouse_id, product_id, test_actor_id):
        with pytest.raises(InvalidInputError):
            stocked.transfer(warehouse_id, warehouse_id, product_id, None, 1, test_actor_id)

    def test_duplicate_lines_rejected(
        self, stocked, warehouse_id, other_warehouse_id, product_id, test_actor_id,
    ):
        with pytest.raises(InvalidInputError):
            stocked.transfer_items(
                warehouse_id,
                other_warehouse_id,
                [TransferItem(product_id, 1), TransferItem(product_id, 2)],
                test_actor_id,
            )

    def test_empty_transfer_rejected(self, ledger, warehouse_id, other_warehouse_id, test_actor_id):
        with pytest.raises(InvalidInputError):
            ledger.transfer_items(warehouse_id, other_warehouse_id, [], test_actor_id)


# =============================================================================
# Queries
# =============================================================================


class TestQueries:

    def test_missing_position(self, ledger, warehouse_id, product_id):
        with pytest.raises(NotFoundError):
            ledger.get_position(warehouse_id, product_id)

    def test_across_warehouses(
        self, stocked, warehouse_id, other_warehouse_id, product_id, test_actor_id,
    ):
        stocked.adjust_stock(other_warehouse_id, product_id, None, 20, test_actor_id)
        stocked.reserve(other_warehouse_id, product_id, None, 5, test_actor_id)

        summary = stocked.get_across_warehouses(product_id)
        assert len(summary.positions) == 2
        assert summary.total_physical == 120
        assert summary.total_reserved == 5
        assert summary.total_available == 115

    def test_across_warehouses_single_variant(self, ledger, warehouse_id, product_id, test_actor_id):
        red, blue = uuid4(), uuid4()
        ledger.adjust_stock(warehouse_id, product_id, red, 5, test_actor_id)
        ledger.adjust_stock(warehouse_id, product_id, blue, 7, test_actor_id)

        assert ledger.get_across_warehouses(product_id, red).total_physical == 5
        assert ledger.get_across_warehouses(product_id).total_physical == 12

    def test_unknown_product_has_empty_summary(self, ledger):
        summary = ledger.get_across_warehouses(uuid4())

        assert summary.positions == ()
        assert summary.total_physical == 0

    def test_list_movements(self, stocked, warehouse_id, product_id, test_actor_id):
        stocked.reserve(warehouse_id, product_id, None, 10, test_actor_id)
        movements = stocked.list_movements(warehouse_id, product_id)

        assert {m.reason for m in movements} == {
            MovementReason.INITIAL_SETUP, MovementReason.SALE_RESERVATION,
        }
        assert sum(m.delta for m in movements) == 100
        assert sum(m.reserved_delta for m in movements) == 10

    def test_reconcile(self, stocked, warehouse_id, other_warehouse_id, product_id, test_actor_id):
        stocked.reserve(warehouse_id, product_id, None, 10, test_actor_id)
        stocked.transfer(warehouse_id, other_warehouse_id, product_id, None, 25, test_actor_id)

        result = stocked.reconcile(warehouse_id, product_id)
        assert result.is_balanced
        assert result.movement_physical_total == 75
        assert result.movement_reserved_total == 10
        assert result.movement_count == 3
        assert all(r.is_balanced for r in stocked.reconcile_all())

    def test_reconcile_missing_position(self, ledger, warehouse_id, product_id):
        with pytest.raises(NotFoundError):
            ledger.reconcile(warehouse_id, product_id)

    def test_position_dto_rejects_inconsistent_state(self, warehouse_id, product_id):
        with pytest.raises(ValueError):
            StockPosition(
                id=uuid4(),
                key=InventoryLedger.key(warehouse_id, product_id),
                physical_quantity=5,
                reserved_quantity=6,
                location="",
                version=1,
            )


# =============================================================================
# Events and logging
# =============================================================================


class TestLedgerEvents:

    def test_events_published_after_commit(
        self, ledger, warehouse_id, product_id, test_actor_id, published_events,
    ):
        ledger.adjust_stock(warehouse_id, product_id, None, 10, test_actor_id)
        ledger.reserve(warehouse_id, product_id, None, 4, test_actor_id)

        assert [e.event_type for e in published_events] == ["stock.moved", "stock.moved"]
        assert published_events[1].reserved_delta == 4
        assert published_events[1].reason == MovementReason.SALE_RESERVATION.value

    def test_no_event_for_rejected_operation(
        self, stocked, warehouse_id, product_id, test_actor_id, published_events,
    ):
        with pytest.raises(InsufficientStockError):
            stocked.reserve(warehouse_id, product_id, None, 101, test_actor_id)

        assert published_events == []

    def test_rejection_logged(self, stocked, warehouse_id, product_id, test_actor_id, captured_logs):
        with pytest.raises(InsufficientStockError):
            stocked.reserve(warehouse_id, product_id, None, 101, test_actor_id)

        logs = captured_logs()
        rejected = [r for r in logs if r["message"] == "stock_reservation_rejected"]
        assert rejected[0]["requested"] == 101
        assert any(r["message"] == "operation_rolled_back" for r in logs)


# =============================================================================
# Properties
# =============================================================================

_operations = st.lists(
    st.one_of(
        st.tuples(st.just("adjust"), st.integers(min_value=0, max_value=100)),
        st.tuples(st.sampled_from(["reserve", "release", "fulfil"]), st.integers(min_value=1, max_value=50)),
    ),
    min_size=1,
    max_size=15,
)


class TestStockInvariantProperties:
    """Any sequence of operations keeps 0 <= reserved <= physical and the
    movement history in agreement with the position."""

    @settings(
        max_examples=40,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(operations=_operations)
    def test_random_operations(self, ledger, warehouse_id, test_actor_id, operations):
        product_id = uuid4()
        physical, reserved, exists = 0, 0, False

        for op, qty in operations:
            try:
                if op == "adjust":
                    ledger.adjust_stock(warehouse_id, product_id, None, qty, test_actor_id)
                    if qty != physical:
                        exists = True
                    physical = qty
                elif op == "reserve":
                    ledger.reserve(warehouse_id, product_id, None, qty, test_actor_id)
                    reserved += qty
                elif op == "release":
                    ledger.release(warehouse_id, product_id, None, qty, test_actor_id)
                    reserved -= qty
                else:
                    ledger.fulfil(warehouse_id, product_id, None, qty, test_actor_id)
                    reserved -= qty
                    physical -= qty
            except StockError:
                pass

            if exists:
                position = ledger.get_position(warehouse_id, product_id)
                assert 0 <= position.reserved_quantity <= position.physical_quantity
                assert (position.physical_quantity, position.reserved_quantity) == (physical, reserved)
                assert ledger.reconcile(warehouse_id, product_id).is_balanced
