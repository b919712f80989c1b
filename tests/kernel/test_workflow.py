"""
Tests for workflow value objects and the document state machines built on them.
"""

import pytest

from supply_kernel.domain.workflow import Transition, Workflow
from supply_kernel.exceptions import InvalidTransitionError
from supply_modules.payables.workflows import PAYMENT_WORKFLOW
from supply_modules.procurement.workflows import (
    GOODS_RECEIPT_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
)


class TestWorkflowDefinition:
    """Malformed workflows fail at definition time."""

    def test_unknown_initial_state(self):
        with pytest.raises(ValueError):
            Workflow("w", "", initial_state="x", states=("a",), transitions=())

    def test_unknown_transition_state(self):
        with pytest.raises(ValueError):
            Workflow(
                "w", "", initial_state="a", states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_terminal_state_with_outgoing_transition(self):
        with pytest.raises(ValueError):
            Workflow(
                "w", "", initial_state="a", states=("a", "b"),
                transitions=(Transition("b", "a", action="back"),),
                terminal_states=("b",),
            )

    def test_duplicate_transition(self):
        with pytest.raises(ValueError):
            Workflow(
                "w", "", initial_state="a", states=("a", "b"),
                transitions=(
                    Transition("a", "b", action="go"),
                    Transition("a", "a", action="go"),
                ),
            )


class TestPurchaseOrderWorkflow:

    def test_draft_actions(self):
        assert set(PURCHASE_ORDER_WORKFLOW.actions_from("draft")) == {"submit", "cancel"}

    def test_receipt_transitions_are_system_only(self):
        for state in ("submitted", "partially_received"):
            for action in ("receive_partial", "receive_all"):
                assert PURCHASE_ORDER_WORKFLOW.find(state, action).system_only

    def test_completed_is_terminal(self):
        assert PURCHASE_ORDER_WORKFLOW.is_terminal("completed")
        assert PURCHASE_ORDER_WORKFLOW.actions_from("completed") == ()

    def test_partially_received_cannot_be_cancelled(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            PURCHASE_ORDER_WORKFLOW.require("po-1", "partially_received", "cancel")
        assert exc_info.value.document_type == "purchase_order"
        assert exc_info.value.action == "cancel"


class TestGoodsReceiptWorkflow:

    def test_complete_only_from_draft(self):
        assert GOODS_RECEIPT_WORKFLOW.require("grn-1", "draft", "complete").to_state == "completed"
        with pytest.raises(InvalidTransitionError):
            GOODS_RECEIPT_WORKFLOW.require("grn-1", "completed", "complete")


class TestPaymentWorkflow:

    @pytest.mark.parametrize(
        "state,action,target",
        [
            ("pending", "start_processing", "processing"),
            ("pending", "complete", "completed"),
            ("processing", "complete", "completed"),
            ("processing", "fail", "failed"),
            ("completed", "fail", "failed"),
            ("completed", "cancel", "cancelled"),
        ],
    )
    def test_allowed(self, state, action, target):
        assert PAYMENT_WORKFLOW.require("pay-1", state, action).to_state == target

    @pytest.mark.parametrize("state", ["failed", "cancelled"])
    def test_terminal_states(self, state):
        assert PAYMENT_WORKFLOW.is_terminal(state)
        with pytest.raises(InvalidTransitionError):
            PAYMENT_WORKFLOW.require("pay-1", state, "complete")
