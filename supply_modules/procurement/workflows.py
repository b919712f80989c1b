"""
Procurement Workflows.

State machines for purchase orders and goods receipt notes.
"""

from supply_kernel.domain.workflow import Guard, Transition, Workflow
from supply_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINES = Guard(
    name="has_lines",
    description="Purchase order has at least one line",
)

NO_RECEIPT_STARTED = Guard(
    name="no_receipt_started",
    description="No goods receipt has been completed against the order",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Accepted quantity covers the ordered quantity on every line",
)

NOT_COMPLETED = Guard(
    name="not_completed",
    description="Goods receipt has not been completed before",
)

logger.info(
    "procurement_workflow_guards_defined",
    extra={
        "guards": [
            HAS_LINES.name,
            NO_RECEIPT_STARTED.name,
            ALL_LINES_RECEIVED.name,
            NOT_COMPLETED.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "submitted",
        "partially_received",
        "completed",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "submitted", action="submit", guard=HAS_LINES),
        Transition("draft", "cancelled", action="cancel"),
        Transition("submitted", "cancelled", action="cancel", guard=NO_RECEIPT_STARTED),
        # Driven by goods receipt completion, never by a direct user action
        Transition("submitted", "partially_received", action="receive_partial", system_only=True),
        Transition(
            "submitted", "completed", action="receive_all",
            guard=ALL_LINES_RECEIVED, system_only=True,
        ),
        Transition(
            "partially_received", "partially_received", action="receive_partial",
            system_only=True,
        ),
        Transition(
            "partially_received", "completed", action="receive_all",
            guard=ALL_LINES_RECEIVED, system_only=True,
        ),
    ),
    terminal_states=("completed", "cancelled"),
)

logger.info(
    "procurement_purchase_order_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
        "initial_state": PURCHASE_ORDER_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Goods Receipt Workflow
# -----------------------------------------------------------------------------

GOODS_RECEIPT_WORKFLOW = Workflow(
    name="goods_receipt",
    description="Goods receipt note lifecycle",
    initial_state="draft",
    states=("draft", "completed"),
    transitions=(
        Transition("draft", "completed", action="complete", guard=NOT_COMPLETED),
    ),
    terminal_states=("completed",),
)

logger.info(
    "procurement_goods_receipt_workflow_registered",
    extra={
        "workflow_name": GOODS_RECEIPT_WORKFLOW.name,
        "state_count": len(GOODS_RECEIPT_WORKFLOW.states),
        "transition_count": len(GOODS_RECEIPT_WORKFLOW.transitions),
        "initial_state": GOODS_RECEIPT_WORKFLOW.initial_state,
    },
)
