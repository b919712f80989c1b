"""
Payables Workflows.

State machine for supplier payments.  Invoice status is derived from its
amounts and due date and therefore has no workflow of its own; only
cancellation is an explicit invoice action.
"""

from supply_kernel.domain.workflow import Guard, Transition, Workflow
from supply_kernel.logging_config import get_logger

logger = get_logger("modules.payables.workflows")

INVOICE_DOCUMENT_TYPE = "purchase_invoice"


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

WITHIN_BALANCE = Guard(
    name="within_balance",
    description="Payment amount does not exceed the invoice's outstanding balance",
)

REQUIRED_REFERENCES = Guard(
    name="required_references",
    description="Method-specific reference fields are present",
)

logger.info(
    "payables_workflow_guards_defined",
    extra={"guards": [WITHIN_BALANCE.name, REQUIRED_REFERENCES.name]},
)


# -----------------------------------------------------------------------------
# Payment Workflow
# -----------------------------------------------------------------------------

PAYMENT_WORKFLOW = Workflow(
    name="supplier_payment",
    description="Supplier payment lifecycle",
    initial_state="pending",
    states=(
        "pending",
        "processing",
        "completed",
        "failed",
        "cancelled",
    ),
    transitions=(
        Transition("pending", "processing", action="start_processing"),
        Transition("pending", "completed", action="complete", guard=WITHIN_BALANCE),
        Transition("processing", "completed", action="complete", guard=WITHIN_BALANCE),
        Transition("pending", "failed", action="fail"),
        Transition("processing", "failed", action="fail"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("processing", "cancelled", action="cancel"),
        # Leaving completed reverses the payment's contribution to the invoice
        Transition("completed", "failed", action="fail"),
        Transition("completed", "cancelled", action="cancel"),
    ),
    terminal_states=("failed", "cancelled"),
)

logger.info(
    "payables_payment_workflow_registered",
    extra={
        "workflow_name": PAYMENT_WORKFLOW.name,
        "state_count": len(PAYMENT_WORKFLOW.states),
        "transition_count": len(PAYMENT_WORKFLOW.transitions),
        "initial_state": PAYMENT_WORKFLOW.initial_state,
    },
)
