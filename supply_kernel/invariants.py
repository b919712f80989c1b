"""
Kernel Invariants Contract.

These invariants are structural law.  No configuration value, caller flag,
or module may override them.  This module declares them explicitly; the
enforcement is distributed across the InventoryLedger, the procurement and
payables services, the balance-status engine, database constraints and the
immutability listeners.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the core."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """0 <= reserved_quantity <= physical_quantity for every stock position.
    Enforced by InventoryLedger validation and DB CHECK constraints."""

    STOCK_RECONCILIATION = "stock_reconciliation"
    """The sum of movement deltas for a position equals its physical
    quantity; the sum of reserved deltas equals its reserved quantity.
    Enforced by writing every mutation as a movement in the same
    transaction, and checked by InventoryLedger.reconcile()."""

    MOVEMENT_IMMUTABILITY = "movement_immutability"
    """Stock movements and domain event records are append-only.
    Enforced by supply_kernel.db.immutability."""

    BALANCE_BOUNDS = "balance_bounds"
    """0 <= paid_amount <= total_amount for every invoice and credit
    period.  Enforced by the payables and credit services (OverpaymentError)."""

    DERIVED_STATUS = "derived_status"
    """Invoice and credit period status is a pure function of amounts,
    due date and cancellation.  Enforced by supply_engines.balance_status;
    no API sets it directly."""

    SINGLE_COMPLETION = "single_completion"
    """A goods receipt posts stock exactly once; a payment contributes to
    its invoice at most once.  Enforced by workflow transitions and
    AlreadyCompletedError."""

    ONE_INVOICE_PER_RECEIPT = "one_invoice_per_receipt"
    """At most one non-cancelled invoice per goods receipt.  Enforced by a
    partial unique index and DuplicateInvoiceError."""

    SEQUENCE_MONOTONICITY = "sequence_monotonicity"
    """Document numbers and event sequences are strictly increasing.
    Document numbers come from SequenceService locked counter rows; event
    sequences from the database-allocated ``domain_events`` key."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages at module level.
# Enforced by tests/architecture/test_layer_boundaries.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "supply_engines",
    "supply_config",
    "supply_modules",
)
