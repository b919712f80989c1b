"""
Balance status - the derived status of a payable or receivable document.

Status is never stored as independent truth.  It is a pure function of the
document's amounts, due date, explicit cancellation and the date "now":

    if cancelled:                    CANCELLED
    elif paid >= total:              PAID
    elif paid > 0:                   PARTIAL   (OVERDUE if due_date < as_of)
    elif due_date and due_date < as_of:  OVERDUE
    else:                            PENDING

Services recompute and persist it after every payment mutation; readers
recompute it again with the current date so a stored PARTIAL/PENDING
status can never go stale past the due date.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum

from supply_engines.tracer import traced_engine
from supply_kernel.domain.values import ZERO


class BalanceStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@traced_engine(
    "balance.status",
    "1.0",
    fingerprint_fields=("total_amount", "paid_amount", "due_date", "as_of", "cancelled"),
)
def derive_balance_status(
    total_amount: Decimal,
    paid_amount: Decimal,
    due_date: date | None,
    as_of: date,
    cancelled: bool = False,
) -> BalanceStatus:
    """Derive the status of a document from its financial state."""
    if cancelled:
        return BalanceStatus.CANCELLED
    if paid_amount >= total_amount:
        return BalanceStatus.PAID
    past_due = due_date is not None and due_date < as_of
    if paid_amount > ZERO:
        return BalanceStatus.OVERDUE if past_due else BalanceStatus.PARTIAL
    if past_due:
        return BalanceStatus.OVERDUE
    return BalanceStatus.PENDING


def outstanding(total_amount: Decimal, paid_amount: Decimal) -> Decimal:
    """Remaining balance (total - paid); never computed with clamping."""
    return total_amount - paid_amount
