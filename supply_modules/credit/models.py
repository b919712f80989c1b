"""
Credit Domain Models.

Customer credit accounts, the credit periods opened against them, and the
payments that settle a period.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from supply_engines.balance_status import BalanceStatus
from supply_kernel.domain.values import ZERO


class CreditPeriodStatus(Enum):
    """Credit period states, derived from amounts and the due date."""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"

    @classmethod
    def from_balance(cls, status: BalanceStatus) -> "CreditPeriodStatus":
        if status == BalanceStatus.PENDING:
            return cls.UNPAID
        return cls(status.value)


class CreditPaymentStatus(Enum):
    COMPLETED = "completed"
    REVERSED = "reversed"


@dataclass(frozen=True)
class CreditAccount:
    """A customer's credit line."""
    id: UUID
    customer_id: UUID
    credit_limit: Decimal
    current_credit: Decimal
    credit_period_days: int

    @property
    def available_credit(self) -> Decimal:
        return self.credit_limit - self.current_credit


@dataclass(frozen=True)
class CreditPeriod:
    """Credit extended to a customer for one sale, due on ``due_date``."""
    id: UUID
    period_number: str
    customer_id: UUID
    start_date: date
    due_date: date
    total_amount: Decimal
    paid_amount: Decimal
    status: CreditPeriodStatus
    sales_order_id: UUID | None = None
    description: str | None = None

    @property
    def balance(self) -> Decimal:
        return self.total_amount - self.paid_amount


@dataclass(frozen=True)
class CreditPayment:
    """A customer payment against one credit period."""
    id: UUID
    period_id: UUID
    customer_id: UUID
    amount: Decimal
    method: str
    payment_date: date
    status: CreditPaymentStatus
    reference: str | None = None
    idempotency_key: str | None = None
    reversal_reason: str | None = None
    reversed_at: datetime | None = None


@dataclass(frozen=True)
class AccountSummary:
    """Credit position of one customer."""
    customer_id: UUID
    credit_limit: Decimal
    current_credit: Decimal
    available_credit: Decimal
    open_period_count: int = 0
    overdue_period_count: int = 0
    overdue_amount: Decimal = ZERO
