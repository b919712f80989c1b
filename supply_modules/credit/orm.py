"""
Module: supply_modules.credit.orm
Responsibility: SQLAlchemy ORM persistence models for customer credit
    accounts, credit periods and credit payments.

Architecture position: Modules > Credit > ORM.  Inherits from TrackedBase
    (supply_kernel.db.base).  Customers and sales orders are referenced by
    UUID only.

Invariants enforced:
    - One credit account per customer (unique customer_id).
    - period_number and idempotency_key are unique.
    - ``current_credit`` equals the sum of open period balances; it is only
      written by CreditService together with the period it changes.
    - ``version`` is the optimistic concurrency counter of accounts and
      periods.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import TrackedBase
from supply_kernel.db.types import Money, UTCDateTime


class CustomerCreditAccountModel(TrackedBase):
    """
    ORM model for a customer credit account.

    Maps to: supply_modules.credit.models.CreditAccount.
    """

    __tablename__ = "customer_credit_accounts"

    customer_id: Mapped[UUID] = mapped_column(nullable=False, unique=True)
    credit_limit: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    current_credit: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    credit_period_days: Mapped[int] = mapped_column(nullable=False)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        from supply_modules.credit.models import CreditAccount
        return CreditAccount(
            id=self.id,
            customer_id=self.customer_id,
            credit_limit=self.credit_limit,
            current_credit=self.current_credit,
            credit_period_days=self.credit_period_days,
        )


class CreditPeriodModel(TrackedBase):
    """
    ORM model for a credit period.

    Maps to: supply_modules.credit.models.CreditPeriod.
    """

    __tablename__ = "credit_periods"

    __table_args__ = (
        Index("idx_credit_period_customer", "customer_id"),
        Index("idx_credit_period_sales_order", "sales_order_id"),
    )

    period_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    sales_order_id: Mapped[UUID | None] = mapped_column(nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="unpaid")

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def derived_status(self, as_of: date):
        from supply_engines.balance_status import derive_balance_status
        from supply_modules.credit.models import CreditPeriodStatus
        return CreditPeriodStatus.from_balance(
            derive_balance_status(self.total_amount, self.paid_amount, self.due_date, as_of)
        )

    def to_dto(self, as_of: date | None = None):
        from supply_modules.credit.models import CreditPeriod, CreditPeriodStatus
        status = (
            self.derived_status(as_of) if as_of is not None
            else CreditPeriodStatus(self.status)
        )
        return CreditPeriod(
            id=self.id,
            period_number=self.period_number,
            customer_id=self.customer_id,
            start_date=self.start_date,
            due_date=self.due_date,
            total_amount=self.total_amount,
            paid_amount=self.paid_amount,
            status=status,
            sales_order_id=self.sales_order_id,
            description=self.description,
        )


class CreditPaymentModel(TrackedBase):
    """
    ORM model for a credit payment.

    Maps to: supply_modules.credit.models.CreditPayment.
    """

    __tablename__ = "credit_payments"

    __table_args__ = (
        Index("idx_credit_payment_period", "period_id"),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("credit_periods.id"), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="completed")

    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True, unique=True)
    request_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self):
        from supply_modules.credit.models import CreditPayment, CreditPaymentStatus
        return CreditPayment(
            id=self.id,
            period_id=self.period_id,
            customer_id=self.customer_id,
            amount=self.amount,
            method=self.method,
            payment_date=self.payment_date,
            status=CreditPaymentStatus(self.status),
            reference=self.reference,
            idempotency_key=self.idempotency_key,
            reversal_reason=self.reversal_reason,
            reversed_at=self.reversed_at,
        )
