"""
Credit Module Service (``supply_modules.credit.service``).

Responsibility
--------------
Sales-side balance tracking: a customer's credit limit, the credit periods
opened for credit sales, and the payments that settle them.  Mirrors the
payables balance rules: nothing is clamped and status is derived.

Invariants
----------
- ``current_credit <= credit_limit`` whenever new credit is extended.  A
  payment reversal may leave it above a limit lowered in the meantime.
- ``current_credit`` equals the sum of period balances of the customer.
- ``0 <= paid_amount <= total_amount`` for every period.
- Writers of one customer's account are serialized on its document key.

Failure Modes
-------------
- ``CreditLimitExceededError``: new credit above the available limit.
- ``OverpaymentError``: payment above the period balance.
- ``IdempotencyConflictError``: idempotency key reused with another payload.
- ``InvalidTransitionError``: reversing a reversed payment.
- ``NotFoundError``: unknown customer account, period or payment.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supply_config.schema import CreditSettings
from supply_kernel.domain.clock import Clock
from supply_kernel.domain.values import ZERO, to_choice, to_money, to_positive_money
from supply_kernel.exceptions import (
    CreditLimitExceededError,
    IdempotencyConflictError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    OverpaymentError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.services.base import BaseService
from supply_kernel.services.event_publisher import EventBus, EventPublisher
from supply_kernel.services.keyed_locks import DOCUMENT_LOCKS
from supply_kernel.services.sequence_service import SequenceService
from supply_kernel.utils.idempotency import payload_fingerprint
from supply_modules.credit.models import (
    AccountSummary,
    CreditAccount,
    CreditPayment,
    CreditPaymentStatus,
    CreditPeriod,
    CreditPeriodStatus,
)
from supply_modules.credit.orm import (
    CreditPaymentModel,
    CreditPeriodModel,
    CustomerCreditAccountModel,
)

logger = get_logger("modules.credit.service")

PERIOD_DOCUMENT_TYPE = "credit_period"
PAYMENT_DOCUMENT_TYPE = "credit_payment"


def account_lock_key(customer_id: UUID) -> str:
    return f"credit_account:{customer_id}"


class CreditService(BaseService):
    """Tracks customer credit limits, credit periods and their settlement."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CreditSettings | None = None,
        event_bus: EventBus | None = None,
        publisher: EventPublisher | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, event_bus, publisher, auto_commit)
        self._config = config or CreditSettings.with_defaults()
        self._sequences = SequenceService(session)

    # =========================================================================
    # Loading
    # =========================================================================

    def _load_account(self, customer_id: UUID, for_update: bool = False) -> CustomerCreditAccountModel:
        stmt = select(CustomerCreditAccountModel).where(
            CustomerCreditAccountModel.customer_id == customer_id
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise NotFoundError("CreditAccount", customer_id)
        return model

    def _load_period(self, period_id: UUID, for_update: bool = False) -> CreditPeriodModel:
        stmt = select(CreditPeriodModel).where(CreditPeriodModel.id == period_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise NotFoundError("CreditPeriod", period_id)
        return model

    def _load_payment(self, payment_id: UUID, for_update: bool = False) -> CreditPaymentModel:
        stmt = select(CreditPaymentModel).where(CreditPaymentModel.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise NotFoundError("CreditPayment", payment_id)
        return model

    def _apply_status(self, period: CreditPeriodModel, actor_id: UUID) -> None:
        derived = period.derived_status(self._clock.today()).value
        if derived == period.status:
            return
        previous = period.status
        period.status = derived
        period.updated_by_id = actor_id
        self._emit_transition(PERIOD_DOCUMENT_TYPE, period.id, previous, derived, actor_id)

    # =========================================================================
    # Accounts
    # =========================================================================

    def open_account(
        self,
        customer_id: UUID,
        credit_limit: Decimal | int | str,
        actor_id: UUID,
        credit_period_days: int | None = None,
    ) -> CreditAccount:
        """Open a credit account; one per customer."""
        limit = to_money(credit_limit, "credit_limit")
        days = self._config.default_credit_days if credit_period_days is None else credit_period_days
        if days < 0:
            raise InvalidInputError("credit_period_days", days, "must be >= 0")

        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([account_lock_key(customer_id)]):
            with self._unit_of_work("open_credit_account", actor_id):
                account = CustomerCreditAccountModel(
                    customer_id=customer_id,
                    credit_limit=limit,
                    current_credit=ZERO,
                    credit_period_days=days,
                    created_by_id=actor_id,
                )
                savepoint = self._session.begin_nested()
                try:
                    self._session.add(account)
                    self._session.flush()
                    savepoint.commit()
                except IntegrityError:
                    savepoint.rollback()
                    raise InvalidInputError(
                        "customer_id", customer_id, "already has a credit account",
                    ) from None
                logger.info(
                    "credit_account_opened",
                    extra={"customer_id": str(customer_id), "credit_limit": str(limit)},
                )
                return account.to_dto()

    def set_credit_limit(
        self,
        customer_id: UUID,
        credit_limit: Decimal | int | str,
        actor_id: UUID,
    ) -> CreditAccount:
        """
        Change a customer's credit limit.

        Raises:
            InvalidInputError: the new limit is below the credit already in use.
        """
        limit = to_money(credit_limit, "credit_limit")
        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([account_lock_key(customer_id)]):
            with self._unit_of_work("set_credit_limit", actor_id):
                account = self._load_account(customer_id, for_update=True)
                if limit < account.current_credit:
                    raise InvalidInputError(
                        "credit_limit", limit,
                        f"is below the credit in use ({account.current_credit})",
                    )
                previous = account.credit_limit
                account.credit_limit = limit
                account.updated_by_id = actor_id
                self._session.flush()
                logger.info(
                    "credit_limit_changed",
                    extra={
                        "customer_id": str(customer_id),
                        "previous_limit": str(previous),
                        "credit_limit": str(limit),
                    },
                )
                return account.to_dto()

    # =========================================================================
    # Credit periods
    # =========================================================================

    def open_credit_period(
        self,
        customer_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        start_date: date | None = None,
        due_date: date | None = None,
        sales_order_id: UUID | None = None,
        description: str | None = None,
    ) -> CreditPeriod:
        """
        Extend credit to a customer for one sale.

        The due date defaults to the start date plus the account's credit
        period days.

        Raises:
            CreditLimitExceededError: current credit + amount > limit.
        """
        value = to_positive_money(amount, "amount")
        starts = start_date or self._clock.today()
        if due_date is not None and due_date < starts:
            raise InvalidInputError("due_date", due_date, "is before the start date")

        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([account_lock_key(customer_id)]):
            with self._unit_of_work("open_credit_period", actor_id):
                account = self._load_account(customer_id, for_update=True)
                available = account.credit_limit - account.current_credit
                if value > available:
                    logger.warning(
                        "credit_limit_exceeded",
                        extra={
                            "customer_id": str(customer_id),
                            "requested": str(value),
                            "available": str(available),
                        },
                    )
                    raise CreditLimitExceededError(customer_id, value, available)

                period = CreditPeriodModel(
                    period_number=self._sequences.next_document_number(
                        self._config.period_number_prefix, starts,
                    ),
                    customer_id=customer_id,
                    sales_order_id=sales_order_id,
                    description=description,
                    start_date=starts,
                    due_date=due_date or starts + timedelta(days=account.credit_period_days),
                    total_amount=value,
                    paid_amount=ZERO,
                    created_by_id=actor_id,
                )
                period.status = period.derived_status(self._clock.today()).value
                account.current_credit = account.current_credit + value
                account.updated_by_id = actor_id
                self._session.add(period)
                self._session.flush()

                self._emit_transition(PERIOD_DOCUMENT_TYPE, period.id, None, period.status, actor_id)
                logger.info(
                    "credit_period_opened",
                    extra={
                        "period_id": str(period.id),
                        "period_number": period.period_number,
                        "customer_id": str(customer_id),
                        "amount": str(value),
                        "current_credit": str(account.current_credit),
                    },
                )
                return period.to_dto()

    # =========================================================================
    # Payments
    # =========================================================================

    def record_credit_payment(
        self,
        period_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        method: str = "cash",
        payment_date: date | None = None,
        reference: str | None = None,
        idempotency_key: str | None = None,
    ) -> CreditPayment:
        """
        Record a payment against a credit period.

        Raises:
            OverpaymentError: amount exceeds the period balance.  The amount
                is never clamped to the balance.
            IdempotencyConflictError: key reused with a different payload.
        """
        value = to_positive_money(amount, "amount")
        if not method:
            raise InvalidInputError("method", method, "must not be empty")
        fingerprint = payload_fingerprint({
            "period_id": period_id,
            "amount": value,
            "method": method,
            "payment_date": payment_date,
            "reference": reference,
        })

        planned = self._load_period(period_id)
        customer_id = planned.customer_id
        self._end_read_transaction()

        lock_keys = [account_lock_key(customer_id)]
        if idempotency_key is not None:
            lock_keys.append(f"credit-payment-key:{idempotency_key}")
        with DOCUMENT_LOCKS.hold(lock_keys):
            with self._unit_of_work("record_credit_payment", actor_id):
                if idempotency_key is not None:
                    existing = self._session.execute(
                        select(CreditPaymentModel).where(
                            CreditPaymentModel.idempotency_key == idempotency_key
                        )
                    ).scalar_one_or_none()
                    if existing is not None:
                        if existing.request_fingerprint != fingerprint:
                            logger.warning(
                                "idempotency_conflict",
                                extra={
                                    "idempotency_key": idempotency_key,
                                    "payment_id": str(existing.id),
                                },
                            )
                            raise IdempotencyConflictError(idempotency_key, existing.id)
                        return existing.to_dto()

                period = self._load_period(period_id, for_update=True)
                account = self._load_account(customer_id, for_update=True)
                balance = period.total_amount - period.paid_amount
                if value > balance:
                    logger.warning(
                        "overpayment_rejected",
                        extra={
                            "period_id": str(period_id),
                            "amount": str(value),
                            "balance": str(balance),
                        },
                    )
                    raise OverpaymentError(PERIOD_DOCUMENT_TYPE, period_id, value, balance)

                payment = CreditPaymentModel(
                    period_id=period_id,
                    customer_id=customer_id,
                    amount=value,
                    method=method,
                    reference=reference,
                    payment_date=payment_date or self._clock.today(),
                    status=CreditPaymentStatus.COMPLETED.value,
                    idempotency_key=idempotency_key,
                    request_fingerprint=fingerprint if idempotency_key is not None else None,
                    created_by_id=actor_id,
                )
                period.paid_amount = period.paid_amount + value
                period.updated_by_id = actor_id
                account.current_credit = account.current_credit - value
                account.updated_by_id = actor_id
                self._session.add(payment)
                self._apply_status(period, actor_id)
                self._session.flush()

                logger.info(
                    "credit_payment_recorded",
                    extra={
                        "payment_id": str(payment.id),
                        "period_id": str(period_id),
                        "amount": str(value),
                        "period_status": period.status,
                        "current_credit": str(account.current_credit),
                    },
                )
                return payment.to_dto()

    def reverse_credit_payment(
        self,
        payment_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> CreditPayment:
        """
        Reverse a completed payment: the period balance and the customer's
        credit in use go back up by its amount.

        A reversal is allowed even when it takes ``current_credit`` above a
        credit limit lowered since the payment.  The amount was already
        owed, so refusing would leave the balances wrong.  The account then
        shows negative available credit, a ``credit_limit_exceeded_by_reversal``
        warning is logged, and new credit periods are refused until the
        balance is paid down.
        """
        planned = self._load_payment(payment_id)
        customer_id = planned.customer_id
        self._end_read_transaction()

        with DOCUMENT_LOCKS.hold([account_lock_key(customer_id)]):
            with self._unit_of_work("reverse_credit_payment", actor_id):
                payment = self._load_payment(payment_id, for_update=True)
                if payment.status != CreditPaymentStatus.COMPLETED.value:
                    raise InvalidTransitionError(
                        PAYMENT_DOCUMENT_TYPE, payment_id, payment.status, "reverse",
                    )
                period = self._load_period(payment.period_id, for_update=True)
                account = self._load_account(customer_id, for_update=True)

                payment.status = CreditPaymentStatus.REVERSED.value
                payment.reversal_reason = reason
                payment.reversed_at = self._clock.now()
                payment.updated_by_id = actor_id
                period.paid_amount = period.paid_amount - payment.amount
                period.updated_by_id = actor_id
                account.current_credit = account.current_credit + payment.amount
                account.updated_by_id = actor_id
                if account.current_credit > account.credit_limit:
                    logger.warning(
                        "credit_limit_exceeded_by_reversal",
                        extra={
                            "customer_id": str(customer_id),
                            "credit_limit": str(account.credit_limit),
                            "current_credit": str(account.current_credit),
                        },
                    )
                self._emit_transition(
                    PAYMENT_DOCUMENT_TYPE, payment_id,
                    CreditPaymentStatus.COMPLETED.value, payment.status, actor_id,
                )
                self._apply_status(period, actor_id)
                self._session.flush()

                logger.info(
                    "credit_payment_reversed",
                    extra={
                        "payment_id": str(payment_id),
                        "period_id": str(period.id),
                        "amount": str(payment.amount),
                        "reason": reason,
                    },
                )
                return payment.to_dto()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_account(self, customer_id: UUID) -> CreditAccount:
        self._begin_read_transaction()
        try:
            return self._load_account(customer_id).to_dto()
        finally:
            self._end_read_transaction()

    def get_period(self, period_id: UUID) -> CreditPeriod:
        """Period with its status derived as of today."""
        self._begin_read_transaction()
        try:
            return self._load_period(period_id).to_dto(self._clock.today())
        finally:
            self._end_read_transaction()

    def list_periods(
        self,
        customer_id: UUID,
        status: CreditPeriodStatus | str | None = None,
    ) -> list[CreditPeriod]:
        wanted = to_choice(CreditPeriodStatus, status, "status") if status is not None else None
        today = self._clock.today()
        self._begin_read_transaction()
        periods = [
            m.to_dto(today)
            for m in self._session.execute(
                select(CreditPeriodModel)
                .where(CreditPeriodModel.customer_id == customer_id)
                .order_by(CreditPeriodModel.start_date, CreditPeriodModel.period_number)
            ).scalars()
        ]
        self._end_read_transaction()
        if wanted is not None:
            periods = [p for p in periods if p.status == wanted]
        return periods

    def list_payments(self, period_id: UUID) -> list[CreditPayment]:
        self._begin_read_transaction()
        payments = [
            m.to_dto()
            for m in self._session.execute(
                select(CreditPaymentModel)
                .where(CreditPaymentModel.period_id == period_id)
                .order_by(CreditPaymentModel.payment_date, CreditPaymentModel.created_at)
            ).scalars()
        ]
        self._end_read_transaction()
        return payments

    def account_summary(self, customer_id: UUID) -> AccountSummary:
        account = self.get_account(customer_id)
        periods = self.list_periods(customer_id)
        open_periods = [p for p in periods if p.status != CreditPeriodStatus.PAID]
        overdue = [p for p in open_periods if p.status == CreditPeriodStatus.OVERDUE]
        return AccountSummary(
            customer_id=customer_id,
            credit_limit=account.credit_limit,
            current_credit=account.current_credit,
            available_credit=account.available_credit,
            open_period_count=len(open_periods),
            overdue_period_count=len(overdue),
            overdue_amount=sum((p.balance for p in overdue), ZERO),
        )
