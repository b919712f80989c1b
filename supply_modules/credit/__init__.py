"""
Credit Module (``supply_modules.credit``).

Responsibility
--------------
Customer credit tracking, the sales-side analogue of payables: credit
limits, credit periods opened for credit sales, and payments settling
them.  Period status is derived by the same balance-status engine as
invoices (pending is reported as unpaid).
"""

from supply_modules.credit.models import (
    AccountSummary,
    CreditAccount,
    CreditPayment,
    CreditPaymentStatus,
    CreditPeriod,
    CreditPeriodStatus,
)
from supply_modules.credit.service import CreditService

__all__ = [
    "AccountSummary",
    "CreditAccount",
    "CreditPayment",
    "CreditPaymentStatus",
    "CreditPeriod",
    "CreditPeriodStatus",
    "CreditService",
]
