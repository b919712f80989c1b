"""
Payables Module (``supply_modules.payables``).

Responsibility
--------------
Purchase invoices and supplier payments.  Invoice status is derived from
total, paid amount, due date and explicit cancellation; payments move
money onto and off the invoice as they enter and leave ``completed``.

Invariants enforced
-------------------
* ``0 <= paid_amount <= total_amount`` on every invoice.
* At most one non-cancelled invoice per goods receipt.
* Idempotency keys make payment creation safe to retry.
"""

from supply_modules.payables.models import (
    InvoiceLine,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    PurchaseInvoice,
    SupplierBalance,
    SupplierPayment,
)
from supply_modules.payables.service import PayablesService
from supply_modules.payables.workflows import PAYMENT_WORKFLOW

__all__ = [
    "InvoiceLine",
    "InvoiceStatus",
    "PAYMENT_WORKFLOW",
    "PayablesService",
    "PaymentMethod",
    "PaymentStatus",
    "PurchaseInvoice",
    "SupplierBalance",
    "SupplierPayment",
]
