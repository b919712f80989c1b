"""
Supply Modules.

Stateful orchestration over the Supply Kernel and Engines.
Each module contains:
- Domain models (the nouns, frozen DTOs)
- ORM models (persistence)
- Workflows (state machines), where the documents have a lifecycle
- A service owning the transaction boundary of each operation

Modules:
- Inventory: stock positions, movements, reservations, transfers
- Catalog: price sets and tax rates
- Procurement: purchase orders, goods receipts
- Payables: purchase invoices, supplier payments
- Credit: customer credit accounts, credit periods, credit payments
"""

from supply_modules import (
    catalog,
    credit,
    inventory,
    payables,
    procurement,
)

__all__ = [
    "catalog",
    "credit",
    "inventory",
    "payables",
    "procurement",
]
