"""
Pure domain layer.

Value objects and pure functions with NO dependencies on the ORM, the
database, or I/O (SystemClock excepted).
"""

from supply_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from supply_kernel.domain.events import (
    DomainEvent,
    StatusTransitionEvent,
    StockMovementEvent,
)
from supply_kernel.domain.values import (
    MONEY_DECIMAL_PLACES,
    round_money,
    to_decimal,
    to_money,
    to_stock_quantity,
)
from supply_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "DomainEvent",
    "StatusTransitionEvent",
    "StockMovementEvent",
    "MONEY_DECIMAL_PLACES",
    "round_money",
    "to_decimal",
    "to_money",
    "to_stock_quantity",
    "Guard",
    "Transition",
    "Workflow",
]
