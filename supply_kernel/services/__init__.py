"""Kernel services - imperative shell infrastructure."""

from supply_kernel.services.base import BaseService
from supply_kernel.services.event_publisher import EventBus, EventPublisher
from supply_kernel.services.keyed_locks import (
    DOCUMENT_LOCKS,
    STOCK_LOCKS,
    KeyedLockRegistry,
)
from supply_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "BaseService",
    "EventBus",
    "EventPublisher",
    "DOCUMENT_LOCKS",
    "STOCK_LOCKS",
    "KeyedLockRegistry",
    "SequenceCounter",
    "SequenceService",
]
