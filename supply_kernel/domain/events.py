"""
Domain events -- outbound notifications of state changes.

Responsibility:
    Immutable descriptions of what happened, produced by services and
    consumed by the notification / analytics layer outside the core.  Two
    shapes exist: document status transitions and stock movements.

Architecture position:
    Kernel > Domain -- pure value objects.  Recording and delivery live in
    ``supply_kernel.services.event_publisher``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4


@dataclass(frozen=True)
class DomainEvent:
    """Common envelope for every outbound event."""

    event_type: ClassVar[str] = "domain_event"

    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4, kw_only=True)

    def payload(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class StatusTransitionEvent(DomainEvent):
    """
    A document moved from one status to another.

    ``from_status`` is None when the document was just created.
    """

    event_type: ClassVar[str] = "document.status_changed"

    document_type: str = ""
    document_id: UUID | None = None
    from_status: str | None = None
    to_status: str = ""

    def payload(self) -> dict[str, Any]:
        return {
            "document_type": self.document_type,
            "document_id": str(self.document_id),
            "from_status": self.from_status,
            "to_status": self.to_status,
            "timestamp": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class StockMovementEvent(DomainEvent):
    """A movement was written against a stock position."""

    event_type: ClassVar[str] = "stock.moved"

    stock_position_key: str = ""
    delta: int = 0
    reserved_delta: int = 0
    reason: str = ""
    reference_document: str | None = None

    def payload(self) -> dict[str, Any]:
        return {
            "stock_position_key": self.stock_position_key,
            "delta": self.delta,
            "reserved_delta": self.reserved_delta,
            "reason": self.reason,
            "reference_document": self.reference_document,
            "timestamp": self.occurred_at.isoformat(),
        }
