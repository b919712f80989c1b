"""
EventPublisher -- transactional outbox for domain events.

Responsibility:
    Records every domain event in ``domain_events`` inside the caller's
    transaction and, once the caller has committed, hands the events to
    in-process subscribers (the notification / analytics layer).

Architecture position:
    Kernel > Services.  Module services own one publisher each and call
    ``publish_pending()`` right after ``session.commit()`` and
    ``discard_pending()`` right after ``session.rollback()``.

Invariants enforced:
    - An event is delivered only if the state change it describes
      committed.  Events of a rolled-back transaction are dropped.
    - Delivery order equals recording order.
    - Recording takes no shared lock: ``domain_events.sequence`` is
      allocated by the database on insert.
    - A failing subscriber does not prevent delivery to other subscribers
      and does not affect the committed state; the failure is logged.
"""

import threading
from collections.abc import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from supply_kernel.domain.events import DomainEvent, StatusTransitionEvent, StockMovementEvent
from supply_kernel.logging_config import get_logger
from supply_kernel.models.event_log import DomainEventRecord

logger = get_logger("services.event_publisher")

Subscriber = Callable[[DomainEvent], None]


class EventBus:
    """Thread-safe in-process subscriber registry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[str | None, Subscriber]] = []

    def subscribe(self, handler: Subscriber, event_type: str | None = None) -> None:
        """Register ``handler`` for ``event_type`` (None = every event)."""
        with self._lock:
            self._subscribers.append((event_type, handler))

    def unsubscribe(self, handler: Subscriber) -> None:
        with self._lock:
            self._subscribers = [
                (t, h) for (t, h) in self._subscribers if h is not handler
            ]

    def deliver(self, event: DomainEvent) -> None:
        with self._lock:
            targets = [
                h for (t, h) in self._subscribers
                if t is None or t == event.event_type
            ]
        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.error(
                    "event_subscriber_failed",
                    exc_info=True,
                    extra={
                        "event_type": event.event_type,
                        "event_id": str(event.event_id),
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )


def _subject_of(event: DomainEvent) -> tuple[str, str]:
    if isinstance(event, StatusTransitionEvent):
        return event.document_type, str(event.document_id)
    if isinstance(event, StockMovementEvent):
        return "StockPosition", event.stock_position_key
    return type(event).__name__, str(event.event_id)


class EventPublisher:
    """
    Outbox writer bound to one session.

    Contract:
        ``record()`` flushes a DomainEventRecord in the current transaction
        and queues the event.  The owner of the transaction calls
        ``publish_pending()`` after commit or ``discard_pending()`` after
        rollback.
    """

    def __init__(self, session: Session, bus: EventBus | None = None):
        self._session = session
        self._bus = bus or EventBus()
        self._pending: list[DomainEvent] = []

    @property
    def bus(self) -> EventBus:
        return self._bus

    def record(self, event: DomainEvent, actor_id: UUID | None = None) -> None:
        subject_type, subject_id = _subject_of(event)
        record = DomainEventRecord(
            id=event.event_id,
            event_type=event.event_type,
            subject_type=subject_type,
            subject_id=subject_id,
            payload=event.payload(),
            occurred_at=event.occurred_at,
            actor_id=actor_id,
        )
        self._session.add(record)
        self._session.flush()
        self._pending.append(event)

    def publish_pending(self) -> int:
        """Deliver queued events to subscribers. Returns the number delivered."""
        events, self._pending = self._pending, []
        for event in events:
            self._bus.deliver(event)
        if events:
            logger.debug("domain_events_published", extra={"count": len(events)})
        return len(events)

    def discard_pending(self) -> int:
        """Drop queued events after a rollback. Returns the number dropped."""
        dropped = len(self._pending)
        self._pending = []
        if dropped:
            logger.debug("domain_events_discarded", extra={"count": dropped})
        return dropped
