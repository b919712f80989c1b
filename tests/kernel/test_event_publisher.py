"""
Tests for the domain event outbox.

Validates:
- Events are recorded in domain_events inside the caller's transaction
- Delivery happens only after commit; rollback discards
- A failing subscriber does not stop delivery to the others
- Event ordering comes from the database key, not a locked counter row
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select

from supply_kernel.domain.events import StatusTransitionEvent, StockMovementEvent
from supply_kernel.models.event_log import DomainEventRecord
from supply_kernel.services.event_publisher import EventBus, EventPublisher
from supply_kernel.services.sequence_service import SequenceCounter

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _transition(to_status="submitted"):
    return StatusTransitionEvent(
        occurred_at=NOW,
        document_type="purchase_order",
        document_id=uuid4(),
        from_status="draft",
        to_status=to_status,
    )


class TestEventBus:

    def test_type_filtered_subscription(self):
        bus = EventBus()
        moves, everything = [], []
        bus.subscribe(moves.append, event_type=StockMovementEvent.event_type)
        bus.subscribe(everything.append)

        bus.deliver(_transition())
        bus.deliver(StockMovementEvent(occurred_at=NOW, stock_position_key="w:p:-", delta=5))

        assert len(moves) == 1
        assert len(everything) == 2

    def test_failing_subscriber_is_isolated(self, captured_logs):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("subscriber down")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        bus.deliver(_transition())

        assert len(received) == 1
        assert any(r["message"] == "event_subscriber_failed" for r in captured_logs())

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(received.append)
        bus.unsubscribe(received.append)
        bus.deliver(_transition())

        assert received == []


class TestEventPublisher:

    def test_record_writes_outbox_row(self, session, test_actor_id):
        publisher = EventPublisher(session)
        event = _transition()

        publisher.record(event, actor_id=test_actor_id)
        session.commit()

        row = session.execute(select(DomainEventRecord)).scalar_one()
        assert row.id == event.event_id
        assert row.event_type == "document.status_changed"
        assert row.subject_type == "purchase_order"
        assert row.subject_id == str(event.document_id)
        assert row.payload["to_status"] == "submitted"
        assert row.sequence == 1

    def test_sequences_increase(self, session):
        publisher = EventPublisher(session)
        publisher.record(_transition("submitted"))
        publisher.record(_transition("cancelled"))
        session.commit()

        sequences = session.execute(
            select(DomainEventRecord.sequence).order_by(DomainEventRecord.sequence)
        ).scalars().all()
        assert sequences == [1, 2]

    def test_recording_takes_no_counter_row(self, session):
        publisher = EventPublisher(session)
        publisher.record(_transition())
        session.commit()

        assert session.execute(select(SequenceCounter)).first() is None

    def test_order_follows_inserts_across_publishers(self, session):
        first, second = EventPublisher(session), EventPublisher(session)
        events = [_transition("submitted"), _transition("approved"), _transition("cancelled")]
        first.record(events[0])
        second.record(events[1])
        first.record(events[2])
        session.commit()

        ids = session.execute(
            select(DomainEventRecord.id).order_by(DomainEventRecord.sequence)
        ).scalars().all()
        assert ids == [e.event_id for e in events]

    def test_publish_after_commit(self, session, event_bus, published_events):
        publisher = EventPublisher(session, event_bus)
        publisher.record(_transition())

        assert published_events == []
        session.commit()
        assert publisher.publish_pending() == 1
        assert len(published_events) == 1
        assert publisher.publish_pending() == 0

    def test_discard_after_rollback(self, session, event_bus, published_events):
        publisher = EventPublisher(session, event_bus)
        publisher.record(_transition())
        session.rollback()

        assert publisher.discard_pending() == 1
        assert publisher.publish_pending() == 0
        assert published_events == []
        assert session.execute(select(DomainEventRecord)).first() is None

    def test_stock_movement_subject(self, session):
        publisher = EventPublisher(session)
        publisher.record(
            StockMovementEvent(occurred_at=NOW, stock_position_key="w:p:-", delta=8, reason="goods-receipt")
        )
        session.commit()

        row = session.execute(select(DomainEventRecord)).scalar_one()
        assert row.subject_type == "StockPosition"
        assert row.subject_id == "w:p:-"
        assert row.payload["delta"] == 8
