"""
Tests for ORM-level append-only enforcement.

Stock movements and domain event records can be inserted but never
updated or deleted through the ORM.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from supply_kernel.db.immutability import protected_entity_types
from supply_kernel.domain.events import StatusTransitionEvent
from supply_kernel.exceptions import ImmutabilityViolationError
from supply_kernel.models.event_log import DomainEventRecord
from supply_kernel.services.event_publisher import EventPublisher
from supply_modules.inventory.orm import StockMovementModel


@pytest.fixture
def movement(ledger, warehouse_id, product_id, test_actor_id, session):
    ledger.adjust_stock(warehouse_id, product_id, None, 10, test_actor_id)
    return session.execute(select(StockMovementModel)).scalar_one()


@pytest.fixture
def event_record(session):
    EventPublisher(session).record(
        StatusTransitionEvent(
            occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            document_type="purchase_order",
            document_id=uuid4(),
            to_status="draft",
        )
    )
    session.commit()
    return session.execute(select(DomainEventRecord)).scalar_one()


class TestAppendOnly:

    def test_protected_types_registered(self, engine):
        assert {"StockMovement", "DomainEventRecord"} <= set(protected_entity_types())

    def test_movement_update_blocked(self, session, movement):
        movement.delta = 999

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "StockMovement"
        session.rollback()

    def test_movement_delete_blocked(self, session, movement):
        session.delete(movement)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_event_record_update_blocked(self, session, event_record):
        event_record.event_type = "tampered"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_blocked_write_is_logged(self, session, movement, captured_logs):
        session.delete(movement)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "DELETE"
