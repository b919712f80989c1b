"""
BaseService -- common constructor and transaction contract for module services.

Responsibility:
    Every stateful service (InventoryLedger, ProcurementService,
    PayablesService, CreditService, CatalogService) receives a SQLAlchemy
    ``Session`` and a ``Clock`` and owns the transaction boundary of each of
    its public methods through ``_unit_of_work()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - auto_commit=True: a public method commits on success and rolls back
      on any exception before re-raising.  Either every write of the
      operation is persisted or none is.
    - auto_commit=False: the service only flushes; the composing caller owns
      commit/rollback and event publication.  This is how GRN completion
      runs ledger movements inside its own transaction.
    - Domain events are delivered only after a successful commit.

Failure modes:
    - Any exception inside ``_unit_of_work`` propagates unchanged after the
      rollback; rollbacks are logged at WARNING with ``exc_info``.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from supply_kernel.db.engine import begin_snapshot_read
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.domain.events import StatusTransitionEvent
from supply_kernel.exceptions import SupplyKernelError
from supply_kernel.logging_config import LogContext, get_logger
from supply_kernel.services.event_publisher import EventBus, EventPublisher

logger = get_logger("services.base")


class BaseService:
    """
    Abstract base class for module services.

    Contract:
        Subclasses wrap every public mutating method body in
        ``with self._unit_of_work("operation_name", actor_id=...):``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        publisher: EventPublisher | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._publisher = publisher or EventPublisher(session, event_bus)
        self._auto_commit = auto_commit

    @property
    def session(self) -> Session:
        return self._session

    @property
    def publisher(self) -> EventPublisher:
        return self._publisher

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        actor_id: UUID | None = None,
        **context: Any,
    ) -> Iterator[None]:
        with LogContext.bind(actor_id=actor_id, **context):
            try:
                yield
                if self._auto_commit:
                    self._session.commit()
            except Exception as exc:
                if self._auto_commit:
                    self._session.rollback()
                    self._publisher.discard_pending()
                    log = logger.warning if isinstance(exc, SupplyKernelError) else logger.error
                    log(
                        "operation_rolled_back",
                        exc_info=True,
                        extra={"operation": operation},
                    )
                raise
            if self._auto_commit:
                self._publisher.publish_pending()

    def _begin_read_transaction(self) -> None:
        """Open a snapshot read for a query method.  No-op when composed."""
        if self._auto_commit:
            begin_snapshot_read(self._session)

    def _end_read_transaction(self) -> None:
        """
        Finish the read-only transaction opened by a planning query.

        Keyed locks must be taken before a transaction's first statement;
        services that need to read a document to learn which keys to lock
        call this between the read and the lock.  No-op when composed.
        """
        if self._auto_commit and not self._session.new and not self._session.dirty:
            self._session.rollback()

    def _emit_transition(
        self,
        document_type: str,
        document_id: UUID,
        from_status: str | None,
        to_status: str,
        actor_id: UUID | None = None,
    ) -> None:
        self._publisher.record(
            StatusTransitionEvent(
                occurred_at=self._clock.now(),
                document_type=document_type,
                document_id=document_id,
                from_status=from_status,
                to_status=to_status,
            ),
            actor_id=actor_id,
        )
        logger.info(
            "document_status_changed",
            extra={
                "document_type": document_type,
                "document_id": str(document_id),
                "from_status": from_status,
                "to_status": to_status,
            },
        )
