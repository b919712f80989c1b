"""
Module: supply_kernel.models.event_log
Responsibility: Durable, append-only record of every outbound domain event
    (status transitions and stock movements).  Rows are written in the same
    transaction as the state change they describe, so the log can never
    disagree with the documents: either both commit or neither does.
Architecture position: Kernel > Models.

Invariants enforced:
    - Append-only (``@append_only``): no UPDATE or DELETE through the ORM.
    - ``sequence`` is allocated by the database (SQLite AUTOINCREMENT,
      PostgreSQL BIGSERIAL) in insert order.  Writers never wait on a shared
      counter row; a rolled-back event leaves a gap, so ordering is strict
      but not dense.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import Base, UUIDString
from supply_kernel.db.immutability import append_only
from supply_kernel.db.types import UTCDateTime


@append_only("DomainEventRecord")
class DomainEventRecord(Base):
    """One emitted domain event."""

    __tablename__ = "domain_events"

    __table_args__ = (
        Index("idx_domain_event_type", "event_type"),
        Index("idx_domain_event_subject", "subject_type", "subject_id"),
        {"sqlite_autoincrement": True},
    )

    # Ordering key and primary key; the event id stays unique for lookups.
    sequence: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True, default=uuid4,
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Document type or "StockPosition"; subject_id is the document id or
    # the stock position key.
    subject_type: Mapped[str] = mapped_column(String(50), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(200), nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<DomainEventRecord #{self.sequence} {self.event_type} "
            f"{self.subject_type}:{self.subject_id}>"
        )
