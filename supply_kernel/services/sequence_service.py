"""
SequenceService -- gap-free counters for document numbers.

Responsibility:
    Hands out the next integer of a named counter.  Module services use one
    counter per document prefix and year to print numbers such as ``PO-2024-001``
    or ``GRN-2024-014``.

Architecture position:
    Kernel > Services.  Runs inside the caller's transaction and never
    commits.

Invariants enforced:
    - The counter row is read ``FOR UPDATE`` and incremented in place; the
      next number is never derived from ``MAX(...)`` over documents.
    - A rolled-back transaction gives its number back, so committed
      numbers have no gaps.
    - Document numbering restarts at 1 for each prefix every calendar year.

Failure modes:
    - Two transactions creating the same counter: the loser's insert fails
      inside a savepoint and it continues from the winner's row.
"""

from datetime import date

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from supply_kernel.db.base import Base
from supply_kernel.logging_config import get_logger

logger = get_logger("services.sequence")

DOCUMENT_NUMBER_WIDTH = 3


class SequenceCounter(Base):
    """Last value handed out for one named counter."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def document_series(prefix: str, year: int) -> str:
    """Counter name backing ``prefix`` numbers issued in ``year``."""
    return f"{prefix}-{year}"


class SequenceService:
    """Allocates counter values inside the caller's transaction."""

    def __init__(self, session: Session):
        self._session = session

    def _lock_counter(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _start_counter(self, name: str) -> SequenceCounter | None:
        """Insert a fresh counter at zero; None if another writer won."""
        savepoint = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=0)
        self._session.add(counter)
        try:
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_create_race", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return counter

    def next_value(self, sequence_name: str) -> int:
        """Increment ``sequence_name`` and return the new value (first is 1)."""
        counter = self._lock_counter(sequence_name)
        if counter is None:
            counter = self._start_counter(sequence_name) or self._lock_counter(sequence_name)
            if counter is None:
                raise RuntimeError(f"Sequence counter {sequence_name!r} vanished after creation")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a counter never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def next_document_number(self, prefix: str, on_date: date) -> str:
        """
        Allocate ``{prefix}-{YYYY}-{NNN}`` for a document dated ``on_date``.

        The counter part is zero-padded to three digits and grows past them.
        """
        value = self.next_value(document_series(prefix, on_date.year))
        return f"{prefix}-{on_date.year}-{value:0{DOCUMENT_NUMBER_WIDTH}d}"
