"""
SequenceService -- monotonic counters and document numbers.

Responsibility:
    Hands out strictly increasing integers per named counter, and formats
    the human-readable monthly document numbers built on them
    (``ORD-202401-0001``, ``PO-202401-0001``).

Architecture position:
    Kernel > Services.  ``SequenceService`` is the SQL implementation behind
    ``SqlRepository.next_sequence``; ``DocumentNumberAllocator`` works over
    any ``Repository``.

Invariants enforced:
    - The next value comes from a locked counter row (``SELECT ... FOR
      UPDATE``), never from counting existing documents.  Two concurrent
      creates in the same month cannot receive the same number.
    - Counters are scoped per prefix and calendar month: the counter name
      is the number prefix itself (``ORD-202401``).

Failure modes:
    - IntegrityError on concurrent first use of a counter is absorbed by a
      savepoint rollback and re-read.
"""

from datetime import datetime

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from erp_kernel.db.base import Base
from erp_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence with its current value.  ``id`` mirrors
    ``name`` so the row can be fetched by primary key.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence numbers on a SQLAlchemy session.

    Contract:
        Returns the next strictly monotonic value for a name.  The increment
        becomes visible when the caller's transaction commits; a rollback
        returns the value.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously returned for ``sequence_name``.
        """
        counter = self._locked(sequence_name)
        if counter is None:
            counter = self._create_counter(sequence_name)

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def _create_counter(self, sequence_name: str) -> SequenceCounter:
        """
        Insert a zeroed counter row.

        On PostgreSQL a concurrent first use can collide on the unique name;
        the insert runs in a savepoint so the loser re-reads the winner's
        row.  SQLite serialises writers at the database level, so no
        savepoint is needed there.
        """
        counter = SequenceCounter(id=sequence_name, name=sequence_name, current_value=0)
        if self._session.get_bind().dialect.name != "postgresql":
            self._session.add(counter)
            self._session.flush()
            return counter

        savepoint = self._session.begin_nested()
        try:
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            counter = self._locked(sequence_name)
            if counter is None:
                raise
            return counter

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None


def document_prefix(prefix: str, when: datetime) -> str:
    """``ORD`` + 2024-01-15 -> ``ORD-202401``."""
    return f"{prefix}-{when.year}{when.month:02d}"


def format_document_number(prefix: str, when: datetime, sequence: int, width: int = 4) -> str:
    """``ORD`` + 2024-01-15 + 7 -> ``ORD-202401-0007``."""
    return f"{document_prefix(prefix, when)}-{sequence:0{width}d}"


class DocumentNumberAllocator:
    """
    Monthly document numbers over any repository's atomic counter.

    Usage::

        numbers = DocumentNumberAllocator(repository, "ORD")
        numbers.allocate(clock.now())   # "ORD-202401-0001"
    """

    def __init__(self, repository, prefix: str, width: int = 4):
        self._repository = repository
        self._prefix = prefix
        self._width = width

    def allocate(self, when: datetime) -> str:
        counter_name = document_prefix(self._prefix, when)
        value = self._repository.next_sequence(counter_name)
        number = format_document_number(self._prefix, when, value, self._width)
        logger.info(
            "document_number_allocated",
            extra={"counter": counter_name, "value": value, "document_number": number},
        )
        return number
