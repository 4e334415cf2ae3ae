"""
Module: erp_kernel.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models.  Provides
    the string primary key convention, the type annotation map for consistent
    column types, and the DTO conversion contract used by ``SqlRepository``.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Decimal precision: Python ``Decimal`` maps to Numeric(38, 9).  Money is
      never stored as float.
    - Timestamps are timezone-aware on write and re-attached to UTC on read
      (SQLite drops tzinfo).

Conversion contract:
    Every mapped model implements ``to_dto()``, ``from_dto(dto)`` and
    ``apply_dto(dto)``.  The repository deals only in frozen DTOs; ORM
    instances never leave the persistence layer.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar

from sqlalchemy import JSON, BigInteger, Date, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - ``id`` is a String(64) primary key supplied by the caller (DTO id).
        - Decimal maps to Numeric(38, 9).
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        int: BigInteger,
        dict[str, Any]: JSON,
    }

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    def to_dto(self) -> Any:
        raise NotImplementedError

    @classmethod
    def from_dto(cls, dto: Any) -> "Base":
        raise NotImplementedError

    def apply_dto(self, dto: Any) -> None:
        """Copy every mapped field from ``dto`` onto this row."""
        fresh = self.from_dto(dto)
        for column in self.__table__.columns:
            if column.key != "id":
                setattr(self, column.key, getattr(fresh, column.key))


def as_utc(value: datetime | None) -> datetime | None:
    """Re-attach UTC to naive datetimes read back from the store."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def as_decimal(value: Any) -> Decimal:
    """Normalise Numeric read-backs (driver may hand back float or str)."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
