"""
SqlRepository -- SQLAlchemy implementation of the repository contract.

Responsibility:
    Stores the frozen DTOs of each collection in its mapped ORM table and
    translates filter criteria into column expressions.

Architecture position:
    Kernel > DB.  Collections are bound to ORM classes by the caller
    (``erp_modules._orm_registry.default_model_registry()``), so the kernel
    never imports module tables.

Unit of work:
    ``transaction()`` opens one session and binds it to the current context;
    every repository call made inside the block joins that session, and the
    block commits on normal exit or rolls back on exception.  A call made
    outside any block runs in its own short transaction.

Invariants enforced:
    - ``update`` loads the row ``FOR UPDATE`` on backends that support it.
    - Collections in ``IMMUTABLE_COLLECTIONS`` reject ``update``/``delete``
      before any SQL is issued; the ORM listeners in ``db/immutability.py``
      back this up for direct ORM access.
    - ``next_sequence`` goes through ``SequenceService`` (locked counter row).
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import replace
from enum import Enum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from erp_kernel.db.base import Base
from erp_kernel.db.repository import QueryFilter, Repository, _name
from erp_kernel.domain.query import Criterion, Operator, SortSpec
from erp_kernel.exceptions import NotFoundError
from erp_kernel.logging_config import get_logger
from erp_kernel.services.sequence_service import SequenceService

logger = get_logger("db.sql_repository")


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _expression(model: type[Base], criterion: Criterion):
    column = getattr(model, criterion.field)
    value = _plain(criterion.value)

    if criterion.op is Operator.EQ:
        return column.is_(None) if value is None else column == value
    if criterion.op is Operator.IN:
        return column.in_([_plain(v) for v in value])
    if criterion.op is Operator.PREFIX:
        return column.startswith(value, autoescape=True)
    if criterion.op is Operator.GTE:
        return column >= value
    if criterion.op is Operator.LTE:
        return column <= value
    raise ValueError(f"Unsupported operator: {criterion.op}")


class SqlRepository(Repository):
    """
    Repository over a SQLAlchemy session factory.

    Args:
        session_factory: Usually ``erp_kernel.db.engine.get_session_factory()``.
        models: Collection name -> ORM class implementing the DTO contract.
    """

    def __init__(self, session_factory: sessionmaker[Session], models: Mapping[str, type[Base]]):
        self._session_factory = session_factory
        self._models = {_name(name): model for name, model in models.items()}
        self._current: ContextVar[Session | None] = ContextVar(
            f"sql_repository_session_{id(self)}", default=None
        )

    def _model(self, collection: str) -> type[Base]:
        try:
            return self._models[_name(collection)]
        except KeyError:
            raise ValueError(f"No table registered for collection: {collection}") from None

    # -- transactions ---------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        current = self._current.get()
        if current is not None:
            yield current
            return

        session = self._session_factory()
        token = self._current.set(session)
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            self._current.reset(token)
            session.close()

    # -- writes ---------------------------------------------------------------

    def create(self, collection: str, entity: Any) -> Any:
        model = self._model(collection)
        with self.transaction() as session:
            if session.get(model, entity.id) is not None:
                raise ValueError(f"Duplicate id in {_name(collection)}: {entity.id}")
            session.add(model.from_dto(entity))
            session.flush()
        return entity

    def update(self, collection: str, entity_id: str, patch: Mapping[str, Any]) -> Any:
        collection = _name(collection)
        self._guard_mutable(collection, entity_id, "update")
        model = self._model(collection)
        with self.transaction() as session:
            row = session.get(model, entity_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"{collection}/{entity_id}")
            updated = replace(row.to_dto(), **dict(patch))
            row.apply_dto(updated)
            session.flush()
        return updated

    def delete(self, collection: str, entity_id: str) -> bool:
        collection = _name(collection)
        self._guard_mutable(collection, entity_id, "delete")
        model = self._model(collection)
        with self.transaction() as session:
            row = session.get(model, entity_id)
            if row is None:
                return False
            session.delete(row)
            session.flush()
        return True

    def next_sequence(self, name: str) -> int:
        with self.transaction() as session:
            return SequenceService(session).next_value(name)

    # -- reads ----------------------------------------------------------------

    def find_by_id(self, collection: str, entity_id: str) -> Any | None:
        model = self._model(collection)
        with self.transaction() as session:
            row = session.get(model, entity_id)
            return row.to_dto() if row is not None else None

    def _conditions(self, model: type[Base], filter: QueryFilter | None) -> list:
        criteria = filter.criteria() if filter is not None else ()
        return [_expression(model, c) for c in criteria]

    def find(
        self,
        collection: str,
        filter: QueryFilter | None = None,
        *,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Any]:
        model = self._model(collection)
        stmt = select(model).where(*self._conditions(model, filter))
        if sort is not None:
            column = getattr(model, sort.field)
            ordering = column.desc() if sort.descending else column.asc()
            stmt = stmt.order_by(ordering.nulls_last(), model.id)
        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.transaction() as session:
            return [row.to_dto() for row in session.scalars(stmt)]

    def count(self, collection: str, filter: QueryFilter | None = None) -> int:
        model = self._model(collection)
        stmt = (
            select(func.count())
            .select_from(model)
            .where(*self._conditions(model, filter))
        )
        with self.transaction() as session:
            return int(session.execute(stmt).scalar_one())
