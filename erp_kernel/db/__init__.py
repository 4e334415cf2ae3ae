"""Database layer - engine, declarative base, repository contract."""

from erp_kernel.db.base import Base
from erp_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from erp_kernel.db.repository import Collection, InMemoryRepository, Repository

__all__ = [
    "Base",
    "Collection",
    "InMemoryRepository",
    "Repository",
    "create_tables",
    "get_engine",
    "get_session",
    "session_scope",
]
