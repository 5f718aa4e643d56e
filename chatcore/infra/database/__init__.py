"""
chatcore.infra.database – PostgreSQL async engine, models, repositories and the SQL store.

Public API
──────────
  build_engine, build_session_factory, init_db, close_engine, ensure_database_exists
  SqlStore (implements every orchestrator storage port)
"""
from chatcore.infra.database.engine import (
    build_engine,
    build_session_factory,
    close_engine,
    ensure_database_exists,
    init_db,
)
from chatcore.infra.database.stores import SqlStore

__all__ = [
    "build_engine",
    "build_session_factory",
    "close_engine",
    "ensure_database_exists",
    "init_db",
    "SqlStore",
]
