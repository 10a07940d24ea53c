"""Dialect-aware INSERT ... ON CONFLICT constructs for idempotent writes."""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def insert_for(db: Session, model):
    """
    Return an ``insert(model)`` supporting ``on_conflict_do_*`` for the session's dialect.

    PostgreSQL in production, SQLite in tests.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upsert not supported for dialect {dialect!r}")
