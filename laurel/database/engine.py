"""
laurel.database.engine — Database Connection & Session Helpers
===============================================================

Every public service function takes an :class:`~sqlalchemy.Engine` and opens
its own short :class:`~sqlalchemy.orm.Session`, so each call is one
transaction.  Two storage-level helpers live here because every service that
writes needs them:

* :func:`insert_or_ignore` — ``INSERT ... ON CONFLICT DO NOTHING`` on a unique
  key, used for find-or-create without a read-then-insert race.
* SQLite engines built by :func:`create_db_engine` open every transaction with
  ``BEGIN IMMEDIATE`` so concurrent writers queue on the database lock instead
  of interleaving.

Usage::

    from laurel.database.engine import create_db_engine, init_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Any

from sqlalchemy import Engine, create_engine, event, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from laurel.database.models import Base

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits for the write lock before giving up
SQLITE_BUSY_TIMEOUT = 30


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    Server databases get a small pool:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    SQLite URLs get a busy timeout, foreign-key enforcement and
    ``BEGIN IMMEDIATE`` transactions instead.

    Raises
    ------
    RuntimeError
        If neither *url* nor ``DATABASE_URL`` is set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid database URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=False,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT, "check_same_thread": False},
        )
        _configure_sqlite(engine)
    else:
        engine = create_engine(
            url,
            echo=False,        # Set True for SQL debugging
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,   # Reconnect stale connections automatically
            pool_timeout=10,
            pool_recycle=3600,
        )
    logger.info("Database engine created → %s", engine.url.render_as_string(hide_password=True))
    return engine


def _configure_sqlite(engine: Engine) -> None:
    """Apply SQLAlchemy's pysqlite transaction recipe to *engine*.

    pysqlite defers ``BEGIN`` until the first DML statement and never locks
    on reads.  Taking over transaction control and issuing
    ``BEGIN IMMEDIATE`` makes each session transaction hold the write lock
    from its first statement, which serializes read-modify-write cycles.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`laurel.database.models`.

    Safe to call on every startup (``CREATE TABLE IF NOT EXISTS``).

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is kept for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Find-or-create without races
# ---------------------------------------------------------------------------
def insert_or_ignore(
    session: Session,
    model: type,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> bool:
    """Insert *values* into *model*'s table unless the unique key exists.

    Uses the dialect's ``ON CONFLICT DO NOTHING`` on PostgreSQL and SQLite.
    Other dialects fall back to a SAVEPOINT that swallows the
    ``IntegrityError`` raised by a concurrent insert of the same key.

    Returns ``True`` if this call inserted the row.
    """
    dialect = session.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            insert(model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=list(conflict_columns))
        )
        result = session.execute(stmt)
        return result.rowcount == 1

    key = [getattr(model, col) == values[col] for col in conflict_columns]
    if session.scalar(select(model).where(*key)) is not None:
        return False
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(model(**values))
            session.flush()
    except IntegrityError:
        # Lost the race; the SAVEPOINT was rolled back, the outer txn lives on.
        return False
    return True


def compare_and_set(
    session: Session,
    model: type,
    row_id: Any,
    field: str,
    expected: Any,
    value: Any,
    **extra: Any,
) -> bool:
    """``UPDATE model SET field = value WHERE id = row_id AND field = expected``.

    *extra* columns are written in the same statement.  The in-session
    instance (if any) is synchronized.  Returns ``True`` if the row moved.
    """
    result = session.execute(
        update(model)
        .where(model.id == row_id, getattr(model, field) == expected)
        .values({field: value, **extra})
    )
    return result.rowcount == 1
