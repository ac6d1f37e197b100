"""Database utilities."""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings
from .errors import ConcurrencyConflict

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base model for SQLAlchemy mappings."""


def create_db_engine(url: str, *, echo: bool = False, lock_timeout: float = 5.0) -> Engine:
    """Create an engine whose transactions wait at most *lock_timeout* seconds for locks.

    The SQLite driver is left in autocommit mode so plain reads never hold the
    database lock; :func:`atomic` opens its own ``BEGIN IMMEDIATE``.
    PostgreSQL transactions carry a ``lock_timeout``.
    """

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": lock_timeout},
        )

        @event.listens_for(engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):  # noqa: ANN001
            dbapi_connection.isolation_level = None

        return engine

    engine = create_engine(url, echo=echo, pool_pre_ping=True)
    if engine.dialect.name == "postgresql":
        timeout_ms = int(lock_timeout * 1000)

        @event.listens_for(engine, "begin")
        def _set_lock_timeout(conn):  # noqa: ANN001
            conn.exec_driver_sql(f"SET LOCAL lock_timeout = {timeout_ms}")

    return engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Return a lazily created engine instance."""

    settings = get_settings()
    return create_db_engine(
        settings.database_url, echo=settings.echo_sql, lock_timeout=settings.lock_timeout_seconds
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    return make_session_factory(get_engine())


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a session that is always closed; transactions are managed by callers."""

    session: Session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run the enclosed block as one explicit transaction.

    Any implicit read transaction left open by earlier queries is finished
    first, so everything inside the block commits or rolls back together.
    On SQLite the unit takes the write lock up front so concurrent writers
    queue instead of failing on lock upgrade. Lock waits that exceed the
    configured timeout surface as :class:`ConcurrencyConflict`.
    """

    if session.in_transaction():
        session.commit()
    try:
        with session.begin():
            if session.get_bind().dialect.name == "sqlite":
                session.execute(text("BEGIN IMMEDIATE"))
            yield session
    except OperationalError as exc:
        logger.warning("transaction_aborted", reason=str(exc.orig))
        raise ConcurrencyConflict() from exc


def init_database(engine: Engine | None = None) -> None:
    """Ensure that the database schema exists."""

    from . import models  # noqa: F401 - ensure models are imported

    Base.metadata.create_all(bind=engine or get_engine())
