"""Database engine, session factory and transaction scope utilities."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from medibook.models import appointment, availability, doctor, patient  # noqa: F401
from medibook.models.base import Base
from medibook.utils.config import get_settings

LOGGER = logging.getLogger(__name__)


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``url``.

    SQLite has no ``SELECT ... FOR UPDATE``; every SQLite transaction is
    opened with ``BEGIN IMMEDIATE`` instead so writers serialise on the
    database lock the way row locks serialise them on PostgreSQL.
    """

    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _configure_sqlite(dbapi_connection, _connection_record):
        # Hand transaction control to SQLAlchemy so the BEGIN below is honoured.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory whose objects stay readable after commit."""

    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@lru_cache()
def get_engine() -> Engine:
    """Return the process-wide engine built from settings."""

    settings = get_settings()
    return create_db_engine(settings.database_url, echo=settings.database_echo)


@lru_cache()
def get_session_factory() -> sessionmaker[Session]:
    """Return the process-wide session factory."""

    return create_session_factory(get_engine())


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""

    Base.metadata.create_all(engine)
    LOGGER.info("Database schema ensured on %s", engine.url.render_as_string(hide_password=True))


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session: Session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
