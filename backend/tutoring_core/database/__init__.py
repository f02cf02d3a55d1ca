"""
Database engine, session factory, and metadata shared across the core.
"""

from __future__ import annotations

import logging
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from ..core.config import settings

logger = logging.getLogger(__name__)

Base: DeclarativeMeta = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

_engine: Optional[Engine] = None


def configure_sqlite_locking(engine: Engine) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    SQLite has no row locks and ignores FOR UPDATE. Starting transactions with
    BEGIN IMMEDIATE serializes writers on the database lock, which gives the
    ledger the same read-after-lock guarantee a row lock gives on Postgres.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        # Hand transaction control to SQLAlchemy instead of the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: Optional[str] = None, **kwargs: Any) -> Engine:
    """Create an engine for ``database_url`` with dialect-specific setup."""
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", settings.sqlite_busy_timeout_seconds)
        engine = create_engine(
            url, echo=settings.database_echo, connect_args=connect_args, **kwargs
        )
        configure_sqlite_locking(engine)
    else:
        kwargs.setdefault("pool_pre_ping", True)
        engine = create_engine(url, echo=settings.database_echo, **kwargs)
    logger.info("Database engine created for dialect %s", engine.dialect.name)
    return engine


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine()
        SessionLocal.configure(bind=_engine)
    return _engine


def get_db() -> Generator[Session, None, None]:
    """
    Yield a session and always close it.

    Suitable as a FastAPI dependency in the hosting application.
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "configure_sqlite_locking",
    "get_db",
    "get_engine",
]
