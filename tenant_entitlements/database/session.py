"""
Database engine and session factories.

The billing store and the audit sink each get their own engine so that a
slow audit database cannot exhaust billing-read connections (and vice versa).

Usage:
    from tenant_entitlements.database.session import create_session_factory

    billing_sessions = create_session_factory(settings.database_url)
    with billing_sessions() as session:
        ...
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from tenant_entitlements.db_base import Base

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: Optional[str]) -> str:
    """
    Validate and normalize a database URL.

    Handles the postgres:// scheme some hosts emit by converting it to
    postgresql://, which SQLAlchemy requires.
    """
    if not database_url:
        raise ValueError("Database URL is not set")

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return database_url


def engine_options(
    url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    statement_timeout_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    """
    create_engine() keyword arguments for url.

    statement_timeout_seconds bounds each statement and the wait for a pooled
    connection: Postgres gets a server-side statement_timeout, SQLite a lock
    wait timeout.
    """
    if url.startswith("sqlite"):
        connect_args: Dict[str, Any] = {"check_same_thread": False}
        if statement_timeout_seconds is not None:
            connect_args["timeout"] = statement_timeout_seconds
        kwargs: Dict[str, Any] = {"connect_args": connect_args}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return kwargs

    kwargs = {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,  # Verify connection health
        "pool_recycle": 1800,   # Recycle connections after 30 minutes
    }
    if statement_timeout_seconds is not None:
        kwargs["pool_timeout"] = statement_timeout_seconds
        if url.startswith("postgresql"):
            timeout_ms = max(1, int(statement_timeout_seconds * 1000))
            kwargs["connect_args"] = {"options": f"-c statement_timeout={timeout_ms}"}
    return kwargs


def create_db_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    statement_timeout_seconds: Optional[float] = None,
) -> Engine:
    """
    Create an engine with pooling suitable for the target database.

    SQLite in-memory databases share one connection (StaticPool) so every
    session sees the same data.
    """
    url = normalize_database_url(database_url)
    engine = create_engine(
        url,
        **engine_options(url, pool_size, max_overflow, statement_timeout_seconds),
    )
    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "statement_timeout_seconds": statement_timeout_seconds},
    )
    return engine


def create_session_factory(
    database_url: str,
    create_tables: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    statement_timeout_seconds: Optional[float] = None,
) -> sessionmaker:
    """Build a session factory bound to a new engine."""
    engine = create_db_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        statement_timeout_seconds=statement_timeout_seconds,
    )
    if create_tables:
        # Import models so their tables are registered on Base.metadata
        from tenant_entitlements import models  # noqa: F401
        Base.metadata.create_all(bind=engine)
    return sessionmaker(autoflush=False, bind=engine)
