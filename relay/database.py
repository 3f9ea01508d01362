"""SQLAlchemy plumbing for the persisted queue and credential store.

Engines are created from an explicitly passed URL; nothing here reads
configuration on import.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Create Base class
Base = declarative_base()


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine with the given URL and options.

    Args:
        db_url: Database connection URL
        **kwargs: Additional arguments for create_engine

    Returns:
        A SQLAlchemy Engine instance
    """
    connect_args = kwargs.pop("connect_args", {})
    if db_url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        # An in-memory database only lives as long as its single connection
        if ":memory:" in db_url or db_url in {"sqlite://", "sqlite:///"}:
            kwargs.setdefault("poolclass", StaticPool)

    return create_engine(db_url, connect_args=connect_args, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    ``expire_on_commit=False`` keeps attributes readable after the session
    that loaded them has closed; stores convert rows to value objects
    before returning anyway.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def initialize_database(engine: Engine) -> None:
    """Create all tables on *engine* (idempotent)."""
    # Import models so they are registered with Base
    from relay.models import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    """Database session context manager.

    Commits on success, rolls back on error, always closes.

    Usage:
        with db_session(factory) as db:
            crud.append_operation(db, owner_id, op)
    """
    session = session_factory()

    try:
        yield session
        session.commit()

    except Exception as e:
        session.rollback()
        logger.error("Database session rolled back due to error: %s", e)
        raise

    finally:
        session.close()
