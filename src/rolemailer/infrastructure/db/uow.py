# File: src/rolemailer/infrastructure/db/uow.py
"""
Database engine, session factory and the unit-of-work context manager.

Every ledger mutation runs inside one `session_scope()` block, which commits on
success and rolls back on any exception.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, scoped_session

from rolemailer.config import settings
from .models import Base

log = logging.getLogger(__name__)

SessionScope = Callable[[], ContextManager[Session]]


def build_engine(url: str, **kwargs: Any) -> Engine:
    """Create an engine with driver-appropriate connection arguments."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 3600)
    db_engine = create_engine(url, **kwargs)

    if db_engine.dialect.name == "sqlite":
        # ON DELETE CASCADE is only honoured with foreign keys switched on.
        @event.listens_for(db_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


def make_session_scope(factory: Callable[[], Session]) -> SessionScope:
    """Build a transactional scope around sessions produced by `factory`."""

    @contextmanager
    def scope() -> Generator[Session, None, None]:
        session = factory()
        log.debug(f"Session {id(session)} opened.")
        try:
            yield session
            session.commit()
            log.debug(f"Session {id(session)} committed.")
        except Exception as e:
            log.error(f"Session {id(session)} rollback due to exception: {e}")
            session.rollback()
            raise
        finally:
            if isinstance(factory, scoped_session):
                factory.remove()
            else:
                session.close()
            log.debug(f"Session {id(session)} closed.")

    return scope


# --- Database Engine & Session Setup ---

try:
    log.info(f"Initializing database engine for URL: ...{settings.DATABASE_URL[-20:]}")
    engine = build_engine(settings.DATABASE_URL)
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    SessionScoped = scoped_session(_session_factory)
except Exception as e:
    log.critical(f"Failed to initialize database engine: {e}", exc_info=True)
    raise

session_scope = make_session_scope(SessionScoped)


def create_tables(bind: Optional[Engine] = None):
    """Creates all tables defined in models (Alembic is the normal path)."""
    log.info("Creating database tables if they do not exist...")
    try:
        Base.metadata.create_all(bind or engine)
        log.info("Database tables checked/created successfully.")
    except Exception as e:
        log.critical(f"Failed to create database tables: {e}", exc_info=True)
        raise
