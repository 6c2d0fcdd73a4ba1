"""
Vocab Tutor — Database Engine
SQLAlchemy setup. Works with SQLite (dev) and PostgreSQL (prod).

Transactions are explicit: a caller opens one with `transaction(factory)` and
passes the yielded DB session to every repository function that must take
part in it. Nothing is stashed in thread-local storage.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session as DBSession
from sqlalchemy.pool import StaticPool

from app.config import (
    DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW, SQLITE_BUSY_TIMEOUT_SECONDS,
)
from app.errors import InternalError

logger = logging.getLogger(__name__)


# ─── Engine Setup ────────────────────────────────────────────────────────────

def make_engine(url: str = DATABASE_URL) -> Engine:
    """Build an engine for `url` with the per-backend settings applied."""
    if url.startswith("sqlite"):
        in_memory = url in ("sqlite://", "sqlite:///:memory:")
        kwargs = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
            "echo": False,
        }
        if in_memory:
            # One shared connection, otherwise every checkout sees an empty db
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record):
            # Hand transaction control to SQLAlchemy so BEGIN IMMEDIATE below
            # is the only BEGIN the driver ever sends.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            # SQLite has no SELECT ... FOR UPDATE. Taking the write lock at
            # BEGIN serializes writers the way a row lock would on Postgres.
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    # PostgreSQL: standard pooled connection
    return create_engine(
        url,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Test connections before use
        echo=False,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


engine = make_engine()
SessionLocal = make_session_factory(engine)


# ─── Base Class ──────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# ─── Transactions ────────────────────────────────────────────────────────────

_in_transaction: ContextVar[bool] = ContextVar("vocab_tutor_in_transaction", default=False)


@contextmanager
def transaction(session_factory: sessionmaker) -> Iterator[DBSession]:
    """
    Run a block inside one database transaction.

    Commits on normal exit, rolls back on any exception, and always returns
    the connection to the pool. Entering a second transaction on the same
    call chain raises RuntimeError.
    """
    if _in_transaction.get():
        raise RuntimeError("Nested transactions are not supported")

    token = _in_transaction.set(True)
    db = session_factory()
    try:
        with db.begin():
            yield db
    finally:
        db.close()
        _in_transaction.reset(token)


def require_transaction(db: DBSession) -> None:
    """Guard for repository functions that only make sense inside a transaction."""
    if not db.in_transaction() or not _in_transaction.get():
        raise RuntimeError("This operation must run inside transaction()")


# ─── Helpers ─────────────────────────────────────────────────────────────────

async def run_db(fn, *args):
    """
    Run a blocking DB step in the threadpool so the event loop stays free.
    Driver errors surface as InternalError; the step's transaction has
    already rolled back by then.
    """
    try:
        return await run_in_threadpool(fn, *args)
    except SQLAlchemyError as e:
        logger.error(f"DB error in {fn.__name__}: {e}")
        raise InternalError("Database error") from e


def ping(session_factory: sessionmaker) -> bool:
    """True if a transaction can be opened and a trivial query answered."""
    with transaction(session_factory) as db:
        db.execute(text("SELECT 1"))
    return True


def is_postgres(db: DBSession) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def init_db(bind: Engine = engine) -> None:
    """Create all tables. Called once at startup."""
    # Import models so they register on Base.metadata
    from app import models  # noqa: F401

    logger.info("Creating tables (if missing)...")
    Base.metadata.create_all(bind=bind)
