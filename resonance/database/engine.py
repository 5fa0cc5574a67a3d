"""
resonance.database.engine — Database Connection, Async Bridge & Conflict Retry
==============================================================================

Discord bots run on an ``asyncio`` event loop while SQLAlchemy + psycopg2 is
synchronous.  Cogs therefore never touch the database directly: they call
``await run_db(service_function, engine, ...)``, which ships the call to the
default thread pool via :func:`asyncio.to_thread`.

Per-member writes (session transitions, XP awards) are optimistic: the
``version`` column on ``user_activity`` / ``user_levels`` makes a write based
on a stale read fail with :class:`~sqlalchemy.orm.exc.StaleDataError`, and a
racing first insert fails with :class:`~sqlalchemy.exc.IntegrityError`.
:func:`run_optimistic` re-runs such a transaction from a fresh read.  A failed
attempt never committed, so re-running cannot double count.

Usage::

    from resonance.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async Cog method:
    award = await run_db(award_message_xp, engine, settings, guild_id=g, user_id=u)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from resonance.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

#: Errors meaning "someone else wrote this member's row first".
CONFLICT_ERRORS: tuple[type[Exception], ...] = (StaleDataError, IntegrityError)

DEFAULT_CONFLICT_ATTEMPTS = 3


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`resonance.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is kept for dev/test databases.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.  Loaded objects stay readable after the block exits.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Optimistic retry
# ---------------------------------------------------------------------------
def run_optimistic(
    func: Callable[P, T],
    *args: P.args,
    **kwargs: P.kwargs,
) -> T:
    """Call *func*, re-running it when it loses a concurrent-write race.

    *func* must open and commit its own transaction.  After
    ``DEFAULT_CONFLICT_ATTEMPTS`` losses the last error propagates.
    """
    for attempt in range(1, DEFAULT_CONFLICT_ATTEMPTS + 1):
        try:
            return func(*args, **kwargs)
        except CONFLICT_ERRORS as exc:
            if attempt == DEFAULT_CONFLICT_ATTEMPTS:
                logger.error(
                    "%s still conflicting after %d attempts",
                    getattr(func, "__name__", func), attempt,
                )
                raise
            logger.info(
                "Concurrent write in %s (attempt %d): %s — retrying",
                getattr(func, "__name__", func), attempt, type(exc).__name__,
            )
    raise AssertionError("unreachable")


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call in a Cog goes through this wrapper::

        result = await run_db(my_sync_db_function, engine, user_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
