"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import BigInteger, Engine, create_engine
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from resonance.database.models import Base
from resonance.engine.settings import LevelSettings

GUILD_ID = 100
T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# SQLite has no JSONB; render it (and BIGINT, for rowid autoincrement) as
# native SQLite types.
# ---------------------------------------------------------------------------
@compiles(PG_JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


@compiles(BigInteger, "sqlite")
def _compile_bigint_as_integer(type_, compiler, **kw):
    return "INTEGER"


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every Resonance table.

    StaticPool keeps one shared connection so ``asyncio.to_thread`` callers
    see the same database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def settings() -> LevelSettings:
    """Guild defaults: 1 XP/minute, 1 XP/message, 60 s cooldown, base 8, scaling 1.5."""
    return LevelSettings(guild_id=GUILD_ID)
