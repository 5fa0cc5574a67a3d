"""
resonance.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy import Engine

from resonance.config import ResonanceConfig, load_config
from resonance.database.engine import create_db_engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> ResonanceConfig:
    return load_config()
