"""
resonance.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn resonance.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from resonance import __version__  # noqa: E402
from resonance.api.deps import get_engine  # noqa: E402
from resonance.api.routes.public import router as public_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed CORS origins: CORS_ALLOW_ORIGINS (comma-separated), else FRONTEND_URL."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = app.dependency_overrides.get(get_engine, get_engine)()
    logger.info("Resonance API started (%s)", engine.url.database)
    yield
    logger.info("Resonance API shutting down")


app = FastAPI(
    title="Resonance API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(public_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
