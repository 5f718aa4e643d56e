"""chatcore FastAPI application entry point.

Start with:
    uvicorn chatcore.api.main:app --host 0.0.0.0 --port 8000

Storage is chosen by CHATCORE_STORE: ``postgres`` (default, DATABASE_URL /
POSTGRES_*) or ``memory`` for local runs. The LLM is OpenAI when
OPENAI_API_KEY is set; otherwise replies use the deterministic fallbacks.
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from chatcore.core.exceptions import ChatcoreError
from chatcore.core.logger import configure
from chatcore.services import TurnService, build_turn_service_from_env, store_kind_from_env

logger = logging.getLogger(__name__)


async def _build_stores():
    """Returns ``(stores, uses_database)``."""
    if store_kind_from_env() == "memory":
        from chatcore.infra.memory import InMemoryStore
        logger.info("API: using in-memory store")
        return InMemoryStore().as_stores(), False

    from chatcore.infra.database import (
        SqlStore,
        build_engine,
        build_session_factory,
        ensure_database_exists,
        init_db,
    )
    await ensure_database_exists()
    engine = build_engine()
    session_factory = build_session_factory(engine)
    await init_db()
    return SqlStore(session_factory).as_stores(), True


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ──────────────────────────────────────────────────
    configure()
    uses_database = False
    if getattr(app.state, "turn_service", None) is None:
        stores, uses_database = await _build_stores()
        app.state.turn_service = build_turn_service_from_env(stores)
    logger.info("API: turn service ready")

    yield

    # ── Shutdown ─────────────────────────────────────────────────
    if uses_database:
        from chatcore.infra.database import close_engine
        await close_engine()
        logger.info("API: engine disposed")


def create_app(turn_service: Optional[TurnService] = None) -> FastAPI:
    """Build the app; a prebuilt ``turn_service`` skips storage setup at startup."""
    application = FastAPI(
        title="chatcore API",
        version="1.0.0",
        description="Per-turn conversation orchestrator for multi-tenant chat commerce.",
        lifespan=lifespan,
    )
    application.state.turn_service = turn_service

    # Rate limiter; default limit configurable via TURN_RATE_LIMIT (default 30/minute)
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[os.environ.get("TURN_RATE_LIMIT", "30/minute")],
    )
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @application.exception_handler(ChatcoreError)
    async def chatcore_error_handler(request: Request, exc: ChatcoreError):
        logger.warning("API: %s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})

    from chatcore.api.routers import followups, turns

    application.include_router(turns.router, prefix="/api/v1")
    application.include_router(followups.router, prefix="/api/v1")

    @application.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return application


app = create_app()
