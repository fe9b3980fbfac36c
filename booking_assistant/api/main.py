"""Booking assistant FastAPI application: entry point.

Start with:
    uvicorn booking_assistant.api.main:app --reload --host 0.0.0.0 --port 8000

The LLM client comes from EngineConfig (LLM_PROVIDER, LLM_MODEL). Without
OPENAI_API_KEY a no-op client answers, so the deterministic layers still run.
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from booking_assistant.api.routers import booking
from booking_assistant.clients.llm import build_llm_client
from booking_assistant.config import EngineConfig
from booking_assistant.context.assembler import ContextAssembler
from booking_assistant.core.exceptions import ProjectError
from booking_assistant.core.logger import configure as configure_logging
from booking_assistant.infra.database.engine import (
    build_engine,
    build_session_factory,
    close_engine,
    ensure_database_exists,
    init_db,
)
from booking_assistant.search.normalize import default_tables
from booking_assistant.search.tables import LookupTables
from booking_assistant.tools.builtin.weather import WeatherClient

logger = logging.getLogger(__name__)


def _load_tables() -> LookupTables:
    path = os.environ.get("LOOKUP_TABLES_FILE")
    if path:
        logger.info("API: loading lookup tables from %s", path)
        return LookupTables.from_file(path)
    return default_tables()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ──────────────────────────────────────────────────
    configure_logging()

    config = EngineConfig.from_env()
    tables = _load_tables()
    app.state.engine_config = config
    app.state.lookup_tables = tables

    await ensure_database_exists()
    engine = build_engine()
    app.state.session_factory = build_session_factory(engine)
    if os.environ.get("DB_AUTO_CREATE", "true").strip().lower() in ("1", "true", "yes"):
        await init_db()

    app.state.llm_client = build_llm_client(config)
    logger.info("API: LLM provider %s (%s)", app.state.llm_client.provider, config.model_id)

    # Shared across requests so the static-instruction cache survives between turns.
    app.state.context_assembler = ContextAssembler(config, tables=tables)
    app.state.weather_client = (
        WeatherClient(config.weather_base_url, timeout_seconds=config.tool_timeout_seconds)
        if config.weather_enabled else None
    )
    logger.info("API: booking engine ready")

    yield

    # ── Shutdown ─────────────────────────────────────────────────
    await close_engine()
    logger.info("API: engine disposed")


app = FastAPI(
    title="Booking Assistant API",
    version="1.0.0",
    description="Conversational vehicle search and booking.",
    lifespan=lifespan,
)

app.state.limiter = booking.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ProjectError)
async def project_error_handler(request: Request, exc: ProjectError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("API: %s on %s: %s", exc.code, request.url.path, exc.message)
    else:
        logger.info("API: %s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


_allowed_origins = os.environ.get(
    "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(booking.router, prefix="/api/v1")


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
