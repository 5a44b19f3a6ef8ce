"""Kalori API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import get_settings
from src.devices.config_loader import get_engine_config
from src.devices.postgres import PostgresRepository
from src.devices.sources import SourceRegistry
from src.devices.vault import CredentialVault
from src.errors import KaloriError
from src.middleware.identity import IdentityMiddleware
from src.models.base import failure
from src.routers import devices, health
from src.services.database import close_pool, init_pool
from src.services.text_generation import build_text_generator

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("kalori")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    engine_config = get_engine_config()
    logger.info(
        "Starting Kalori API v%s [%s]",
        settings.app_version,
        settings.environment,
    )

    await init_pool(settings)
    repository = PostgresRepository()
    await repository.ensure_schema()

    http_client = httpx.AsyncClient(timeout=settings.vendor_http_timeout_s)
    app.state.repository = repository
    app.state.vault = (
        CredentialVault(settings.token_encryption_key, settings.token_ttl_seconds)
        if settings.token_encryption_key
        else CredentialVault.ephemeral(settings.token_ttl_seconds)
    )
    app.state.sources = SourceRegistry(settings, engine_config, http_client)
    app.state.text_generator = build_text_generator(settings)
    yield
    await http_client.aclose()
    await close_pool()
    logger.info("Kalori API shut down")


# ---------- Error envelope ----------

def _envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=failure(message).model_dump(exclude_none=True),
    )


async def _domain_error(request: Request, exc: KaloriError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _envelope(exc.status_code, exc.message)


async def _request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    )
    return _envelope(400, f"Invalid request: {problems}")


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(500, "Internal server error")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Kalori API",
        description=(
            "Device activity ingestion and daily energy-balance engine — "
            "connected wearables, per-day activity ledger, balance and trends."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_exception_handler(KaloriError, _domain_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(Exception, _unhandled_error)

    # ---------- Middleware (last added runs first) ----------

    app.add_middleware(IdentityMiddleware)

    # CORS wraps the identity check so preflight requests get CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside the v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(devices.router, prefix="/api/v1")

    return app


app = create_app()
