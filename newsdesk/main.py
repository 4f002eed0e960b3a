"""
FastAPI application entry point.

Configures middleware, lifespan events, and mounts all routers.
Run locally: uvicorn newsdesk.main:app --reload
Production:  gunicorn newsdesk.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from newsdesk.api.v1.routes import automation, content, health
from newsdesk.automation.runtime import build_runtime
from newsdesk.core.config import Settings, get_settings
from newsdesk.core.logging import get_logger, setup_logging
from newsdesk.core.security import limiter

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, **runtime_overrides: Any) -> FastAPI:
    """Build the app. `runtime_overrides` are passed to build_runtime (tests inject fakes here)."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown events."""
        setup_logging(settings)
        logger.info(
            "app_starting",
            environment=settings.app_env,
            database=settings.database_url[:30] + "...",
        )
        app.state.runtime = await build_runtime(settings, **runtime_overrides)

        yield

        await app.state.runtime.close()
        logger.info("app_shutting_down")

    app = FastAPI(
        title="Newsdesk Automation",
        description="Automation control plane for the newsdesk ingest → analyse → draft → publish pipeline",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.app_env != "production" else None,
        redoc_url="/redoc" if settings.app_env != "production" else None,
    )

    # ── Middleware ──────────────────────────────────────────
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Rate limiting ──────────────────────────────────────
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ── Routes ─────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(automation.router, prefix="/api/v1")
    app.include_router(content.router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "service": "Newsdesk Automation",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/healthz/",
        }

    return app


app = create_app()
