"""FastAPI application entry point for the visa marketplace escrow service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis (optional), build the
       WorkflowContext that every request shares.
    2. Running: Serve the REST API at /api/v1/* and /health.
    3. Shutdown: Close database and Redis connections gracefully.

Tests pass a ready-made WorkflowContext to create_app(); the lifespan then
skips infrastructure setup entirely.

Run with:
    uvicorn visa_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from visa_escrow.config import get_settings
from visa_escrow.infrastructure.auth import JwtAuthorizer
from visa_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from visa_escrow.domain.collaborators import Authorizer
    from visa_escrow.services.context import WorkflowContext


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    if getattr(app.state, "context", None) is not None:
        yield
        return

    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from visa_escrow.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Initialize Redis
    from visa_escrow.infrastructure.redis_client import close_redis, init_redis

    redis = None
    try:
        redis = await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Wire the workflow
    from visa_escrow.services.context import build_context

    app.state.context = build_context(settings, get_session_factory(), redis)
    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    app.state.context = None
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app(
    context: WorkflowContext | None = None,
    authorizer: Authorizer | None = None,
) -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Visa Marketplace Escrow",
        description="Milestone escrow and case workflow for visa service engagements.",
        version=settings.app_version,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.context = context
    app.state.authorizer = authorizer or JwtAuthorizer(
        settings.jwt_secret_key, settings.jwt_algorithm
    )

    # --- Middleware ---
    from visa_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from visa_escrow.api.routes.cases import router as cases_router
    from visa_escrow.api.routes.escrow import router as escrow_router
    from visa_escrow.api.routes.health import router as health_router
    from visa_escrow.api.routes.proposals import router as proposals_router

    app.include_router(health_router)
    app.include_router(proposals_router)
    app.include_router(escrow_router)
    app.include_router(cases_router)

    return app


# The app instance used by Uvicorn
app = create_app()
