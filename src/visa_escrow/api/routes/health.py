"""Health check endpoint.

Verifies connectivity to the database and Redis, returns structured status.
Used by Docker healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from visa_escrow.api.deps import get_context
from visa_escrow.logging_config import get_logger
from visa_escrow.schemas.escrow import HealthResponse
from visa_escrow.services.context import WorkflowContext

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(context: WorkflowContext = Depends(get_context)) -> HealthResponse:
    """Check connectivity to the database and Redis."""
    db_status = "unknown"
    redis_status = "not_configured"

    try:
        async with context.session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    if context.redis is not None:
        try:
            await context.redis.ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    # Redis is optional: without it the app runs with log notifications
    redis_ok = redis_status in ("healthy", "not_configured")
    overall = "ok" if db_status == "healthy" and redis_ok else "degraded"

    return HealthResponse(
        status=overall,
        version=context.settings.app_version,
        database=db_status,
        redis=redis_status,
    )
