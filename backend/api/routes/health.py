"""Health check endpoints."""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.dependencies import ContainerDep

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(container: ContainerDep):
    """Basic health check."""
    settings = container.settings
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
        **container.degraded_policy.snapshot(),
    }


@router.get("/health/db")
async def health_check_db(container: ContainerDep):
    """Health check with database connectivity."""
    settings = container.settings
    if container.engine is None:
        db_status = "not configured"
    else:
        try:
            async with container.engine.connect() as conn:
                result = await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=5.0)
                result.scalar()
            db_status = "connected"
        except TimeoutError:
            logger.error("Health check DB timeout")
            db_status = "error: database timeout"
        except (SQLAlchemyError, OSError) as e:
            logger.error("Health check DB error: %s", type(e).__name__)
            db_status = "error: database check failed"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "database": db_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
