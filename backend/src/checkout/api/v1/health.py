"""Health check endpoints for Kubernetes liveness and readiness probes."""
import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from checkout import __version__
from checkout.api.deps import get_container
from checkout.container import Container
from checkout.utils.clock import utcnow

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    """
    Liveness probe for Kubernetes.

    Does not check external dependencies.
    """
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": __version__,
    }


@router.get("/health/ready", tags=["Health"])
async def readiness_check(container: Container = Depends(get_container)) -> JSONResponse:
    """
    Readiness probe for Kubernetes.

    Returns 200 only when the database answers. Reports whether the sweep
    scheduler is running, which is informational.
    """
    checks = {
        "database": "unknown",
        "scheduler": "running" if container.scheduler.is_running else "stopped",
    }
    ready = True

    try:
        async with container.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except (SQLAlchemyError, OSError) as exc:
        logger.error("database_health_check_failed", error=str(exc))
        checks["database"] = "disconnected"
        ready = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "ready": ready,
            "checks": checks,
            "timestamp": utcnow().isoformat(),
        },
    )
