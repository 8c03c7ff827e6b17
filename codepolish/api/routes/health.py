import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from codepolish.core.context import AppContext, get_context

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE = "codepolish-api"


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe.

    Returns 503 during graceful shutdown so the load balancer stops routing traffic.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": SERVICE},
        )
    return {"status": "healthy", "service": SERVICE}


@router.get("/ready")
async def readiness_check(context: AppContext = Depends(get_context)):
    """Readiness probe. Redis is only checked when it is configured."""
    checks: dict[str, bool] = {"database": False}

    try:
        async with context.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e), error_type=type(e).__name__)

    if context.redis is not None:
        checks["redis"] = False
        try:
            await context.redis.ping()
            checks["redis"] = True
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e), error_type=type(e).__name__)

    all_healthy = all(checks.values())
    status_code = 200 if all_healthy else 503

    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
