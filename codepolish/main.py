"""CodePolish backend: FastAPI application entry point."""

import asyncio
import contextlib
import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other app imports
# to avoid the structlog cache pitfall (structlog caches the processor chain on first use).
from codepolish.core.logging import configure_structlog
from codepolish.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from codepolish.api.routes import api_router
from codepolish.core.config import get_settings, validate_security_settings
from codepolish.core.context import AppContext, build_context, close_context
from codepolish.core.exceptions import CodePolishError, TooManyRequestsError
from codepolish.core.rate_limit import sweep_periodically
from codepolish.db.base import create_all
from codepolish.polish.pipeline import recover_periodically
from codepolish.middleware.correlation import get_correlation_id, setup_correlation_middleware

logger = structlog.get_logger(__name__)

_HTTP_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "TOO_MANY_REQUESTS",
    503: "SERVICE_UNAVAILABLE",
}


async def start_background_tasks(context: AppContext) -> list[asyncio.Task]:
    """Recover interrupted jobs and start the rate-limit sweep and stalled-job recovery."""
    tasks = [
        asyncio.create_task(
            sweep_periodically(context.rate_limiter, context.settings.rate_limit_sweep_seconds),
            name="rate-limit-sweep",
        ),
        asyncio.create_task(
            recover_periodically(context.pipeline, context.settings.polish_recovery_seconds),
            name="polish-recovery",
        ),
    ]

    pending = await context.pipeline.recover()
    if pending:
        logger.info("polish_redispatch", count=len(pending))
        tasks.append(asyncio.create_task(context.pipeline.process_many(pending), name="polish-redispatch"))

    return tasks


async def stop_background_tasks(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Graceful shutdown flag: SIGTERM flips this so the health check returns 503
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    # Startup
    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug, engine=settings.polish_engine)

    validate_security_settings(settings)

    context = await build_context(settings)
    await create_all(context.engine)
    app.state.context = context
    logger.info("db_initialized")

    tasks = await start_background_tasks(context)

    yield

    # Shutdown
    logger.info("shutdown_begin")
    await stop_background_tasks(tasks)
    await close_context(context)
    logger.info("shutdown_complete")


async def codepolish_error_handler(request: Request, exc: CodePolishError) -> JSONResponse:
    """Render domain errors as {code, detail, debug_id} with their mapped status."""
    debug_id = str(uuid.uuid4())
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "codepolish_error",
        code=exc.code,
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.message,
    )

    headers = None
    if isinstance(exc, TooManyRequestsError):
        headers = {"Retry-After": str(exc.retry_after)}

    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "detail": exc.message, "debug_id": debug_id},
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
            "detail": exc.detail,
            "debug_id": debug_id,
        },
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    # No internal details leaked
    return JSONResponse(
        status_code=500,
        content={"code": "INTERNAL_ERROR", "detail": "Internal server error", "debug_id": debug_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(CodePolishError)(codepolish_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="CodePolish - production-ready refactoring for AI-generated front-end code",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, *settings.cors_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "codepolish.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
