"""FastAPI application entry point."""
import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from checkout import __version__
from checkout.config import Settings, settings as default_settings
from checkout.api.v1 import health, payments
from checkout.container import Container, build_container
from checkout.exceptions import PaymentError
from checkout.middleware.logging import LoggingMiddleware, setup_logging
from checkout.middleware.metrics import MetricsMiddleware
from checkout.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse

logger = structlog.get_logger(__name__)


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


def _error_response(status_code: int, body: ErrorResponse, headers: Optional[dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the container unless one was injected, and run the sweep scheduler."""
    app_settings: Settings = app.state.settings
    owns_container = app.state.container is None
    if owns_container:
        app.state.container = build_container(app_settings)

    container: Container = app.state.container
    logger.info("application_starting", env=app_settings.app_env, scheduler_enabled=app_settings.scheduler_enabled)

    if app_settings.scheduler_enabled:
        container.scheduler.start()

    yield

    logger.info("application_shutting_down")
    if container.scheduler.is_running:
        await container.scheduler.stop()
    if owns_container:
        await container.aclose()


async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    """
    Render payment errors in the standard envelope.

    The message is the customer-safe one; internal detail is only logged.
    """
    request_id = _request_id(request)
    payment_id = exc.context.get("payment_id")

    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        "payment_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error_code=exc.error_code,
        error_message=exc.message,
        payment_id=str(payment_id) if payment_id else None,
        request_id=request_id,
    )

    details = [ErrorDetail(code=exc.error_code, message=exc.user_message, field=exc.context.get("field"))]
    body = ErrorResponse(
        error=type(exc).__name__,
        message=exc.user_message,
        details=details,
        remediation=REMEDIATION_HINTS.get(exc.error_code),
        payment_id=str(payment_id) if payment_id else None,
        request_id=request_id,
    )
    headers = {"Retry-After": "30"} if exc.retryable else None
    return _error_response(exc.http_status, body, headers=headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors with structured response.

    Returns 422 with field-level validation errors.
    """
    request_id = _request_id(request)

    details = []
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        field_name = str(error["loc"][-1]) if error["loc"] else ""
        code = {
            "amount": ErrorCode.INVALID_AMOUNT,
            "currency": ErrorCode.INVALID_CURRENCY,
            "method": ErrorCode.INVALID_PAYMENT_METHOD,
        }.get(field_name, ErrorCode.INVALID_INPUT)
        value = error.get("input")
        details.append(
            ErrorDetail(
                code=code,
                message=error["msg"],
                field=field_path,
                value=value if isinstance(value, (str, int, float, bool)) else None,
            )
        )

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        error_count=len(details),
    )

    body = ErrorResponse(
        error="ValidationError",
        message="Request validation failed",
        details=details,
        remediation="Check the API documentation for correct request format at /docs",
        request_id=request_id,
    )
    return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, body)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Returns 503 Service Unavailable for database errors."""
    request_id = _request_id(request)

    logger.error(
        "database_error",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )

    body = ErrorResponse(
        error="DatabaseError",
        message="A database error occurred",
        details=[ErrorDetail(code=ErrorCode.DATABASE_ERROR, message="Database temporarily unavailable")],
        remediation=REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
        request_id=request_id,
    )
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, body, headers={"Retry-After": "30"})


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs the full stack trace but returns a safe error message.
    """
    request_id = _request_id(request)

    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        stack_trace=traceback.format_exc(),
    )

    body = ErrorResponse(
        error="InternalServerError",
        message="An unexpected error occurred",
        details=[ErrorDetail(code=ErrorCode.INTERNAL_ERROR, message="Internal server error")],
        remediation="Please contact support with the request ID",
        request_id=request_id,
    )
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, body)


def create_app(container: Optional[Container] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        container: Pre-built component graph; built from settings at startup when omitted
        settings: Application settings, defaults to the environment
    """
    app_settings = settings or (container.settings if container else default_settings)

    app = FastAPI(
        title="Checkout Payments",
        description="Payment lifecycle and reconciliation for online checkout",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.mount("/metrics", make_asgi_app())

    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "service": "Checkout Payments",
            "version": __version__,
            "status": "operational",
            "docs": "/docs",
        }

    app.include_router(health.router, tags=["Health"])
    app.include_router(payments.router, prefix="/v1", tags=["Payments"])

    return app


setup_logging()
app = create_app()
