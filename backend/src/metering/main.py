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
from stripe import StripeError

from metering.adapters.stripe_adapter import StripeAdapter
from metering.api.errors import error_content, metering_error_response, request_id_for
from metering.api.v1 import audit, checkout, entitlements, health, overrides, plans, subscriptions, usage
from metering.api.webhooks import stripe as stripe_webhooks
from metering.cache import cache
from metering.config import settings
from metering.database import Database
from metering.exceptions import MeteringError
from metering.middleware.logging import LoggingMiddleware, setup_logging
from metering.middleware.metrics import MetricsMiddleware
from metering.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail
from metering.tracing import setup_tracing
from metering.workers.dispatcher import EventDispatcher, build_dispatcher

setup_logging()
logger = structlog.get_logger(__name__)

# Pydantic error types mapped to our error codes
VALIDATION_CODE_MAPPING = {
    "uuid_parsing": ErrorCode.INVALID_UUID,
    "uuid_type": ErrorCode.INVALID_UUID,
    "enum": ErrorCode.INVALID_ENUM_VALUE,
    "missing": ErrorCode.MISSING_REQUIRED_FIELD,
}


def create_app(
    database: Optional[Database] = None,
    dispatcher: Optional[EventDispatcher] = None,
    stripe_adapter: Optional[StripeAdapter] = None,
) -> FastAPI:
    """
    Build the application.

    Resources not passed in are created at startup and disposed at shutdown;
    injected ones are left to the caller.

    Args:
        database: Database handle
        dispatcher: Billing event dispatcher
        stripe_adapter: Stripe client
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("application_starting", env=settings.app_env)
        owns_database = database is None
        owns_dispatcher = dispatcher is None

        if owns_database:
            app.state.database = Database(settings.database_url, echo=settings.database_echo)
        if stripe_adapter is None:
            app.state.stripe_adapter = StripeAdapter()
        if owns_dispatcher:
            app.state.dispatcher = build_dispatcher(app.state.database, app.state.stripe_adapter)

        if settings.otel_enabled:
            setup_tracing(app, app.state.database.engine)

        if owns_dispatcher:
            await app.state.dispatcher.start()

        yield

        logger.info("application_shutting_down")
        if owns_dispatcher:
            await app.state.dispatcher.stop()
        await cache.close()
        if owns_database:
            await app.state.database.dispose()

    app = FastAPI(
        title="OtimizaAds Metering",
        description="Entitlements, usage metering and Stripe subscription reconciliation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Injected resources are usable without running the lifespan (e.g. under httpx ASGITransport)
    if database is not None:
        app.state.database = database
    if stripe_adapter is not None:
        app.state.stripe_adapter = stripe_adapter
    if dispatcher is not None:
        app.state.dispatcher = dispatcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.mount("/metrics", make_asgi_app())

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(entitlements.router, prefix="/v1")
    app.include_router(usage.router, prefix="/v1")
    app.include_router(plans.router, prefix="/v1")
    app.include_router(subscriptions.router, prefix="/v1")
    app.include_router(checkout.router, prefix="/v1")
    app.include_router(audit.router, prefix="/v1")
    app.include_router(overrides.router, prefix="/v1")
    app.include_router(stripe_webhooks.router)

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "service": "OtimizaAds Metering",
            "version": "0.1.0",
            "status": "operational",
            "docs": "/docs",
        }

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers that turn every failure into the structured error body."""

    @app.exception_handler(MeteringError)
    async def metering_exception_handler(request: Request, exc: MeteringError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "request_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            code=exc.code,
            error_message=exc.message,
        )
        return metering_error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = []
        for error in exc.errors():
            details.append(
                ErrorDetail(
                    code=VALIDATION_CODE_MAPPING.get(error["type"], ErrorCode.VALIDATION_ERROR),
                    message=error["msg"],
                    field=".".join(str(loc) for loc in error["loc"]),
                    value=error.get("input"),
                ).model_dump(mode="json")
            )

        logger.warning("validation_error", path=request.url.path, error_count=len(details))

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_content(
                request,
                error="ValidationError",
                message="Request validation failed",
                details=details,
                remediation="Check the API documentation for correct request format at /docs",
            ),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(
            "database_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )
        message = str(exc) if settings.debug else "Database temporarily unavailable"
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error_content(
                request,
                error="DatabaseError",
                message="A database error occurred",
                details=[{"code": ErrorCode.DATABASE_ERROR, "message": message}],
                remediation=REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
            ),
            headers={"Retry-After": "30"},
        )

    @app.exception_handler(StripeError)
    async def stripe_exception_handler(request: Request, exc: StripeError) -> JSONResponse:
        logger.error("stripe_error", path=request.url.path, stripe_code=getattr(exc, "code", None), error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=error_content(
                request,
                error="PaymentGatewayError",
                message="Payment processor error occurred",
                details=[{"code": ErrorCode.STRIPE_API_ERROR, "message": "Payment processor request failed"}],
                remediation=REMEDIATION_HINTS.get(ErrorCode.STRIPE_API_ERROR),
            ),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            request_id=request_id_for(request),
            exception_type=type(exc).__name__,
            stack_trace=traceback.format_exc(),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_content(
                request,
                error="InternalServerError",
                message="An unexpected error occurred",
                details=[
                    {
                        "code": ErrorCode.INTERNAL_ERROR,
                        "message": str(exc) if settings.debug else "Internal server error",
                    }
                ],
                remediation="Please contact support with the request ID",
            ),
        )


app = create_app()
