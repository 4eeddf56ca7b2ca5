"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from compliance_billing.api.routes import (
    billing_documents_router,
    health_router,
    obligations_router,
    recurring_router,
)
from compliance_billing.config import Settings, get_settings
from compliance_billing.database import dispose_db, init_db
from compliance_billing.directory import Directory, StaticDirectory
from compliance_billing.errors import (
    BillingEngineError,
    ConcurrencyConflict,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from compliance_billing.events import AsyncEventEmitter
from compliance_billing.gateway import PaymentGatewayAdapter, build_adapter
from compliance_billing.notifications import (
    DRAIN_TIMEOUT_SECONDS,
    DispatcherHandler,
    LoggingDispatcher,
    NotificationDispatcher,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: list[tuple[type[BillingEngineError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT),
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    init_db()
    yield
    handler: DispatcherHandler | None = getattr(app.state, "dispatch_handler", None)
    if handler is not None:
        await handler.drain(timeout=DRAIN_TIMEOUT_SECONDS)
    await dispose_db()


def create_app(
    settings: Settings | None = None,
    gateway: PaymentGatewayAdapter | None = None,
    dispatcher: NotificationDispatcher | None = None,
    directory: Directory | None = None,
    emitter: AsyncEventEmitter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators default to the configured gateway, a logging dispatcher
    and an empty directory. Tests pass their own.
    """
    settings = settings or get_settings()
    directory = directory if directory is not None else StaticDirectory()

    app = FastAPI(
        title="Compliance Billing Engine API",
        description="Recurring obligations, quotations, invoices and payments",
        version=settings.engine_version,
        lifespan=lifespan,
    )

    dispatch_handler: DispatcherHandler | None = None
    if emitter is None:
        emitter = AsyncEventEmitter()
        dispatch_handler = DispatcherHandler(dispatcher or LoggingDispatcher(), directory)
        emitter.on_all(dispatch_handler)

    app.state.settings = settings
    app.state.gateway = gateway or build_adapter(settings.gateway)
    app.state.emitter = emitter
    app.state.dispatch_handler = dispatch_handler
    app.state.directory = directory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BillingEngineError)
    async def domain_exception_handler(
        request: Request, exc: BillingEngineError
    ) -> JSONResponse:
        """Map domain errors to status codes with an ErrorResponse body."""
        status_code = status.HTTP_400_BAD_REQUEST
        for error_type, code in ERROR_STATUS:
            if isinstance(exc, error_type):
                status_code = code
                break
        return JSONResponse(
            status_code=status_code,
            content={
                "detail": str(exc),
                "code": exc.code,
                "field": getattr(exc, "field", None),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(recurring_router, prefix="/api/v1")
    app.include_router(obligations_router, prefix="/api/v1")
    app.include_router(billing_documents_router, prefix="/api/v1")

    return app
