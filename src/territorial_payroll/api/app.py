"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from territorial_payroll import __version__
from territorial_payroll.api.routes import (
    health_router,
    pay_periods_router,
    payroll_items_router,
    tax_configs_router,
    ytd_router,
)
from territorial_payroll.config import Settings, get_settings
from territorial_payroll.database import dispose_db, init_db
from territorial_payroll.errors import (
    ConfigurationError,
    NotFoundError,
    PayrollError,
    TaxSyncError,
    ValidationError,
)
from territorial_payroll.events import DomainEvent, EventEmitter, PayPeriodCommitted
from territorial_payroll.interfaces import (
    AuditSink,
    DocumentGenerator,
    LoggingAuditSink,
    ObjectStore,
    audit_handler,
)
from territorial_payroll.services.tax_sync_worker import TaxSyncJob, TaxSyncWorker

logger = logging.getLogger(__name__)

# (status, code) per error family; first match wins
ERROR_STATUS: list[tuple[type[PayrollError], int, str]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "VALIDATION_ERROR"),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE, "CONFIGURATION_ERROR"),
    (TaxSyncError, status.HTTP_502_BAD_GATEWAY, "TAX_SYNC_ERROR"),
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    owns_database = app.state.session_factory is None
    if owns_database:
        _, app.state.session_factory = init_db()

    worker = _start_tax_sync_worker(app, settings)
    yield

    if worker is not None:
        await worker.stop()
        app.state.tax_sync_worker = None
    if owns_database:
        await dispose_db()


def _start_tax_sync_worker(app: FastAPI, settings: Settings) -> TaxSyncWorker | None:
    if not settings.tax_sync_worker_enabled:
        logger.info("Tax sync worker disabled")
        return None
    if not settings.tax_sync_configured:
        logger.warning("Tax sync worker not started: TAX_SYNC_INGEST_URL is not configured")
        return None

    job = TaxSyncJob(
        app.state.session_factory,
        settings,
        transport=app.state.tax_sync_transport,
        emitter=app.state.emitter,
    )
    worker = TaxSyncWorker(job)
    worker.start()
    app.state.tax_sync_worker = worker

    def enqueue_sync(event: DomainEvent) -> None:
        if isinstance(event, PayPeriodCommitted):
            worker.enqueue(event.pay_period_id)

    app.state.emitter.on(PayPeriodCommitted, enqueue_sync)
    return worker


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    document_generator: DocumentGenerator | None = None,
    object_store: ObjectStore | None = None,
    audit_sink: AuditSink | None = None,
    tax_sync_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators left as None are either created at startup (database)
    or reported as unconfigured when first needed (pay stubs).
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="Territorial Payroll API",
        description="Gross-to-net payroll, pay period lifecycle and tax remittance sync",
        version=__version__,
        lifespan=lifespan,
    )

    emitter = EventEmitter()
    emitter.on_all(audit_handler(audit_sink or LoggingAuditSink()))

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.emitter = emitter
    app.state.document_generator = document_generator
    app.state.object_store = object_store
    app.state.tax_sync_transport = tax_sync_transport
    app.state.tax_sync_worker = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollError)
    async def payroll_exception_handler(request: Request, exc: PayrollError) -> JSONResponse:
        for error_type, status_code, code in ERROR_STATUS:
            if isinstance(exc, error_type):
                return JSONResponse(
                    status_code=status_code,
                    content={"detail": str(exc), "code": code},
                )
        logger.error("Unhandled payroll error: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc), "code": "PAYROLL_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unexpected error handling %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(pay_periods_router, prefix="/api/v1")
    app.include_router(payroll_items_router, prefix="/api/v1")
    app.include_router(tax_configs_router, prefix="/api/v1")
    app.include_router(ytd_router, prefix="/api/v1")

    return app
