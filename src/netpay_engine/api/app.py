"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from netpay_engine import __version__
from netpay_engine.api.routes import (
    adjustment_types_router,
    adjustments_router,
    company_profile_router,
    health_router,
    jobs_router,
    payroll_runs_router,
    recurring_adjustments_router,
    reports_router,
    statutory_router,
    worker_router,
)
from netpay_engine.config import Settings, get_settings
from netpay_engine.database import Database
from netpay_engine.errors import (
    ComputationError,
    ConflictError,
    IntegrityError,
    NotFoundError,
    PayrollError,
    ValidationError,
)
from netpay_engine.services.dispatch import HttpTaskDispatcher, InlineTaskDispatcher
from netpay_engine.services.handlers import AccountingPoster, build_registry
from netpay_engine.services.job_service import JobRunner

logger = logging.getLogger(__name__)

ERROR_STATUS: tuple[tuple[type[PayrollError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ComputationError, 422),
    (IntegrityError, 500),
)


def status_for(exc: PayrollError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def wire_services(
    app: FastAPI,
    settings: Settings,
    database: Database,
    poster: AccountingPoster | None = None,
) -> None:
    """Attach database, handler registry, runner and dispatcher to app state."""
    registry = build_registry(poster)
    runner = JobRunner(database, registry, settings)
    app.state.settings = settings
    app.state.database = database
    app.state.registry = registry
    app.state.runner = runner
    if settings.inline_worker:
        app.state.dispatcher = InlineTaskDispatcher(runner)
    else:
        app.state.dispatcher = HttpTaskDispatcher(settings.worker_url, settings.worker_token)


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    poster: AccountingPoster | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    When ``database`` is given (tests, embedding) it is wired immediately and
    left open at shutdown; otherwise the lifespan owns it.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = database is None
        if owned:
            wire_services(app, settings, Database(settings.database_url, echo=settings.debug), poster)
        logger.info(
            "netpay engine %s started (%s worker)",
            settings.engine_version,
            "inline" if settings.inline_worker else "remote",
        )
        yield
        await app.state.dispatcher.aclose()
        if owned:
            await app.state.database.dispose()

    app = FastAPI(
        title="NetPay Engine API",
        description="Philippine multi-tenant payroll computation core",
        version=__version__,
        lifespan=lifespan,
    )
    if database is not None:
        wire_services(app, settings, database, poster)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PayrollError)
    async def payroll_error_handler(request: Request, exc: PayrollError) -> JSONResponse:
        code = status_for(exc)
        if code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=code, content=exc.to_dict())

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
    app.include_router(payroll_runs_router, prefix="/api/v1")
    app.include_router(jobs_router, prefix="/api/v1")
    app.include_router(adjustments_router, prefix="/api/v1")
    app.include_router(adjustment_types_router, prefix="/api/v1")
    app.include_router(recurring_adjustments_router, prefix="/api/v1")
    app.include_router(company_profile_router, prefix="/api/v1")
    app.include_router(reports_router, prefix="/api/v1")
    app.include_router(statutory_router, prefix="/api/v1")
    app.include_router(worker_router, prefix="/api")

    return app
