"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.config import Settings
from netpay_engine.database import Database
from netpay_engine.services.job_service import JobOrchestrator, JobRunner


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


async def get_db_session(
    database: Annotated[Database, Depends(get_database)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency; routes commit explicitly."""
    async with database.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract tenant ID from header."""
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Tenant-ID format",
        )


async def get_orchestrator(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> JobOrchestrator:
    return JobOrchestrator(
        session,
        dispatcher=request.app.state.dispatcher,
        registry=request.app.state.registry,
    )


def get_runner(request: Request) -> JobRunner:
    return request.app.state.runner


async def verify_worker_token(
    settings: Annotated[Settings, Depends(get_settings_dep)],
    x_worker_token: Annotated[str | None, Header()] = None,
) -> None:
    if settings.worker_token and x_worker_token != settings.worker_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid worker token",
        )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
TenantId = Annotated[UUID, Depends(get_tenant_id)]
Orchestrator = Annotated[JobOrchestrator, Depends(get_orchestrator)]
Runner = Annotated[JobRunner, Depends(get_runner)]
AppSettings = Annotated[Settings, Depends(get_settings_dep)]
