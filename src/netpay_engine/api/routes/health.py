"""Health check endpoints."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from netpay_engine.api.dependencies import AppSettings, DbSession
from netpay_engine.calculators.statutory_resolver import StatutoryTableResolver

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession) -> HealthResponse:
    """Check API and database health."""
    db_status = "unhealthy"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database health check failed: %s", exc)

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
    )


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str
    database: str
    statutory: str


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse}},
)
async def readiness_check(db: DbSession, settings: AppSettings) -> Any:
    """Readiness check for container orchestration.

    Ready once the database answers and today's statutory tables for the
    default country are published or can still be provisioned.
    """
    db_status = "unavailable"
    statutory = "unknown"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
        resolvable = await StatutoryTableResolver(db).can_resolve(
            settings.default_country, date.today()
        )
        statutory = "ok" if resolvable else "missing"
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Readiness check failed: %s", exc)

    body = ReadinessResponse(
        status="ready" if statutory == "ok" else "not_ready",
        database=db_status,
        statutory=statutory,
    )
    if body.status != "ready":
        logger.warning(
            "Not ready: database %s, statutory tables for %s %s",
            db_status,
            settings.default_country,
            statutory,
        )
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump())
    return body


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
