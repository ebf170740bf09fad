"""Job status endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path

from netpay_engine.api.dependencies import DbSession, Orchestrator, TenantId
from netpay_engine.api.schemas import CancelJobRequest, ErrorResponse, JobResponse

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_job(
    tenant_id: TenantId,
    orchestrator: Orchestrator,
    job_id: Annotated[UUID, Path()],
) -> JobResponse:
    """Poll a job; the record is the only source of status."""
    job = await orchestrator.get(job_id, tenant_id)
    return JobResponse.model_validate(job)


@router.post(
    "/{job_id}/cancel",
    response_model=JobResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_job(
    db: DbSession,
    tenant_id: TenantId,
    orchestrator: Orchestrator,
    job_id: Annotated[UUID, Path()],
    payload: CancelJobRequest | None = None,
) -> JobResponse:
    """Request cooperative cancellation of a PENDING or RUNNING job."""
    job = await orchestrator.cancel(job_id, tenant_id, payload.message if payload else None)
    await db.commit()
    return JobResponse.model_validate(job)
