"""Payroll run API endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from netpay_engine.api.dependencies import DbSession, Orchestrator, TenantId
from netpay_engine.api.schemas import (
    AccountingPostResponse,
    DeleteRunResponse,
    ErrorResponse,
    GenerateResponse,
    JobResponse,
    PayrollRunDetailResponse,
    PayrollRunGenerate,
    PayrollRunResponse,
    TransitionRequest,
)
from netpay_engine.services.handlers import TASK_ACCOUNTING_POST, TASK_PAYROLL_GENERATE
from netpay_engine.services.payroll_run_service import PayrollRunService

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])

RunId = Annotated[UUID, Path()]


@router.post(
    "/generate",
    response_model=GenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def generate_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    orchestrator: Orchestrator,
    payload: PayrollRunGenerate,
) -> GenerateResponse:
    """Create (or reuse) the DRAFT run for a cutoff and queue its computation.

    Repeating the call while a computation is in flight returns the same job.
    """
    run, _ = await PayrollRunService(db).create_run(
        tenant_id, payload.payroll_code, payload.period_start, payload.period_end
    )
    job, created = await orchestrator.submit(
        tenant_id,
        TASK_PAYROLL_GENERATE,
        {"payroll_run_id": str(run.payroll_run_id)},
        target_id=run.payroll_run_id,
    )
    await db.commit()
    await orchestrator.dispatch(job)
    return GenerateResponse(
        run=PayrollRunResponse.model_validate(run),
        job=JobResponse.model_validate(job),
        created=created,
    )


@router.get("", response_model=list[PayrollRunResponse])
async def list_payroll_runs(
    db: DbSession,
    tenant_id: TenantId,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[PayrollRunResponse]:
    runs = await PayrollRunService(db).list_runs(tenant_id, status_filter)
    return [PayrollRunResponse.model_validate(r) for r in runs]


@router.get(
    "/{payroll_run_id}",
    response_model=PayrollRunDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    payroll_run_id: RunId,
) -> PayrollRunDetailResponse:
    """Get a run with its computed rows."""
    run = await PayrollRunService(db).get_run(payroll_run_id, tenant_id, load_rows=True)
    return PayrollRunDetailResponse.model_validate(run)


@router.delete(
    "/{payroll_run_id}",
    response_model=DeleteRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    payroll_run_id: RunId,
) -> DeleteRunResponse:
    cancelled = await PayrollRunService(db).delete(payroll_run_id, tenant_id)
    await db.commit()
    return DeleteRunResponse(payroll_run_id=payroll_run_id, cancelled_jobs=cancelled)


@router.post(
    "/{payroll_run_id}/approve",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    payroll_run_id: RunId,
    payload: TransitionRequest | None = None,
) -> PayrollRunResponse:
    """Approve a COMPUTED run, snapshotting each row's adjustment inputs."""
    actor = payload.actor_user_id if payload else None
    run = await PayrollRunService(db).approve(payroll_run_id, tenant_id, actor)
    await db.commit()
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/{payroll_run_id}/post",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def post_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    payroll_run_id: RunId,
    payload: TransitionRequest | None = None,
) -> PayrollRunResponse:
    """Post an APPROVED run to payroll history."""
    actor = payload.actor_user_id if payload else None
    run = await PayrollRunService(db).post(payroll_run_id, tenant_id, actor)
    await db.commit()
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/{payroll_run_id}/unpost",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def unpost_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    payroll_run_id: RunId,
) -> PayrollRunResponse:
    """Reverse a posting; the run returns to APPROVED."""
    run = await PayrollRunService(db).unpost(payroll_run_id, tenant_id)
    await db.commit()
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/{payroll_run_id}/accounting",
    response_model=AccountingPostResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def send_to_accounting(
    db: DbSession,
    tenant_id: TenantId,
    orchestrator: Orchestrator,
    payroll_run_id: RunId,
) -> AccountingPostResponse:
    """Queue pushing a POSTED run to the accounting system."""
    await PayrollRunService(db).get_run(payroll_run_id, tenant_id)
    job, created = await orchestrator.submit(
        tenant_id,
        TASK_ACCOUNTING_POST,
        {"payroll_run_id": str(payroll_run_id)},
        target_id=payroll_run_id,
    )
    await db.commit()
    await orchestrator.dispatch(job)
    return AccountingPostResponse(job=JobResponse.model_validate(job), created=created)
