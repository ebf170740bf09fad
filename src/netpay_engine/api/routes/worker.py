"""Worker-side entry point called by the task dispatcher."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, status

from netpay_engine.api.dependencies import Orchestrator, Runner, verify_worker_token
from netpay_engine.api.schemas import ErrorResponse, WorkerExecuteRequest, WorkerExecuteResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/worker", tags=["worker"], dependencies=[Depends(verify_worker_token)])


@router.post(
    "/execute",
    response_model=WorkerExecuteResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def execute_job(
    payload: WorkerExecuteRequest,
    orchestrator: Orchestrator,
    runner: Runner,
    background: BackgroundTasks,
) -> WorkerExecuteResponse:
    """Accept a job and run it after the response is sent."""
    job = await orchestrator.get(payload.job_id, payload.tenant_id)
    logger.info("Worker accepted job %s (%s, %s)", job.job_id, job.type, job.status)
    background.add_task(runner.run, job.job_id)
    return WorkerExecuteResponse(job_id=job.job_id, status=job.status)
