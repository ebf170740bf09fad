"""Adjustment entry endpoints."""

from __future__ import annotations

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Query

from netpay_engine.api.dependencies import DbSession, TenantId
from netpay_engine.api.schemas import (
    AdjustmentBatchRequest,
    AdjustmentBatchResponse,
    AdjustmentResponse,
    ApplyRecurringRequest,
    ApplyRecurringResponse,
    ErrorResponse,
)
from netpay_engine.calculators.adjustment_resolver import AdjustmentInput, AdjustmentResolver

router = APIRouter(prefix="/adjustments", tags=["adjustments"])


@router.post(
    "/batch",
    response_model=AdjustmentBatchResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def upsert_adjustments(
    db: DbSession,
    tenant_id: TenantId,
    payload: AdjustmentBatchRequest,
) -> AdjustmentBatchResponse:
    """Upsert manual entries; an amount of zero or null deletes the entry."""
    entries = [
        AdjustmentInput(
            employee_id=e.employee_id,
            name=e.name,
            period_key=e.period_key,
            amount=e.amount,
            category=e.category,
        )
        for e in payload.entries
    ]
    result = await AdjustmentResolver(db).upsert_batch(tenant_id, entries)
    await db.commit()
    return AdjustmentBatchResponse(upserted=result.upserted, deleted=result.deleted)


@router.get("", response_model=list[AdjustmentResponse])
async def list_adjustments(
    db: DbSession,
    tenant_id: TenantId,
    period_key: Annotated[str, Query(min_length=1)],
) -> list[AdjustmentResponse]:
    rows = await AdjustmentResolver(db).list_for_period(tenant_id, period_key)
    return [AdjustmentResponse.model_validate(r) for r in rows]


@router.post(
    "/apply-recurring",
    response_model=ApplyRecurringResponse,
    responses={400: {"model": ErrorResponse}},
)
async def apply_recurring(
    db: DbSession,
    tenant_id: TenantId,
    payload: ApplyRecurringRequest,
) -> ApplyRecurringResponse:
    """Materialize recurring adjustments into one semi-monthly cutoff."""
    result = await AdjustmentResolver(db).apply_recurring(
        tenant_id,
        payload.period_key,
        payload.payroll_code.upper(),
        payload.as_of or date.today(),
        payload.employee_ids,
    )
    await db.commit()
    return ApplyRecurringResponse(
        period_key=result.period_key,
        applied=result.applied,
        removed=result.removed,
        skipped_manual=result.skipped_manual,
    )
