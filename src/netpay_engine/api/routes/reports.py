"""Tax annualization reports."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from netpay_engine.api.dependencies import AppSettings, DbSession, TenantId
from netpay_engine.api.schemas import (
    AdjustmentBatchResponse,
    AnnualizationResponse,
    ErrorResponse,
    ProjectionResponse,
    SettlementRequest,
)
from netpay_engine.calculators.annualization import TaxAnnualizer

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get(
    "/annualization",
    response_model=list[AnnualizationResponse],
    responses={400: {"model": ErrorResponse}},
)
async def annualization(
    db: DbSession,
    settings: AppSettings,
    tenant_id: TenantId,
    year: Annotated[int, Query()],
) -> list[AnnualizationResponse]:
    """Annual tax due against tax withheld, per employee, from posted history."""
    results = await TaxAnnualizer(db, settings).final(tenant_id, year)
    return [AnnualizationResponse.model_validate(r) for r in results]


@router.get(
    "/pre-annualization",
    response_model=list[ProjectionResponse],
    responses={400: {"model": ErrorResponse}},
)
async def pre_annualization(
    db: DbSession,
    settings: AppSettings,
    tenant_id: TenantId,
    year: Annotated[int, Query()],
    through_month: Annotated[int, Query(ge=1, le=12)],
) -> list[ProjectionResponse]:
    results = await TaxAnnualizer(db, settings).projection(tenant_id, year, through_month)
    return [ProjectionResponse.model_validate(r) for r in results]


@router.post(
    "/annualization/settle",
    response_model=AdjustmentBatchResponse,
    responses={400: {"model": ErrorResponse}},
)
async def settle_annualization(
    db: DbSession,
    settings: AppSettings,
    tenant_id: TenantId,
    payload: SettlementRequest,
) -> AdjustmentBatchResponse:
    """Enter each year-end difference as Withholding Tax for a SPECIAL run."""
    result = await TaxAnnualizer(db, settings).apply_settlement(tenant_id, payload.year, payload.period_key)
    await db.commit()
    return AdjustmentBatchResponse(upserted=result.upserted, deleted=result.deleted)
