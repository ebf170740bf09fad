"""Adjustment catalog endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Response, status

from netpay_engine.api.dependencies import DbSession, TenantId
from netpay_engine.api.schemas import (
    AdjustmentTypeCreate,
    AdjustmentTypeResponse,
    ErrorResponse,
    SeedAdjustmentTypesResponse,
)
from netpay_engine.services.adjustment_service import AdjustmentTypeService

router = APIRouter(prefix="/adjustment-types", tags=["adjustments"])


@router.get("", response_model=list[AdjustmentTypeResponse])
async def list_adjustment_types(db: DbSession, tenant_id: TenantId) -> list[AdjustmentTypeResponse]:
    types = await AdjustmentTypeService(db).list_types(tenant_id)
    return [AdjustmentTypeResponse.model_validate(t) for t in types]


@router.post(
    "",
    response_model=AdjustmentTypeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_adjustment_type(
    db: DbSession,
    tenant_id: TenantId,
    payload: AdjustmentTypeCreate,
) -> AdjustmentTypeResponse:
    adjustment_type = await AdjustmentTypeService(db).create_type(tenant_id, payload.name, payload.category)
    await db.commit()
    return AdjustmentTypeResponse.model_validate(adjustment_type)


@router.post("/seed", response_model=SeedAdjustmentTypesResponse)
async def seed_adjustment_types(db: DbSession, tenant_id: TenantId) -> SeedAdjustmentTypesResponse:
    """Add the default catalog; re-running resets default names to their default category."""
    result = await AdjustmentTypeService(db).seed_defaults(tenant_id)
    await db.commit()
    return SeedAdjustmentTypesResponse(created=result.created, updated=result.updated, total=result.total)


@router.delete(
    "/{adjustment_type_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_adjustment_type(
    db: DbSession,
    tenant_id: TenantId,
    adjustment_type_id: Annotated[UUID, Path()],
) -> Response:
    await AdjustmentTypeService(db).delete_type(tenant_id, adjustment_type_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
