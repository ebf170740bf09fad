"""Recurring adjustment definition endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Response, status

from netpay_engine.api.dependencies import DbSession, TenantId
from netpay_engine.api.schemas import (
    ErrorResponse,
    RecurringAdjustmentCreate,
    RecurringAdjustmentResponse,
    RecurringAdjustmentUpdate,
)
from netpay_engine.services.adjustment_service import RecurringAdjustmentService

router = APIRouter(prefix="/recurring-adjustments", tags=["adjustments"])

DefinitionId = Annotated[UUID, Path()]


@router.get("", response_model=list[RecurringAdjustmentResponse])
async def list_recurring_adjustments(
    db: DbSession,
    tenant_id: TenantId,
    employee_id: UUID | None = None,
) -> list[RecurringAdjustmentResponse]:
    definitions = await RecurringAdjustmentService(db).list_definitions(tenant_id, employee_id)
    return [RecurringAdjustmentResponse.model_validate(d) for d in definitions]


@router.post(
    "",
    response_model=RecurringAdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def create_recurring_adjustment(
    db: DbSession,
    tenant_id: TenantId,
    payload: RecurringAdjustmentCreate,
) -> RecurringAdjustmentResponse:
    definition = await RecurringAdjustmentService(db).create(
        tenant_id,
        payload.employee_id,
        payload.name,
        payload.category,
        payload.amount,
        mode=payload.mode,
        max_amount=payload.max_amount,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    await db.commit()
    return RecurringAdjustmentResponse.model_validate(definition)


@router.patch(
    "/{recurring_adjustment_id}",
    response_model=RecurringAdjustmentResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_recurring_adjustment(
    db: DbSession,
    tenant_id: TenantId,
    recurring_adjustment_id: DefinitionId,
    payload: RecurringAdjustmentUpdate,
) -> RecurringAdjustmentResponse:
    """Edit a definition; send active=false to stop it without deleting."""
    definition = await RecurringAdjustmentService(db).update(
        tenant_id, recurring_adjustment_id, payload.model_dump(exclude_unset=True)
    )
    await db.commit()
    return RecurringAdjustmentResponse.model_validate(definition)


@router.delete(
    "/{recurring_adjustment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_recurring_adjustment(
    db: DbSession,
    tenant_id: TenantId,
    recurring_adjustment_id: DefinitionId,
) -> Response:
    await RecurringAdjustmentService(db).delete(tenant_id, recurring_adjustment_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
