"""Company profile endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from netpay_engine.api.dependencies import DbSession, TenantId
from netpay_engine.api.schemas import CompanyProfileResponse, CompanyProfileUpdate, ErrorResponse
from netpay_engine.services.company_service import CompanyProfileService

router = APIRouter(prefix="/company-profile", tags=["company"])


@router.get("", response_model=CompanyProfileResponse, responses={404: {"model": ErrorResponse}})
async def get_company_profile(db: DbSession, tenant_id: TenantId) -> CompanyProfileResponse:
    """Stored settings, or the defaults when none were saved yet."""
    profile = await CompanyProfileService(db).get(tenant_id)
    return CompanyProfileResponse.model_validate(profile)


@router.put(
    "",
    response_model=CompanyProfileResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_company_profile(
    db: DbSession,
    tenant_id: TenantId,
    payload: CompanyProfileUpdate,
) -> CompanyProfileResponse:
    """Upsert the fields sent; null resets a scheme override to the statutory value."""
    profile = await CompanyProfileService(db).upsert(tenant_id, payload.model_dump(exclude_unset=True))
    await db.commit()
    return CompanyProfileResponse.model_validate(profile)
