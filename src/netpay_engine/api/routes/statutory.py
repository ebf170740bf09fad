"""Statutory table version endpoints."""

from __future__ import annotations

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status
from pydantic import BaseModel

from netpay_engine.api.dependencies import AppSettings, DbSession
from netpay_engine.api.schemas import (
    ErrorResponse,
    StatutoryTablesRequest,
    StatutoryVersionCreate,
    StatutoryVersionDetailResponse,
    StatutoryVersionResponse,
)
from netpay_engine.calculators.statutory_resolver import StatutoryTableResolver

router = APIRouter(prefix="/statutory", tags=["statutory"])

VersionId = Annotated[UUID, Path()]


@router.get("/versions", response_model=list[StatutoryVersionResponse])
async def list_versions(
    db: DbSession,
    settings: AppSettings,
    country: str | None = None,
) -> list[StatutoryVersionResponse]:
    versions = await StatutoryTableResolver(db).list_versions(country or settings.default_country)
    return [StatutoryVersionResponse.model_validate(v) for v in versions]


@router.post(
    "/versions",
    response_model=StatutoryVersionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_version(
    db: DbSession,
    settings: AppSettings,
    payload: StatutoryVersionCreate,
) -> StatutoryVersionResponse:
    """Create an empty DRAFT version."""
    version = await StatutoryTableResolver(db).create_draft(
        (payload.country or settings.default_country).upper(),
        payload.effective_from,
        payload.effective_to,
        payload.note,
    )
    await db.commit()
    return StatutoryVersionResponse.model_validate(version)


@router.get(
    "/versions/{statutory_version_id}",
    response_model=StatutoryVersionDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_version(db: DbSession, statutory_version_id: VersionId) -> StatutoryVersionDetailResponse:
    version = await StatutoryTableResolver(db).get_version(statutory_version_id)
    return StatutoryVersionDetailResponse.model_validate(version)


@router.put(
    "/versions/{statutory_version_id}/tables",
    response_model=StatutoryVersionDetailResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def replace_tables(
    db: DbSession,
    statutory_version_id: VersionId,
    payload: StatutoryTablesRequest,
) -> StatutoryVersionDetailResponse:
    """Replace the tables of a DRAFT version; malformed brackets are rejected."""
    resolver = StatutoryTableResolver(db)
    await resolver.replace_tables(
        statutory_version_id,
        sss_rows=_dump(payload.sss_brackets),
        tax_rows=_dump(payload.tax_brackets),
        rate_rows=_dump(payload.rate_parameters),
    )
    await db.commit()
    version = await resolver.get_version(statutory_version_id)
    return StatutoryVersionDetailResponse.model_validate(version)


def _dump(items: list[BaseModel] | None) -> list[dict] | None:
    return None if items is None else [i.model_dump() for i in items]


@router.post(
    "/versions/{statutory_version_id}/publish",
    response_model=StatutoryVersionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def publish_version(db: DbSession, statutory_version_id: VersionId) -> StatutoryVersionResponse:
    version = await StatutoryTableResolver(db).publish(statutory_version_id)
    await db.commit()
    return StatutoryVersionResponse.model_validate(version)


@router.get(
    "/resolve",
    response_model=StatutoryVersionResponse,
    responses={422: {"model": ErrorResponse}},
)
async def resolve_version(
    db: DbSession,
    settings: AppSettings,
    as_of: Annotated[date, Query()],
    country: str | None = None,
) -> StatutoryVersionResponse:
    """The PUBLISHED version in force on ``as_of``."""
    version = await StatutoryTableResolver(db).resolve((country or settings.default_country).upper(), as_of)
    return StatutoryVersionResponse.model_validate(version)
