"""Per-tenant company profile settings."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.calculators.money import to_decimal
from netpay_engine.calculators.types import DEFAULT_WORKING_DAYS
from netpay_engine.errors import NotFoundError, ValidationError
from netpay_engine.models import CompanyProfile, Tenant

logger = logging.getLogger(__name__)

PAY_FREQUENCIES = ("SEMI_MONTHLY", "MONTHLY")

RATE_FIELDS = ("philhealth_rate", "pagibig_ee_rate", "pagibig_er_rate")
BASE_FIELDS = ("philhealth_min_base", "philhealth_max_base", "pagibig_max_base")


def parse_pay_frequency(value: str | None) -> str:
    """Accept 'Semi-Monthly', 'semi monthly' and the like."""
    wanted = "_".join(str(value or "").replace("-", " ").upper().split())
    if wanted not in PAY_FREQUENCIES:
        raise ValidationError(
            f"pay_frequency must be one of {', '.join(PAY_FREQUENCIES)}",
            {"pay_frequency": value},
        )
    return wanted


def default_profile(tenant_id: UUID) -> CompanyProfile:
    return CompanyProfile(
        tenant_id=tenant_id,
        pay_frequency="SEMI_MONTHLY",
        working_days_per_year=DEFAULT_WORKING_DAYS,
        compute_tax=True,
    )


class CompanyProfileService:
    """Reads and upserts the payroll settings of one tenant.

    Scheme overrides left as None fall back to the statutory version; a
    profile is never deleted.
    """

    EDITABLE = ("pay_frequency", "working_days_per_year", "compute_tax") + RATE_FIELDS + BASE_FIELDS

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, tenant_id: UUID) -> CompanyProfile:
        """Stored profile, or an unsaved one carrying the defaults."""
        await self._require_tenant(tenant_id)
        profile = await self.session.get(CompanyProfile, tenant_id)
        return profile if profile is not None else default_profile(tenant_id)

    async def upsert(self, tenant_id: UUID, changes: Mapping[str, Any]) -> CompanyProfile:
        unknown = set(changes) - set(self.EDITABLE)
        if unknown:
            raise ValidationError(f"Cannot edit {', '.join(sorted(unknown))}", {"fields": sorted(unknown)})
        await self._require_tenant(tenant_id)

        profile = await self.session.get(CompanyProfile, tenant_id)
        created = profile is None
        if profile is None:
            profile = default_profile(tenant_id)

        values = self._validate(profile, changes)
        for key, value in values.items():
            setattr(profile, key, value)
        if created:
            self.session.add(profile)
        await self.session.flush()
        logger.info("%s company profile for tenant %s", "Created" if created else "Updated", tenant_id)
        return profile

    @staticmethod
    def _validate(profile: CompanyProfile, changes: Mapping[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if "pay_frequency" in changes:
            values["pay_frequency"] = parse_pay_frequency(changes["pay_frequency"])
        if "working_days_per_year" in changes:
            days = changes["working_days_per_year"]
            if days is None:
                days = DEFAULT_WORKING_DAYS
            if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= 366:
                raise ValidationError(
                    "working_days_per_year must be between 1 and 366",
                    {"working_days_per_year": days},
                )
            values["working_days_per_year"] = days
        if "compute_tax" in changes:
            values["compute_tax"] = bool(changes["compute_tax"])
        for name in RATE_FIELDS:
            if name in changes:
                rate = None if changes[name] is None else to_decimal(changes[name], name)
                if rate is not None and not Decimal("0") <= rate <= Decimal("1"):
                    raise ValidationError(f"{name} must be between 0 and 1", {name: str(rate)})
                values[name] = rate
        for name in BASE_FIELDS:
            if name in changes:
                base = None if changes[name] is None else to_decimal(changes[name], name)
                if base is not None and base < 0:
                    raise ValidationError(f"{name} must not be negative", {name: str(base)})
                values[name] = base

        low = values.get("philhealth_min_base", profile.philhealth_min_base)
        high = values.get("philhealth_max_base", profile.philhealth_max_base)
        if low is not None and high is not None and high < low:
            raise ValidationError(
                "philhealth_max_base must not be below philhealth_min_base",
                {"philhealth_min_base": str(low), "philhealth_max_base": str(high)},
            )
        return values

    async def _require_tenant(self, tenant_id: UUID) -> None:
        if await self.session.get(Tenant, tenant_id) is None:
            raise NotFoundError("Tenant", tenant_id)
