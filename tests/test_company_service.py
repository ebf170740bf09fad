"""Tests for company profile settings."""

from decimal import Decimal
from uuid import uuid4

import pytest

from netpay_engine.errors import NotFoundError, ValidationError
from netpay_engine.models import CompanyProfile, Tenant
from netpay_engine.services.company_service import CompanyProfileService, parse_pay_frequency


def test_parse_pay_frequency():
    assert parse_pay_frequency("Semi-Monthly") == "SEMI_MONTHLY"
    assert parse_pay_frequency("semi monthly") == "SEMI_MONTHLY"
    assert parse_pay_frequency("monthly") == "MONTHLY"
    with pytest.raises(ValidationError):
        parse_pay_frequency("weekly")


class TestCompanyProfileService:
    @pytest.fixture
    async def bare_tenant(self, session) -> Tenant:
        tenant = Tenant(name="New Company", country="PH")
        session.add(tenant)
        await session.commit()
        return tenant

    async def test_defaults_before_first_save(self, session, bare_tenant):
        profile = await CompanyProfileService(session).get(bare_tenant.tenant_id)

        assert profile.pay_frequency == "SEMI_MONTHLY"
        assert profile.working_days_per_year == 261
        assert profile.compute_tax is True
        assert await session.get(CompanyProfile, bare_tenant.tenant_id) is None

    async def test_upsert_creates_then_updates(self, session, bare_tenant):
        service = CompanyProfileService(session)
        await service.upsert(bare_tenant.tenant_id, {"pay_frequency": "Monthly", "philhealth_rate": "0.05"})
        await session.commit()

        updated = await service.upsert(bare_tenant.tenant_id, {"working_days_per_year": 313})
        await session.commit()

        assert updated.pay_frequency == "MONTHLY"
        assert updated.working_days_per_year == 313
        assert updated.philhealth_rate == Decimal("0.05")

    async def test_null_clears_override(self, session, test_tenant):
        service = CompanyProfileService(session)
        await service.upsert(test_tenant.tenant_id, {"pagibig_max_base": "10000"})
        cleared = await service.upsert(test_tenant.tenant_id, {"pagibig_max_base": None})

        assert cleared.pagibig_max_base is None

    @pytest.mark.parametrize(
        "changes",
        [
            {"working_days_per_year": 0},
            {"working_days_per_year": 400},
            {"philhealth_rate": "1.5"},
            {"pagibig_max_base": "-1"},
            {"philhealth_min_base": "50000", "philhealth_max_base": "10000"},
            {"pay_frequency": "weekly"},
            {"tenant_id": str(uuid4())},
        ],
    )
    async def test_rejects_invalid_settings(self, session, test_tenant, changes):
        service = CompanyProfileService(session)

        with pytest.raises(ValidationError):
            await service.upsert(test_tenant.tenant_id, changes)
        profile = await service.get(test_tenant.tenant_id)
        assert profile.working_days_per_year == 261
        assert profile.philhealth_rate is None

    async def test_unknown_tenant(self, session):
        with pytest.raises(NotFoundError):
            await CompanyProfileService(session).get(uuid4())
