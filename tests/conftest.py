"""Pytest fixtures for netpay engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.calculators.engine import PayrollEngine
from netpay_engine.calculators.statutory_resolver import (
    DEFAULT_PAGIBIG,
    DEFAULT_PHILHEALTH,
    DEFAULT_WITHHOLDING,
    StatutoryTableResolver,
    default_sss_brackets,
)
from netpay_engine.calculators.types import StatutoryTables
from netpay_engine.config import Settings
from netpay_engine.database import Database
from netpay_engine.models import CompanyProfile, Employee, PayrollRun, StatutoryVersion, Tenant
from netpay_engine.services.payroll_run_service import PayrollRunService

BASE_SETTINGS = Settings(
    database_url="sqlite+aiosqlite://",
    engine_version="test",
    host="127.0.0.1",
    port=8000,
    debug=False,
    log_level="DEBUG",
    worker_url="",
    worker_token="",
    progress_batch_size=1,
    default_country="PH",
    other_benefits_exempt_ceiling=Decimal("90000"),
)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a file-backed SQLite database.

    A file (not ``:memory:``) lets the job runner open its own connections
    and still see committed data.
    """
    return replace(BASE_SETTINGS, database_url=f"sqlite+aiosqlite:///{tmp_path / 'netpay.db'}")


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    """Create the schema in a fresh database."""
    db = Database(settings.database_url)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with database.session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def default_tables() -> StatutoryTables:
    """Built-in Philippine tables, detached from the database."""
    return StatutoryTables(
        version_id=None,
        sss=default_sss_brackets(),
        withholding=dict(DEFAULT_WITHHOLDING),
        philhealth=DEFAULT_PHILHEALTH,
        pagibig=DEFAULT_PAGIBIG,
    )


@pytest.fixture
async def statutory_version(session: AsyncSession) -> StatutoryVersion:
    """The default published version for PH."""
    version = await StatutoryTableResolver(session).ensure_default_version("PH")
    await session.commit()
    return version


@pytest.fixture
async def test_tenant(session: AsyncSession) -> Tenant:
    """Create a test tenant with a default company profile."""
    tenant = Tenant(name="Test Company", country="PH")
    session.add(tenant)
    await session.flush()
    session.add(CompanyProfile(tenant_id=tenant.tenant_id))
    await session.commit()
    return tenant


@pytest.fixture
def make_employee(session: AsyncSession, test_tenant: Tenant):
    """Factory for employees of the test tenant."""

    async def factory(code: str = "E-001", monthly_basic: str = "20000", **flags) -> Employee:
        employee = Employee(
            tenant_id=test_tenant.tenant_id,
            employee_code=code,
            first_name="Juan",
            last_name=f"Dela Cruz {code}",
            monthly_basic=Decimal(monthly_basic),
            **flags,
        )
        session.add(employee)
        await session.commit()
        return employee

    return factory


@pytest.fixture
async def test_employee(make_employee) -> Employee:
    """Create a regular employee earning 20,000 a month."""
    return await make_employee()


@pytest.fixture
def compute_run(session: AsyncSession, settings: Settings, test_tenant: Tenant, statutory_version):
    """Create a run for a cutoff, compute it and mark it COMPUTED."""

    async def factory(code="MONTHLY", start=date(2024, 5, 1), end=date(2024, 5, 31)) -> PayrollRun:
        service = PayrollRunService(session)
        run, _ = await service.create_run(test_tenant.tenant_id, code, start, end)
        totals = await PayrollEngine(session, settings).execute(run.payroll_run_id, test_tenant.tenant_id)
        await service.mark_computed(run.payroll_run_id, test_tenant.tenant_id, totals)
        await session.commit()
        return run

    return factory
