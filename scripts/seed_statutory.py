"""Seed script for the built-in statutory tables and a demo tenant.

Run with:
    python scripts/seed_statutory.py [--demo]

Creates the schema when missing, provisions the default published
statutory version for the configured country and, with ``--demo``, a
sample tenant with a handful of employees.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.calculators.statutory_resolver import StatutoryTableResolver
from netpay_engine.config import get_settings
from netpay_engine.database import Database
from netpay_engine.models import CompanyProfile, Employee, Tenant
from netpay_engine.services.adjustment_service import AdjustmentTypeService

logger = logging.getLogger("seed_statutory")

DEMO_TENANT = "Demo Trading Corp."

DEMO_EMPLOYEES = [
    {"employee_code": "E-001", "first_name": "Maria", "last_name": "Santos", "monthly_basic": Decimal("25000")},
    {"employee_code": "E-002", "first_name": "Jose", "last_name": "Reyes", "monthly_basic": Decimal("18000")},
    {"employee_code": "E-003", "first_name": "Ana", "last_name": "Cruz", "monthly_basic": Decimal("42000")},
    {
        "employee_code": "C-001",
        "first_name": "Paolo",
        "last_name": "Garcia",
        "monthly_basic": Decimal("30000"),
        "is_consultant": True,
        "consultant_tax_rate": Decimal("0.10"),
    },
    {
        "employee_code": "D-001",
        "first_name": "Ramon",
        "last_name": "Bautista",
        "monthly_basic": Decimal("0"),
        "pay_basis": "DAILY",
        "daily_rate": Decimal("645"),
    },
]


async def seed_demo_tenant(session: AsyncSession, country: str) -> Tenant:
    result = await session.execute(select(Tenant).where(Tenant.name == DEMO_TENANT))
    tenant = result.scalar_one_or_none()
    if tenant is not None:
        logger.info("Demo tenant already exists: %s", tenant.tenant_id)
        return tenant

    tenant = Tenant(name=DEMO_TENANT, country=country)
    session.add(tenant)
    await session.flush()
    session.add(CompanyProfile(tenant_id=tenant.tenant_id))
    session.add_all([Employee(tenant_id=tenant.tenant_id, **e) for e in DEMO_EMPLOYEES])
    await session.flush()
    await AdjustmentTypeService(session).seed_defaults(tenant.tenant_id)
    logger.info("Created demo tenant %s with %d employees", tenant.tenant_id, len(DEMO_EMPLOYEES))
    return tenant


async def main(demo: bool) -> None:
    """Run seed script."""
    settings = get_settings()
    database = Database(settings.database_url, echo=settings.debug)
    try:
        await database.create_all()
        async with database.session() as session:
            version = await StatutoryTableResolver(session).ensure_default_version(settings.default_country)
            logger.info(
                "Statutory version %s for %s effective %s",
                version.statutory_version_id,
                version.country,
                version.effective_from,
            )
            if demo:
                await seed_demo_tenant(session, settings.default_country)
    finally:
        await database.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--demo", action="store_true", help="also create a demo tenant")
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level, format="%(levelname)s %(message)s")
    asyncio.run(main(args.demo))
