"""Adjustment catalog and recurring definition administration."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.calculators.adjustment_resolver import resolve_category
from netpay_engine.calculators.money import round_currency, to_decimal
from netpay_engine.calculators.types import Category
from netpay_engine.errors import ConflictError, NotFoundError, ValidationError
from netpay_engine.models import AdjustmentType, Employee, RecurringAdjustment

logger = logging.getLogger(__name__)

RECURRING_MODES = ("SPLIT", "1ST", "2ND")

# Catalog every new tenant can start from
DEFAULT_ADJUSTMENT_TYPES: tuple[tuple[str, Category], ...] = (
    ("OT Hours", Category.TAXABLE_EARNING),
    ("Absence Days", Category.BASIC_PAY_RELATED),
    ("Late Minutes", Category.BASIC_PAY_RELATED),
    ("ND Hours", Category.TAXABLE_EARNING),
    ("Rest Day Hours", Category.TAXABLE_EARNING),
    ("Holiday Hours", Category.TAXABLE_EARNING),
    ("Special Holiday Hours", Category.TAXABLE_EARNING),
    ("Days Worked", Category.BASIC_PAY_RELATED),
    ("Rice Subsidy", Category.DE_MINIMIS),
    ("Clothing Allowance", Category.DE_MINIMIS),
    ("Laundry Allowance", Category.DE_MINIMIS),
    ("Medical Cash Allowance", Category.DE_MINIMIS),
    ("Transportation Allowance", Category.NON_TAXABLE_OTHER),
    ("Meal Allowance", Category.NON_TAXABLE_OTHER),
    ("13th Month Pay", Category.OTHER_BENEFITS),
    ("Cash Advance", Category.DEDUCTION),
    ("Loan Deduction", Category.DEDUCTION),
    ("SSS Loan", Category.DEDUCTION),
    ("Pag-IBIG Loan", Category.DEDUCTION),
    ("Reimbursement", Category.ADDITION),
    ("Allowance Adjustment", Category.ADDITION),
)


@dataclass
class SeedResult:
    created: int = 0
    updated: int = 0
    total: int = 0


def clean_name(name: str | None) -> str:
    cleaned = " ".join((name or "").split())
    if not cleaned:
        raise ValidationError("name is required", {"name": name})
    return cleaned


def parse_mode(mode: str | None) -> str:
    wanted = (mode or "SPLIT").strip().upper()
    if wanted not in RECURRING_MODES:
        raise ValidationError(
            f"mode must be one of {', '.join(RECURRING_MODES)}",
            {"mode": mode},
        )
    return wanted


class AdjustmentTypeService:
    """Tenant catalog of adjustment names and their categories.

    A cataloged category wins over whatever label is entered with an amount,
    so changes here reclassify every unposted input of that name.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_types(self, tenant_id: UUID) -> list[AdjustmentType]:
        result = await self.session.execute(
            select(AdjustmentType)
            .where(AdjustmentType.tenant_id == tenant_id)
            .order_by(AdjustmentType.name)
        )
        return list(result.scalars().all())

    async def create_type(self, tenant_id: UUID, name: str, category: str) -> AdjustmentType:
        cleaned = clean_name(name)
        resolved = resolve_category(cleaned, category)
        if await self._find(tenant_id, cleaned) is not None:
            raise ConflictError(f"Adjustment type '{cleaned}' already exists", {"name": cleaned})

        adjustment_type = AdjustmentType(tenant_id=tenant_id, name=cleaned, category=resolved.value)
        self.session.add(adjustment_type)
        await self.session.flush()
        return adjustment_type

    async def delete_type(self, tenant_id: UUID, adjustment_type_id: UUID) -> None:
        result = await self.session.execute(
            select(AdjustmentType).where(
                AdjustmentType.adjustment_type_id == adjustment_type_id,
                AdjustmentType.tenant_id == tenant_id,
            )
        )
        adjustment_type = result.scalar_one_or_none()
        if adjustment_type is None:
            raise NotFoundError("AdjustmentType", adjustment_type_id)
        await self.session.delete(adjustment_type)
        await self.session.flush()

    async def seed_defaults(self, tenant_id: UUID) -> SeedResult:
        """Add the default catalog; existing names are reset to the default category."""
        outcome = SeedResult(total=len(DEFAULT_ADJUSTMENT_TYPES))
        for name, category in DEFAULT_ADJUSTMENT_TYPES:
            existing = await self._find(tenant_id, name)
            if existing is None:
                self.session.add(AdjustmentType(tenant_id=tenant_id, name=name, category=category.value))
                outcome.created += 1
            elif existing.category != category.value:
                existing.category = category.value
                outcome.updated += 1
        await self.session.flush()
        logger.info(
            "Seeded adjustment types for tenant %s: %d created, %d updated",
            tenant_id,
            outcome.created,
            outcome.updated,
        )
        return outcome

    async def _find(self, tenant_id: UUID, name: str) -> AdjustmentType | None:
        result = await self.session.execute(
            select(AdjustmentType).where(
                AdjustmentType.tenant_id == tenant_id,
                AdjustmentType.name == name,
            )
        )
        return result.scalar_one_or_none()


class RecurringAdjustmentService:
    """Create, edit and retire recurring definitions.

    Definitions only take effect when a cutoff is materialized with
    AdjustmentResolver.apply_recurring.
    """

    EDITABLE = ("name", "category", "amount", "mode", "max_amount", "start_date", "end_date", "active")

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_definitions(
        self, tenant_id: UUID, employee_id: UUID | None = None
    ) -> list[RecurringAdjustment]:
        query = select(RecurringAdjustment).where(RecurringAdjustment.tenant_id == tenant_id)
        if employee_id is not None:
            query = query.where(RecurringAdjustment.employee_id == employee_id)
        result = await self.session.execute(
            query.order_by(RecurringAdjustment.employee_id, RecurringAdjustment.name)
        )
        return list(result.scalars().all())

    async def get(self, tenant_id: UUID, recurring_adjustment_id: UUID) -> RecurringAdjustment:
        result = await self.session.execute(
            select(RecurringAdjustment).where(
                RecurringAdjustment.recurring_adjustment_id == recurring_adjustment_id,
                RecurringAdjustment.tenant_id == tenant_id,
            )
        )
        definition = result.scalar_one_or_none()
        if definition is None:
            raise NotFoundError("RecurringAdjustment", recurring_adjustment_id)
        return definition

    async def create(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        name: str,
        category: str,
        amount: Any,
        mode: str | None = None,
        max_amount: Any = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> RecurringAdjustment:
        employee = await self.session.get(Employee, employee_id)
        if employee is None or employee.tenant_id != tenant_id:
            raise NotFoundError("Employee", employee_id)

        definition = RecurringAdjustment(tenant_id=tenant_id, employee_id=employee_id, active=True)
        self._apply(definition, {
            "name": name,
            "category": category,
            "amount": amount,
            "mode": mode,
            "max_amount": max_amount,
            "start_date": start_date,
            "end_date": end_date,
        })
        self.session.add(definition)
        await self.session.flush()
        return definition

    async def update(
        self, tenant_id: UUID, recurring_adjustment_id: UUID, changes: Mapping[str, Any]
    ) -> RecurringAdjustment:
        """Apply a partial edit; keys left out are unchanged, None clears optional fields."""
        unknown = set(changes) - set(self.EDITABLE)
        if unknown:
            raise ValidationError(f"Cannot edit {', '.join(sorted(unknown))}", {"fields": sorted(unknown)})
        definition = await self.get(tenant_id, recurring_adjustment_id)
        self._apply(definition, changes)
        await self.session.flush()
        return definition

    async def delete(self, tenant_id: UUID, recurring_adjustment_id: UUID) -> None:
        """Remove a definition; amounts it already materialized stay in place."""
        definition = await self.get(tenant_id, recurring_adjustment_id)
        await self.session.delete(definition)
        await self.session.flush()

    @staticmethod
    def _apply(definition: RecurringAdjustment, changes: Mapping[str, Any]) -> None:
        """Validate every change before touching the definition."""
        values: dict[str, Any] = {}
        name = definition.name
        if "name" in changes:
            name = values["name"] = clean_name(changes["name"])
        if "category" in changes or "name" in changes:
            label = changes.get("category", definition.category)
            values["category"] = resolve_category(name, label).value
        if "amount" in changes:
            if changes["amount"] is None:
                raise ValidationError("amount is required", {"name": name})
            amount = round_currency(to_decimal(changes["amount"], "amount"))
            if amount == 0:
                raise ValidationError("amount must not be zero", {"name": name})
            values["amount"] = amount
        if "mode" in changes:
            values["mode"] = parse_mode(changes["mode"])
        if "max_amount" in changes:
            cap = changes["max_amount"]
            values["max_amount"] = None if cap is None else round_currency(to_decimal(cap, "max_amount"))
            if values["max_amount"] is not None and values["max_amount"] < Decimal("0"):
                raise ValidationError("max_amount must not be negative", {"max_amount": str(cap)})
        if "start_date" in changes:
            values["start_date"] = changes["start_date"]
        if "end_date" in changes:
            values["end_date"] = changes["end_date"]
        if "active" in changes:
            values["active"] = bool(changes["active"])

        start = values.get("start_date", definition.start_date)
        end = values.get("end_date", definition.end_date)
        if start is not None and end is not None and end < start:
            raise ValidationError(
                "end_date must not be before start_date",
                {"start_date": str(start), "end_date": str(end)},
            )
        for key, value in values.items():
            setattr(definition, key, value)
