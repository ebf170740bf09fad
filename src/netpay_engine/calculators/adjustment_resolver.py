"""Adjustment resolution, batch editing and recurring materialization."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.calculators.money import ZERO, half_up, round_currency, to_decimal
from netpay_engine.calculators.types import (
    Category,
    PayrollCode,
    TaxTreatment,
    canonical_component,
)
from netpay_engine.errors import NotFoundError, ValidationError
from netpay_engine.models import Adjustment, AdjustmentType, Employee, RecurringAdjustment

logger = logging.getLogger(__name__)

SOURCE_MANUAL = "manual"
SOURCE_RECURRING = "recurring"


@dataclass(frozen=True)
class ResolvedAdjustment:
    """A materialized adjustment amount with its effective category."""

    name: str
    category: Category
    amount: Decimal
    source: str = SOURCE_MANUAL


@dataclass
class AdjustmentTotals:
    """Adjustment amounts grouped the way the engine consumes them."""

    contribution_base: Decimal = ZERO
    taxable_earnings: Decimal = ZERO
    exempt_earnings: Decimal = ZERO
    ceiling_benefits: Decimal = ZERO
    gross_earnings: Decimal = ZERO
    deductions: Decimal = ZERO
    additions: Decimal = ZERO
    statutory: dict[str, Decimal] = field(default_factory=dict)


def aggregate(entries: Iterable[ResolvedAdjustment]) -> AdjustmentTotals:
    """Group amounts by category treatment.

    Deductions are accumulated as a positive amount that reduces net pay,
    whichever sign they were entered with.
    """
    totals = AdjustmentTotals()
    for entry in entries:
        component = canonical_component(entry.name)
        if component is None and entry.category is Category.STATUTORY:
            raise ValidationError(
                f"'{entry.name}' is not a statutory component",
                {"name": entry.name, "category": entry.category.value},
            )
        if component is not None:
            totals.statutory[component] = totals.statutory.get(component, ZERO) + entry.amount
            continue

        treatment = entry.category.treatment
        if treatment.affects_gross:
            totals.gross_earnings += entry.amount
        if treatment.contribution_base:
            totals.contribution_base += entry.amount
        if treatment.tax is TaxTreatment.TAXABLE:
            totals.taxable_earnings += entry.amount
        elif treatment.tax is TaxTreatment.EXEMPT:
            totals.exempt_earnings += entry.amount
        elif treatment.tax is TaxTreatment.CEILING:
            totals.ceiling_benefits += entry.amount
        if treatment.net_effect < 0:
            totals.deductions += abs(entry.amount)
        elif treatment.net_effect > 0:
            totals.additions += entry.amount
    return totals


def recurring_cutoff_amount(mode: str, amount: Decimal, payroll_code: PayrollCode) -> Decimal:
    """Amount a recurring definition contributes to one semi-monthly cutoff.

    SPLIT gives A the rounded half and B the remainder so both sum to the
    amount exactly. 1ST materializes on A only, 2ND on B only.
    """
    if not payroll_code.is_semi_monthly:
        return ZERO
    amount = round_currency(amount)
    mode = mode.upper()
    if mode == "SPLIT":
        first = half_up(amount)
        return first if payroll_code is PayrollCode.A else amount - first
    if mode == "1ST":
        return amount if payroll_code is PayrollCode.A else ZERO
    if mode == "2ND":
        return amount if payroll_code is PayrollCode.B else ZERO
    raise ValidationError(f"Unknown recurring mode '{mode}'", {"mode": mode})


def cap_to_remaining(amount: Decimal, max_amount: Decimal | None, already: Decimal) -> Decimal:
    """Limit amount so lifetime materializations never exceed max_amount."""
    if max_amount is None or amount == 0:
        return amount
    remaining = max(ZERO, abs(max_amount) - abs(already))
    capped = min(abs(amount), remaining)
    return capped if amount > 0 else -capped


@dataclass
class AdjustmentInput:
    """One entry of a batch upsert; amount None or zero deletes the entry."""

    employee_id: UUID
    name: str
    period_key: str
    amount: Decimal | None = None
    category: str | None = None


@dataclass
class BatchResult:
    upserted: int = 0
    deleted: int = 0


@dataclass
class RecurringApplyResult:
    period_key: str
    applied: list[dict[str, Any]] = field(default_factory=list)
    removed: int = 0
    skipped_manual: int = 0


class AdjustmentResolver:
    """Resolves one-time adjustments and materializes recurring ones.

    The resolver never commits; batch edits and recurring application run in
    the caller's transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def catalog(self, tenant_id: UUID) -> dict[str, Category]:
        result = await self.session.execute(
            select(AdjustmentType.name, AdjustmentType.category).where(
                AdjustmentType.tenant_id == tenant_id
            )
        )
        return {name.strip().lower(): Category.parse(category) for name, category in result.all()}

    async def resolve(self, tenant_id: UUID, employee_id: UUID, period_key: str) -> dict[str, Decimal]:
        """Named amounts for one employee and adjustment period key."""
        by_employee = await self.resolve_for_period(tenant_id, period_key, [employee_id])
        merged: dict[str, Decimal] = {}
        for entry in by_employee.get(employee_id, []):
            merged[entry.name] = merged.get(entry.name, ZERO) + entry.amount
        return merged

    async def resolve_for_period(
        self,
        tenant_id: UUID,
        period_key: str,
        employee_ids: Sequence[UUID] | None = None,
    ) -> dict[UUID, list[ResolvedAdjustment]]:
        """All adjustments for a period key, grouped by employee.

        The tenant catalog category wins over the category stored on the row.
        """
        query = select(Adjustment).where(
            Adjustment.tenant_id == tenant_id,
            Adjustment.period_key == period_key,
        )
        if employee_ids is not None:
            query = query.where(Adjustment.employee_id.in_(list(employee_ids)))
        result = await self.session.execute(query.order_by(Adjustment.name))

        catalog = await self.catalog(tenant_id)
        grouped: dict[UUID, list[ResolvedAdjustment]] = defaultdict(list)
        for row in result.scalars().all():
            grouped[row.employee_id].append(ResolvedAdjustment(
                name=row.name,
                category=resolve_category(row.name, row.category, catalog),
                amount=row.amount,
                source=row.source,
            ))
        return dict(grouped)

    async def snapshot(self, tenant_id: UUID, period_key: str) -> dict[UUID, dict[str, Any]]:
        """Frozen per-employee view of the adjustment inputs for a period key."""
        grouped = await self.resolve_for_period(tenant_id, period_key)
        return {
            employee_id: {
                "period_key": period_key,
                "adjustments": [
                    {
                        "name": e.name,
                        "category": e.category.value,
                        "amount": str(e.amount),
                        "source": e.source,
                    }
                    for e in entries
                ],
            }
            for employee_id, entries in grouped.items()
        }

    async def list_for_period(self, tenant_id: UUID, period_key: str) -> list[Adjustment]:
        result = await self.session.execute(
            select(Adjustment)
            .where(Adjustment.tenant_id == tenant_id, Adjustment.period_key == period_key)
            .order_by(Adjustment.employee_id, Adjustment.name)
        )
        return list(result.scalars().all())

    async def upsert_batch(self, tenant_id: UUID, entries: Sequence[AdjustmentInput]) -> BatchResult:
        """Upsert or delete manual entries keyed by (employee, name, period key).

        Every entry is validated before the first write.
        """
        catalog = await self.catalog(tenant_id)
        await self._require_employees(tenant_id, {e.employee_id for e in entries})

        prepared = []
        for entry in entries:
            name = " ".join((entry.name or "").split())
            period_key = (entry.period_key or "").strip()
            if not name or not period_key:
                raise ValidationError(
                    "Adjustment name and period_key are required",
                    {"employee_id": str(entry.employee_id)},
                )
            amount = None if entry.amount is None else round_currency(entry.amount)
            category = None
            if amount:
                category = resolve_category(name, entry.category, catalog)
            prepared.append((entry.employee_id, name, period_key, amount, category))

        result = BatchResult()
        for employee_id, name, period_key, amount, category in prepared:
            existing = await self._find(tenant_id, employee_id, name, period_key)
            if not amount:
                if existing is not None:
                    await self.session.delete(existing)
                    result.deleted += 1
                continue
            if existing is None:
                self.session.add(Adjustment(
                    tenant_id=tenant_id,
                    employee_id=employee_id,
                    name=name,
                    category=category.value,
                    amount=amount,
                    period_key=period_key,
                    source=SOURCE_MANUAL,
                ))
            else:
                existing.amount = amount
                existing.category = category.value
                existing.source = SOURCE_MANUAL
            result.upserted += 1

        await self.session.flush()
        return result

    async def apply_recurring(
        self,
        tenant_id: UUID,
        period_key: str,
        payroll_code: PayrollCode | str,
        as_of: date,
        employee_ids: Sequence[UUID] | None = None,
    ) -> RecurringApplyResult:
        """Materialize active recurring definitions into one cutoff.

        Idempotent per (employee, name, adjustment key): existing recurring
        rows are overwritten, manual rows are left alone, and the lifetime cap
        only counts materializations from other keys.
        """
        code = PayrollCode(payroll_code)
        adjustment_key = f"{period_key} {code.value}"
        outcome = RecurringApplyResult(period_key=adjustment_key)
        if not code.is_semi_monthly:
            return outcome

        query = select(RecurringAdjustment).where(
            RecurringAdjustment.tenant_id == tenant_id,
            RecurringAdjustment.active.is_(True),
        )
        if employee_ids is not None:
            query = query.where(RecurringAdjustment.employee_id.in_(list(employee_ids)))
        definitions = (await self.session.execute(
            query.order_by(RecurringAdjustment.employee_id, RecurringAdjustment.name)
        )).scalars().all()

        catalog = await self.catalog(tenant_id)
        for definition in definitions:
            if not _window_contains(definition.start_date, definition.end_date, as_of):
                continue

            amount = recurring_cutoff_amount(definition.mode, definition.amount, code)
            if definition.max_amount is not None:
                already = await self._materialized_elsewhere(
                    tenant_id, definition.employee_id, definition.name, adjustment_key
                )
                amount = cap_to_remaining(amount, definition.max_amount, already)

            existing = await self._find(
                tenant_id, definition.employee_id, definition.name, adjustment_key, for_update=True
            )
            if existing is not None and existing.source == SOURCE_MANUAL:
                outcome.skipped_manual += 1
                continue
            if amount == 0:
                if existing is not None:
                    await self.session.delete(existing)
                    outcome.removed += 1
                continue

            category = resolve_category(definition.name, definition.category, catalog)
            if existing is None:
                self.session.add(Adjustment(
                    tenant_id=tenant_id,
                    employee_id=definition.employee_id,
                    name=definition.name,
                    category=category.value,
                    amount=amount,
                    period_key=adjustment_key,
                    source=SOURCE_RECURRING,
                ))
            else:
                existing.amount = amount
                existing.category = category.value
            outcome.applied.append({
                "employee_id": str(definition.employee_id),
                "name": definition.name,
                "amount": str(amount),
            })

        await self.session.flush()
        logger.info(
            "Applied %d recurring adjustments to %s (removed %d, kept %d manual)",
            len(outcome.applied),
            adjustment_key,
            outcome.removed,
            outcome.skipped_manual,
        )
        return outcome

    async def _find(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        name: str,
        period_key: str,
        for_update: bool = False,
    ) -> Adjustment | None:
        query = select(Adjustment).where(
            Adjustment.tenant_id == tenant_id,
            Adjustment.employee_id == employee_id,
            Adjustment.name == name,
            Adjustment.period_key == period_key,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _materialized_elsewhere(
        self, tenant_id: UUID, employee_id: UUID, name: str, exclude_key: str
    ) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(Adjustment.amount), 0)).where(
                Adjustment.tenant_id == tenant_id,
                Adjustment.employee_id == employee_id,
                Adjustment.name == name,
                Adjustment.source == SOURCE_RECURRING,
                Adjustment.period_key != exclude_key,
            )
        )
        return to_decimal(result.scalar())

    async def _require_employees(self, tenant_id: UUID, employee_ids: set[UUID]) -> None:
        if not employee_ids:
            return
        result = await self.session.execute(
            select(Employee.employee_id).where(
                Employee.tenant_id == tenant_id,
                Employee.employee_id.in_(list(employee_ids)),
            )
        )
        missing = employee_ids - set(result.scalars().all())
        if missing:
            raise NotFoundError("Employee", sorted(str(m) for m in missing)[0])


def resolve_category(
    name: str, stored: str | Category | None, catalog: dict[str, Category] | None = None
) -> Category:
    """Effective category of an adjustment name.

    Statutory component names always resolve to Statutory; otherwise the
    tenant catalog wins over the label entered with the amount.
    """
    if canonical_component(name) is not None:
        return Category.STATUTORY
    category = (catalog or {}).get(name.strip().lower())
    if category is None:
        if not stored:
            raise ValidationError(f"Adjustment '{name}' needs a category", {"name": name})
        category = Category.parse(stored)
    if category is Category.STATUTORY:
        # Only the named statutory components accept overrides
        raise ValidationError(
            f"'{name}' is not a statutory component; use Deduction or Addition",
            {"name": name, "category": category.value},
        )
    return category


def _window_contains(start: date | None, end: date | None, as_of: date) -> bool:
    if start is not None and as_of < start:
        return False
    if end is not None and as_of > end:
        return False
    return True
