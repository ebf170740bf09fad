"""Year-end tax annualization over posted payroll history.

The final annualization compares the annual tax due on a year's taxable
compensation (ANNUAL withholding table) with the tax withheld across every
posted cutoff. The projection does the same mid-year, extrapolating the
average regular month over the months still to be paid, and spreads what
is left across the remaining cutoffs of the company's pay frequency.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.calculators.adjustment_resolver import AdjustmentInput, AdjustmentResolver, BatchResult
from netpay_engine.calculators.contributions import ContributionCalculator
from netpay_engine.calculators.money import ZERO, round_currency
from netpay_engine.calculators.statutory_resolver import StatutoryTableResolver
from netpay_engine.calculators.types import (
    COMPONENT_COLUMNS,
    EMPLOYEE_COMPONENTS,
    WITHHOLDING_TAX,
    Category,
    PayrollCode,
    TaxFrequency,
)
from netpay_engine.config import Settings, get_settings
from netpay_engine.errors import ValidationError
from netpay_engine.models import CompanyProfile, Employee, PayrollHistory, Tenant

logger = logging.getLogger(__name__)


@dataclass
class EmployeeYear:
    """Posted year-to-date figures of one employee."""

    employee_id: UUID
    employee_name: str
    is_mwe: bool = False
    active: bool = True
    gross_pay: Decimal = ZERO
    taxable_income: Decimal = ZERO
    withholding_tax: Decimal = ZERO
    employee_contributions: Decimal = ZERO
    # Taxable income of regular (non-SPECIAL) cutoffs, used for projection
    regular_taxable: Decimal = ZERO
    months: set[str] = field(default_factory=set)

    def add(self, history: PayrollHistory) -> None:
        self.gross_pay += history.gross_pay
        self.taxable_income += history.taxable_income
        self.withholding_tax += history.withholding_tax
        for name in EMPLOYEE_COMPONENTS:
            self.employee_contributions += getattr(history, COMPONENT_COLUMNS[name])
        if history.payroll_code != PayrollCode.SPECIAL.value:
            self.regular_taxable += history.taxable_income
            self.months.add(history.period_key)


@dataclass
class AnnualizationResult:
    employee_id: UUID
    employee_name: str
    year: int
    gross_compensation: Decimal
    non_taxable_compensation: Decimal
    employee_contributions: Decimal
    taxable_compensation: Decimal
    tax_due: Decimal
    tax_withheld: Decimal
    # Positive: still to collect; negative: to refund
    tax_difference: Decimal


@dataclass
class ProjectionResult:
    employee_id: UUID
    employee_name: str
    year: int
    through_month: int
    months_paid: int
    remaining_months: int
    ytd_taxable: Decimal
    projected_taxable: Decimal
    annual_tax_due: Decimal
    ytd_tax_withheld: Decimal
    remaining_tax: Decimal
    remaining_cutoffs: int
    per_cutoff_tax: Decimal


def annualize(facts: EmployeeYear, calculator: ContributionCalculator, year: int) -> AnnualizationResult:
    """Final settlement for one employee; minimum wage earners owe no tax."""
    gross = round_currency(facts.gross_pay)
    contributions = round_currency(facts.employee_contributions)
    taxable = round_currency(max(ZERO, facts.taxable_income))
    withheld = round_currency(facts.withholding_tax)
    due = ZERO if facts.is_mwe else calculator.withholding_tax(taxable, TaxFrequency.ANNUAL)
    return AnnualizationResult(
        employee_id=facts.employee_id,
        employee_name=facts.employee_name,
        year=year,
        gross_compensation=gross,
        non_taxable_compensation=round_currency(max(ZERO, gross - contributions - taxable)),
        employee_contributions=contributions,
        taxable_compensation=taxable,
        tax_due=due,
        tax_withheld=withheld,
        tax_difference=round_currency(due - withheld),
    )


def project(
    facts: EmployeeYear,
    calculator: ContributionCalculator,
    year: int,
    through_month: int,
    cutoffs_per_month: int = 2,
) -> ProjectionResult:
    """Projected annual tax with the remainder spread over the cutoffs left.

    Separated (inactive) employees are not projected forward.
    """
    months_paid = len(facts.months) or through_month
    remaining_months = max(0, 12 - through_month) if facts.active else 0
    average = facts.regular_taxable / months_paid if months_paid else ZERO
    projected = round_currency(max(ZERO, facts.taxable_income + average * remaining_months))

    due = ZERO if facts.is_mwe else calculator.withholding_tax(projected, TaxFrequency.ANNUAL)
    withheld = round_currency(facts.withholding_tax)
    remaining_tax = max(ZERO, due - withheld)
    remaining_cutoffs = remaining_months * cutoffs_per_month
    per_cutoff = round_currency(remaining_tax / remaining_cutoffs) if remaining_cutoffs else ZERO
    return ProjectionResult(
        employee_id=facts.employee_id,
        employee_name=facts.employee_name,
        year=year,
        through_month=through_month,
        months_paid=months_paid,
        remaining_months=remaining_months,
        ytd_taxable=round_currency(facts.taxable_income),
        projected_taxable=projected,
        annual_tax_due=due,
        ytd_tax_withheld=withheld,
        remaining_tax=remaining_tax,
        remaining_cutoffs=remaining_cutoffs,
        per_cutoff_tax=per_cutoff,
    )


class TaxAnnualizer:
    """Annualization reports and settlement for one tenant.

    Only posted history counts. Consultants are left out: their flat-rate
    withholding is final.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.statutory = StatutoryTableResolver(session)

    async def final(self, tenant_id: UUID, year: int) -> list[AnnualizationResult]:
        _check_year(year)
        calculator = await self._calculator(tenant_id, year)
        facts = await self._facts(tenant_id, year)
        return [annualize(f, calculator, year) for f in facts]

    async def projection(self, tenant_id: UUID, year: int, through_month: int) -> list[ProjectionResult]:
        _check_year(year)
        if not 1 <= through_month <= 12:
            raise ValidationError("through_month must be between 1 and 12", {"through_month": through_month})
        calculator = await self._calculator(tenant_id, year)
        profile = await self.session.get(CompanyProfile, tenant_id)
        per_month = 1 if profile is not None and profile.pay_frequency == "MONTHLY" else 2

        facts = await self._facts(tenant_id, year, last_period=f"{year:04d}-{through_month:02d}")
        return [project(f, calculator, year, through_month, per_month) for f in facts]

    async def apply_settlement(self, tenant_id: UUID, year: int, period_key: str) -> BatchResult:
        """Write each non-zero difference as a Withholding Tax input for period_key.

        Meant for a SPECIAL run computed after the year's regular cutoffs are
        posted; a refund is a negative amount.
        """
        results = await self.final(tenant_id, year)
        entries = [
            AdjustmentInput(
                employee_id=r.employee_id,
                name=WITHHOLDING_TAX,
                period_key=period_key,
                amount=r.tax_difference,
                category=Category.STATUTORY.value,
            )
            for r in results
            if r.tax_difference != 0
        ]
        if not entries:
            return BatchResult()
        outcome = await AdjustmentResolver(self.session).upsert_batch(tenant_id, entries)
        logger.info(
            "Annualization %d for tenant %s: %d settlement entries in %s",
            year,
            tenant_id,
            outcome.upserted,
            period_key,
        )
        return outcome

    async def _calculator(self, tenant_id: UUID, year: int) -> ContributionCalculator:
        tenant = await self.session.get(Tenant, tenant_id)
        country = tenant.country if tenant is not None else self.settings.default_country
        tables = await self.statutory.tables_for(country, date(year, 12, 31))
        return ContributionCalculator(tables)

    async def _facts(
        self, tenant_id: UUID, year: int, last_period: str | None = None
    ) -> list[EmployeeYear]:
        query = (
            select(PayrollHistory, Employee)
            .join(Employee, Employee.employee_id == PayrollHistory.employee_id)
            .where(
                PayrollHistory.tenant_id == tenant_id,
                PayrollHistory.period_key.like(f"{year:04d}-%"),
                Employee.is_consultant.is_(False),
            )
        )
        if last_period is not None:
            query = query.where(PayrollHistory.period_key <= last_period)
        result = await self.session.execute(
            query.order_by(Employee.last_name, Employee.first_name, PayrollHistory.period_end)
        )

        by_employee: dict[UUID, EmployeeYear] = {}
        for history, employee in result.all():
            facts = by_employee.get(employee.employee_id)
            if facts is None:
                facts = by_employee[employee.employee_id] = EmployeeYear(
                    employee_id=employee.employee_id,
                    employee_name=employee.display_name,
                    is_mwe=employee.is_mwe,
                    active=employee.active,
                )
            facts.add(history)
        return list(by_employee.values())


def _check_year(year: int) -> None:
    if not 1900 <= year <= 9999:
        raise ValidationError("year is out of range", {"year": year})
