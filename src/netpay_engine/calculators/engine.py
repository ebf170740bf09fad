"""Payroll computation engine - per-employee pipeline and run execution."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.calculators.adjustment_resolver import (
    AdjustmentResolver,
    ResolvedAdjustment,
    aggregate,
)
from netpay_engine.calculators.contributions import ContributionCalculator
from netpay_engine.calculators.money import ZERO, half_up, round_currency, to_decimal
from netpay_engine.calculators.statutory_resolver import StatutoryTableResolver
from netpay_engine.calculators.types import (
    COMPONENT_COLUMNS,
    DAYS_WORKED,
    DEFAULT_WORKING_DAYS,
    EMPLOYEE_COMPONENTS,
    EMPLOYER_COMPONENTS,
    PAGIBIG_EE,
    PAGIBIG_ER,
    PHILHEALTH_EE,
    WITHHOLDING_TAX,
    Category,
    ComponentLine,
    ContributionResult,
    PayBasis,
    PayrollCode,
    StatutoryTables,
    TaxFrequency,
    canonical_component,
    is_days_worked,
)
from netpay_engine.config import Settings, get_settings
from netpay_engine.errors import InvalidRunTransition, JobCancelled, NotFoundError
from netpay_engine.models import CompanyProfile, Employee, PayrollHistory, PayrollRow, PayrollRun, Tenant

logger = logging.getLogger(__name__)

COMPONENTS_SCHEMA_VERSION = 1

ProgressCallback = Callable[[int, int], Awaitable[None]]
CancelCheck = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class EmployeeSnapshot:
    """Compensation attributes of one employee, detached from the ORM."""

    employee_id: UUID
    name: str
    monthly_basic: Decimal
    is_consultant: bool = False
    consultant_tax_rate: Decimal = ZERO
    is_mwe: bool = False
    is_pwd: bool = False
    is_filipino: bool = True
    is_retired: bool = False
    pay_basis: PayBasis = PayBasis.MONTHLY
    daily_rate: Decimal = ZERO

    @classmethod
    def from_model(
        cls, employee: Employee, working_days_per_year: int = DEFAULT_WORKING_DAYS
    ) -> EmployeeSnapshot:
        monthly = to_decimal(employee.monthly_basic)
        daily = employee.daily_rate
        if daily is None:
            daily = daily_rate_for(monthly, working_days_per_year)
        return cls(
            employee_id=employee.employee_id,
            name=employee.display_name,
            monthly_basic=monthly,
            is_consultant=employee.is_consultant,
            consultant_tax_rate=to_decimal(employee.consultant_tax_rate),
            is_mwe=employee.is_mwe,
            is_pwd=employee.is_pwd,
            is_filipino=employee.is_filipino,
            is_retired=employee.is_retired,
            pay_basis=PayBasis(employee.pay_basis or PayBasis.MONTHLY.value),
            daily_rate=to_decimal(daily),
        )


@dataclass
class PriorCutoff:
    """What cutoff A of the same month already took (from posted history)."""

    taxable_income: Decimal = ZERO
    withholding_tax: Decimal = ZERO
    basic_pay: Decimal = ZERO
    employee: dict[str, Decimal] = field(default_factory=dict)


@dataclass
class EmployeeComputation:
    """Computed amounts for one employee."""

    employee_id: UUID
    employee_name: str
    basic_pay: Decimal
    gross_pay: Decimal
    taxable_income: Decimal
    contributions: ContributionResult
    total_deductions: Decimal
    net_pay: Decimal
    ceiling_benefits: Decimal
    components: list[ComponentLine]

    @property
    def withholding_tax(self) -> Decimal:
        return self.contributions.withholding_tax

    def to_row(self, run: PayrollRun) -> PayrollRow:
        row = PayrollRow(
            payroll_run_id=run.payroll_run_id,
            tenant_id=run.tenant_id,
            employee_id=self.employee_id,
            employee_name=self.employee_name,
            basic_pay=self.basic_pay,
            gross_pay=self.gross_pay,
            taxable_income=self.taxable_income,
            withholding_tax=self.withholding_tax,
            total_deductions=self.total_deductions,
            net_pay=self.net_pay,
            ceiling_benefits=self.ceiling_benefits,
            components=[line.to_dict() for line in self.components],
            components_schema=COMPONENTS_SCHEMA_VERSION,
            inputs_snapshot=None,
        )
        for name, amount in {**self.contributions.employee, **self.contributions.employer}.items():
            setattr(row, COMPONENT_COLUMNS[name], amount)
        return row


@dataclass
class RunTotals:
    total_employees: int = 0
    total_gross_pay: Decimal = ZERO
    total_net_pay: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_employees": self.total_employees,
            "total_gross_pay": str(self.total_gross_pay),
            "total_net_pay": str(self.total_net_pay),
        }


def basic_for_cutoff(monthly_basic: Decimal, payroll_code: PayrollCode) -> Decimal:
    """Basic pay for a cutoff; the two semi-monthly halves sum to the monthly."""
    monthly = round_currency(monthly_basic)
    if payroll_code is PayrollCode.A:
        return half_up(monthly)
    if payroll_code is PayrollCode.B:
        return monthly - half_up(monthly)
    if payroll_code is PayrollCode.MONTHLY:
        return monthly
    # Special runs carry only their explicit inputs
    return ZERO


def daily_rate_for(monthly_basic: Decimal, working_days_per_year: int | None) -> Decimal:
    """Daily equivalent of a monthly rate: monthly * 12 / working days."""
    days = working_days_per_year or DEFAULT_WORKING_DAYS
    return round_currency(to_decimal(monthly_basic) * 12 / days)


def split_attendance(
    adjustments: Sequence[ResolvedAdjustment],
) -> tuple[Decimal, list[ResolvedAdjustment]]:
    """Separate the days-worked count from the money adjustments."""
    days = ZERO
    money: list[ResolvedAdjustment] = []
    for entry in adjustments:
        if is_days_worked(entry.name):
            days += entry.amount
        else:
            money.append(entry)
    return days, money


class PayrollCalculator:
    """Pure per-employee pipeline.

    basic pay -> + earnings -> gross -> contributions -> taxable income
    -> withholding tax -> net pay. No I/O; employees are independent.
    """

    def __init__(
        self,
        tables: StatutoryTables,
        payroll_code: PayrollCode,
        profile: CompanyProfile | None = None,
        exempt_ceiling: Decimal = Decimal("90000"),
        compute_tax: bool = True,
    ):
        self.payroll_code = PayrollCode(payroll_code)
        self.calculator = ContributionCalculator(tables, profile)
        self.exempt_ceiling = exempt_ceiling
        self.compute_tax = compute_tax

    def calculate(
        self,
        employee: EmployeeSnapshot,
        adjustments: Sequence[ResolvedAdjustment] = (),
        prior: PriorCutoff | None = None,
        ytd_ceiling_benefits: Decimal = ZERO,
    ) -> EmployeeComputation:
        prior = prior or PriorCutoff()
        days_worked, adjustments = split_attendance(adjustments)
        totals = aggregate(adjustments)

        basic = self._basic(employee, days_worked)
        gross = round_currency(basic + totals.gross_earnings)

        remaining_exempt = max(ZERO, self.exempt_ceiling - abs(ytd_ceiling_benefits))
        taxable_ceiling = ZERO
        if totals.ceiling_benefits:
            excess = max(ZERO, abs(totals.ceiling_benefits) - remaining_exempt)
            taxable_ceiling = excess if totals.ceiling_benefits > 0 else -excess

        result = self._contributions(employee, basic, totals.contribution_base, totals.statutory, prior)
        employee_share = result.employee_total

        taxable_income = round_currency(
            max(ZERO, basic + totals.taxable_earnings + taxable_ceiling - employee_share)
        )
        tax = self._withholding(employee, taxable_income, prior)
        tax += totals.statutory.get(WITHHOLDING_TAX, ZERO)
        result.withholding_tax = round_currency(tax)

        deductions = round_currency(totals.deductions)
        additions = round_currency(totals.additions)
        net = round_currency(gross - employee_share - result.withholding_tax - deductions + additions)

        return EmployeeComputation(
            employee_id=employee.employee_id,
            employee_name=employee.name,
            basic_pay=basic,
            gross_pay=gross,
            taxable_income=taxable_income,
            contributions=result,
            total_deductions=round_currency(employee_share + result.withholding_tax + deductions),
            net_pay=net,
            ceiling_benefits=round_currency(totals.ceiling_benefits),
            components=self._components(
                basic,
                days_worked if employee.pay_basis is PayBasis.DAILY else None,
                adjustments,
                result,
                taxable_income,
                gross,
                net,
            ),
        )

    def _basic(self, employee: EmployeeSnapshot, days_worked: Decimal) -> Decimal:
        if employee.pay_basis is PayBasis.DAILY:
            if self.payroll_code is PayrollCode.SPECIAL:
                return ZERO
            return round_currency(employee.daily_rate * days_worked)
        return basic_for_cutoff(employee.monthly_basic, self.payroll_code)

    def _contributions(
        self,
        employee: EmployeeSnapshot,
        basic: Decimal,
        base_adjustments: Decimal,
        overrides: dict[str, Decimal],
        prior: PriorCutoff,
    ) -> ContributionResult:
        code = self.payroll_code
        monthly = employee.monthly_basic
        unpaid = False
        if employee.pay_basis is PayBasis.DAILY:
            # Month to date: cutoff A's posted basic plus this cutoff
            monthly = prior.basic_pay + basic
            unpaid = monthly <= 0
        if code is PayrollCode.SPECIAL or employee.is_consultant or employee.is_retired or unpaid:
            result = ContributionResult(
                employee={name: ZERO for name in EMPLOYEE_COMPONENTS},
                employer={name: ZERO for name in EMPLOYER_COMPONENTS},
            )
        else:
            base = max(ZERO, monthly + base_adjustments)
            result = self._allocate(self.calculator.contributions(base), prior)

        for name, amount in overrides.items():
            if name in result.employee:
                result.employee[name] = round_currency(result.employee[name] + amount)
            elif name in result.employer:
                result.employer[name] = round_currency(result.employer[name] + amount)

        if employee.is_retired and not employee.is_consultant:
            result.employee = {name: ZERO for name in result.employee}
            result.employer = {name: ZERO for name in result.employer}
        if employee.is_pwd:
            result.employee[PHILHEALTH_EE] = ZERO
        if not employee.is_filipino and not employee.is_consultant:
            result.employee[PAGIBIG_EE] = ZERO
            result.employer[PAGIBIG_ER] = ZERO
        return result

    def _allocate(self, monthly: ContributionResult, prior: PriorCutoff) -> ContributionResult:
        """Split monthly contributions across semi-monthly cutoffs.

        A withholds half the employee share and no employer share. B takes
        the rest of the employee share plus the whole employer share.
        """
        if self.payroll_code is PayrollCode.A:
            return ContributionResult(
                employee={name: half_up(amount) for name, amount in monthly.employee.items()},
                employer={name: ZERO for name in monthly.employer},
            )
        if self.payroll_code is PayrollCode.B:
            return ContributionResult(
                employee={
                    name: round_currency(amount - prior.employee.get(name, ZERO))
                    for name, amount in monthly.employee.items()
                },
                employer=dict(monthly.employer),
            )
        return monthly

    def _withholding(
        self, employee: EmployeeSnapshot, taxable_income: Decimal, prior: PriorCutoff
    ) -> Decimal:
        if not self.compute_tax or employee.is_mwe:
            return ZERO
        if employee.is_consultant:
            return round_currency(taxable_income * employee.consultant_tax_rate)

        code = self.payroll_code
        if code is PayrollCode.A:
            return self.calculator.withholding_tax(taxable_income, TaxFrequency.SEMI_MONTHLY)
        if code is PayrollCode.B:
            monthly_tax = self.calculator.withholding_tax(
                prior.taxable_income + taxable_income, TaxFrequency.MONTHLY
            )
            return max(ZERO, monthly_tax - prior.withholding_tax)
        return self.calculator.withholding_tax(taxable_income, TaxFrequency.MONTHLY)

    @staticmethod
    def _components(
        basic: Decimal,
        days_worked: Decimal | None,
        adjustments: Sequence[ResolvedAdjustment],
        result: ContributionResult,
        taxable_income: Decimal,
        gross: Decimal,
        net: Decimal,
    ) -> list[ComponentLine]:
        lines = [ComponentLine("Basic Pay", Category.BASIC_PAY_RELATED.value, basic)]
        if days_worked is not None:
            lines.append(ComponentLine(DAYS_WORKED, "Attendance", days_worked))
        lines.extend(
            ComponentLine(a.name, a.category.value, round_currency(a.amount))
            for a in adjustments
            if canonical_component(a.name) is None
        )
        lines.append(ComponentLine("Gross Pay", "Summary", gross))
        lines.extend(
            ComponentLine(name, Category.STATUTORY.value, amount)
            for name, amount in result.employee.items()
        )
        lines.append(ComponentLine("Taxable Income", "Summary", taxable_income))
        lines.append(ComponentLine(WITHHOLDING_TAX, Category.STATUTORY.value, result.withholding_tax))
        lines.append(ComponentLine("Net Pay", "Summary", net))
        lines.extend(
            ComponentLine(name, Category.STATUTORY.value, amount)
            for name, amount in result.employer.items()
        )
        return lines


class PayrollEngine:
    """Computes every employee of a DRAFT run and writes its rows.

    The compute phase only reads, so progress reports may commit the session
    safely. Rows are replaced in a single write phase at the end; any failure
    before that leaves the run without partial rows. The engine does not
    change run status; the caller marks the run COMPUTED.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.statutory = StatutoryTableResolver(session)
        self.adjustments = AdjustmentResolver(session)

    async def execute(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        on_progress: ProgressCallback | None = None,
        should_cancel: CancelCheck | None = None,
    ) -> RunTotals:
        run = await self._load_run(payroll_run_id, tenant_id)
        if run.status != "DRAFT":
            raise InvalidRunTransition(run.status, "COMPUTED", required="DRAFT")

        code = PayrollCode(run.payroll_code)
        tenant = await self.session.get(Tenant, tenant_id)
        country = tenant.country if tenant is not None else self.settings.default_country
        profile = await self.session.get(CompanyProfile, tenant_id)
        tables = await self.statutory.tables_for(country, run.period_end)

        adjustments = await self.adjustments.resolve_for_period(tenant_id, run.adjustment_period_key)
        working_days = profile.working_days_per_year if profile is not None else DEFAULT_WORKING_DAYS
        employees = await self._employees(tenant_id, code, adjustments, working_days)
        employee_ids = [e.employee_id for e in employees]
        prior = await self._prior_cutoffs(run, employee_ids) if code is PayrollCode.B else {}
        ytd = await self._ytd_ceiling_benefits(run, employee_ids)

        calculator = PayrollCalculator(
            tables,
            code,
            profile,
            exempt_ceiling=self.settings.other_benefits_exempt_ceiling,
            compute_tax=profile.compute_tax if profile is not None else True,
        )

        total = len(employees)
        batch_size = max(1, self.settings.progress_batch_size)
        results: list[EmployeeComputation] = []
        for index, employee in enumerate(employees):
            if should_cancel is not None and await should_cancel():
                raise JobCancelled(f"Computation of run {run.period_label} was cancelled")
            results.append(calculator.calculate(
                employee,
                adjustments.get(employee.employee_id, []),
                prior.get(employee.employee_id),
                ytd.get(employee.employee_id, ZERO),
            ))
            done = index + 1
            if on_progress is not None and (done % batch_size == 0 or done == total):
                await on_progress(done, total)

        await self.session.execute(
            delete(PayrollRow).where(PayrollRow.payroll_run_id == run.payroll_run_id)
        )
        self.session.add_all([r.to_row(run) for r in results])
        await self.session.flush()

        totals = RunTotals(
            total_employees=len(results),
            total_gross_pay=round_currency(sum((r.gross_pay for r in results), ZERO)),
            total_net_pay=round_currency(sum((r.net_pay for r in results), ZERO)),
        )
        logger.info(
            "Computed run %s: %d employees, gross %s, net %s",
            run.period_label,
            totals.total_employees,
            totals.total_gross_pay,
            totals.total_net_pay,
        )
        return totals

    async def _load_run(self, payroll_run_id: UUID, tenant_id: UUID) -> PayrollRun:
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.tenant_id == tenant_id,
            )
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise NotFoundError("PayrollRun", payroll_run_id)
        return run

    async def _employees(
        self,
        tenant_id: UUID,
        code: PayrollCode,
        adjustments: dict[UUID, list[ResolvedAdjustment]],
        working_days_per_year: int = DEFAULT_WORKING_DAYS,
    ) -> list[EmployeeSnapshot]:
        query = select(Employee).where(Employee.tenant_id == tenant_id, Employee.active.is_(True))
        if code is PayrollCode.SPECIAL:
            # Special runs only cover employees with inputs
            if not adjustments:
                return []
            query = query.where(Employee.employee_id.in_(list(adjustments)))
        result = await self.session.execute(
            query.order_by(Employee.last_name, Employee.first_name, Employee.employee_code)
        )
        return [
            EmployeeSnapshot.from_model(e, working_days_per_year) for e in result.scalars().all()
        ]

    async def _prior_cutoffs(
        self, run: PayrollRun, employee_ids: list[UUID]
    ) -> dict[UUID, PriorCutoff]:
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(PayrollHistory).where(
                PayrollHistory.tenant_id == run.tenant_id,
                PayrollHistory.period_key == run.period_key,
                PayrollHistory.payroll_code == PayrollCode.A.value,
                PayrollHistory.employee_id.in_(employee_ids),
            )
        )
        prior: dict[UUID, PriorCutoff] = {}
        for history in result.scalars().all():
            entry = prior.setdefault(history.employee_id, PriorCutoff())
            entry.taxable_income += history.taxable_income
            entry.withholding_tax += history.withholding_tax
            entry.basic_pay += history.basic_pay
            for name in EMPLOYEE_COMPONENTS:
                amount = getattr(history, COMPONENT_COLUMNS[name])
                entry.employee[name] = entry.employee.get(name, ZERO) + amount
        return prior

    async def _ytd_ceiling_benefits(
        self, run: PayrollRun, employee_ids: list[UUID]
    ) -> dict[UUID, Decimal]:
        if not employee_ids:
            return {}
        year = run.period_key[:4]
        result = await self.session.execute(
            select(PayrollHistory.employee_id, func.sum(PayrollHistory.ceiling_benefits))
            .where(
                PayrollHistory.tenant_id == run.tenant_id,
                PayrollHistory.employee_id.in_(employee_ids),
                PayrollHistory.period_key.like(f"{year}-%"),
                PayrollHistory.payroll_run_id != run.payroll_run_id,
            )
            .group_by(PayrollHistory.employee_id)
        )
        return {employee_id: to_decimal(total) for employee_id, total in result.all()}


def derive_period_key(payroll_code: PayrollCode | str, period_start: date, period_end: date) -> str:
    """YYYY-MM of the end date; a B cutoff crossing months keeps the start month."""
    code = PayrollCode(payroll_code)
    anchor = period_end
    if code is PayrollCode.B and (period_start.year, period_start.month) != (period_end.year, period_end.month):
        anchor = period_start
    return f"{anchor.year:04d}-{anchor.month:02d}"


def period_label(period_key: str, payroll_code: PayrollCode | str) -> str:
    return f"{period_key}-{PayrollCode(payroll_code).value}"
