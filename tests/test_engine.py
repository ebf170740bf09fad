"""Tests for the payroll computation engine."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from netpay_engine.calculators.adjustment_resolver import AdjustmentInput, AdjustmentResolver, ResolvedAdjustment
from netpay_engine.calculators.engine import (
    EmployeeSnapshot,
    PayrollCalculator,
    PayrollEngine,
    PriorCutoff,
    RunTotals,
    basic_for_cutoff,
    daily_rate_for,
    derive_period_key,
    period_label,
)
from netpay_engine.calculators.types import (
    PAGIBIG_EE,
    PAGIBIG_ER,
    PHILHEALTH_EE,
    SSS_EE_MC,
    SSS_EE_MPF,
    SSS_ER_MC,
    Category,
    PayBasis,
    PayrollCode,
)
from netpay_engine.errors import InvalidRunTransition, JobCancelled, ValidationError
from netpay_engine.models import CompanyProfile, PayrollRow
from netpay_engine.services.payroll_run_service import PayrollRunService


def snapshot(monthly: str = "20000", **flags) -> EmployeeSnapshot:
    return EmployeeSnapshot(employee_id=uuid4(), name="Cruz, Ana", monthly_basic=Decimal(monthly), **flags)


class TestCutoffHelpers:
    """Period keys and cutoff basic pay."""

    def test_basic_for_cutoff(self):
        assert basic_for_cutoff(Decimal("20000.01"), PayrollCode.A) == Decimal("10000.01")
        assert basic_for_cutoff(Decimal("20000.01"), PayrollCode.B) == Decimal("10000.00")
        assert basic_for_cutoff(Decimal("20000"), PayrollCode.MONTHLY) == Decimal("20000.00")
        assert basic_for_cutoff(Decimal("20000"), PayrollCode.SPECIAL) == Decimal("0")

    def test_period_key_uses_end_month(self):
        assert derive_period_key("A", date(2024, 5, 1), date(2024, 5, 15)) == "2024-05"
        assert derive_period_key("MONTHLY", date(2024, 4, 26), date(2024, 5, 25)) == "2024-05"

    def test_cross_month_b_cutoff_keeps_start_month(self):
        assert derive_period_key("B", date(2024, 5, 26), date(2024, 6, 10)) == "2024-05"

    def test_period_label(self):
        assert period_label("2024-05", "B") == "2024-05-B"

    def test_daily_rate_from_monthly(self):
        assert daily_rate_for(Decimal("20000"), 261) == Decimal("919.54")
        assert daily_rate_for(Decimal("20000"), 313) == Decimal("766.77")
        assert daily_rate_for(Decimal("20000"), None) == Decimal("919.54")


class TestPayrollCalculator:
    """Per-employee pipeline with the built-in tables."""

    def test_deduction_reduces_net(self, default_tables):
        calculator = PayrollCalculator(default_tables, PayrollCode.MONTHLY)
        result = calculator.calculate(
            snapshot(),
            [ResolvedAdjustment("Salary Loan", Category.DEDUCTION, Decimal("500"))],
        )

        contributions = result.contributions.employee_total
        assert result.gross_pay == Decimal("20000.00")
        assert contributions == Decimal("1700.00")
        assert result.net_pay == result.gross_pay - contributions - result.withholding_tax - Decimal("500")
        assert result.net_pay == Decimal("17800.00")

    def test_progressive_tax(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.MONTHLY).calculate(snapshot("40000"))

        assert result.taxable_income == Decimal("37050.00")
        assert result.withholding_tax == Decimal("2618.40")
        assert result.net_pay == Decimal("34431.60")

    def test_cutoff_a_takes_half_employee_share(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.A).calculate(snapshot())

        assert result.basic_pay == Decimal("10000.00")
        assert result.contributions.employee[SSS_EE_MC] == Decimal("500.00")
        assert result.contributions.employee[PHILHEALTH_EE] == Decimal("250.00")
        assert result.contributions.employer_total == Decimal("0")
        assert result.net_pay == Decimal("9150.00")

    def test_cutoff_b_takes_remainder_and_employer_share(self, default_tables):
        prior = PriorCutoff(
            taxable_income=Decimal("28275"),
            withholding_tax=Decimal("3259.10"),
            employee={
                SSS_EE_MC: Decimal("500"),
                SSS_EE_MPF: Decimal("375"),
                PHILHEALTH_EE: Decimal("750"),
                PAGIBIG_EE: Decimal("100"),
            },
        )
        first = PayrollCalculator(default_tables, PayrollCode.A).calculate(snapshot("60000"))
        second = PayrollCalculator(default_tables, PayrollCode.B).calculate(snapshot("60000"), prior=prior)

        assert first.taxable_income == Decimal("28275.00")
        assert first.withholding_tax == Decimal("3259.10")
        assert second.contributions.employee_total == Decimal("1725.00")
        assert second.contributions.employer[SSS_ER_MC] == Decimal("2000.00")
        # Monthly tax on A + B taxable, less what A withheld
        assert second.withholding_tax == Decimal("3259.30")
        assert second.net_pay == Decimal("25015.70")

    def test_consultant_flat_rate_without_contributions(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.MONTHLY).calculate(
            snapshot("30000", is_consultant=True, consultant_tax_rate=Decimal("0.10"))
        )

        assert result.contributions.employee_total == Decimal("0")
        assert result.contributions.employer_total == Decimal("0")
        assert result.withholding_tax == Decimal("3000.00")
        assert result.net_pay == Decimal("27000.00")

    def test_employee_flags(self, default_tables):
        calculator = PayrollCalculator(default_tables, PayrollCode.MONTHLY)

        pwd = calculator.calculate(snapshot(is_pwd=True))
        foreign = calculator.calculate(snapshot(is_filipino=False))
        retired = calculator.calculate(snapshot(is_retired=True))
        mwe = calculator.calculate(snapshot("40000", is_mwe=True))

        assert pwd.contributions.employee[PHILHEALTH_EE] == Decimal("0")
        assert foreign.contributions.employee[PAGIBIG_EE] == Decimal("0")
        assert foreign.contributions.employer[PAGIBIG_ER] == Decimal("0")
        assert retired.contributions.employee_total == Decimal("0")
        assert mwe.withholding_tax == Decimal("0")

    def test_benefits_above_exempt_ceiling_are_taxable(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.MONTHLY).calculate(
            snapshot(),
            [ResolvedAdjustment("13th Month Pay", Category.OTHER_BENEFITS, Decimal("100000"))],
        )

        assert result.gross_pay == Decimal("120000.00")
        assert result.taxable_income == Decimal("28300.00")
        assert result.withholding_tax == Decimal("1120.05")
        assert result.ceiling_benefits == Decimal("100000.00")

    def test_statutory_named_adjustment_adds_to_component(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.MONTHLY).calculate(
            snapshot(),
            [ResolvedAdjustment("WTAX", Category.STATUTORY, Decimal("100"))],
        )

        assert result.gross_pay == Decimal("20000.00")
        assert result.withholding_tax == Decimal("100.00")

    def test_statutory_line_without_component_fails_loudly(self, default_tables):
        calculator = PayrollCalculator(default_tables, PayrollCode.MONTHLY)

        with pytest.raises(ValidationError):
            calculator.calculate(
                snapshot(),
                [ResolvedAdjustment("SSS Loan", Category.STATUTORY, Decimal("-800"))],
            )

    def test_special_run_has_only_inputs(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.SPECIAL).calculate(
            snapshot(),
            [ResolvedAdjustment("Bonus", Category.TAXABLE_EARNING, Decimal("5000"))],
        )

        assert result.basic_pay == Decimal("0")
        assert result.gross_pay == Decimal("5000.00")
        assert result.contributions.employee_total == Decimal("0")

    def test_components_breakdown(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.MONTHLY).calculate(snapshot())
        names = [line.name for line in result.components]

        assert names[0] == "Basic Pay"
        assert "Gross Pay" in names
        assert "Net Pay" in names


class TestDailyBasis:
    """Daily-rated employees are paid for the days worked."""

    def daily(self, rate: str = "800") -> EmployeeSnapshot:
        return snapshot("0", pay_basis=PayBasis.DAILY, daily_rate=Decimal(rate))

    def test_basic_is_rate_times_days(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.MONTHLY).calculate(
            self.daily(),
            [ResolvedAdjustment("Days Worked", Category.BASIC_PAY_RELATED, Decimal("10"))],
        )

        assert result.basic_pay == Decimal("8000.00")
        assert result.gross_pay == Decimal("8000.00")
        assert result.contributions.employee[SSS_EE_MC] == Decimal("400.00")
        assert {"name": "Days Worked", "category": "Attendance", "amount": "10"} in [
            line.to_dict() for line in result.components
        ]

    def test_days_worked_is_not_money_for_monthly_employees(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.MONTHLY).calculate(
            snapshot(),
            [ResolvedAdjustment("Days Worked", Category.BASIC_PAY_RELATED, Decimal("22"))],
        )

        assert result.basic_pay == Decimal("20000.00")
        assert result.gross_pay == Decimal("20000.00")
        assert "Days Worked" not in [line.name for line in result.components]

    def test_cutoff_b_contributions_use_month_to_date_basic(self, default_tables):
        prior = PriorCutoff(basic_pay=Decimal("4000"), employee={SSS_EE_MC: Decimal("200")})
        result = PayrollCalculator(default_tables, PayrollCode.B).calculate(
            self.daily(),
            [ResolvedAdjustment("Days Worked", Category.BASIC_PAY_RELATED, Decimal("5"))],
            prior=prior,
        )

        assert result.basic_pay == Decimal("4000.00")
        # Monthly SSS on 8,000 less what cutoff A withheld
        assert result.contributions.employee[SSS_EE_MC] == Decimal("200.00")
        assert result.contributions.employer[SSS_ER_MC] == Decimal("800.00")

    def test_no_days_no_contributions(self, default_tables):
        result = PayrollCalculator(default_tables, PayrollCode.MONTHLY).calculate(self.daily())

        assert result.basic_pay == Decimal("0")
        assert result.contributions.employee_total == Decimal("0")
        assert result.contributions.employer_total == Decimal("0")
        assert result.net_pay == Decimal("0")


class TestPayrollEngine:
    """Run execution against the database."""

    @pytest.fixture
    async def draft_run(self, session, test_tenant, test_employee, statutory_version):
        run, _ = await PayrollRunService(session).create_run(
            test_tenant.tenant_id, "MONTHLY", date(2024, 5, 1), date(2024, 5, 31)
        )
        await AdjustmentResolver(session).upsert_batch(test_tenant.tenant_id, [
            AdjustmentInput(test_employee.employee_id, "Salary Loan", "2024-05", Decimal("500"), "Deduction"),
        ])
        await session.commit()
        return run

    async def test_execute_writes_rows(self, session, settings, test_tenant, test_employee, draft_run):
        progress = []

        async def on_progress(done, total):
            progress.append((done, total))

        totals = await PayrollEngine(session, settings).execute(
            draft_run.payroll_run_id, test_tenant.tenant_id, on_progress=on_progress
        )

        assert totals.total_employees == 1
        assert totals.total_gross_pay == Decimal("20000.00")
        assert totals.total_net_pay == Decimal("17800.00")
        assert progress == [(1, 1)]

        rows = (await session.execute(
            select(PayrollRow).where(PayrollRow.payroll_run_id == draft_run.payroll_run_id)
        )).scalars().all()
        assert len(rows) == 1
        assert rows[0].sss_ee_mc == Decimal("1000.00")
        assert rows[0].net_pay == Decimal("17800.00")
        assert {"name": "Salary Loan", "category": "Deduction", "amount": "500.00"} in rows[0].components

    async def test_recompute_replaces_rows(self, session, settings, test_tenant, test_employee, draft_run):
        engine = PayrollEngine(session, settings)
        await engine.execute(draft_run.payroll_run_id, test_tenant.tenant_id)
        await engine.execute(draft_run.payroll_run_id, test_tenant.tenant_id)

        rows = (await session.execute(
            select(PayrollRow).where(PayrollRow.payroll_run_id == draft_run.payroll_run_id)
        )).scalars().all()
        assert len(rows) == 1

    async def test_cancellation_writes_nothing(self, session, settings, test_tenant, test_employee, draft_run):
        async def cancelled():
            return True

        with pytest.raises(JobCancelled):
            await PayrollEngine(session, settings).execute(
                draft_run.payroll_run_id, test_tenant.tenant_id, should_cancel=cancelled
            )

        rows = (await session.execute(
            select(PayrollRow).where(PayrollRow.payroll_run_id == draft_run.payroll_run_id)
        )).scalars().all()
        assert rows == []

    async def test_only_draft_runs_compute(self, session, settings, test_tenant, test_employee, draft_run):
        service = PayrollRunService(session)
        await service.mark_computed(draft_run.payroll_run_id, test_tenant.tenant_id, RunTotals())

        with pytest.raises(InvalidRunTransition) as exc_info:
            await PayrollEngine(session, settings).execute(draft_run.payroll_run_id, test_tenant.tenant_id)
        assert exc_info.value.required == "DRAFT"

    async def test_inactive_employees_skipped(self, session, settings, test_tenant, make_employee, draft_run):
        await make_employee("E-002", "30000", active=False)

        totals = await PayrollEngine(session, settings).execute(draft_run.payroll_run_id, test_tenant.tenant_id)
        assert totals.total_employees == 1

    async def test_daily_employee_paid_by_attendance(
        self, session, settings, test_tenant, make_employee, draft_run
    ):
        worker = await make_employee("E-003", "20000", pay_basis="DAILY")
        await AdjustmentResolver(session).upsert_batch(test_tenant.tenant_id, [
            AdjustmentInput(worker.employee_id, "Days Worked", "2024-05", Decimal("10"), "Basic Pay Related"),
        ])
        profile = await session.get(CompanyProfile, test_tenant.tenant_id)
        profile.working_days_per_year = 313
        await session.commit()

        await PayrollEngine(session, settings).execute(draft_run.payroll_run_id, test_tenant.tenant_id)

        row = (await session.execute(
            select(PayrollRow).where(
                PayrollRow.payroll_run_id == draft_run.payroll_run_id,
                PayrollRow.employee_id == worker.employee_id,
            )
        )).scalar_one()
        # 20,000 * 12 / 313 working days, times 10 days
        assert row.basic_pay == Decimal("7667.70")
        assert row.gross_pay == Decimal("7667.70")
