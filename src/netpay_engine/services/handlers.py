"""Job handlers registered by task type."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from netpay_engine.calculators.engine import PayrollEngine
from netpay_engine.calculators.money import ZERO, round_currency
from netpay_engine.calculators.types import COMPONENT_COLUMNS, EMPLOYER_COMPONENTS
from netpay_engine.errors import ConflictError, ValidationError
from netpay_engine.models import PayrollRun
from netpay_engine.services.job_service import HandlerRegistry, JobContext
from netpay_engine.services.payroll_run_service import PayrollRunService
from netpay_engine.services.state_machine import PayrollRunStatus

logger = logging.getLogger(__name__)

TASK_PAYROLL_GENERATE = "payroll.generate"
TASK_ACCOUNTING_POST = "accounting.post"

# Progress stays below 100 until the job is marked COMPLETED
_COMPUTE_PROGRESS_CEILING = 95


@dataclass
class JournalSummary:
    """Run-level amounts an accounting ledger needs for one posting."""

    payroll_run_id: UUID
    period_label: str
    period_end: str
    gross_pay: Decimal = ZERO
    net_pay: Decimal = ZERO
    withholding_tax: Decimal = ZERO
    total_deductions: Decimal = ZERO
    employee_contributions: Decimal = ZERO
    employer_contributions: Decimal = ZERO
    components: dict[str, Decimal] = field(default_factory=dict)

    @classmethod
    def from_run(cls, run: PayrollRun) -> JournalSummary:
        summary = cls(
            payroll_run_id=run.payroll_run_id,
            period_label=run.period_label,
            period_end=run.period_end.isoformat(),
        )
        for row in run.rows:
            summary.gross_pay += row.gross_pay
            summary.net_pay += row.net_pay
            summary.withholding_tax += row.withholding_tax
            summary.total_deductions += row.total_deductions
            for name, column in COMPONENT_COLUMNS.items():
                amount = getattr(row, column)
                summary.components[name] = summary.components.get(name, ZERO) + amount
                if name in EMPLOYER_COMPONENTS:
                    summary.employer_contributions += amount
                else:
                    summary.employee_contributions += amount
        return summary

    def to_dict(self) -> dict[str, Any]:
        return {
            "payrollRunId": str(self.payroll_run_id),
            "periodLabel": self.period_label,
            "periodEnd": self.period_end,
            "grossPay": str(round_currency(self.gross_pay)),
            "netPay": str(round_currency(self.net_pay)),
            "withholdingTax": str(round_currency(self.withholding_tax)),
            "totalDeductions": str(round_currency(self.total_deductions)),
            "employeeContributions": str(round_currency(self.employee_contributions)),
            "employerContributions": str(round_currency(self.employer_contributions)),
            "components": {k: str(round_currency(v)) for k, v in self.components.items()},
        }


class AccountingPoster(Protocol):
    """Pushes a posted run to an external ledger; returns its reference."""

    async def post_journal(self, tenant_id: UUID, summary: JournalSummary) -> str | None:
        ...


async def generate_payroll(ctx: JobContext) -> dict[str, Any]:
    """Compute a DRAFT run and mark it COMPUTED."""
    run_id = _require_target(ctx)

    async def on_progress(done: int, total: int) -> None:
        percent = done * _COMPUTE_PROGRESS_CEILING // total if total else _COMPUTE_PROGRESS_CEILING
        await ctx.report(percent, f"Computed {done} of {total} employees")

    engine = PayrollEngine(ctx.session, ctx.settings)
    totals = await engine.execute(run_id, ctx.tenant_id, on_progress, ctx.is_cancelled)
    run = await PayrollRunService(ctx.session).mark_computed(run_id, ctx.tenant_id, totals)
    return {"payrollRunId": str(run.payroll_run_id), "status": run.status, **totals.to_dict()}


async def revert_generate(ctx: JobContext, exc: Exception) -> None:
    run_id = _require_target(ctx)
    reverted = await PayrollRunService(ctx.session).revert_to_draft(run_id, ctx.tenant_id)
    if reverted:
        logger.info("Run %s reverted to DRAFT after failed computation", run_id)


def post_to_accounting(poster: AccountingPoster | None):
    """Build the handler pushing a POSTED run to ``poster``."""

    async def handler(ctx: JobContext) -> dict[str, Any]:
        if poster is None:
            raise ValidationError("No accounting poster is configured")
        run_id = _require_target(ctx)
        run = await PayrollRunService(ctx.session).get_run(run_id, ctx.tenant_id, load_rows=True)
        if run.status != PayrollRunStatus.POSTED:
            raise ConflictError(
                f"Run {run.period_label} must be POSTED before it is sent to accounting",
                {"current": run.status, "required": PayrollRunStatus.POSTED.value},
            )
        summary = JournalSummary.from_run(run)
        await ctx.report(50, f"Sending {run.period_label} to accounting")
        reference = await poster.post_journal(ctx.tenant_id, summary)
        return {"reference": reference, "journal": summary.to_dict()}

    return handler


def build_registry(poster: AccountingPoster | None = None) -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register(TASK_PAYROLL_GENERATE, generate_payroll, on_failure=revert_generate)
    registry.register(TASK_ACCOUNTING_POST, post_to_accounting(poster))
    return registry


def _require_target(ctx: JobContext) -> UUID:
    if ctx.target_id is None:
        raise ValidationError(f"Job {ctx.job.job_id} has no target payroll run")
    return ctx.target_id
