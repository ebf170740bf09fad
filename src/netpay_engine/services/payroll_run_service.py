"""Payroll run service - lifecycle operations and their side effects."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from netpay_engine.calculators.adjustment_resolver import AdjustmentResolver
from netpay_engine.calculators.engine import derive_period_key, period_label
from netpay_engine.calculators.money import ZERO
from netpay_engine.calculators.types import COMPONENT_COLUMNS, PayrollCode
from netpay_engine.errors import (
    ConflictError,
    IntegrityError,
    InvalidRunTransition,
    NotFoundError,
    ValidationError,
)
from netpay_engine.models import PayrollHistory, PayrollRow, PayrollRun
from netpay_engine.services.job_service import JobOrchestrator
from netpay_engine.services.state_machine import PayrollRunStateMachine, PayrollRunStatus

if TYPE_CHECKING:
    from netpay_engine.calculators.engine import RunTotals

logger = logging.getLogger(__name__)

# Row columns copied field-for-field into history at posting
HISTORY_FIELDS = tuple(COMPONENT_COLUMNS.values()) + (
    "basic_pay",
    "gross_pay",
    "taxable_income",
    "withholding_tax",
    "total_deductions",
    "net_pay",
    "ceiling_benefits",
)


class PayrollRunService:
    """Service for managing payroll run lifecycle.

    Operations:
    - create_run: create (or reuse) the DRAFT run for a cutoff
    - mark_computed: DRAFT → COMPUTED after the engine wrote rows
    - approve: COMPUTED → APPROVED, freezing adjustment inputs per row
    - post: APPROVED → POSTED, writing immutable history rows
    - unpost: POSTED → APPROVED, removing history and snapshots
    - delete: remove a non-posted run, cancelling its in-flight jobs

    Every transition is claimed with a conditional UPDATE on the expected
    status, so a racing transition fails instead of double-applying. The
    service never commits; callers own the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_run(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        load_rows: bool = False,
    ) -> PayrollRun:
        query = select(PayrollRun).where(
            PayrollRun.payroll_run_id == payroll_run_id,
            PayrollRun.tenant_id == tenant_id,
        )
        if load_rows:
            query = query.options(selectinload(PayrollRun.rows))
        result = await self.session.execute(query)
        run = result.scalar_one_or_none()
        if run is None:
            raise NotFoundError("PayrollRun", payroll_run_id)
        return run

    async def list_runs(self, tenant_id: UUID, status: str | None = None) -> list[PayrollRun]:
        query = select(PayrollRun).where(PayrollRun.tenant_id == tenant_id)
        if status:
            try:
                wanted = PayrollRunStatus(status.upper())
            except ValueError as exc:
                raise ValidationError(f"Unknown run status '{status}'", {"status": status}) from exc
            query = query.where(PayrollRun.status == wanted.value)
        result = await self.session.execute(
            query.order_by(PayrollRun.period_end.desc(), PayrollRun.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_run(
        self,
        tenant_id: UUID,
        payroll_code: PayrollCode | str,
        period_start: date,
        period_end: date,
    ) -> tuple[PayrollRun, bool]:
        """Create the DRAFT run for a cutoff, or reuse an existing DRAFT one.

        Returns (run, created). A run for the same label and dates that has
        already moved past DRAFT is not recomputed in place.
        """
        try:
            code = PayrollCode(str(payroll_code).upper())
        except ValueError as exc:
            raise ValidationError(
                f"Unknown payroll code '{payroll_code}'", {"payroll_code": payroll_code}
            ) from exc
        if period_end < period_start:
            raise ValidationError(
                "period_end must not be before period_start",
                {"period_start": str(period_start), "period_end": str(period_end)},
            )

        key = derive_period_key(code, period_start, period_end)
        label = period_label(key, code)
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.tenant_id == tenant_id,
                PayrollRun.period_label == label,
                PayrollRun.period_start == period_start,
                PayrollRun.period_end == period_end,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            if existing.status != PayrollRunStatus.DRAFT:
                raise InvalidRunTransition(
                    existing.status,
                    PayrollRunStatus.COMPUTED.value,
                    PayrollRunStatus.DRAFT.value,
                    reason=f"run {label} already exists; delete it to recompute",
                )
            return existing, False

        run = PayrollRun(
            tenant_id=tenant_id,
            period_key=key,
            period_label=label,
            payroll_code=code.value,
            period_start=period_start,
            period_end=period_end,
            status=PayrollRunStatus.DRAFT.value,
        )
        self.session.add(run)
        await self._flush("create payroll run")
        return run, True

    async def mark_computed(
        self, payroll_run_id: UUID, tenant_id: UUID, totals: RunTotals
    ) -> PayrollRun:
        run = await self.get_run(payroll_run_id, tenant_id)
        await self._claim(
            run,
            PayrollRunStatus.COMPUTED,
            PayrollRunStatus.DRAFT,
            computed_at=_now(),
            total_employees=totals.total_employees,
            total_gross_pay=totals.total_gross_pay,
            total_net_pay=totals.total_net_pay,
        )
        return run

    async def revert_to_draft(self, payroll_run_id: UUID, tenant_id: UUID) -> bool:
        """Compensating action for a failed computation job.

        Only touches runs that never got past COMPUTED; computed rows and
        totals are discarded so the run can be retried.
        """
        result = await self.session.execute(
            update(PayrollRun)
            .where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.tenant_id == tenant_id,
                PayrollRun.status.in_([PayrollRunStatus.DRAFT.value, PayrollRunStatus.COMPUTED.value]),
            )
            .values(
                status=PayrollRunStatus.DRAFT.value,
                computed_at=None,
                total_employees=0,
                total_gross_pay=ZERO,
                total_net_pay=ZERO,
            )
        )
        if not result.rowcount:
            return False
        await self.session.execute(
            delete(PayrollRow).where(PayrollRow.payroll_run_id == payroll_run_id)
        )
        return True

    async def approve(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        actor_user_id: UUID | None = None,
    ) -> PayrollRun:
        """Approve a computed run and snapshot the adjustments behind each row."""
        run = await self.get_run(payroll_run_id, tenant_id, load_rows=True)
        await self._claim(
            run,
            PayrollRunStatus.APPROVED,
            PayrollRunStatus.COMPUTED,
            approved_at=_now(),
            approved_by=actor_user_id,
        )

        period_key = run.adjustment_period_key
        snapshots = await AdjustmentResolver(self.session).snapshot(tenant_id, period_key)
        for row in run.rows:
            row.inputs_snapshot = snapshots.get(
                row.employee_id, {"period_key": period_key, "adjustments": []}
            )
        await self._flush("approve payroll run")
        return run

    async def post(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        actor_user_id: UUID | None = None,
    ) -> PayrollRun:
        """Post an approved run: one history row per payroll row."""
        run = await self.get_run(payroll_run_id, tenant_id, load_rows=True)
        posted_at = _now()
        await self._claim(
            run,
            PayrollRunStatus.POSTED,
            PayrollRunStatus.APPROVED,
            posted_at=posted_at,
            posted_by=actor_user_id,
        )

        self.session.add_all([_history_from_row(run, row, posted_at) for row in run.rows])
        await self._flush("post payroll run")
        logger.info("Posted run %s with %d history rows", run.period_label, len(run.rows))
        return run

    async def unpost(self, payroll_run_id: UUID, tenant_id: UUID) -> PayrollRun:
        """Reverse a posting: history rows removed, snapshots cleared."""
        run = await self.get_run(payroll_run_id, tenant_id, load_rows=True)
        await self._claim(
            run,
            PayrollRunStatus.APPROVED,
            PayrollRunStatus.POSTED,
            posted_at=None,
            posted_by=None,
        )

        removed = await self.session.execute(
            delete(PayrollHistory).where(
                PayrollHistory.tenant_id == tenant_id,
                PayrollHistory.payroll_run_id == payroll_run_id,
            )
        )
        for row in run.rows:
            row.inputs_snapshot = None
        await self._flush("unpost payroll run")
        logger.info("Unposted run %s, removed %d history rows", run.period_label, removed.rowcount or 0)
        return run

    async def delete(self, payroll_run_id: UUID, tenant_id: UUID) -> int:
        """Delete a non-posted run; returns the number of jobs cancelled."""
        run = await self.get_run(payroll_run_id, tenant_id)
        if not PayrollRunStateMachine.can_delete(run.status):
            raise ConflictError(
                "Posted payroll runs cannot be deleted; unpost first",
                {"current": run.status},
            )

        cancelled = await JobOrchestrator(self.session).cancel_for_target(
            tenant_id,
            payroll_run_id,
            f"Cancelled due to deletion of payroll run {run.period_label}.",
        )
        await self.session.execute(
            delete(PayrollRow).where(PayrollRow.payroll_run_id == payroll_run_id)
        )
        result = await self.session.execute(
            delete(PayrollRun).where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.tenant_id == tenant_id,
                PayrollRun.status != PayrollRunStatus.POSTED.value,
            )
        )
        if not result.rowcount:
            raise ConflictError("Payroll run was posted while deleting", {"id": str(payroll_run_id)})
        return cancelled

    async def history_for_run(self, payroll_run_id: UUID, tenant_id: UUID) -> Sequence[PayrollHistory]:
        result = await self.session.execute(
            select(PayrollHistory).where(
                PayrollHistory.tenant_id == tenant_id,
                PayrollHistory.payroll_run_id == payroll_run_id,
            )
        )
        return result.scalars().all()

    async def _claim(
        self,
        run: PayrollRun,
        target: PayrollRunStatus,
        required: PayrollRunStatus,
        **values: Any,
    ) -> None:
        """Move run from required to target status, or fail without effects."""
        PayrollRunStateMachine.validate_transition(run.status, target, required)
        result = await self.session.execute(
            update(PayrollRun)
            .where(
                PayrollRun.payroll_run_id == run.payroll_run_id,
                PayrollRun.tenant_id == run.tenant_id,
                PayrollRun.status == required.value,
            )
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await self.session.scalar(
                select(PayrollRun.status).where(PayrollRun.payroll_run_id == run.payroll_run_id)
            )
            raise InvalidRunTransition(
                current or run.status,
                target.value,
                required.value,
                reason="status changed concurrently",
            )
        set_committed_value(run, "status", target.value)
        for name, value in values.items():
            set_committed_value(run, name, value)

    async def _flush(self, action: str) -> None:
        try:
            await self.session.flush()
        except SAIntegrityError as exc:
            raise IntegrityError(f"Could not {action}: {exc.orig}") from exc


def _history_from_row(run: PayrollRun, row: PayrollRow, posted_at: datetime) -> PayrollHistory:
    history = PayrollHistory(
        tenant_id=run.tenant_id,
        payroll_run_id=run.payroll_run_id,
        employee_id=row.employee_id,
        period_key=run.period_key,
        payroll_code=run.payroll_code,
        period_end=run.period_end,
        posted_at=posted_at,
    )
    for name in HISTORY_FIELDS:
        setattr(history, name, getattr(row, name))
    return history


def _now() -> datetime:
    return datetime.now(timezone.utc)
