"""Tests for job submission, execution and dispatch."""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import func, select

from netpay_engine.errors import ConflictError, NotFoundError, ValidationError
from netpay_engine.models import AdjustmentType, Job, PayrollRow, StatutoryVersion
from netpay_engine.services.dispatch import HttpTaskDispatcher, InlineTaskDispatcher
from netpay_engine.services.handlers import (
    TASK_ACCOUNTING_POST,
    TASK_PAYROLL_GENERATE,
    build_registry,
)
from netpay_engine.services.job_service import (
    HandlerRegistry,
    JobOrchestrator,
    JobRunner,
    JobStatus,
)
from netpay_engine.services.payroll_run_service import PayrollRunService


class FakePoster:
    def __init__(self):
        self.calls = []

    async def post_journal(self, tenant_id, summary):
        self.calls.append((tenant_id, summary))
        return "JE-0001"


async def draft_run(session, tenant):
    run, _ = await PayrollRunService(session).create_run(
        tenant.tenant_id, "MONTHLY", date(2024, 5, 1), date(2024, 5, 31)
    )
    return run


class TestJobOrchestrator:
    """Submission, lookup and cancellation."""

    async def test_submit_is_idempotent_per_target(self, session, test_tenant):
        orchestrator = JobOrchestrator(session)
        target = uuid4()

        first, created = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=target)
        second, created_again = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=target)

        assert created is True
        assert created_again is False
        assert second.job_id == first.job_id
        assert first.status == JobStatus.PENDING.value
        assert first.progress == 0

    async def test_different_target_gets_its_own_job(self, session, test_tenant):
        orchestrator = JobOrchestrator(session)

        first, _ = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=uuid4())
        second, created = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=uuid4())

        assert created is True
        assert second.job_id != first.job_id

    async def test_finished_job_does_not_block_resubmission(self, session, test_tenant):
        orchestrator = JobOrchestrator(session)
        target = uuid4()
        first, _ = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=target)
        await orchestrator.cancel(first.job_id, test_tenant.tenant_id)

        second, created = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=target)

        assert created is True
        assert second.job_id != first.job_id

    async def test_unknown_type_rejected_with_registry(self, session, test_tenant):
        orchestrator = JobOrchestrator(session, registry=build_registry())

        with pytest.raises(ValidationError):
            await orchestrator.submit(test_tenant.tenant_id, "payroll.explode")

    async def test_get_is_tenant_scoped(self, session, test_tenant):
        orchestrator = JobOrchestrator(session)
        job, _ = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=uuid4())

        with pytest.raises(NotFoundError):
            await orchestrator.get(job.job_id, uuid4())

    async def test_cancel_terminal_job_conflicts(self, session, test_tenant):
        orchestrator = JobOrchestrator(session)
        job, _ = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=uuid4())

        cancelled = await orchestrator.cancel(job.job_id, test_tenant.tenant_id, "Not needed")
        assert cancelled.status == JobStatus.CANCELLED.value
        assert cancelled.message == "Not needed"
        assert cancelled.completed_at is not None

        with pytest.raises(ConflictError):
            await orchestrator.cancel(job.job_id, test_tenant.tenant_id)

    async def test_cancel_for_target_only_touches_active_jobs(self, session, test_tenant):
        orchestrator = JobOrchestrator(session)
        target = uuid4()
        done, _ = await orchestrator.submit(test_tenant.tenant_id, TASK_ACCOUNTING_POST, target_id=target)
        done.status = JobStatus.COMPLETED.value
        await session.flush()
        await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=target)

        count = await orchestrator.cancel_for_target(test_tenant.tenant_id, target, "Run deleted")

        assert count == 1
        await session.refresh(done)
        assert done.status == JobStatus.COMPLETED.value

    async def test_dispatch_skips_non_pending_jobs(self, session, test_tenant):
        calls = []

        class Recorder:
            async def enqueue(self, job_id, target_id, tenant_id):
                calls.append(job_id)

        orchestrator = JobOrchestrator(session, dispatcher=Recorder())
        job, _ = await orchestrator.submit(test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=uuid4())

        await orchestrator.dispatch(job)
        await orchestrator.cancel(job.job_id, test_tenant.tenant_id)
        await orchestrator.dispatch(job)

        assert calls == [job.job_id]


class TestJobRunner:
    """Worker-side execution of committed jobs."""

    async def test_generate_completes_and_marks_run_computed(
        self, session, database, settings, test_tenant, test_employee, statutory_version
    ):
        run = await draft_run(session, test_tenant)
        job, _ = await JobOrchestrator(session).submit(
            test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=run.payroll_run_id
        )
        await session.commit()

        finished = await JobRunner(database, build_registry(), settings).run(job.job_id)

        assert finished.status == JobStatus.COMPLETED.value
        assert finished.progress == 100
        assert finished.started_at is not None
        assert finished.result["payrollRunId"] == str(run.payroll_run_id)
        assert finished.result["status"] == "COMPUTED"

        await session.refresh(run)
        assert run.status == "COMPUTED"
        assert run.total_employees == 1
        assert run.total_net_pay == Decimal("18300.00")

    async def test_failed_generate_reverts_run_and_records_error(
        self, session, database, settings, test_tenant, test_employee
    ):
        # Only a future version exists, so May 2024 has no statutory tables
        session.add(StatutoryVersion(country="PH", status="PUBLISHED", effective_from=date(2030, 1, 1)))
        run = await draft_run(session, test_tenant)
        job, _ = await JobOrchestrator(session).submit(
            test_tenant.tenant_id, TASK_PAYROLL_GENERATE, target_id=run.payroll_run_id
        )
        await session.commit()

        finished = await JobRunner(database, build_registry(), settings).run(job.job_id)

        assert finished.status == JobStatus.FAILED.value
        assert finished.error
        assert finished.completed_at is not None
        await session.refresh(run)
        assert run.status == "DRAFT"
        rows = await session.scalar(
            select(func.count()).select_from(PayrollRow).where(PayrollRow.payroll_run_id == run.payroll_run_id)
        )
        assert rows == 0

    async def test_cancelled_mid_run_discards_handler_writes(self, session, database, settings, test_tenant):
        registry = HandlerRegistry()

        async def cancelling_handler(ctx):
            async with database.session_factory() as other:
                await JobOrchestrator(other).cancel(ctx.job.job_id, ctx.tenant_id, "Stop")
                await other.commit()
            ctx.session.add(AdjustmentType(tenant_id=ctx.tenant_id, name="Ghost", category="EARNING"))
            await ctx.session.flush()
            return {"written": True}

        registry.register("demo.cancel", cancelling_handler)
        job, _ = await JobOrchestrator(session).submit(test_tenant.tenant_id, "demo.cancel", target_id=uuid4())
        await session.commit()

        finished = await JobRunner(database, registry, settings).run(job.job_id)

        assert finished.status == JobStatus.CANCELLED.value
        assert finished.message == "Stop"
        assert finished.result is None
        ghosts = await session.scalar(
            select(func.count()).select_from(AdjustmentType).where(AdjustmentType.name == "Ghost")
        )
        assert ghosts == 0

    async def test_job_runs_at_most_once(self, session, database, settings, test_tenant):
        registry = HandlerRegistry()
        calls = []

        async def counting_handler(ctx):
            calls.append(ctx.job.job_id)
            return {}

        registry.register("demo.count", counting_handler)
        job, _ = await JobOrchestrator(session).submit(test_tenant.tenant_id, "demo.count")
        await session.commit()
        runner = JobRunner(database, registry, settings)

        await runner.run(job.job_id)
        again = await runner.run(job.job_id)

        assert calls == [job.job_id]
        assert again.status == JobStatus.COMPLETED.value

    async def test_unregistered_type_fails(self, session, database, settings, test_tenant):
        job, _ = await JobOrchestrator(session).submit(test_tenant.tenant_id, "demo.unknown")
        await session.commit()

        finished = await JobRunner(database, HandlerRegistry(), settings).run(job.job_id)

        assert finished.status == JobStatus.FAILED.value
        assert "demo.unknown" in finished.message

    async def test_missing_job_returns_none(self, database, settings):
        assert await JobRunner(database, HandlerRegistry(), settings).run(uuid4()) is None

    async def test_progress_reports_are_visible(self, session, database, settings, test_tenant):
        registry = HandlerRegistry()
        seen = []

        async def reporting_handler(ctx):
            await ctx.report(40, "Halfway-ish")
            async with database.session_factory() as other:
                seen.append(await other.scalar(select(Job.progress).where(Job.job_id == ctx.job.job_id)))
            return {}

        registry.register("demo.progress", reporting_handler)
        job, _ = await JobOrchestrator(session).submit(test_tenant.tenant_id, "demo.progress")
        await session.commit()

        await JobRunner(database, registry, settings).run(job.job_id)

        assert seen == [40]

    async def test_accounting_post_sends_journal(
        self, session, database, settings, test_tenant, test_employee, compute_run
    ):
        run = await compute_run()
        service = PayrollRunService(session)
        await service.approve(run.payroll_run_id, test_tenant.tenant_id)
        await service.post(run.payroll_run_id, test_tenant.tenant_id)
        job, _ = await JobOrchestrator(session).submit(
            test_tenant.tenant_id, TASK_ACCOUNTING_POST, target_id=run.payroll_run_id
        )
        await session.commit()
        poster = FakePoster()

        finished = await JobRunner(database, build_registry(poster), settings).run(job.job_id)

        assert finished.status == JobStatus.COMPLETED.value
        assert finished.result["reference"] == "JE-0001"
        assert finished.result["journal"]["netPay"] == "18300.00"
        tenant_id, summary = poster.calls[0]
        assert tenant_id == test_tenant.tenant_id
        assert summary.gross_pay == Decimal("20000.00")

    async def test_accounting_post_without_poster_fails(
        self, session, database, settings, test_tenant, test_employee, compute_run
    ):
        run = await compute_run()
        job, _ = await JobOrchestrator(session).submit(
            test_tenant.tenant_id, TASK_ACCOUNTING_POST, target_id=run.payroll_run_id
        )
        await session.commit()

        finished = await JobRunner(database, build_registry(), settings).run(job.job_id)

        assert finished.status == JobStatus.FAILED.value
        assert "poster" in finished.message

    async def test_accounting_post_requires_posted_run(
        self, session, database, settings, test_tenant, test_employee, compute_run
    ):
        run = await compute_run()
        job, _ = await JobOrchestrator(session).submit(
            test_tenant.tenant_id, TASK_ACCOUNTING_POST, target_id=run.payroll_run_id
        )
        await session.commit()
        poster = FakePoster()

        finished = await JobRunner(database, build_registry(poster), settings).run(job.job_id)

        assert finished.status == JobStatus.FAILED.value
        assert poster.calls == []


class TestDispatchers:
    """Inline and HTTP task dispatch."""

    async def test_inline_dispatcher_runs_job(self, session, database, settings, test_tenant):
        registry = HandlerRegistry()

        async def noop(ctx):
            return {"ok": True}

        registry.register("demo.noop", noop)
        dispatcher = InlineTaskDispatcher(JobRunner(database, registry, settings))
        orchestrator = JobOrchestrator(session, dispatcher=dispatcher, registry=registry)
        job, _ = await orchestrator.submit(test_tenant.tenant_id, "demo.noop")
        await session.commit()

        await orchestrator.dispatch(job)
        await dispatcher.drain()

        await session.refresh(job)
        assert job.status == JobStatus.COMPLETED.value
        assert job.result == {"ok": True}

    async def test_http_dispatcher_posts_job_reference(self):
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(202, json={"accepted": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        dispatcher = HttpTaskDispatcher("http://worker.local/", token="s3cret", client=client)
        job_id, target_id, tenant_id = uuid4(), uuid4(), uuid4()

        await dispatcher.enqueue(job_id, target_id, tenant_id)
        await client.aclose()

        request = captured[0]
        assert str(request.url) == "http://worker.local/api/worker/execute"
        assert request.headers["X-Worker-Token"] == "s3cret"
        assert json.loads(request.content) == {
            "jobId": str(job_id),
            "targetId": str(target_id),
            "tenantId": str(tenant_id),
        }

    async def test_http_dispatcher_raises_on_rejection(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(401)))
        dispatcher = HttpTaskDispatcher("http://worker.local", client=client)

        with pytest.raises(httpx.HTTPStatusError):
            await dispatcher.enqueue(uuid4(), None, uuid4())
        await client.aclose()
