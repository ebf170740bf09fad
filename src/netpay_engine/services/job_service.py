"""Job orchestration: idempotent submission, handler registry and runner."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from netpay_engine.config import Settings, get_settings
from netpay_engine.errors import ConflictError, JobCancelled, NotFoundError, ValidationError
from netpay_engine.models import Job

if TYPE_CHECKING:
    from netpay_engine.database import Database
    from netpay_engine.services.dispatch import TaskDispatcher

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Job status values."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


@dataclass
class JobContext:
    """What a handler sees while its job runs."""

    session: AsyncSession
    job: Job
    settings: Settings

    @property
    def tenant_id(self) -> UUID:
        return self.job.tenant_id

    @property
    def target_id(self) -> UUID | None:
        return self.job.target_id

    @property
    def payload(self) -> dict[str, Any]:
        return self.job.payload or {}

    async def report(self, progress: int, message: str) -> None:
        """Record progress and commit so pollers can see it."""
        await self.session.execute(
            update(Job)
            .where(Job.job_id == self.job.job_id, Job.status == JobStatus.RUNNING.value)
            .values(progress=max(0, min(100, int(progress))), message=message)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    async def is_cancelled(self) -> bool:
        status = await self.session.scalar(select(Job.status).where(Job.job_id == self.job.job_id))
        return status == JobStatus.CANCELLED.value


JobHandler = Callable[[JobContext], Awaitable[dict[str, Any] | None]]
FailureHook = Callable[[JobContext, Exception], Awaitable[None]]


@dataclass
class JobDefinition:
    handler: JobHandler
    on_failure: FailureHook | None = None


@dataclass
class HandlerRegistry:
    """Maps job type to handler; resolved when a job is executed."""

    handlers: dict[str, JobDefinition] = field(default_factory=dict)

    def register(self, job_type: str, handler: JobHandler, on_failure: FailureHook | None = None) -> None:
        self.handlers[job_type] = JobDefinition(handler, on_failure)

    def get(self, job_type: str) -> JobDefinition:
        definition = self.handlers.get(job_type)
        if definition is None:
            raise ValidationError(f"No handler registered for job type '{job_type}'", {"type": job_type})
        return definition

    def __contains__(self, job_type: str) -> bool:
        return job_type in self.handlers


class JobOrchestrator:
    """Creates and tracks jobs; never executes them.

    Submission is idempotent per (tenant, type, target): while a PENDING or
    RUNNING job exists it is returned instead of a new one.
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: TaskDispatcher | None = None,
        registry: HandlerRegistry | None = None,
    ):
        self.session = session
        self.dispatcher = dispatcher
        self.registry = registry

    async def find_active(self, tenant_id: UUID, job_type: str, target_id: UUID | None) -> Job | None:
        query = select(Job).where(
            Job.tenant_id == tenant_id,
            Job.type == job_type,
            Job.status.in_(ACTIVE_STATUSES),
        )
        if target_id is None:
            query = query.where(Job.target_id.is_(None))
        else:
            query = query.where(Job.target_id == target_id)
        result = await self.session.execute(query.order_by(Job.created_at).limit(1))
        return result.scalar_one_or_none()

    async def submit(
        self,
        tenant_id: UUID,
        job_type: str,
        payload: dict[str, Any] | None = None,
        target_id: UUID | None = None,
    ) -> tuple[Job, bool]:
        """Return (job, created); an in-flight job for the target is reused."""
        if self.registry is not None and job_type not in self.registry:
            raise ValidationError(f"Unknown job type '{job_type}'", {"type": job_type})

        existing = await self.find_active(tenant_id, job_type, target_id)
        if existing is not None:
            return existing, False

        job = Job(
            tenant_id=tenant_id,
            type=job_type,
            target_id=target_id,
            payload=payload or {},
            status=JobStatus.PENDING.value,
            progress=0,
            message="Queued",
        )
        self.session.add(job)
        try:
            await self.session.flush()
        except SAIntegrityError as exc:
            raise ConflictError(
                f"A {job_type} job is already in flight for this target",
                {"type": job_type, "target_id": str(target_id)},
            ) from exc
        return job, True

    async def dispatch(self, job: Job) -> None:
        """Trigger execution of a committed PENDING job."""
        if self.dispatcher is None or job.status != JobStatus.PENDING.value:
            return
        await self.dispatcher.enqueue(job.job_id, job.target_id, job.tenant_id)

    async def get(self, job_id: UUID, tenant_id: UUID) -> Job:
        result = await self.session.execute(
            select(Job).where(Job.job_id == job_id, Job.tenant_id == tenant_id)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def cancel(self, job_id: UUID, tenant_id: UUID, message: str | None = None) -> Job:
        job = await self.get(job_id, tenant_id)
        if job.is_terminal:
            raise ConflictError(
                f"Job is already {job.status}",
                {"current": job.status},
            )
        job.status = JobStatus.CANCELLED.value
        job.message = message or "Cancelled by user."
        job.completed_at = _now()
        await self.session.flush()
        return job

    async def cancel_for_target(self, tenant_id: UUID, target_id: UUID, message: str) -> int:
        """Cancel every in-flight job referencing a target."""
        result = await self.session.execute(
            update(Job)
            .where(
                Job.tenant_id == tenant_id,
                Job.target_id == target_id,
                Job.status.in_(ACTIVE_STATUSES),
            )
            .values(status=JobStatus.CANCELLED.value, message=message, completed_at=_now())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0


class JobRunner:
    """Worker-side execution: PENDING → RUNNING → COMPLETED | FAILED.

    Handler failures are recorded on the job (and logged with traceback);
    they are not raised past the runner. The handler's writes and the
    COMPLETED status commit together.
    """

    def __init__(self, database: Database, registry: HandlerRegistry, settings: Settings | None = None):
        self.database = database
        self.registry = registry
        self.settings = settings or get_settings()

    async def run(self, job_id: UUID) -> Job | None:
        async with self.database.session_factory() as session:
            job = await session.get(Job, job_id)
            if job is None:
                logger.warning("Job %s not found", job_id)
                return None

            claimed = await session.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.status == JobStatus.PENDING.value)
                .values(
                    status=JobStatus.RUNNING.value,
                    started_at=_now(),
                    progress=0,
                    message="Started",
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            await session.refresh(job)
            if not claimed.rowcount:
                logger.info("Job %s is %s; not running it again", job_id, job.status)
                return job

            job_type = job.type
            ctx = JobContext(session=session, job=job, settings=self.settings)
            try:
                definition = self.registry.get(job_type)
                result = await definition.handler(ctx)
            except JobCancelled:
                await session.rollback()
                logger.info("Job %s stopped after cancellation", job_id)
            except Exception as exc:
                await session.rollback()
                logger.exception("Job %s (%s) failed", job_id, job_type)
                await session.refresh(job)
                await self._compensate(ctx, exc)
                await self._finish(session, job_id, JobStatus.FAILED, message=str(exc) or type(exc).__name__, error=repr(exc))
            else:
                finished = await self._finish(
                    session,
                    job_id,
                    JobStatus.COMPLETED,
                    message="Completed",
                    result=result or {},
                    commit=False,
                )
                if finished:
                    await session.commit()
                else:
                    # Cancelled while finishing: discard the handler's work
                    await session.rollback()
                    logger.info("Job %s was cancelled before completion; work discarded", job_id)

            await session.refresh(job)
            return job

    async def _compensate(self, ctx: JobContext, exc: Exception) -> None:
        job_id = ctx.job.job_id
        definition = self.registry.handlers.get(ctx.job.type)
        if definition is None or definition.on_failure is None:
            return
        try:
            await definition.on_failure(ctx, exc)
            await ctx.session.commit()
        except Exception:
            await ctx.session.rollback()
            logger.exception("Compensation for job %s failed", job_id)

    @staticmethod
    async def _finish(
        session: AsyncSession,
        job_id: UUID,
        status: JobStatus,
        message: str,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        commit: bool = True,
    ) -> bool:
        values: dict[str, Any] = {
            "status": status.value,
            "message": message,
            "completed_at": _now(),
            "error": error,
        }
        if status is JobStatus.COMPLETED:
            values.update(progress=100, result=result)
        outcome = await session.execute(
            update(Job)
            .where(Job.job_id == job_id, Job.status == JobStatus.RUNNING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if commit:
            await session.commit()
        return bool(outcome.rowcount)


def _now() -> datetime:
    return datetime.now(timezone.utc)
