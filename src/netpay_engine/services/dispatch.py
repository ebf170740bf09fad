"""Task dispatch: hand committed jobs to a worker."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

import httpx

if TYPE_CHECKING:
    from netpay_engine.services.job_service import JobRunner

logger = logging.getLogger(__name__)

WORKER_EXECUTE_PATH = "/api/worker/execute"
WORKER_TOKEN_HEADER = "X-Worker-Token"


class TaskDispatcher(Protocol):
    """Fire-and-forget trigger for out-of-process job execution."""

    async def enqueue(self, job_id: UUID, target_id: UUID | None, tenant_id: UUID) -> None:
        ...


class HttpTaskDispatcher:
    """Posts job references to a worker's execute endpoint.

    The worker answers as soon as the job is accepted; status is read from
    the job record, never from this call.
    """

    def __init__(
        self,
        worker_url: str,
        token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.worker_url = worker_url.rstrip("/")
        self.token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def enqueue(self, job_id: UUID, target_id: UUID | None, tenant_id: UUID) -> None:
        headers = {WORKER_TOKEN_HEADER: self.token} if self.token else {}
        response = await self._client.post(
            f"{self.worker_url}{WORKER_EXECUTE_PATH}",
            json={
                "jobId": str(job_id),
                "targetId": str(target_id) if target_id else None,
                "tenantId": str(tenant_id),
            },
            headers=headers,
        )
        response.raise_for_status()
        logger.info("Dispatched job %s to %s", job_id, self.worker_url)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class InlineTaskDispatcher:
    """Runs jobs as background tasks on the current event loop."""

    def __init__(self, runner: JobRunner):
        self.runner = runner
        self._tasks: set[asyncio.Task] = set()

    async def enqueue(self, job_id: UUID, target_id: UUID | None, tenant_id: UUID) -> None:
        task = asyncio.create_task(self.runner.run(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every job started by this dispatcher."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        await self.drain()
