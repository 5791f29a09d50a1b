"""Local in-process scheduling gateway.

This module provides a scheduling gateway that runs jobs in the same process
with asyncio timers. It is suitable for development, testing, and
single-instance deployments; scheduled jobs do not survive a restart.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from contact_workflows.engine.scheduling import StepJob, run_job
from contact_workflows.exceptions import RetryStepError

if TYPE_CHECKING:
    from contact_workflows.engine.coordinator import ExecutionCoordinator
    from contact_workflows.engine.scheduling import Job

__all__ = ["LocalSchedulingGateway"]

logger = structlog.get_logger(__name__)


class LocalSchedulingGateway:
    """In-memory scheduling gateway backed by ``loop.call_later``.

    A job is outstanding from the moment it is enqueued until its timer fires.
    Enqueueing a job whose dedupe key is outstanding is a no-op.

    Attributes:
        coordinator: The coordinator jobs are delivered to.
        _timers: Map of dedupe keys to their pending timer handles.
        _tasks: Jobs currently being delivered.

    Example:
        >>> gateway = LocalSchedulingGateway()
        >>> coordinator = ExecutionCoordinator(session_maker, gateway=gateway, ...)
        >>> gateway.attach(coordinator)
        >>> await coordinator.start_execution(workflow_id, contact_id)
        >>> await gateway.wait_idle()
    """

    def __init__(self, coordinator: ExecutionCoordinator | None = None) -> None:
        """Initialize the gateway.

        Args:
            coordinator: The coordinator to deliver jobs to. May be attached later.
        """
        self.coordinator = coordinator
        self._timers: dict[str, tuple[asyncio.TimerHandle, Job]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def attach(self, coordinator: ExecutionCoordinator) -> None:
        """Attach the coordinator jobs are delivered to."""
        self.coordinator = coordinator

    async def enqueue_now(self, job: Job) -> bool:
        return await self.enqueue_after(job, 0)

    async def enqueue_after(self, job: Job, delay_ms: int) -> bool:
        key = job.dedupe_key
        if key in self._timers:
            logger.debug("job_deduplicated", key=key)
            return False

        loop = asyncio.get_running_loop()
        handle = loop.call_later(max(delay_ms, 0) / 1000, self._fire, key)
        self._timers[key] = (handle, job)
        logger.debug("job_scheduled", key=key, delay_ms=delay_ms)
        return True

    async def cancel(self, dedupe_key: str) -> bool:
        entry = self._timers.pop(dedupe_key, None)
        if entry is None:
            return False
        entry[0].cancel()
        logger.debug("job_cancelled", key=dedupe_key)
        return True

    def is_scheduled(self, dedupe_key: str) -> bool:
        """Check whether a job is outstanding."""
        return dedupe_key in self._timers

    @property
    def scheduled_keys(self) -> list[str]:
        """Dedupe keys of all outstanding jobs."""
        return list(self._timers)

    async def fire_now(self, dedupe_key: str) -> bool:
        """Deliver an outstanding job immediately instead of waiting for its timer.

        Args:
            dedupe_key: Key of the job.

        Returns:
            True if a job was outstanding and has been delivered.
        """
        entry = self._timers.pop(dedupe_key, None)
        if entry is None:
            return False
        handle, job = entry
        handle.cancel()
        await self._deliver(job)
        return True

    async def wait_idle(self) -> None:
        """Wait until no job is running and no job is due.

        Jobs scheduled in the future are left pending.
        """
        loop = asyncio.get_running_loop()
        while True:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
                continue
            if any(handle.when() <= loop.time() for handle, _ in self._timers.values()):
                await asyncio.sleep(0)
                continue
            return

    async def close(self) -> None:
        """Drop every outstanding job and cancel running deliveries."""
        for handle, _ in self._timers.values():
            handle.cancel()
        self._timers.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _fire(self, key: str) -> None:
        entry = self._timers.pop(key, None)
        if entry is None:
            return
        task = asyncio.create_task(self._deliver(entry[1]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, job: Job) -> None:
        if self.coordinator is None:
            msg = "LocalSchedulingGateway has no coordinator attached"
            raise RuntimeError(msg)

        try:
            await run_job(self.coordinator, job)
        except RetryStepError as e:
            await self.enqueue_after(StepJob(e.execution_id, e.step_id, attempt=e.attempt + 1), e.delay_ms)
        except Exception:
            logger.exception("job_failed", key=job.dedupe_key)
