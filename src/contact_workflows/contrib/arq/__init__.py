"""ARQ (Async Redis Queue) scheduling integration.

This module provides a scheduling gateway backed by ARQ and the worker
functions that deliver its jobs to an execution coordinator. ARQ's job IDs
carry the dedupe keys, so enqueueing a job whose key is still queued is a
no-op, and a queued job can be cancelled by key.

Installation:
    .. code-block:: bash

        pip install contact-workflows[arq]

Example:
    .. code-block:: python

        from arq.connections import ArqRedis
        from contact_workflows.contrib.arq import ArqSchedulingGateway, create_worker_settings


        async def build_coordinator(redis: ArqRedis) -> ExecutionCoordinator:
            return ExecutionCoordinator(
                session_maker,
                gateway=ArqSchedulingGateway(redis),
                contacts=contacts,
                handlers=handlers,
            )


        # worker.py, run with ``arq worker.WorkerSettings``
        WorkerSettings = create_worker_settings(build_coordinator)

See Also:
    - ARQ documentation: https://arq-docs.helpmanual.io/
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from arq.constants import default_queue_name, job_key_prefix
from arq.worker import Retry, func

from contact_workflows.config import EngineConfig
from contact_workflows.engine.scheduling import StepJob, TimeoutJob
from contact_workflows.exceptions import RetryStepError
from contact_workflows.log import configure_logging

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from arq.connections import ArqRedis, RedisSettings

    from contact_workflows.engine.coordinator import ExecutionCoordinator
    from contact_workflows.engine.scheduling import Job

__all__ = [
    "COORDINATOR_CTX_KEY",
    "STEP_JOB_NAME",
    "TIMEOUT_JOB_NAME",
    "ArqSchedulingGateway",
    "create_worker_settings",
    "run_step_job",
    "run_timeout_job",
]

logger = structlog.get_logger(__name__)

STEP_JOB_NAME = "workflow_step"
TIMEOUT_JOB_NAME = "workflow_timeout"
COORDINATOR_CTX_KEY = "workflow_coordinator"


class ArqSchedulingGateway:
    """Scheduling gateway that enqueues jobs into an ARQ queue.

    Attributes:
        redis: ARQ connection pool.
        queue_name: Queue the jobs are pushed to.
    """

    def __init__(self, redis: ArqRedis, queue_name: str = default_queue_name) -> None:
        """Initialize the gateway.

        Args:
            redis: ARQ connection pool, e.g. from ``arq.create_pool``.
            queue_name: Queue the jobs are pushed to.
        """
        self.redis = redis
        self.queue_name = queue_name

    async def enqueue_now(self, job: Job) -> bool:
        return await self.enqueue_after(job, 0)

    async def enqueue_after(self, job: Job, delay_ms: int) -> bool:
        function = TIMEOUT_JOB_NAME if isinstance(job, TimeoutJob) else STEP_JOB_NAME
        queued = await self.redis.enqueue_job(
            function,
            _job_id=job.dedupe_key,
            _queue_name=self.queue_name,
            _defer_by=timedelta(milliseconds=delay_ms) if delay_ms > 0 else None,
            **job.to_kwargs(),
        )
        if queued is None:
            logger.debug("job_deduplicated", key=job.dedupe_key)
            return False
        logger.debug("job_scheduled", key=job.dedupe_key, delay_ms=delay_ms)
        return True

    async def cancel(self, dedupe_key: str) -> bool:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self.queue_name, dedupe_key)
            pipe.delete(job_key_prefix + dedupe_key)
            removed, _ = await pipe.execute()
        if removed:
            logger.debug("job_cancelled", key=dedupe_key)
        return bool(removed)


def _coordinator(ctx: dict[str, Any]) -> ExecutionCoordinator:
    try:
        return ctx[COORDINATOR_CTX_KEY]
    except KeyError:
        msg = f"Worker context has no '{COORDINATOR_CTX_KEY}'; use create_worker_settings() to build the worker"
        raise RuntimeError(msg) from None


async def run_step_job(ctx: dict[str, Any], execution_id: str, step_id: str, attempt: int = 1) -> None:
    """ARQ job: run one step of an execution.

    ARQ redelivers a job raising :class:`arq.worker.Retry` under the same job
    ID, so the attempt number grows with ``job_try``.

    Args:
        ctx: ARQ worker context.
        execution_id: The execution.
        step_id: The step expected to be current.
        attempt: Attempt number the job was enqueued with.
    """
    coordinator = _coordinator(ctx)
    effective_attempt = attempt + ctx.get("job_try", 1) - 1
    try:
        await coordinator.advance(UUID(execution_id), UUID(step_id), attempt=effective_attempt)
    except RetryStepError as e:
        if str(e.step_id) == step_id and str(e.execution_id) == execution_id:
            raise Retry(defer=timedelta(milliseconds=e.delay_ms)) from e
        await coordinator.gateway.enqueue_after(
            StepJob(e.execution_id, e.step_id, attempt=e.attempt + 1),
            e.delay_ms,
        )


async def run_timeout_job(ctx: dict[str, Any], execution_id: str, step_id: str, step_execution_id: str) -> None:
    """ARQ job: fire the timer of a parked visit."""
    coordinator = _coordinator(ctx)
    await coordinator.process_timeout(UUID(execution_id), UUID(step_id), UUID(step_execution_id))


def create_worker_settings(
    coordinator_factory: Callable[[ArqRedis], Awaitable[ExecutionCoordinator]],
    *,
    redis_settings: RedisSettings | None = None,
    config: EngineConfig | None = None,
    queue_name: str = default_queue_name,
) -> dict[str, Any]:
    """Build ARQ worker settings that deliver workflow jobs.

    Args:
        coordinator_factory: Builds the coordinator from the worker's Redis
            pool on startup.
        redis_settings: Redis connection settings.
        config: Engine configuration.
        queue_name: Queue to consume.

    Returns:
        Settings accepted by ``arq.worker.run_worker`` and ``arq.Worker``.
    """
    config = config or EngineConfig()

    async def on_startup(ctx: dict[str, Any]) -> None:
        configure_logging(config.log_level, json_logs=config.json_logs)
        ctx[COORDINATOR_CTX_KEY] = await coordinator_factory(ctx["redis"])
        logger.info("workflow_worker_started", queue=queue_name)

    settings: dict[str, Any] = {
        "functions": [
            func(run_step_job, name=STEP_JOB_NAME, max_tries=config.max_attempts),
            func(run_timeout_job, name=TIMEOUT_JOB_NAME),
        ],
        "on_startup": on_startup,
        "queue_name": queue_name,
        "keep_result": 0,
    }
    if redis_settings is not None:
        settings["redis_settings"] = redis_settings
    return settings
