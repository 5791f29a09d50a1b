"""Job payloads handed to the scheduling gateway.

Dedupe keys are derived deterministically from the job's identity so a
duplicate enqueue of the same logical job collapses into one:

- continuation jobs: ``workflow-{execution_id}-{step_id}``
- timeout jobs: ``workflow-timeout-{step_execution_id}``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union
from uuid import UUID

if TYPE_CHECKING:
    from contact_workflows.engine.coordinator import ExecutionCoordinator

__all__ = [
    "Job",
    "StepJob",
    "TimeoutJob",
    "run_job",
    "step_job_key",
    "timeout_job_key",
]


def step_job_key(execution_id: UUID, step_id: UUID) -> str:
    """Dedupe key of the continuation job for a step."""
    return f"workflow-{execution_id}-{step_id}"


def timeout_job_key(step_execution_id: UUID) -> str:
    """Dedupe key of the timeout job for a parked step visit."""
    return f"workflow-timeout-{step_execution_id}"


@dataclass(frozen=True)
class StepJob:
    """Run one step of an execution.

    Attributes:
        execution_id: The execution to advance.
        step_id: The step expected to be current.
        attempt: Delivery attempt, starting at 1.
    """

    execution_id: UUID
    step_id: UUID
    attempt: int = 1

    @property
    def dedupe_key(self) -> str:
        return step_job_key(self.execution_id, self.step_id)

    def to_kwargs(self) -> dict[str, Any]:
        return {
            "execution_id": str(self.execution_id),
            "step_id": str(self.step_id),
            "attempt": self.attempt,
        }


@dataclass(frozen=True)
class TimeoutJob:
    """Fire the timer of a parked DELAY or WAIT_FOR_EVENT visit."""

    execution_id: UUID
    step_id: UUID
    step_execution_id: UUID

    @property
    def dedupe_key(self) -> str:
        return timeout_job_key(self.step_execution_id)

    def to_kwargs(self) -> dict[str, Any]:
        return {
            "execution_id": str(self.execution_id),
            "step_id": str(self.step_id),
            "step_execution_id": str(self.step_execution_id),
        }


Job = Union[StepJob, TimeoutJob]


async def run_job(coordinator: ExecutionCoordinator, job: Job) -> None:
    """Deliver a job to the coordinator.

    Args:
        coordinator: The coordinator to deliver to.
        job: The job to run.

    Raises:
        RetryStepError: If a step hit a transient failure and should be
            delivered again.
    """
    if isinstance(job, TimeoutJob):
        await coordinator.process_timeout(job.execution_id, job.step_id, job.step_execution_id)
    else:
        await coordinator.advance(job.execution_id, job.step_id, attempt=job.attempt)
