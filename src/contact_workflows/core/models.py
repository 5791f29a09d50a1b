"""Plain data snapshots passed between the engine's components.

The coordinator never hands ORM objects to step handlers or callers. It copies
what they need into these dataclasses so handlers run outside any transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from contact_workflows.core.types import ExecutionStatus, StepExecutionStatus, StepType

__all__ = [
    "ContactSnapshot",
    "ExecutionSnapshot",
    "StepExecutionSnapshot",
    "WorkflowSnapshot",
]


@dataclass(frozen=True)
class ContactSnapshot:
    """A contact as seen by a step at the time it runs.

    Attributes:
        id: Contact ID.
        project_id: Project the contact belongs to.
        email: Email address.
        subscribed: Whether the contact accepts marketing email.
        data: Custom data attributes.
        created_at: When the contact was created.
        updated_at: When the contact was last modified.
    """

    id: UUID
    project_id: UUID
    email: str
    subscribed: bool = True
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class WorkflowSnapshot:
    """Workflow attributes steps may read."""

    id: UUID
    project_id: UUID
    name: str
    trigger_event: str | None = None
    enabled: bool = False
    allow_reentry: bool = False


@dataclass
class StepExecutionSnapshot:
    """Read model of one step visit.

    Attributes:
        id: Step execution ID.
        step_id: The step that was visited.
        step_type: The step's type.
        step_name: The step's display name.
        sequence: Position of this visit within the execution.
        status: Visit status.
        waiting_for_event: Event name a parked WAIT_FOR_EVENT step waits for.
        wake_at: When a parked step's timer fires.
        output: Output recorded by the handler.
        error: Failure reason, if any.
        started_at: When the visit started.
        completed_at: When the visit finished.
    """

    id: UUID
    step_id: UUID
    step_type: StepType | None
    step_name: str | None
    sequence: int
    status: StepExecutionStatus
    waiting_for_event: str | None = None
    wake_at: datetime | None = None
    output: dict[str, Any] | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class ExecutionSnapshot:
    """Read model of one execution and, optionally, its step history."""

    id: UUID
    workflow_id: UUID
    contact_id: UUID
    status: ExecutionStatus
    current_step_id: UUID | None
    context: dict[str, Any]
    started_at: datetime
    completed_at: datetime | None = None
    exit_reason: str | None = None
    error: str | None = None
    steps: list[StepExecutionSnapshot] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        """Whether the execution has finished."""
        return self.status != ExecutionStatus.RUNNING
