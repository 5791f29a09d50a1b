"""Domain events for the execution lifecycle.

The coordinator emits these to an optional event bus after the state change
they describe has been committed. They can be used for logging, monitoring or
triggering side effects in the host application.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

__all__ = [
    "ExecutionCancelled",
    "ExecutionCompleted",
    "ExecutionEvent",
    "ExecutionFailed",
    "ExecutionStarted",
    "StepCompleted",
    "StepParked",
    "StepTimedOut",
]


@dataclass
class ExecutionEvent:
    """Base class for all execution events.

    Attributes:
        execution_id: The execution the event is about.
        timestamp: When the event occurred.
    """

    execution_id: UUID
    timestamp: datetime


@dataclass
class ExecutionStarted(ExecutionEvent):
    """Event emitted when a contact enters a workflow.

    Example:
        >>> event = ExecutionStarted(
        ...     execution_id=uuid4(),
        ...     timestamp=datetime.now(timezone.utc),
        ...     workflow_id=workflow.id,
        ...     contact_id=contact.id,
        ... )
    """

    workflow_id: UUID
    contact_id: UUID
    context: dict[str, Any] | None = None


@dataclass
class StepCompleted(ExecutionEvent):
    """Event emitted when a step finishes and the execution moves on.

    Attributes:
        step_id: The step that finished.
        step_type: The step's type.
        branch: Branch taken, for CONDITION steps.
        output: Output recorded by the handler.
    """

    step_id: UUID
    step_type: str
    branch: str | None = None
    output: dict[str, Any] | None = None


@dataclass
class StepParked(ExecutionEvent):
    """Event emitted when a DELAY or WAIT_FOR_EVENT step parks the execution."""

    step_id: UUID
    step_execution_id: UUID
    wake_at: datetime
    waiting_for_event: str | None = None


@dataclass
class StepTimedOut(ExecutionEvent):
    """Event emitted when a wait's deadline passes without the event."""

    step_id: UUID
    step_execution_id: UUID


@dataclass
class ExecutionCompleted(ExecutionEvent):
    """Event emitted when an execution completes.

    Attributes:
        exit_reason: Reason recorded by an EXIT step, if one ended the run.
    """

    exit_reason: str | None = None


@dataclass
class ExecutionFailed(ExecutionEvent):
    """Event emitted when an execution fails permanently.

    Attributes:
        error: Failure reason.
        step_id: The step that failed, if a step did.
    """

    error: str
    step_id: UUID | None = None


@dataclass
class ExecutionCancelled(ExecutionEvent):
    """Event emitted when an execution is cancelled."""

    reason: str | None = None
