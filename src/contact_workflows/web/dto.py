"""Data Transfer Objects for the workflow web API.

This module defines DTOs for serializing and deserializing execution data
in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from contact_workflows.core.models import ExecutionSnapshot, StepExecutionSnapshot
    from contact_workflows.engine.correlator import CorrelationResult

__all__ = [
    "CancelExecutionDTO",
    "CorrelationDTO",
    "ExecutionDTO",
    "ExecutionDetailDTO",
    "ExecutionListDTO",
    "StartExecutionDTO",
    "StepExecutionDTO",
    "TrackEventDTO",
]


@dataclass
class StartExecutionDTO:
    """DTO for starting an execution manually.

    Attributes:
        contact_id: The contact to run the workflow for.
        context: Initial execution context.
    """

    contact_id: UUID
    context: dict[str, Any] | None = None


@dataclass
class CancelExecutionDTO:
    """DTO for cancelling an execution.

    Attributes:
        reason: Optional reason to record.
    """

    reason: str | None = None


@dataclass
class TrackEventDTO:
    """DTO for a tracked contact event.

    Attributes:
        project_id: The project the event belongs to.
        event_name: The event's name.
        contact_id: The contact the event is about.
        data: The event's payload.
    """

    project_id: UUID
    event_name: str
    contact_id: UUID | None = None
    data: dict[str, Any] | None = None


@dataclass
class StepExecutionDTO:
    """DTO for step execution record.

    Attributes:
        id: Step execution ID.
        step_id: The visited step.
        step_type: The step's type.
        step_name: The step's display name.
        sequence: Position of the visit within the execution.
        status: Visit status (PENDING, RUNNING, SUCCEEDED, etc.).
        waiting_for_event: Event a parked visit waits for.
        wake_at: When a parked visit's timer fires.
        output: Output recorded by the handler.
        error: Error message if the step failed.
        started_at: When the visit started.
        completed_at: When the visit finished.
    """

    id: UUID
    step_id: UUID
    step_type: str | None
    step_name: str | None
    sequence: int
    status: str
    waiting_for_event: str | None = None
    wake_at: datetime | None = None
    output: dict[str, Any] | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: StepExecutionSnapshot) -> StepExecutionDTO:
        return cls(
            id=snapshot.id,
            step_id=snapshot.step_id,
            step_type=str(snapshot.step_type) if snapshot.step_type else None,
            step_name=snapshot.step_name,
            sequence=snapshot.sequence,
            status=str(snapshot.status),
            waiting_for_event=snapshot.waiting_for_event,
            wake_at=snapshot.wake_at,
            output=snapshot.output,
            error=snapshot.error,
            started_at=snapshot.started_at,
            completed_at=snapshot.completed_at,
        )


@dataclass
class ExecutionDTO:
    """DTO for execution summary.

    Attributes:
        id: Execution ID.
        workflow_id: The workflow.
        contact_id: The contact.
        status: Current execution status.
        current_step_id: The step the execution is at.
        started_at: When the execution started.
        completed_at: When the execution finished.
        exit_reason: Reason recorded by an EXIT step or cancellation.
        error: Failure reason.
    """

    id: UUID
    workflow_id: UUID
    contact_id: UUID
    status: str
    current_step_id: UUID | None
    started_at: datetime
    completed_at: datetime | None = None
    exit_reason: str | None = None
    error: str | None = None

    @classmethod
    def from_snapshot(cls, snapshot: ExecutionSnapshot) -> ExecutionDTO:
        return cls(
            id=snapshot.id,
            workflow_id=snapshot.workflow_id,
            contact_id=snapshot.contact_id,
            status=str(snapshot.status),
            current_step_id=snapshot.current_step_id,
            started_at=snapshot.started_at,
            completed_at=snapshot.completed_at,
            exit_reason=snapshot.exit_reason,
            error=snapshot.error,
        )


@dataclass
class ExecutionDetailDTO:
    """DTO for detailed execution information.

    Extends ExecutionDTO with the context and step history.
    """

    id: UUID
    workflow_id: UUID
    contact_id: UUID
    status: str
    current_step_id: UUID | None
    started_at: datetime
    completed_at: datetime | None
    exit_reason: str | None
    error: str | None
    context: dict[str, Any]
    steps: list[StepExecutionDTO]

    @classmethod
    def from_snapshot(cls, snapshot: ExecutionSnapshot) -> ExecutionDetailDTO:
        return cls(
            id=snapshot.id,
            workflow_id=snapshot.workflow_id,
            contact_id=snapshot.contact_id,
            status=str(snapshot.status),
            current_step_id=snapshot.current_step_id,
            started_at=snapshot.started_at,
            completed_at=snapshot.completed_at,
            exit_reason=snapshot.exit_reason,
            error=snapshot.error,
            context=snapshot.context,
            steps=[StepExecutionDTO.from_snapshot(step) for step in snapshot.steps],
        )


@dataclass
class ExecutionListDTO:
    """DTO for a page of executions.

    Attributes:
        items: Executions on this page.
        total: Total number of matching executions.
        limit: Page size.
        offset: Number of executions skipped.
    """

    items: list[ExecutionDTO]
    total: int
    limit: int
    offset: int


@dataclass
class CorrelationDTO:
    """DTO for what a tracked event did.

    Attributes:
        started: IDs of executions the event started.
        resumed: IDs of executions the event resumed.
    """

    started: list[UUID] = field(default_factory=list)
    resumed: list[UUID] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: CorrelationResult) -> CorrelationDTO:
        return cls(started=list(result.started), resumed=list(result.resumed))
