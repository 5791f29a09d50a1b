"""REST API controllers for workflow automation.

This module provides two controller classes:
- ExecutionController: Start, monitor, and cancel workflow executions
- EventController: Track contact events
"""

from __future__ import annotations

from typing import ClassVar
from uuid import UUID

from litestar import Controller, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK

from contact_workflows.core.types import ExecutionStatus
from contact_workflows.engine.coordinator import ExecutionCoordinator  # noqa: TC001 - needed for DI
from contact_workflows.engine.correlator import EventCorrelator  # noqa: TC001 - needed for DI
from contact_workflows.web.dto import (
    CancelExecutionDTO,
    CorrelationDTO,
    ExecutionDetailDTO,
    ExecutionDTO,
    ExecutionListDTO,
    StartExecutionDTO,
    TrackEventDTO,
)

__all__ = ["EventController", "ExecutionController"]


class ExecutionController(Controller):
    """API controller for workflow executions.

    Tags: Workflow Executions
    """

    path = "/"
    tags: ClassVar[list[str]] = ["Workflow Executions"]

    @post("/workflows/{workflow_id:uuid}/executions", dto=None, return_dto=None)
    async def start_execution(
        self,
        workflow_id: UUID,
        data: StartExecutionDTO,
        workflow_coordinator: ExecutionCoordinator,
    ) -> ExecutionDTO:
        """Start an execution of a workflow for a contact.

        Args:
            workflow_id: The workflow.
            data: Execution start parameters.
            workflow_coordinator: Injected execution coordinator.

        Returns:
            The new execution.
        """
        execution_id = await workflow_coordinator.start_execution(
            workflow_id,
            data.contact_id,
            context=data.context,
        )
        return ExecutionDTO.from_snapshot(await workflow_coordinator.get_execution(execution_id))

    @get("/workflows/{workflow_id:uuid}/executions")
    async def list_executions(
        self,
        workflow_id: UUID,
        workflow_coordinator: ExecutionCoordinator,
        status: ExecutionStatus | None = Parameter(
            default=None,
            description="Filter by status",
        ),
        limit: int = Parameter(
            default=100,
            ge=1,
            le=500,
            description="Maximum number of results",
        ),
        offset: int = Parameter(
            default=0,
            ge=0,
            description="Number of results to skip",
        ),
    ) -> ExecutionListDTO:
        """List the executions of a workflow, newest first.

        Args:
            workflow_id: The workflow.
            workflow_coordinator: Injected execution coordinator.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Pagination offset.

        Returns:
            A page of executions.
        """
        executions, total = await workflow_coordinator.list_executions(
            workflow_id,
            status=status,
            limit=limit,
            offset=offset,
        )
        return ExecutionListDTO(
            items=[ExecutionDTO.from_snapshot(execution) for execution in executions],
            total=total,
            limit=limit,
            offset=offset,
        )

    @get("/executions/{execution_id:uuid}")
    async def get_execution(
        self,
        execution_id: UUID,
        workflow_coordinator: ExecutionCoordinator,
    ) -> ExecutionDetailDTO:
        """Get an execution with its context and step history.

        Args:
            execution_id: The execution.
            workflow_coordinator: Injected execution coordinator.

        Returns:
            Execution detail DTO.
        """
        return ExecutionDetailDTO.from_snapshot(await workflow_coordinator.get_execution(execution_id))

    @post("/executions/{execution_id:uuid}/cancel", status_code=HTTP_200_OK)
    async def cancel_execution(
        self,
        execution_id: UUID,
        workflow_coordinator: ExecutionCoordinator,
        data: CancelExecutionDTO | None = None,
    ) -> ExecutionDetailDTO:
        """Cancel a running execution.

        Args:
            execution_id: The execution.
            workflow_coordinator: Injected execution coordinator.
            data: Optional cancellation reason.

        Returns:
            The cancelled execution.
        """
        snapshot = await workflow_coordinator.cancel_execution(
            execution_id,
            reason=data.reason if data else None,
        )
        return ExecutionDetailDTO.from_snapshot(snapshot)


class EventController(Controller):
    """API controller for tracked contact events.

    Tags: Workflow Events
    """

    path = "/events"
    tags: ClassVar[list[str]] = ["Workflow Events"]

    @post("/", status_code=HTTP_200_OK)
    async def track_event(
        self,
        data: TrackEventDTO,
        event_correlator: EventCorrelator,
    ) -> CorrelationDTO:
        """Track a contact event.

        Resumes executions of the contact waiting for the event and starts
        executions of the workflows it triggers.

        Args:
            data: The event.
            event_correlator: Injected event correlator.

        Returns:
            The executions started and resumed.
        """
        result = await event_correlator.handle_event(
            data.project_id,
            data.event_name,
            contact_id=data.contact_id,
            data=data.data,
        )
        return CorrelationDTO.from_result(result)
