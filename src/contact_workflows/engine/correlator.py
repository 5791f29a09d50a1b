"""Event correlation.

Every contact event tracked by the platform goes through the correlator. An
event can do two things:

- resume executions of the contact parked on a WAIT_FOR_EVENT step for that
  event name (and whose ``match`` filter accepts the payload);
- start executions of the enabled workflows of the project triggered by it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from contact_workflows.core.definition import WaitForEventConfig, decode_step_config
from contact_workflows.core.types import StepType
from contact_workflows.db.repositories import WorkflowRepository, WorkflowStepExecutionRepository
from contact_workflows.exceptions import (
    ContactNotFoundError,
    ReentryConflictError,
    StepConfigError,
    WorkflowDisabledError,
    WorkflowValidationError,
)

if TYPE_CHECKING:
    from uuid import UUID

    from contact_workflows.engine.coordinator import ExecutionCoordinator

__all__ = ["CorrelationResult", "EventCorrelator"]

logger = structlog.get_logger(__name__)


@dataclass
class CorrelationResult:
    """What an event did.

    Attributes:
        started: IDs of executions the event started.
        resumed: IDs of executions the event resumed.
    """

    started: list[UUID] = field(default_factory=list)
    resumed: list[UUID] = field(default_factory=list)


class EventCorrelator:
    """Routes contact events to waiting executions and event-triggered workflows.

    Example:
        >>> correlator = EventCorrelator(coordinator)
        >>> result = await correlator.handle_event(
        ...     project_id, "purchase", contact_id=contact_id, data={"amount": 42}
        ... )
        >>> result.resumed
        [UUID('...')]
    """

    def __init__(self, coordinator: ExecutionCoordinator) -> None:
        """Initialize the correlator.

        Args:
            coordinator: The coordinator executions are resumed and started through.
        """
        self.coordinator = coordinator

    async def handle_event(
        self,
        project_id: UUID,
        event_name: str,
        *,
        contact_id: UUID | None = None,
        data: dict[str, Any] | None = None,
        received_at: datetime | None = None,
    ) -> CorrelationResult:
        """Correlate one tracked event.

        Waiting executions are resumed before new executions are started, so a
        trigger event never resumes the execution it starts.

        Args:
            project_id: The project the event belongs to.
            event_name: The event's name.
            contact_id: The contact the event is about. Anonymous events do nothing.
            data: The event's payload.
            received_at: When the event was received. Defaults to now.

        Returns:
            The executions resumed and started.
        """
        result = CorrelationResult()
        if contact_id is None:
            logger.debug("event_ignored", event=event_name, reason="no contact")
            return result

        received_at = received_at or datetime.now(timezone.utc)
        record = {"name": event_name, "data": dict(data or {}), "receivedAt": received_at.isoformat()}
        log = logger.bind(project_id=str(project_id), contact_id=str(contact_id), event=event_name)

        await self._resume_waiting(project_id, contact_id, record, result)
        await self._start_triggered(project_id, contact_id, record, result)

        log.info("event_correlated", started=len(result.started), resumed=len(result.resumed))
        return result

    async def _resume_waiting(
        self,
        project_id: UUID,
        contact_id: UUID,
        record: dict[str, Any],
        result: CorrelationResult,
    ) -> None:
        async with self.coordinator.session_maker() as session:
            waiting = [
                (visit.id, visit.execution_id, step.config)
                for visit, step in await WorkflowStepExecutionRepository(session=session).find_waiting(
                    project_id,
                    contact_id,
                    record["name"],
                )
            ]

        for visit_id, execution_id, raw_config in waiting:
            try:
                config = decode_step_config(StepType.WAIT_FOR_EVENT, raw_config)
            except StepConfigError as e:
                logger.warning("wait_config_invalid", step_execution_id=str(visit_id), error=str(e))
                continue
            if isinstance(config, WaitForEventConfig) and not config.matches(record["data"]):
                continue
            if await self.coordinator.resume_from_event(visit_id, record):
                result.resumed.append(execution_id)

    async def _start_triggered(
        self,
        project_id: UUID,
        contact_id: UUID,
        record: dict[str, Any],
        result: CorrelationResult,
    ) -> None:
        async with self.coordinator.session_maker() as session:
            workflow_ids = [
                workflow.id
                for workflow in await WorkflowRepository(session=session).find_triggered_by(project_id, record["name"])
            ]

        for workflow_id in workflow_ids:
            try:
                execution_id = await self.coordinator.start_execution(
                    workflow_id,
                    contact_id,
                    context={"event": record},
                )
            except (ReentryConflictError, WorkflowDisabledError, ContactNotFoundError, WorkflowValidationError) as e:
                logger.info("trigger_skipped", workflow_id=str(workflow_id), reason=str(e))
                continue
            result.started.append(execution_id)
