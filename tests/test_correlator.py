"""Integration tests for EventCorrelator."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from contact_workflows.core.types import ExecutionStatus, StepExecutionStatus, StepType
from contact_workflows.engine.correlator import CorrelationResult, EventCorrelator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from uuid import UUID

    from conftest import RecordingGateway

    from contact_workflows.db.definitions import WorkflowDefinitionService
    from contact_workflows.engine.coordinator import ExecutionCoordinator


@pytest.fixture
def correlator(coordinator: ExecutionCoordinator) -> EventCorrelator:
    return EventCorrelator(coordinator)


async def cart_workflow(
    definitions: WorkflowDefinitionService,
    project_id: UUID,
    *,
    match: dict | None = None,
    trigger_event: str = "cart_abandoned",
    wait_for: str = "purchase",
) -> UUID:
    """Create an enabled workflow that waits for an event after its trigger."""
    workflow_id, trigger_id = await definitions.create_workflow(project_id, "Cart recovery", trigger_event)
    wait_config: dict = {"event_name": wait_for, "timeout_ms": 60_000}
    if match is not None:
        wait_config["match"] = match
    wait_id = await definitions.add_step(workflow_id, StepType.WAIT_FOR_EVENT, "Wait", wait_config)
    done = await definitions.add_step(workflow_id, StepType.EXIT, "Done", {"reason": "event_received"})
    await definitions.add_transition(trigger_id, wait_id)
    await definitions.add_transition(wait_id, done)
    await definitions.set_enabled(workflow_id, True)
    return workflow_id


@pytest.mark.integration
class TestTriggering:
    async def test_event_starts_triggered_workflow(
        self,
        correlator: EventCorrelator,
        coordinator: ExecutionCoordinator,
        definitions: WorkflowDefinitionService,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id)
        contact_id = await make_contact()
        received_at = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

        result = await correlator.handle_event(
            project_id,
            "cart_abandoned",
            contact_id=contact_id,
            data={"cart": "c-1"},
            received_at=received_at,
        )

        assert len(result.started) == 1
        assert result.resumed == []
        execution = await coordinator.get_execution(result.started[0])
        assert execution.context == {
            "event": {"name": "cart_abandoned", "data": {"cart": "c-1"}, "receivedAt": received_at.isoformat()},
        }

    async def test_disabled_and_other_workflows_are_not_started(
        self,
        correlator: EventCorrelator,
        definitions: WorkflowDefinitionService,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        await definitions.create_workflow(project_id, "Draft", "cart_abandoned")
        await cart_workflow(definitions, project_id, trigger_event="signup")
        contact_id = await make_contact()

        result = await correlator.handle_event(project_id, "cart_abandoned", contact_id=contact_id)

        assert result == CorrelationResult()

    async def test_event_of_another_project(
        self,
        correlator: EventCorrelator,
        definitions: WorkflowDefinitionService,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id)
        contact_id = await make_contact()

        result = await correlator.handle_event(uuid4(), "cart_abandoned", contact_id=contact_id)

        assert result.started == []

    async def test_anonymous_event_does_nothing(
        self,
        correlator: EventCorrelator,
        definitions: WorkflowDefinitionService,
        gateway: RecordingGateway,
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id)

        result = await correlator.handle_event(project_id, "cart_abandoned")

        assert result == CorrelationResult()
        assert gateway.scheduled == {}

    async def test_reentry_conflict_is_skipped(
        self,
        correlator: EventCorrelator,
        definitions: WorkflowDefinitionService,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id)
        contact_id = await make_contact()
        first = await correlator.handle_event(project_id, "cart_abandoned", contact_id=contact_id)

        second = await correlator.handle_event(project_id, "cart_abandoned", contact_id=contact_id)

        assert len(first.started) == 1
        assert second.started == []

    async def test_unknown_contact_is_skipped(
        self,
        correlator: EventCorrelator,
        definitions: WorkflowDefinitionService,
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id)

        result = await correlator.handle_event(project_id, "cart_abandoned", contact_id=uuid4())

        assert result.started == []


@pytest.mark.integration
class TestResuming:
    async def test_event_resumes_waiting_execution(
        self,
        correlator: EventCorrelator,
        coordinator: ExecutionCoordinator,
        definitions: WorkflowDefinitionService,
        gateway: RecordingGateway,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id)
        contact_id = await make_contact()
        started = await correlator.handle_event(project_id, "cart_abandoned", contact_id=contact_id)
        await gateway.run_due(coordinator)
        (execution_id,) = started.started

        result = await correlator.handle_event(project_id, "purchase", contact_id=contact_id, data={"sku": "A1"})

        assert result.resumed == [execution_id]
        assert result.started == []
        execution = await coordinator.get_execution(execution_id)
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.exit_reason == "event_received"
        assert execution.context["event"]["name"] == "purchase"
        assert execution.context["event"]["data"] == {"sku": "A1"}
        assert gateway.timeout_keys() == []

    async def test_match_filter(
        self,
        correlator: EventCorrelator,
        coordinator: ExecutionCoordinator,
        definitions: WorkflowDefinitionService,
        gateway: RecordingGateway,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id, match={"sku": "A1"})
        contact_id = await make_contact()
        started = await correlator.handle_event(project_id, "cart_abandoned", contact_id=contact_id)
        await gateway.run_due(coordinator)
        (execution_id,) = started.started

        skipped = await correlator.handle_event(project_id, "purchase", contact_id=contact_id, data={"sku": "B2"})
        matched = await correlator.handle_event(project_id, "purchase", contact_id=contact_id, data={"sku": "A1"})

        assert skipped.resumed == []
        assert matched.resumed == [execution_id]

    async def test_other_contacts_are_not_resumed(
        self,
        correlator: EventCorrelator,
        coordinator: ExecutionCoordinator,
        definitions: WorkflowDefinitionService,
        gateway: RecordingGateway,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id)
        waiting_contact = await make_contact()
        other_contact = await make_contact("grace@example.com")
        started = await correlator.handle_event(project_id, "cart_abandoned", contact_id=waiting_contact)
        await gateway.run_due(coordinator)

        result = await correlator.handle_event(project_id, "purchase", contact_id=other_contact)

        assert result.resumed == []
        execution = await coordinator.get_execution(started.started[0])
        assert execution.steps[-1].status == StepExecutionStatus.PENDING

    async def test_trigger_event_does_not_resume_its_own_execution(
        self,
        correlator: EventCorrelator,
        coordinator: ExecutionCoordinator,
        definitions: WorkflowDefinitionService,
        gateway: RecordingGateway,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        await cart_workflow(definitions, project_id, trigger_event="visit", wait_for="visit")
        contact_id = await make_contact()

        first = await correlator.handle_event(project_id, "visit", contact_id=contact_id)
        await gateway.run_due(coordinator)

        assert len(first.started) == 1
        assert first.resumed == []
        execution = await coordinator.get_execution(first.started[0])
        assert execution.steps[-1].status == StepExecutionStatus.PENDING

        second = await correlator.handle_event(project_id, "visit", contact_id=contact_id)

        assert second.resumed == first.started
        assert second.started == []
