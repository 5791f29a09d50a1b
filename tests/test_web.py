"""Integration tests for the workflow REST API.

The API is mounted through WorkflowEnginePlugin on a Litestar app backed by the
shared SQLite database and the recording gateway.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from litestar import Litestar
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
)
from litestar.testing import AsyncTestClient

from contact_workflows.core.types import StepType
from contact_workflows.plugin import WorkflowEnginePlugin, WorkflowEnginePluginConfig

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from uuid import UUID

    from conftest import RecordingGateway

    from contact_workflows.db.definitions import WorkflowDefinitionService
    from contact_workflows.engine.coordinator import ExecutionCoordinator


@pytest.fixture
def app(coordinator: ExecutionCoordinator) -> Litestar:
    return Litestar(
        plugins=[
            WorkflowEnginePlugin(
                config=WorkflowEnginePluginConfig(coordinator=coordinator, configure_logging=False),
            ),
        ],
    )


@pytest.fixture
async def client(app: Litestar) -> AsyncIterator[AsyncTestClient]:
    async with AsyncTestClient(app=app) as client:
        yield client


@pytest.fixture
async def workflow_id(definitions: WorkflowDefinitionService, project_id: UUID) -> UUID:
    """Enabled workflow: trigger, one hour delay, exit."""
    workflow_id, trigger_id = await definitions.create_workflow(project_id, "Welcome", "signup")
    delay = await definitions.add_step(workflow_id, StepType.DELAY, "Wait", {"amount": 1, "unit": "hours"})
    done = await definitions.add_step(workflow_id, StepType.EXIT, "Done", {"reason": "welcomed"})
    await definitions.add_transition(trigger_id, delay)
    await definitions.add_transition(delay, done)
    await definitions.set_enabled(workflow_id, True)
    return workflow_id


# =============================================================================
# Executions
# =============================================================================


@pytest.mark.integration
class TestExecutionEndpoints:
    async def test_start_execution(
        self,
        client: AsyncTestClient,
        workflow_id: UUID,
        make_contact: Callable[..., Awaitable[UUID]],
    ) -> None:
        contact_id = await make_contact()

        response = await client.post(
            f"/automation/workflows/{workflow_id}/executions",
            json={"contact_id": str(contact_id), "context": {"source": "api"}},
        )

        assert response.status_code == HTTP_201_CREATED
        data = response.json()
        assert data["workflow_id"] == str(workflow_id)
        assert data["contact_id"] == str(contact_id)
        assert data["status"] == "RUNNING"
        assert data["completed_at"] is None

    async def test_start_execution_errors(
        self,
        client: AsyncTestClient,
        definitions: WorkflowDefinitionService,
        workflow_id: UUID,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        contact_id = await make_contact()
        draft_id, _ = await definitions.create_workflow(project_id, "Draft", "signup")

        unknown = await client.post(f"/automation/workflows/{uuid4()}/executions", json={"contact_id": str(contact_id)})
        disabled = await client.post(f"/automation/workflows/{draft_id}/executions", json={"contact_id": str(contact_id)})
        no_contact = await client.post(f"/automation/workflows/{workflow_id}/executions", json={"contact_id": str(uuid4())})
        first = await client.post(f"/automation/workflows/{workflow_id}/executions", json={"contact_id": str(contact_id)})
        again = await client.post(f"/automation/workflows/{workflow_id}/executions", json={"contact_id": str(contact_id)})

        assert unknown.status_code == HTTP_404_NOT_FOUND
        assert unknown.json()["error"] == "workflow_not_found"
        assert disabled.status_code == HTTP_400_BAD_REQUEST
        assert disabled.json()["error"] == "workflow_disabled"
        assert no_contact.status_code == HTTP_404_NOT_FOUND
        assert no_contact.json()["error"] == "contact_not_found"
        assert first.status_code == HTTP_201_CREATED
        assert again.status_code == HTTP_409_CONFLICT
        assert again.json() == {
            "error": "reentry_conflict",
            "message": f"Contact '{contact_id}' already has an execution of workflow '{workflow_id}'",
        }

    async def test_list_executions(
        self,
        client: AsyncTestClient,
        coordinator: ExecutionCoordinator,
        workflow_id: UUID,
        make_contact: Callable[..., Awaitable[UUID]],
    ) -> None:
        for n in range(3):
            await coordinator.start_execution(workflow_id, await make_contact(f"user{n}@example.com"))
        cancelled, _ = await coordinator.list_executions(workflow_id, limit=1)
        await coordinator.cancel_execution(cancelled[0].id)

        response = await client.get(f"/automation/workflows/{workflow_id}/executions", params={"limit": 2})
        filtered = await client.get(
            f"/automation/workflows/{workflow_id}/executions",
            params={"status": "CANCELLED"},
        )

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["total"] == 3
        assert data["limit"] == 2
        assert data["offset"] == 0
        assert len(data["items"]) == 2
        assert filtered.json()["total"] == 1
        assert filtered.json()["items"][0]["id"] == str(cancelled[0].id)

    async def test_list_limit_is_bounded(self, client: AsyncTestClient, workflow_id: UUID) -> None:
        response = await client.get(f"/automation/workflows/{workflow_id}/executions", params={"limit": 501})

        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_get_execution(
        self,
        client: AsyncTestClient,
        coordinator: ExecutionCoordinator,
        gateway: RecordingGateway,
        workflow_id: UUID,
        make_contact: Callable[..., Awaitable[UUID]],
    ) -> None:
        execution_id = await coordinator.start_execution(workflow_id, await make_contact(), {"source": "api"})
        await gateway.run_due(coordinator)

        response = await client.get(f"/automation/executions/{execution_id}")

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["status"] == "RUNNING"
        assert data["context"] == {"source": "api"}
        assert [(s["step_type"], s["status"]) for s in data["steps"]] == [
            ("TRIGGER", "SUCCEEDED"),
            ("DELAY", "PENDING"),
        ]
        assert data["steps"][1]["wake_at"] is not None

    async def test_get_unknown_execution(self, client: AsyncTestClient) -> None:
        response = await client.get(f"/automation/executions/{uuid4()}")

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error"] == "execution_not_found"

    async def test_cancel_execution(
        self,
        client: AsyncTestClient,
        coordinator: ExecutionCoordinator,
        gateway: RecordingGateway,
        workflow_id: UUID,
        make_contact: Callable[..., Awaitable[UUID]],
    ) -> None:
        execution_id = await coordinator.start_execution(workflow_id, await make_contact())
        await gateway.run_due(coordinator)

        response = await client.post(f"/automation/executions/{execution_id}/cancel", json={"reason": "unsubscribed"})
        again = await client.post(f"/automation/executions/{execution_id}/cancel")

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["status"] == "CANCELLED"
        assert data["exit_reason"] == "unsubscribed"
        assert data["steps"][-1]["status"] == "CANCELLED"
        assert gateway.timeout_keys() == []
        assert again.status_code == HTTP_409_CONFLICT
        assert again.json()["error"] == "execution_finished"

    async def test_cancel_without_reason(
        self,
        client: AsyncTestClient,
        coordinator: ExecutionCoordinator,
        workflow_id: UUID,
        make_contact: Callable[..., Awaitable[UUID]],
    ) -> None:
        execution_id = await coordinator.start_execution(workflow_id, await make_contact())

        response = await client.post(f"/automation/executions/{execution_id}/cancel")

        assert response.status_code == HTTP_200_OK
        assert response.json()["exit_reason"] == "cancelled"


# =============================================================================
# Events
# =============================================================================


@pytest.mark.integration
class TestEventEndpoint:
    async def test_track_event_starts_workflow(
        self,
        client: AsyncTestClient,
        coordinator: ExecutionCoordinator,
        workflow_id: UUID,
        make_contact: Callable[..., Awaitable[UUID]],
        project_id: UUID,
    ) -> None:
        contact_id = await make_contact()

        response = await client.post(
            "/automation/events",
            json={
                "project_id": str(project_id),
                "event_name": "signup",
                "contact_id": str(contact_id),
                "data": {"plan": "pro"},
            },
        )

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert len(data["started"]) == 1
        assert data["resumed"] == []
        executions, _ = await coordinator.list_executions(workflow_id)
        assert [str(e.id) for e in executions] == data["started"]

    async def test_anonymous_event(self, client: AsyncTestClient, workflow_id: UUID, project_id: UUID) -> None:
        response = await client.post(
            "/automation/events",
            json={"project_id": str(project_id), "event_name": "signup"},
        )

        assert response.status_code == HTTP_200_OK
        assert response.json() == {"started": [], "resumed": []}

    async def test_invalid_payload(self, client: AsyncTestClient) -> None:
        response = await client.post("/automation/events", json={"event_name": "signup"})

        assert response.status_code == HTTP_400_BAD_REQUEST
