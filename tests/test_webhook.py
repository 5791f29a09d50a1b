"""Tests for the WEBHOOK step handler."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest

from contact_workflows.core.context import StepContext
from contact_workflows.core.definition import StepDefinition, WebhookConfig
from contact_workflows.core.models import ContactSnapshot, WorkflowSnapshot
from contact_workflows.core.types import StepType
from contact_workflows.exceptions import TransientStepError
from contact_workflows.steps import Continue, WebhookHandler, default_payload


@pytest.fixture
def step_context() -> StepContext:
    project_id = uuid4()
    return StepContext(
        execution_id=uuid4(),
        step_execution_id=uuid4(),
        workflow=WorkflowSnapshot(id=uuid4(), project_id=project_id, name="Onboarding"),
        contact=ContactSnapshot(id=uuid4(), project_id=project_id, email="ada@example.com", data={"plan": "pro"}),
        started_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def step() -> StepDefinition:
    return StepDefinition(id=uuid4(), workflow_id=uuid4(), type=StepType.WEBHOOK, name="Notify CRM")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestDefaultPayload:
    def test_describes_contact_workflow_and_execution(self, step_context: StepContext) -> None:
        payload = default_payload(step_context)

        assert payload["contact"]["email"] == "ada@example.com"
        assert payload["contact"]["data"] == {"plan": "pro"}
        assert payload["workflow"]["name"] == "Onboarding"
        assert payload["execution"]["id"] == str(step_context.execution_id)
        assert payload["execution"]["startedAt"] == "2024-06-01T00:00:00+00:00"


@pytest.mark.unit
class TestWebhookHandler:
    """Tests for WebhookHandler."""

    async def test_posts_default_payload(self, step: StepDefinition, step_context: StepContext) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        async with _client(handler) as client:
            result = await WebhookHandler(client=client).execute(
                step,
                WebhookConfig(url="https://crm.example.com/hooks", headers={"Authorization": "Bearer t"}),
                step_context,
            )

        assert result == Continue(output={"statusCode": 202, "url": "https://crm.example.com/hooks"})
        request = requests[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Bearer t"
        assert request.headers["X-Workflow-Execution-Id"] == str(step_context.execution_id)
        assert request.headers["X-Workflow-Step-Execution-Id"] == str(step_context.step_execution_id)
        assert json.loads(request.content)["contact"]["id"] == str(step_context.contact.id)

    async def test_custom_body(self, step: StepDefinition, step_context: StepContext) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        async with _client(handler) as client:
            await WebhookHandler(client=client).execute(
                step,
                WebhookConfig(url="https://crm.example.com", method="PUT", body={"tag": "vip"}),
                step_context,
            )

        assert bodies == [{"tag": "vip"}]

    async def test_get_sends_no_body(self, step: StepDefinition, step_context: StepContext) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        async with _client(handler) as client:
            await WebhookHandler(client=client).execute(
                step,
                WebhookConfig(url="https://crm.example.com/ping", method="GET"),
                step_context,
            )

        assert requests[0].method == "GET"
        assert requests[0].content == b""

    async def test_error_status_is_transient(self, step: StepDefinition, step_context: StepContext) -> None:
        async with _client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(TransientStepError, match="HTTP 503") as exc_info:
                await WebhookHandler(client=client).execute(
                    step,
                    WebhookConfig(url="https://crm.example.com"),
                    step_context,
                )

        assert exc_info.value.step_name == "Notify CRM"

    async def test_connection_error_is_transient(self, step: StepDefinition, step_context: StepContext) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransientStepError, match="request failed") as exc_info:
                await WebhookHandler(client=client).execute(
                    step,
                    WebhookConfig(url="https://crm.example.com"),
                    step_context,
                )

        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    async def test_timeout_is_transient(self, step: StepDefinition, step_context: StepContext) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransientStepError, match=r"timed out after 2\.5s"):
                await WebhookHandler(client=client, timeout=2.5).execute(
                    step,
                    WebhookConfig(url="https://crm.example.com"),
                    step_context,
                )
