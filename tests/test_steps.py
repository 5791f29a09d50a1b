"""Tests for step handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import pytest

from contact_workflows.core.context import StepContext
from contact_workflows.core.definition import (
    ConditionConfig,
    DelayConfig,
    ExitConfig,
    SendEmailConfig,
    StepDefinition,
    TriggerConfig,
    UpdateContactConfig,
    WaitForEventConfig,
)
from contact_workflows.core.models import ContactSnapshot, WorkflowSnapshot
from contact_workflows.core.types import Branch, ConditionOperator, StepType, TimeUnit
from contact_workflows.exceptions import TransientStepError
from contact_workflows.steps import (
    BaseStepHandler,
    ConditionHandler,
    Continue,
    DelayHandler,
    Exit,
    ExitHandler,
    SendEmailHandler,
    TriggerHandler,
    UpdateContactHandler,
    Wait,
    WaitForEventHandler,
    render_template,
)

if TYPE_CHECKING:
    from conftest import FakeEmailDelivery


class RecordingContactStore:
    """Contact store double that records merges."""

    def __init__(self) -> None:
        self.merges: list[tuple[UUID, dict[str, Any]]] = []

    async def get(self, contact_id: UUID) -> ContactSnapshot | None:
        return None

    async def merge_data(self, contact_id: UUID, updates: dict[str, Any]) -> ContactSnapshot:
        self.merges.append((contact_id, updates))
        return ContactSnapshot(id=contact_id, project_id=uuid4(), email="ada@example.com", data=updates)


@pytest.fixture
def step_context() -> StepContext:
    project_id = uuid4()
    return StepContext(
        execution_id=uuid4(),
        step_execution_id=uuid4(),
        workflow=WorkflowSnapshot(id=uuid4(), project_id=project_id, name="Onboarding"),
        contact=ContactSnapshot(
            id=uuid4(),
            project_id=project_id,
            email="ada@example.com",
            data={"firstName": "Ada", "plan": "basic", "company": {"name": "Analytical Engines"}},
        ),
        data={"plan": "pro", "event": {"name": "signup"}},
    )


def _step(step_type: StepType, name: str = "Step") -> StepDefinition:
    return StepDefinition(id=uuid4(), workflow_id=uuid4(), type=step_type, name=name)


@pytest.mark.unit
class TestStepContext:
    """Tests for StepContext."""

    def test_get(self, step_context: StepContext) -> None:
        assert step_context.get("plan") == "pro"
        assert step_context.get("missing", "fallback") == "fallback"

    def test_template_variables_precedence(self, step_context: StepContext) -> None:
        variables = step_context.template_variables()

        assert variables["email"] == "ada@example.com"
        assert variables["firstName"] == "Ada"
        # Execution context overrides contact data
        assert variables["plan"] == "pro"


@pytest.mark.unit
class TestRenderTemplate:
    def test_placeholders(self) -> None:
        assert render_template("Hi {{firstName}}!", {"firstName": "Ada"}) == "Hi Ada!"
        assert render_template("Hi {{ firstName }}", {"firstName": "Ada"}) == "Hi Ada"

    def test_dotted_names(self) -> None:
        assert render_template("{{company.name}}", {"company": {"name": "ACME"}}) == "ACME"

    def test_unknown_and_null_values_render_empty(self) -> None:
        assert render_template("[{{missing}}][{{nothing}}]", {"nothing": None}) == "[][]"


@pytest.mark.unit
class TestBaseStepHandler:
    async def test_execute_must_be_implemented(self, step_context: StepContext) -> None:
        class IncompleteHandler(BaseStepHandler):
            step_type = StepType.EXIT

        with pytest.raises(NotImplementedError):
            await IncompleteHandler().execute(_step(StepType.EXIT), ExitConfig(), step_context)


@pytest.mark.unit
class TestSimpleHandlers:
    """Tests for trigger, exit, update contact and timer handlers."""

    async def test_trigger(self, step_context: StepContext) -> None:
        handler = TriggerHandler()

        result = await handler.execute(_step(StepType.TRIGGER), TriggerConfig(event_name="signup"), step_context)
        manual = await handler.execute(_step(StepType.TRIGGER), TriggerConfig(), step_context)

        assert result == Continue(output={"triggeredBy": "signup"})
        assert manual == Continue()

    async def test_exit(self, step_context: StepContext) -> None:
        result = await ExitHandler().execute(_step(StepType.EXIT), ExitConfig(reason="converted"), step_context)

        assert result == Exit(reason="converted")

    async def test_update_contact(self, step_context: StepContext) -> None:
        store = RecordingContactStore()
        config = UpdateContactConfig(updates={"plan": "pro", "onboarded": True})

        result = await UpdateContactHandler(store).execute(_step(StepType.UPDATE_CONTACT), config, step_context)

        assert store.merges == [(step_context.contact.id, {"plan": "pro", "onboarded": True})]
        assert result == Continue(output={"updated": ["onboarded", "plan"]})

    async def test_delay(self, step_context: StepContext) -> None:
        config = DelayConfig(amount=2, unit=TimeUnit.DAYS)

        result = await DelayHandler().execute(_step(StepType.DELAY), config, step_context)

        assert result == Wait(event_name=None, timeout_ms=172_800_000)

    async def test_wait_for_event(self, step_context: StepContext) -> None:
        handler = WaitForEventHandler(default_timeout_ms=5_000)
        step = _step(StepType.WAIT_FOR_EVENT)

        configured = await handler.execute(step, WaitForEventConfig("purchase", timeout_ms=1_000), step_context)
        defaulted = await handler.execute(step, WaitForEventConfig("purchase"), step_context)

        assert configured == Wait(event_name="purchase", timeout_ms=1_000)
        assert defaulted == Wait(event_name="purchase", timeout_ms=5_000)


@pytest.mark.unit
class TestConditionHandler:
    async def test_yes_branch(self, step_context: StepContext) -> None:
        config = ConditionConfig(field="data.plan", operator=ConditionOperator.EQUALS, value="basic")

        result = await ConditionHandler().execute(_step(StepType.CONDITION), config, step_context)

        assert result.branch == Branch.YES
        assert result.output == {
            "field": "data.plan",
            "operator": "equals",
            "actualValue": "basic",
            "expectedValue": "basic",
            "result": True,
            "branch": "yes",
        }

    async def test_no_branch_reads_execution_context(self, step_context: StepContext) -> None:
        config = ConditionConfig(field="event.name", operator=ConditionOperator.EQUALS, value="purchase")

        result = await ConditionHandler().execute(_step(StepType.CONDITION), config, step_context)

        assert result.branch == Branch.NO
        assert result.output["result"] is False
        assert result.output["actualValue"] == "signup"
        assert result.output["expectedValue"] == "purchase"

    async def test_missing_field_reports_none(self, step_context: StepContext) -> None:
        config = ConditionConfig(field="data.company.size", operator=ConditionOperator.EXISTS)

        result = await ConditionHandler().execute(_step(StepType.CONDITION), config, step_context)

        assert result.branch == Branch.NO
        assert result.output["actualValue"] is None
        assert result.output["expectedValue"] is None


@pytest.mark.unit
class TestSendEmailHandler:
    async def test_renders_inline_content(self, step_context: StepContext, email_delivery: FakeEmailDelivery) -> None:
        delivery = email_delivery
        config = SendEmailConfig(subject="Welcome {{firstName}}", body="Your plan: {{plan}}", reply_to="help@x.io")

        result = await SendEmailHandler(delivery).execute(_step(StepType.SEND_EMAIL), config, step_context)

        assert result == Continue(output={"deliveryId": "msg-1", "to": "ada@example.com"})
        sent = delivery.sent[0]
        assert sent["subject"] == "Welcome Ada"
        assert sent["body"] == "Your plan: pro"
        assert sent["reply_to"] == "help@x.io"
        assert sent["step_execution_id"] == step_context.step_execution_id

    async def test_passes_template_through(self, step_context: StepContext, email_delivery: FakeEmailDelivery) -> None:
        delivery = email_delivery

        await SendEmailHandler(delivery).execute(
            _step(StepType.SEND_EMAIL),
            SendEmailConfig(template_id="welcome"),
            step_context,
        )

        sent = delivery.sent[0]
        assert sent["template_id"] == "welcome"
        assert sent["subject"] is None
        assert sent["variables"]["firstName"] == "Ada"

    async def test_delivery_errors_are_transient(self, step_context: StepContext, email_delivery: FakeEmailDelivery) -> None:
        delivery = email_delivery
        delivery.fail_times = 1

        with pytest.raises(TransientStepError) as exc_info:
            await SendEmailHandler(delivery).execute(
                _step(StepType.SEND_EMAIL, "Welcome email"),
                SendEmailConfig(template_id="welcome"),
                step_context,
            )

        assert exc_info.value.step_name == "Welcome email"
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert delivery.sent == []
