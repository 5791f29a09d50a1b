"""Tests for step configuration schemas and graph definitions."""

from __future__ import annotations

from uuid import uuid4

import pytest

from contact_workflows.core.definition import (
    ConditionConfig,
    DelayConfig,
    ExitConfig,
    SendEmailConfig,
    TransitionDefinition,
    TriggerConfig,
    UpdateContactConfig,
    WaitForEventConfig,
    WebhookConfig,
    decode_step_config,
)
from contact_workflows.core.types import ConditionOperator, StepType, TimeUnit
from contact_workflows.exceptions import ConditionConfigError, StepConfigError


@pytest.mark.unit
class TestDecodeStepConfig:
    """Tests for decode_step_config dispatch."""

    def test_unknown_step_type(self) -> None:
        with pytest.raises(StepConfigError, match="unknown step type"):
            decode_step_config("SEND_SMS", {})

    def test_config_must_be_an_object(self) -> None:
        with pytest.raises(StepConfigError, match="must be an object"):
            decode_step_config(StepType.EXIT, ["reason"])  # type: ignore[arg-type]

    def test_missing_config_is_empty(self) -> None:
        assert decode_step_config(StepType.TRIGGER, None) == TriggerConfig()

    def test_accepts_string_step_type(self) -> None:
        assert isinstance(decode_step_config("EXIT", {}), ExitConfig)


@pytest.mark.unit
class TestTriggerAndExitConfig:
    def test_trigger_event_name_aliases(self) -> None:
        assert decode_step_config(StepType.TRIGGER, {"event_name": "signup"}).event_name == "signup"
        assert decode_step_config(StepType.TRIGGER, {"eventName": "signup"}).event_name == "signup"

    def test_exit_reason_default(self) -> None:
        assert decode_step_config(StepType.EXIT, {}) == ExitConfig(reason="exit_step")
        assert decode_step_config(StepType.EXIT, {"reason": "converted"}).reason == "converted"


@pytest.mark.unit
class TestSendEmailConfig:
    def test_inline_content(self) -> None:
        config = decode_step_config(
            StepType.SEND_EMAIL,
            {"subject": "Hi", "body": "Welcome", "from": "team@example.com", "replyTo": "help@example.com"},
        )

        assert config == SendEmailConfig(
            subject="Hi",
            body="Welcome",
            from_address="team@example.com",
            reply_to="help@example.com",
        )

    def test_template_column_is_used(self) -> None:
        template_id = uuid4()

        config = decode_step_config(StepType.SEND_EMAIL, {}, template_id=template_id)

        assert config.template_id == str(template_id)

    def test_template_in_config(self) -> None:
        assert decode_step_config(StepType.SEND_EMAIL, {"templateId": "welcome"}).template_id == "welcome"

    @pytest.mark.parametrize("raw", [{}, {"subject": "Hi"}, {"body": "Welcome"}, {"subject": "", "body": "x"}])
    def test_requires_template_or_content(self, raw: dict) -> None:
        with pytest.raises(StepConfigError, match="template or a subject and body"):
            decode_step_config(StepType.SEND_EMAIL, raw)


@pytest.mark.unit
class TestDelayConfig:
    def test_valid_delay(self) -> None:
        config = decode_step_config(StepType.DELAY, {"amount": 2, "unit": "days"})

        assert config == DelayConfig(amount=2, unit=TimeUnit.DAYS)
        assert config.duration_ms == 172_800_000

    def test_fractional_amount(self) -> None:
        assert decode_step_config(StepType.DELAY, {"amount": 1.5, "unit": "hours"}).duration_ms == 5_400_000

    @pytest.mark.parametrize("amount", [0, -1, "5", True, None])
    def test_invalid_amount(self, amount: object) -> None:
        with pytest.raises(StepConfigError, match="positive number"):
            decode_step_config(StepType.DELAY, {"amount": amount, "unit": "minutes"})

    def test_invalid_unit(self) -> None:
        with pytest.raises(StepConfigError, match="unknown unit 'weeks'"):
            decode_step_config(StepType.DELAY, {"amount": 1, "unit": "weeks"})


@pytest.mark.unit
class TestWaitForEventConfig:
    def test_timeout_ms(self) -> None:
        config = decode_step_config(StepType.WAIT_FOR_EVENT, {"eventName": "purchase", "timeoutMs": 60_000})

        assert config == WaitForEventConfig(event_name="purchase", timeout_ms=60_000)

    def test_legacy_timeout_in_seconds(self) -> None:
        config = decode_step_config(StepType.WAIT_FOR_EVENT, {"event_name": "purchase", "timeout": 90})

        assert config.timeout_ms == 90_000

    def test_timeout_is_optional(self) -> None:
        assert decode_step_config(StepType.WAIT_FOR_EVENT, {"event_name": "purchase"}).timeout_ms is None

    def test_requires_event_name(self) -> None:
        with pytest.raises(StepConfigError, match="event_name is required"):
            decode_step_config(StepType.WAIT_FOR_EVENT, {"timeout_ms": 1000})

    def test_invalid_timeout(self) -> None:
        with pytest.raises(StepConfigError, match="timeout"):
            decode_step_config(StepType.WAIT_FOR_EVENT, {"event_name": "purchase", "timeout_ms": 0})

    def test_match_must_be_an_object(self) -> None:
        with pytest.raises(StepConfigError, match="match"):
            decode_step_config(StepType.WAIT_FOR_EVENT, {"event_name": "purchase", "match": ["pro"]})

    def test_matches(self) -> None:
        config = WaitForEventConfig(event_name="purchase", match={"plan": "pro"})

        assert config.matches({"plan": "pro", "amount": 10})
        assert not config.matches({"plan": "basic"})
        assert not config.matches(None)
        assert WaitForEventConfig(event_name="purchase").matches(None)


@pytest.mark.unit
class TestConditionConfig:
    def test_valid_condition(self) -> None:
        config = decode_step_config(
            StepType.CONDITION,
            {"field": "createdAt", "operator": "within", "value": 7, "unit": "days"},
        )

        assert config == ConditionConfig(
            field="createdAt",
            operator=ConditionOperator.WITHIN,
            value=7,
            unit=TimeUnit.DAYS,
        )

    def test_unknown_operator(self) -> None:
        with pytest.raises(ConditionConfigError, match="unknown operator"):
            decode_step_config(StepType.CONDITION, {"field": "data.plan", "operator": "like", "value": "p"})

    def test_condition_errors_are_step_config_errors(self) -> None:
        with pytest.raises(StepConfigError):
            decode_step_config(StepType.CONDITION, {"field": "firstName", "operator": "equals", "value": "Ada"})


@pytest.mark.unit
class TestWebhookConfig:
    def test_defaults(self) -> None:
        config = decode_step_config(StepType.WEBHOOK, {"url": "https://hooks.example.com/in"})

        assert config == WebhookConfig(url="https://hooks.example.com/in", method="POST")

    def test_method_and_headers_are_normalized(self) -> None:
        config = decode_step_config(
            StepType.WEBHOOK,
            {"url": "http://hooks.example.com", "method": "put", "headers": {"X-Retry": 3}},
        )

        assert config.method == "PUT"
        assert config.headers == {"X-Retry": "3"}

    @pytest.mark.parametrize("url", ["ftp://example.com", "hooks.example.com", None])
    def test_invalid_url(self, url: object) -> None:
        with pytest.raises(StepConfigError, match="url"):
            decode_step_config(StepType.WEBHOOK, {"url": url})

    def test_invalid_method(self) -> None:
        with pytest.raises(StepConfigError, match="unsupported method 'TRACE'"):
            decode_step_config(StepType.WEBHOOK, {"url": "https://example.com", "method": "trace"})


@pytest.mark.unit
class TestUpdateContactConfig:
    def test_updates(self) -> None:
        config = decode_step_config(StepType.UPDATE_CONTACT, {"updates": {"plan": "pro"}})

        assert config == UpdateContactConfig(updates={"plan": "pro"})

    @pytest.mark.parametrize("raw", [{}, {"updates": {}}, {"updates": "plan=pro"}])
    def test_requires_updates(self, raw: dict) -> None:
        with pytest.raises(StepConfigError, match="non-empty object"):
            decode_step_config(StepType.UPDATE_CONTACT, raw)


@pytest.mark.unit
class TestTransitionDefinition:
    """Tests for transition branch tags."""

    def _transition(self, condition: dict | None) -> TransitionDefinition:
        return TransitionDefinition(id=uuid4(), from_step_id=uuid4(), to_step_id=uuid4(), condition=condition)

    def test_untagged_transition(self) -> None:
        transition = self._transition(None)

        assert transition.branch is None
        assert transition.is_default
        assert not transition.is_timeout

    def test_branch_tag(self) -> None:
        transition = self._transition({"branch": "yes"})

        assert transition.branch == "yes"
        assert not transition.is_default

    def test_timeout_tags(self) -> None:
        assert self._transition({"branch": "timeout"}).is_timeout
        assert self._transition({"fallback": True}).is_timeout
        assert not self._transition({"fallback": True}).is_default
