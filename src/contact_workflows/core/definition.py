"""Workflow graph definitions and per-type step configuration schemas.

Step configuration is persisted as free-form JSON. Before a step runs, or when
an editor saves it, the JSON is decoded into the typed config dataclass for the
step's type. Keys are accepted in snake_case or camelCase.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union
from uuid import UUID

from contact_workflows.core.conditions import validate_condition
from contact_workflows.core.types import Branch, ConditionOperator, StepType, TimeUnit
from contact_workflows.exceptions import ConditionConfigError, StepConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "ConditionConfig",
    "DelayConfig",
    "ExitConfig",
    "SendEmailConfig",
    "StepConfig",
    "StepDefinition",
    "TransitionDefinition",
    "TriggerConfig",
    "UpdateContactConfig",
    "WaitForEventConfig",
    "WebhookConfig",
    "decode_step_config",
]


@dataclass(frozen=True)
class TriggerConfig:
    """Configuration of the TRIGGER step.

    Attributes:
        event_name: Event that starts the workflow, if it is event triggered.
    """

    event_name: str | None = None


@dataclass(frozen=True)
class SendEmailConfig:
    """Configuration of a SEND_EMAIL step.

    Either a template reference or an inline subject and body is required.

    Attributes:
        template_id: Template to render.
        subject: Inline subject, may contain ``{{variable}}`` placeholders.
        body: Inline body, may contain ``{{variable}}`` placeholders.
        from_address: Sender override.
        reply_to: Reply-to override.
    """

    template_id: str | None = None
    subject: str | None = None
    body: str | None = None
    from_address: str | None = None
    reply_to: str | None = None


@dataclass(frozen=True)
class DelayConfig:
    """Configuration of a DELAY step."""

    amount: float
    unit: TimeUnit

    @property
    def duration_ms(self) -> int:
        """Delay length in milliseconds."""
        return int(self.amount * self.unit.milliseconds)


@dataclass(frozen=True)
class WaitForEventConfig:
    """Configuration of a WAIT_FOR_EVENT step.

    Attributes:
        event_name: Event that resumes the execution.
        timeout_ms: How long to wait before taking the timeout path. Falls
            back to the engine default when unset.
        match: Optional key/value pairs the event payload must contain.
    """

    event_name: str
    timeout_ms: int | None = None
    match: dict[str, Any] | None = None

    def matches(self, payload: Mapping[str, Any] | None) -> bool:
        """Check whether an event payload satisfies ``match``.

        Args:
            payload: The event's data.

        Returns:
            True when there is no filter or every key matches.
        """
        if not self.match:
            return True
        payload = payload or {}
        return all(key in payload and payload[key] == value for key, value in self.match.items())


@dataclass(frozen=True)
class ConditionConfig:
    """Configuration of a CONDITION step."""

    field: str
    operator: ConditionOperator
    value: Any = None
    unit: TimeUnit | None = None


@dataclass(frozen=True)
class WebhookConfig:
    """Configuration of a WEBHOOK step.

    Attributes:
        url: Target URL, http or https.
        method: HTTP method.
        headers: Extra request headers.
        body: JSON body. A default payload describing the contact, workflow and
            execution is sent when unset.
    """

    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True)
class UpdateContactConfig:
    """Configuration of an UPDATE_CONTACT step."""

    updates: dict[str, Any]


@dataclass(frozen=True)
class ExitConfig:
    """Configuration of an EXIT step."""

    reason: str = "exit_step"


StepConfig = Union[
    TriggerConfig,
    SendEmailConfig,
    DelayConfig,
    WaitForEventConfig,
    ConditionConfig,
    WebhookConfig,
    UpdateContactConfig,
    ExitConfig,
]

_WEBHOOK_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


def _pick(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _decode_trigger(raw: Mapping[str, Any]) -> TriggerConfig:
    return TriggerConfig(event_name=_pick(raw, "event_name", "eventName"))


def _decode_send_email(raw: Mapping[str, Any]) -> SendEmailConfig:
    config = SendEmailConfig(
        template_id=_pick(raw, "template_id", "templateId"),
        subject=_pick(raw, "subject"),
        body=_pick(raw, "body"),
        from_address=_pick(raw, "from_address", "fromAddress", "from"),
        reply_to=_pick(raw, "reply_to", "replyTo"),
    )
    if config.template_id is None and not (config.subject and config.body):
        raise StepConfigError(StepType.SEND_EMAIL, "either a template or a subject and body is required")
    return config


def _decode_delay(raw: Mapping[str, Any]) -> DelayConfig:
    amount = _pick(raw, "amount")
    if not _is_number(amount) or amount <= 0:
        raise StepConfigError(StepType.DELAY, "amount must be a positive number")
    try:
        unit = TimeUnit(_pick(raw, "unit"))
    except ValueError:
        raise StepConfigError(StepType.DELAY, f"unknown unit '{_pick(raw, 'unit')}'") from None
    return DelayConfig(amount=amount, unit=unit)


def _decode_wait_for_event(raw: Mapping[str, Any]) -> WaitForEventConfig:
    event_name = _pick(raw, "event_name", "eventName")
    if not isinstance(event_name, str) or not event_name:
        raise StepConfigError(StepType.WAIT_FOR_EVENT, "event_name is required")

    timeout_ms = _pick(raw, "timeout_ms", "timeoutMs")
    legacy_timeout = _pick(raw, "timeout")
    if timeout_ms is None and legacy_timeout is not None:
        # Legacy configs store the timeout in seconds
        timeout_ms = legacy_timeout * 1000 if _is_number(legacy_timeout) else legacy_timeout
    if timeout_ms is not None and (not _is_number(timeout_ms) or timeout_ms <= 0):
        raise StepConfigError(StepType.WAIT_FOR_EVENT, "timeout must be a positive number")

    match = _pick(raw, "match")
    if match is not None and not isinstance(match, dict):
        raise StepConfigError(StepType.WAIT_FOR_EVENT, "match must be an object")

    return WaitForEventConfig(
        event_name=event_name,
        timeout_ms=int(timeout_ms) if timeout_ms is not None else None,
        match=match,
    )


def _decode_condition(raw: Mapping[str, Any]) -> ConditionConfig:
    validate_condition(_RawCondition(raw))
    unit = _pick(raw, "unit")
    if unit is not None:
        try:
            unit = TimeUnit(unit)
        except ValueError:
            raise ConditionConfigError(f"unknown unit '{unit}'") from None
    return ConditionConfig(
        field=raw["field"],
        operator=ConditionOperator(raw["operator"]),
        value=raw.get("value"),
        unit=unit,
    )


@dataclass(frozen=True)
class _RawCondition:
    raw: Mapping[str, Any]

    @property
    def field(self) -> Any:
        return self.raw.get("field")

    @property
    def operator(self) -> Any:
        return self.raw.get("operator")

    @property
    def value(self) -> Any:
        return self.raw.get("value")

    @property
    def unit(self) -> Any:
        return self.raw.get("unit")


def _decode_webhook(raw: Mapping[str, Any]) -> WebhookConfig:
    url = _pick(raw, "url")
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        raise StepConfigError(StepType.WEBHOOK, "url must be an http(s) URL")
    method = str(_pick(raw, "method", default="POST")).upper()
    if method not in _WEBHOOK_METHODS:
        raise StepConfigError(StepType.WEBHOOK, f"unsupported method '{method}'")
    headers = _pick(raw, "headers", default={})
    if not isinstance(headers, dict):
        raise StepConfigError(StepType.WEBHOOK, "headers must be an object")
    return WebhookConfig(
        url=url,
        method=method,
        headers={str(k): str(v) for k, v in headers.items()},
        body=_pick(raw, "body"),
    )


def _decode_update_contact(raw: Mapping[str, Any]) -> UpdateContactConfig:
    updates = _pick(raw, "updates")
    if not isinstance(updates, dict) or not updates:
        raise StepConfigError(StepType.UPDATE_CONTACT, "updates must be a non-empty object")
    return UpdateContactConfig(updates=dict(updates))


def _decode_exit(raw: Mapping[str, Any]) -> ExitConfig:
    return ExitConfig(reason=str(_pick(raw, "reason", default="exit_step")))


_DECODERS = {
    StepType.TRIGGER: _decode_trigger,
    StepType.SEND_EMAIL: _decode_send_email,
    StepType.DELAY: _decode_delay,
    StepType.WAIT_FOR_EVENT: _decode_wait_for_event,
    StepType.CONDITION: _decode_condition,
    StepType.WEBHOOK: _decode_webhook,
    StepType.UPDATE_CONTACT: _decode_update_contact,
    StepType.EXIT: _decode_exit,
}


def decode_step_config(
    step_type: StepType | str,
    raw: Mapping[str, Any] | None,
    *,
    template_id: UUID | str | None = None,
) -> StepConfig:
    """Decode a step's JSON config into its typed schema.

    Args:
        step_type: The step's type.
        raw: The persisted config.
        template_id: The step's template reference column, used by SEND_EMAIL.

    Returns:
        The typed config.

    Raises:
        StepConfigError: If the config does not match the type's schema.
    """
    try:
        step_type = StepType(step_type)
    except ValueError:
        raise StepConfigError(str(step_type), "unknown step type") from None

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise StepConfigError(step_type, "config must be an object")
    if template_id is not None and step_type == StepType.SEND_EMAIL:
        raw = {**raw, "template_id": str(template_id)}

    return _DECODERS[step_type](raw)


@dataclass(frozen=True)
class StepDefinition:
    """A step of a workflow graph as the engine sees it.

    Attributes:
        id: Step ID.
        workflow_id: Owning workflow.
        type: Step type.
        name: Display name.
        config: Raw persisted config.
        template_id: Template reference for SEND_EMAIL steps.
    """

    id: UUID
    workflow_id: UUID
    type: StepType
    name: str
    config: dict[str, Any] = field(default_factory=dict)
    template_id: UUID | None = None


@dataclass(frozen=True)
class TransitionDefinition:
    """A directed edge between two steps.

    Attributes:
        id: Transition ID.
        from_step_id: Source step.
        to_step_id: Target step.
        condition: Optional tag such as ``{"branch": "yes"}`` or ``{"fallback": true}``.
        priority: Ascending tie-break among candidates.
    """

    id: UUID
    from_step_id: UUID
    to_step_id: UUID
    condition: dict[str, Any] | None = None
    priority: int = 0

    @property
    def branch(self) -> str | None:
        """The branch tag this transition is taken for, if any."""
        if not self.condition:
            return None
        return self.condition.get("branch")

    @property
    def is_timeout(self) -> bool:
        """Whether this transition is taken when a wait times out."""
        if not self.condition:
            return False
        return self.branch == Branch.TIMEOUT or self.condition.get("fallback") is True

    @property
    def is_default(self) -> bool:
        """Whether this transition carries no branch tag."""
        return self.branch is None and not self.is_timeout
