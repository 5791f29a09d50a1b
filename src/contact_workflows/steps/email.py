"""Email sending step."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import structlog

from contact_workflows.core.types import StepType
from contact_workflows.exceptions import TransientStepError
from contact_workflows.steps.base import BaseStepHandler, Continue

if TYPE_CHECKING:
    from contact_workflows.core.context import StepContext
    from contact_workflows.core.definition import SendEmailConfig, StepDefinition
    from contact_workflows.core.protocols import EmailDelivery

__all__ = ["SendEmailHandler", "render_template"]

logger = structlog.get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def render_template(template: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders.

    Dotted names walk nested mappings. Unknown names render as an empty string.

    Args:
        template: Text containing placeholders.
        variables: Values to substitute.

    Returns:
        The rendered text.

    Example:
        >>> render_template("Hi {{firstName}}", {"firstName": "Ada"})
        'Hi Ada'
    """

    def replace(match: re.Match[str]) -> str:
        value: Any = variables
        for part in match.group(1).split("."):
            if not isinstance(value, dict) or part not in value:
                return ""
            value = value[part]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(replace, template)


class SendEmailHandler(BaseStepHandler):
    """Hands an email to the delivery service.

    Inline subjects and bodies are rendered here; template references are
    passed through together with the variables so the delivery service can
    render them. Delivery errors are treated as transient.
    """

    step_type = StepType.SEND_EMAIL

    def __init__(self, delivery: EmailDelivery) -> None:
        """Initialize the handler.

        Args:
            delivery: The email delivery service.
        """
        self.delivery = delivery

    async def execute(self, step: StepDefinition, config: SendEmailConfig, context: StepContext) -> Continue:
        variables = context.template_variables()
        subject = render_template(config.subject, variables) if config.subject else None
        body = render_template(config.body, variables) if config.body else None

        try:
            handle = await self.delivery.send(
                contact=context.contact,
                template_id=config.template_id,
                subject=subject,
                body=body,
                variables=variables,
                execution_id=context.execution_id,
                step_execution_id=context.step_execution_id,
                from_address=config.from_address,
                reply_to=config.reply_to,
            )
        except Exception as e:
            raise TransientStepError(step.name, f"email delivery failed: {e}", cause=e) from e

        logger.info(
            "email_handed_off",
            execution_id=str(context.execution_id),
            step_id=str(step.id),
            delivery=handle,
        )
        return Continue(output={"deliveryId": handle, "to": context.contact.email})
