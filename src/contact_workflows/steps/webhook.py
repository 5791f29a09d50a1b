"""Outbound webhook step for external system integration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from contact_workflows.core.types import StepType
from contact_workflows.exceptions import TransientStepError
from contact_workflows.steps.base import BaseStepHandler, Continue

if TYPE_CHECKING:
    from contact_workflows.core.context import StepContext
    from contact_workflows.core.definition import StepDefinition, WebhookConfig

__all__ = ["WebhookHandler", "default_payload"]

logger = structlog.get_logger(__name__)


def default_payload(context: StepContext) -> dict[str, Any]:
    """Build the JSON body sent when a webhook step configures none.

    Args:
        context: The step's context.

    Returns:
        Description of the contact, workflow and execution.
    """
    return {
        "contact": {
            "id": str(context.contact.id),
            "email": context.contact.email,
            "subscribed": context.contact.subscribed,
            "data": context.contact.data,
        },
        "workflow": {
            "id": str(context.workflow.id),
            "name": context.workflow.name,
        },
        "execution": {
            "id": str(context.execution_id),
            "startedAt": context.started_at.isoformat() if context.started_at else None,
        },
    }


class WebhookHandler(BaseStepHandler):
    """Calls an external HTTP endpoint.

    Any 2xx response continues the execution. Other statuses and transport
    errors are transient and retried with backoff until attempts run out.

    Example:
        >>> async with httpx.AsyncClient() as client:
        ...     handler = WebhookHandler(client=client)
    """

    step_type = StepType.WEBHOOK

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        """Initialize the handler.

        Args:
            client: Shared HTTP client. A short-lived client is created per
                request when omitted.
            timeout: Request timeout in seconds.
        """
        self.client = client
        self.timeout = timeout

    async def execute(self, step: StepDefinition, config: WebhookConfig, context: StepContext) -> Continue:
        body = config.body if config.body is not None else default_payload(context)
        headers = {
            "Content-Type": "application/json",
            "X-Workflow-Execution-Id": str(context.execution_id),
            "X-Workflow-Step-Execution-Id": str(context.step_execution_id),
            **config.headers,
        }
        kwargs: dict[str, Any] = {"headers": headers, "timeout": self.timeout}
        if config.method != "GET":
            kwargs["json"] = body

        try:
            if self.client is not None:
                response = await self.client.request(config.method, config.url, **kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(config.method, config.url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientStepError(step.name, f"request timed out after {self.timeout}s", cause=e) from e
        except httpx.HTTPError as e:
            raise TransientStepError(step.name, f"request failed: {e}", cause=e) from e

        if not response.is_success:
            raise TransientStepError(step.name, f"HTTP {response.status_code}")

        logger.info(
            "webhook_delivered",
            execution_id=str(context.execution_id),
            step_id=str(step.id),
            status_code=response.status_code,
        )
        return Continue(output={"statusCode": response.status_code, "url": config.url})
