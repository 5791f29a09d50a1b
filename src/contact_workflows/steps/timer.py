"""Delay and wait steps.

Neither handler sleeps. They tell the coordinator to park the execution, and
the scheduling gateway fires a timeout job when the timer is due.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from contact_workflows.core.types import StepType
from contact_workflows.steps.base import BaseStepHandler, Wait

if TYPE_CHECKING:
    from contact_workflows.core.context import StepContext
    from contact_workflows.core.definition import DelayConfig, StepDefinition, WaitForEventConfig

__all__ = ["DelayHandler", "WaitForEventHandler"]


class DelayHandler(BaseStepHandler):
    """Parks the execution for a fixed duration.

    Example:
        >>> # config: {"amount": 2, "unit": "days"}
        >>> await DelayHandler().execute(step, config, context)
        Wait(event_name=None, timeout_ms=172800000)
    """

    step_type = StepType.DELAY

    async def execute(self, step: StepDefinition, config: DelayConfig, context: StepContext) -> Wait:
        return Wait(event_name=None, timeout_ms=config.duration_ms)


class WaitForEventHandler(BaseStepHandler):
    """Parks the execution until a named event arrives for the contact.

    If the event does not arrive in time, the execution follows the step's
    timeout transition instead.
    """

    step_type = StepType.WAIT_FOR_EVENT

    def __init__(self, default_timeout_ms: int) -> None:
        """Initialize the handler.

        Args:
            default_timeout_ms: Timeout used when the step configures none.
        """
        self.default_timeout_ms = default_timeout_ms

    async def execute(self, step: StepDefinition, config: WaitForEventConfig, context: StepContext) -> Wait:
        return Wait(event_name=config.event_name, timeout_ms=config.timeout_ms or self.default_timeout_ms)
