"""Trigger, contact update and exit steps."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from contact_workflows.core.types import StepType
from contact_workflows.steps.base import BaseStepHandler, Continue, Exit

if TYPE_CHECKING:
    from contact_workflows.core.context import StepContext
    from contact_workflows.core.definition import (
        ExitConfig,
        StepDefinition,
        TriggerConfig,
        UpdateContactConfig,
    )
    from contact_workflows.core.protocols import ContactStore

__all__ = ["ExitHandler", "TriggerHandler", "UpdateContactHandler"]

logger = structlog.get_logger(__name__)


class TriggerHandler(BaseStepHandler):
    """Entry step of every workflow. It has no effect of its own."""

    step_type = StepType.TRIGGER

    async def execute(self, step: StepDefinition, config: TriggerConfig, context: StepContext) -> Continue:
        return Continue(output={"triggeredBy": config.event_name} if config.event_name else {})


class UpdateContactHandler(BaseStepHandler):
    """Merges configured values into the contact's custom data.

    Only the configured keys are written, so concurrent updates of other keys
    by other executions or the host application are preserved.

    Example:
        >>> handler = UpdateContactHandler(contact_store)
        >>> # config: {"updates": {"plan": "pro", "onboarded": true}}
    """

    step_type = StepType.UPDATE_CONTACT

    def __init__(self, contacts: ContactStore) -> None:
        """Initialize the handler.

        Args:
            contacts: Store the merge is written through.
        """
        self.contacts = contacts

    async def execute(self, step: StepDefinition, config: UpdateContactConfig, context: StepContext) -> Continue:
        await self.contacts.merge_data(context.contact.id, config.updates)
        logger.info(
            "contact_updated",
            execution_id=str(context.execution_id),
            contact_id=str(context.contact.id),
            keys=sorted(config.updates),
        )
        return Continue(output={"updated": sorted(config.updates)})


class ExitHandler(BaseStepHandler):
    """Ends the execution with the configured reason."""

    step_type = StepType.EXIT

    async def execute(self, step: StepDefinition, config: ExitConfig, context: StepContext) -> Exit:
        return Exit(reason=config.reason)
