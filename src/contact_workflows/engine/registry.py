"""Step handler registry.

This module maps each step type to the handler that performs it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from contact_workflows.config import EngineConfig
from contact_workflows.steps import (
    ConditionHandler,
    DelayHandler,
    ExitHandler,
    SendEmailHandler,
    TriggerHandler,
    UpdateContactHandler,
    WaitForEventHandler,
    WebhookHandler,
)

if TYPE_CHECKING:
    import httpx

    from contact_workflows.core.protocols import ContactStore, EmailDelivery
    from contact_workflows.core.types import StepType
    from contact_workflows.steps.base import BaseStepHandler

__all__ = ["StepHandlerRegistry"]


class StepHandlerRegistry:
    """Registry of step handlers keyed by step type.

    Attributes:
        _handlers: Map of step type to handler instance.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._handlers: dict[StepType, BaseStepHandler] = {}

    @classmethod
    def with_defaults(
        cls,
        *,
        email_delivery: EmailDelivery,
        contacts: ContactStore,
        http_client: httpx.AsyncClient | None = None,
        config: EngineConfig | None = None,
    ) -> StepHandlerRegistry:
        """Create a registry with a handler for every step type.

        Args:
            email_delivery: Service SEND_EMAIL steps hand off to.
            contacts: Store UPDATE_CONTACT steps write through.
            http_client: Optional shared client for WEBHOOK steps.
            config: Engine configuration.

        Returns:
            A fully populated registry.

        Example:
            >>> registry = StepHandlerRegistry.with_defaults(
            ...     email_delivery=mailer,
            ...     contacts=SQLAlchemyContactStore(session_maker),
            ... )
        """
        config = config or EngineConfig()
        registry = cls()
        for handler in (
            TriggerHandler(),
            SendEmailHandler(email_delivery),
            DelayHandler(),
            WaitForEventHandler(config.default_wait_timeout_ms),
            ConditionHandler(),
            WebhookHandler(client=http_client, timeout=config.webhook_timeout_s),
            UpdateContactHandler(contacts),
            ExitHandler(),
        ):
            registry.register(handler)
        return registry

    def register(self, handler: BaseStepHandler) -> None:
        """Register a handler, replacing any handler of the same type.

        Args:
            handler: The handler to register.
        """
        self._handlers[handler.step_type] = handler

    def get(self, step_type: StepType) -> BaseStepHandler:
        """Retrieve the handler of a step type.

        Args:
            step_type: The step type.

        Returns:
            The registered handler.

        Raises:
            KeyError: If no handler is registered for the type.
        """
        if step_type not in self._handlers:
            msg = f"No handler registered for step type '{step_type}'"
            raise KeyError(msg)
        return self._handlers[step_type]

    def has(self, step_type: StepType) -> bool:
        """Check whether a handler is registered for a step type."""
        return step_type in self._handlers
