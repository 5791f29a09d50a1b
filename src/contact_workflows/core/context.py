"""Step execution context.

This module defines the StepContext handed to every step handler. It carries
the execution's accumulated context data along with snapshots of the contact
and workflow the step runs for.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from contact_workflows.core.models import ContactSnapshot, WorkflowSnapshot

__all__ = ["StepContext"]


@dataclass
class StepContext:
    """Everything a step handler may read while performing its effect.

    Handlers never write to the execution directly; they return context
    updates in their result and the coordinator merges them.

    Attributes:
        execution_id: The execution this step belongs to.
        step_execution_id: The visit being performed.
        workflow: Snapshot of the workflow.
        contact: Snapshot of the contact at the start of the step.
        data: The execution context accumulated so far.
        started_at: When the execution started.
        attempt: Delivery attempt of this step, starting at 1.

    Example:
        >>> context.get("event", {}).get("name")
        'purchase'
    """

    execution_id: UUID
    step_execution_id: UUID
    workflow: WorkflowSnapshot
    contact: ContactSnapshot
    data: dict[str, Any] = field(default_factory=dict)
    started_at: datetime | None = None
    attempt: int = 1

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value from the execution context.

        Args:
            key: The key to look up.
            default: Default value if key is not found.

        Returns:
            The value associated with the key, or the default.
        """
        return self.data.get(key, default)

    def template_variables(self) -> dict[str, Any]:
        """Build the variables available to email templates.

        Contact custom data overrides ``email``, and execution context
        overrides both.

        Returns:
            Flat mapping of variable name to value.
        """
        return {"email": self.contact.email, **self.contact.data, **self.data}
