"""Contact Workflows - Marketing automation engine for Litestar.

This package runs contacts of an email platform through workflow graphs built
in a visual editor: send emails, wait for time or for events, branch on
contact attributes, call webhooks and update contact data.

Key Features:
    - Typed step graph with edit-time validation
    - Durable, step-by-step execution driven by a job queue
    - Exactly-once step effects under duplicate job delivery
    - Event correlation for triggers and waits
    - In-process and ARQ scheduling gateways

Example:
    >>> from contact_workflows import ExecutionCoordinator, EventCorrelator
    >>>
    >>> coordinator = ExecutionCoordinator(
    ...     session_maker, gateway=gateway, contacts=contacts, handlers=handlers
    ... )
    >>> correlator = EventCorrelator(coordinator)
    >>> await correlator.handle_event(project_id, "signup", contact_id=contact_id)
"""

from __future__ import annotations

from contact_workflows.__metadata__ import __project__, __version__
from contact_workflows.config import EngineConfig
from contact_workflows.engine.coordinator import ExecutionCoordinator
from contact_workflows.engine.correlator import EventCorrelator
from contact_workflows.exceptions import (
    ConditionConfigError,
    ContactNotFoundError,
    ExecutionAlreadyFinishedError,
    ExecutionNotFoundError,
    ReentryConflictError,
    RetryStepError,
    StepConfigError,
    StepNotFoundError,
    TransientStepError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
    WorkflowsError,
    WorkflowValidationError,
)
from contact_workflows.plugin import WorkflowEnginePlugin, WorkflowEnginePluginConfig

__all__ = (
    "ConditionConfigError",
    "ContactNotFoundError",
    "EngineConfig",
    "EventCorrelator",
    "ExecutionAlreadyFinishedError",
    "ExecutionCoordinator",
    "ExecutionNotFoundError",
    "ReentryConflictError",
    "RetryStepError",
    "StepConfigError",
    "StepNotFoundError",
    "TransientStepError",
    "WorkflowDisabledError",
    "WorkflowEnginePlugin",
    "WorkflowEnginePluginConfig",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
    "WorkflowsError",
    "__project__",
    "__version__",
)
