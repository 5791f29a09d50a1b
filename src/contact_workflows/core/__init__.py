"""Core domain module for contact-workflows.

This module exports the building blocks shared by every other layer: types,
step configuration schemas, the condition evaluator, snapshots, events and
protocols.
"""

from __future__ import annotations

from contact_workflows.core.conditions import ConditionEvaluator, validate_condition
from contact_workflows.core.context import StepContext
from contact_workflows.core.definition import (
    ConditionConfig,
    DelayConfig,
    ExitConfig,
    SendEmailConfig,
    StepConfig,
    StepDefinition,
    TransitionDefinition,
    TriggerConfig,
    UpdateContactConfig,
    WaitForEventConfig,
    WebhookConfig,
    decode_step_config,
)
from contact_workflows.core.events import (
    ExecutionCancelled,
    ExecutionCompleted,
    ExecutionEvent,
    ExecutionFailed,
    ExecutionStarted,
    StepCompleted,
    StepParked,
    StepTimedOut,
)
from contact_workflows.core.models import (
    ContactSnapshot,
    ExecutionSnapshot,
    StepExecutionSnapshot,
    WorkflowSnapshot,
)
from contact_workflows.core.protocols import ContactStore, EmailDelivery, EventBus, SchedulingGateway
from contact_workflows.core.types import (
    Branch,
    ConditionOperator,
    Context,
    ExecutionStatus,
    StepExecutionStatus,
    StepType,
    TimeUnit,
)

__all__ = [
    "Branch",
    "ConditionConfig",
    "ConditionEvaluator",
    "ConditionOperator",
    "ContactSnapshot",
    "ContactStore",
    "Context",
    "DelayConfig",
    "EmailDelivery",
    "EventBus",
    "ExecutionCancelled",
    "ExecutionCompleted",
    "ExecutionEvent",
    "ExecutionFailed",
    "ExecutionSnapshot",
    "ExecutionStarted",
    "ExecutionStatus",
    "ExitConfig",
    "SchedulingGateway",
    "SendEmailConfig",
    "StepCompleted",
    "StepConfig",
    "StepContext",
    "StepDefinition",
    "StepExecutionSnapshot",
    "StepExecutionStatus",
    "StepParked",
    "StepTimedOut",
    "StepType",
    "TimeUnit",
    "TransitionDefinition",
    "TriggerConfig",
    "UpdateContactConfig",
    "WaitForEventConfig",
    "WebhookConfig",
    "WorkflowSnapshot",
    "decode_step_config",
    "validate_condition",
]
