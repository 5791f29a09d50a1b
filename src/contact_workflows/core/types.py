"""Core type definitions for contact-workflows.

This module defines the enums and type aliases used throughout the engine.
Enum values are the strings persisted in the database and exposed over HTTP.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, TypeAlias

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "SYNCHRONOUS_STEP_TYPES",
    "TERMINAL_EXECUTION_STATUSES",
    "TERMINAL_STEP_STATUSES",
    "Branch",
    "ConditionOperator",
    "Context",
    "ExecutionStatus",
    "StepExecutionStatus",
    "StepType",
    "TimeUnit",
]


class StepType(StrEnum):
    """Kinds of steps a workflow graph is built from.

    Attributes:
        TRIGGER: Entry point of every workflow, one per graph.
        SEND_EMAIL: Hands an email off to the delivery service.
        DELAY: Parks the execution for a fixed duration.
        WAIT_FOR_EVENT: Parks the execution until a named event or a timeout.
        CONDITION: Branches on contact or execution data (yes/no).
        WEBHOOK: Calls an external HTTP endpoint.
        UPDATE_CONTACT: Merges values into the contact's custom data.
        EXIT: Ends the execution with a reason.
    """

    TRIGGER = "TRIGGER"
    SEND_EMAIL = "SEND_EMAIL"
    DELAY = "DELAY"
    WAIT_FOR_EVENT = "WAIT_FOR_EVENT"
    CONDITION = "CONDITION"
    WEBHOOK = "WEBHOOK"
    UPDATE_CONTACT = "UPDATE_CONTACT"
    EXIT = "EXIT"


SYNCHRONOUS_STEP_TYPES = frozenset(
    {StepType.TRIGGER, StepType.CONDITION, StepType.UPDATE_CONTACT, StepType.EXIT},
)
"""Step types the coordinator may run inline instead of through the queue.

WEBHOOK is left out on purpose: it does network I/O with its own retry
budget, so it always gets a job of its own and a slow endpoint cannot hold
up an inline chain.
"""


class ExecutionStatus(StrEnum):
    """Overall status of one contact's run through a workflow.

    Attributes:
        RUNNING: The execution is progressing or parked on a wait.
        COMPLETED: The execution reached an EXIT step or ran out of transitions.
        CANCELLED: The execution was cancelled by a caller.
        FAILED: A step failed permanently.
    """

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


TERMINAL_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.CANCELLED, ExecutionStatus.FAILED},
)


class StepExecutionStatus(StrEnum):
    """Status of one visit to one step.

    Attributes:
        PENDING: The step is parked waiting for a timer or an event.
        RUNNING: The step's effect is being performed.
        SUCCEEDED: The step finished and the execution moved on.
        FAILED: The step failed permanently.
        TIMED_OUT: A WAIT_FOR_EVENT step's deadline passed without the event.
        CANCELLED: The execution was cancelled while this step was open.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"


TERMINAL_STEP_STATUSES = frozenset(
    {
        StepExecutionStatus.SUCCEEDED,
        StepExecutionStatus.FAILED,
        StepExecutionStatus.TIMED_OUT,
        StepExecutionStatus.CANCELLED,
    },
)


class Branch(StrEnum):
    """Branch tags carried by transition conditions."""

    YES = "yes"
    NO = "no"
    TIMEOUT = "timeout"


class ConditionOperator(StrEnum):
    """Operators understood by the condition evaluator."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"
    WITHIN = "within"


class TimeUnit(StrEnum):
    """Units accepted by DELAY steps and ``within`` conditions."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    @property
    def milliseconds(self) -> int:
        """Length of one unit in milliseconds."""
        return _UNIT_MS[self]


_UNIT_MS = {
    TimeUnit.MINUTES: 60_000,
    TimeUnit.HOURS: 3_600_000,
    TimeUnit.DAYS: 86_400_000,
}

# Type aliases for execution data
Context: TypeAlias = dict[str, Any]
"""Type alias for the execution context dictionary."""
