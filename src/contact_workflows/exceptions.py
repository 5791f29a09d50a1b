"""Exception hierarchy for contact-workflows.

Errors fall into four groups:

- configuration errors (bad step config, invalid graph) are rejected at edit time;
- transient effect errors are retried by the queue layer with backoff;
- data errors (missing contact, workflow or execution) fail the execution
  when they happen mid-flight and are raised to callers otherwise;
- caller errors (disabled workflow, re-entry, already finished) are raised
  from the exposed capabilities.

Lost compare-and-swap races are never surfaced as exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

__all__ = (
    "ConditionConfigError",
    "ContactNotFoundError",
    "ExecutionAlreadyFinishedError",
    "ExecutionNotFoundError",
    "ReentryConflictError",
    "RetryStepError",
    "StepConfigError",
    "StepNotFoundError",
    "TransientStepError",
    "WorkflowDisabledError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
    "WorkflowsError",
)


class WorkflowsError(Exception):
    """Base exception for all contact-workflows errors.

    All exceptions raised by contact-workflows inherit from this class so callers
    can catch every engine error with a single except clause.
    """


class WorkflowNotFoundError(WorkflowsError):
    """Raised when a workflow does not exist.

    Attributes:
        workflow_id: The ID of the workflow that was not found.
    """

    def __init__(self, workflow_id: str | UUID) -> None:
        """Initialize the exception with workflow details.

        Args:
            workflow_id: The ID of the workflow that was not found.
        """
        self.workflow_id = workflow_id
        super().__init__(f"Workflow '{workflow_id}' not found")


class WorkflowDisabledError(WorkflowsError):
    """Raised when starting an execution of a disabled workflow.

    Attributes:
        workflow_id: The ID of the disabled workflow.
    """

    def __init__(self, workflow_id: str | UUID) -> None:
        """Initialize the exception with workflow details.

        Args:
            workflow_id: The ID of the disabled workflow.
        """
        self.workflow_id = workflow_id
        super().__init__(f"Workflow '{workflow_id}' is not enabled")


class StepNotFoundError(WorkflowsError):
    """Raised when a workflow step does not exist.

    Attributes:
        step_id: The ID of the step that was not found.
    """

    def __init__(self, step_id: str | UUID) -> None:
        """Initialize the exception with step details.

        Args:
            step_id: The ID of the step that was not found.
        """
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' not found")


class ContactNotFoundError(WorkflowsError):
    """Raised when the contact an execution targets does not exist.

    Attributes:
        contact_id: The ID of the missing contact.
    """

    def __init__(self, contact_id: str | UUID) -> None:
        """Initialize the exception with contact details.

        Args:
            contact_id: The ID of the missing contact.
        """
        self.contact_id = contact_id
        super().__init__(f"Contact '{contact_id}' not found")


class ExecutionNotFoundError(WorkflowsError):
    """Raised when a workflow execution does not exist.

    Attributes:
        execution_id: The ID of the execution that was not found.
    """

    def __init__(self, execution_id: str | UUID) -> None:
        """Initialize the exception with execution details.

        Args:
            execution_id: The ID of the execution that was not found.
        """
        self.execution_id = execution_id
        super().__init__(f"Workflow execution '{execution_id}' not found")


class ExecutionAlreadyFinishedError(WorkflowsError):
    """Raised when trying to modify an execution in a terminal state.

    Attributes:
        execution_id: The ID of the execution.
        status: The terminal status of the execution.
    """

    def __init__(self, execution_id: str | UUID, status: str) -> None:
        """Initialize the exception with execution state details.

        Args:
            execution_id: The ID of the execution.
            status: The terminal status of the execution.
        """
        self.execution_id = execution_id
        self.status = status
        super().__init__(f"Workflow execution '{execution_id}' is already {status}")


class ReentryConflictError(WorkflowsError):
    """Raised when a contact may not enter a workflow again.

    Non-re-entrant workflows allow one execution per contact ever. Re-entrant
    workflows allow one RUNNING execution per contact at a time.

    Attributes:
        workflow_id: The ID of the workflow.
        contact_id: The ID of the contact.
    """

    def __init__(self, workflow_id: str | UUID, contact_id: str | UUID) -> None:
        """Initialize the exception with workflow and contact details.

        Args:
            workflow_id: The ID of the workflow.
            contact_id: The ID of the contact.
        """
        self.workflow_id = workflow_id
        self.contact_id = contact_id
        super().__init__(f"Contact '{contact_id}' already has an execution of workflow '{workflow_id}'")


class WorkflowValidationError(WorkflowsError):
    """Raised when a workflow graph violates its structural rules.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = errors
        super().__init__(f"Workflow validation failed: {'; '.join(errors)}")


class StepConfigError(WorkflowsError):
    """Raised when a step's configuration does not match its type's schema.

    Attributes:
        step_type: The type of the step whose config is invalid.
        reason: What is wrong with the config.
    """

    def __init__(self, step_type: str, reason: str) -> None:
        """Initialize the exception with config details.

        Args:
            step_type: The type of the step whose config is invalid.
            reason: What is wrong with the config.
        """
        self.step_type = step_type
        self.reason = reason
        super().__init__(f"Invalid {step_type} config: {reason}")


class ConditionConfigError(StepConfigError):
    """Raised when a condition names an unknown field or operator, or lacks a value."""

    def __init__(self, reason: str) -> None:
        """Initialize the exception.

        Args:
            reason: What is wrong with the condition.
        """
        super().__init__("CONDITION", reason)


class TransientStepError(WorkflowsError):
    """Raised by step handlers when an external effect failed and may succeed later.

    Attributes:
        step_name: The name of the step whose effect failed.
        cause: The underlying exception, if any.
    """

    def __init__(self, step_name: str, reason: str, cause: Exception | None = None) -> None:
        """Initialize the exception with effect failure details.

        Args:
            step_name: The name of the step whose effect failed.
            reason: Human readable failure reason.
            cause: The underlying exception, if any.
        """
        self.step_name = step_name
        self.reason = reason
        self.cause = cause
        super().__init__(f"Step '{step_name}' failed: {reason}")


class RetryStepError(WorkflowsError):
    """Signal to the queue layer that a step job must be delivered again.

    Attributes:
        execution_id: The execution the step belongs to.
        step_id: The step to run again.
        attempt: The attempt that just failed.
        delay_ms: How long to wait before the next attempt.
    """

    def __init__(self, execution_id: UUID, step_id: UUID, attempt: int, delay_ms: int) -> None:
        """Initialize the retry signal.

        Args:
            execution_id: The execution the step belongs to.
            step_id: The step to run again.
            attempt: The attempt that just failed.
            delay_ms: How long to wait before the next attempt.
        """
        self.execution_id = execution_id
        self.step_id = step_id
        self.attempt = attempt
        self.delay_ms = delay_ms
        super().__init__(f"Retry step '{step_id}' of execution '{execution_id}' in {delay_ms}ms (attempt {attempt})")
