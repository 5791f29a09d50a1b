"""Base step handler and step results for contact-workflows."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Union

from contact_workflows.core.types import StepType

if TYPE_CHECKING:
    from contact_workflows.core.context import StepContext
    from contact_workflows.core.definition import StepConfig, StepDefinition

__all__ = [
    "BaseStepHandler",
    "Continue",
    "Exit",
    "Fail",
    "StepResult",
    "Wait",
]


@dataclass(frozen=True)
class Continue:
    """The step finished; follow the next transition.

    Attributes:
        branch: Branch to follow, for branching steps.
        context_updates: Values to merge into the execution context.
        output: Output recorded on the step visit.
    """

    branch: str | None = None
    context_updates: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Wait:
    """Park the execution until an event arrives or the timer fires.

    Attributes:
        event_name: Event that resumes the execution, None for a pure timer.
        timeout_ms: Milliseconds until the timer fires.
    """

    event_name: str | None
    timeout_ms: int


@dataclass(frozen=True)
class Fail:
    """The step failed permanently; fail the execution."""

    reason: str


@dataclass(frozen=True)
class Exit:
    """End the execution as completed without following any transition."""

    reason: str


StepResult = Union[Continue, Wait, Fail, Exit]


class BaseStepHandler:
    """Base implementation shared by all step handlers.

    A handler performs exactly one step type's effect. It receives the step,
    its decoded config and a read-only context, and reports what the
    coordinator should do next by returning a ``StepResult``. Handlers raise
    ``TransientStepError`` for failures worth retrying; any other exception
    fails the execution.
    """

    step_type: ClassVar[StepType]
    """The step type this handler performs."""

    async def execute(
        self,
        step: StepDefinition,
        config: StepConfig,
        context: StepContext,
    ) -> StepResult:
        """Perform the step's effect.

        Args:
            step: The step being run.
            config: The step's decoded config.
            context: Execution, contact and workflow data.

        Returns:
            What the coordinator should do next.

        Raises:
            NotImplementedError: Must be implemented by subclasses.
        """
        msg = f"Handler for {self.step_type} must implement execute()"
        raise NotImplementedError(msg)
