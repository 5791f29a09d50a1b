"""Conditional branching step."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from contact_workflows.core.conditions import ConditionEvaluator
from contact_workflows.core.types import Branch, StepType
from contact_workflows.steps.base import BaseStepHandler, Continue

if TYPE_CHECKING:
    from contact_workflows.core.context import StepContext
    from contact_workflows.core.definition import ConditionConfig, StepDefinition

__all__ = ["ConditionHandler"]


class ConditionHandler(BaseStepHandler):
    """Evaluates the step's condition and picks the ``yes`` or ``no`` branch.

    Example:
        >>> # config: {"field": "data.plan", "operator": "equals", "value": "pro"}
        >>> result = await ConditionHandler().execute(step, config, context)
        >>> result.branch
        'yes'
    """

    step_type = StepType.CONDITION

    def __init__(self, evaluator: ConditionEvaluator | None = None) -> None:
        """Initialize the handler.

        Args:
            evaluator: Evaluator to use. A default one is created if omitted.
        """
        self.evaluator = evaluator or ConditionEvaluator()

    async def execute(self, step: StepDefinition, config: ConditionConfig, context: StepContext) -> Continue:
        result = self.evaluator.evaluate(config, contact=context.contact, context=context.data)
        actual = self.evaluator.actual_value(config, contact=context.contact, context=context.data)
        branch = Branch.YES if result else Branch.NO
        return Continue(
            branch=branch,
            output={
                "field": config.field,
                "operator": str(config.operator),
                "actualValue": actual.isoformat() if isinstance(actual, datetime) else actual,
                "expectedValue": config.value,
                "result": result,
                "branch": str(branch),
            },
        )
