"""Workflow graph operations and transition resolution.

This module provides graph-based operations over a workflow's steps and
transitions: structural validation for editors, reachability, cycle detection,
and the resolver the coordinator uses to pick the next step.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from contact_workflows.core.types import Branch, StepType

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from contact_workflows.core.definition import StepDefinition, TransitionDefinition

__all__ = ["TransitionResolver", "WorkflowGraph"]


class TransitionResolver:
    """Selects the outgoing transition a finished step follows.

    Candidates are ordered by ascending priority, then by transition ID, and
    the first one wins. Branch-tagged steps only consider transitions tagged
    with the chosen branch; every other step only considers untagged ones.
    """

    @staticmethod
    def _ordered(transitions: Iterable[TransitionDefinition]) -> list[TransitionDefinition]:
        return sorted(transitions, key=lambda t: (t.priority, str(t.id)))

    def select(
        self,
        transitions: Iterable[TransitionDefinition],
        branch: str | None = None,
    ) -> TransitionDefinition | None:
        """Pick the transition for a step that completed normally.

        Args:
            transitions: Outgoing transitions of the finished step.
            branch: Branch chosen by the step, if it branches.

        Returns:
            The winning transition, or None if the execution should complete.
        """
        for transition in self._ordered(transitions):
            if branch is not None:
                if transition.branch == branch:
                    return transition
            elif transition.is_default:
                return transition
        return None

    def select_timeout(self, transitions: Iterable[TransitionDefinition]) -> TransitionDefinition | None:
        """Pick the transition for a wait whose deadline passed.

        A transition tagged ``{"branch": "timeout"}`` or ``{"fallback": true}``
        wins; otherwise the default transition is followed.

        Args:
            transitions: Outgoing transitions of the WAIT_FOR_EVENT step.

        Returns:
            The winning transition, or None if the execution should complete.
        """
        ordered = self._ordered(transitions)
        for transition in ordered:
            if transition.is_timeout:
                return transition
        return self.select(ordered)


class WorkflowGraph:
    """Graph representation of a workflow for validation.

    Attributes:
        steps: Steps keyed by ID.
        transitions: All transitions of the workflow.
        _adjacency: Adjacency list mapping step IDs to outgoing transitions.
    """

    def __init__(
        self,
        steps: Sequence[StepDefinition],
        transitions: Sequence[TransitionDefinition],
    ) -> None:
        """Initialize a workflow graph.

        Args:
            steps: The workflow's steps.
            transitions: The workflow's transitions.
        """
        self.steps: dict[UUID, StepDefinition] = {step.id: step for step in steps}
        self.transitions = list(transitions)
        self._adjacency: dict[UUID, list[TransitionDefinition]] = {step_id: [] for step_id in self.steps}
        for transition in self.transitions:
            self._adjacency.setdefault(transition.from_step_id, []).append(transition)

    @property
    def triggers(self) -> list[StepDefinition]:
        """All TRIGGER steps in the graph."""
        return [step for step in self.steps.values() if step.type == StepType.TRIGGER]

    def outgoing(self, step_id: UUID) -> list[TransitionDefinition]:
        """Get the transitions leaving a step.

        Args:
            step_id: The source step.

        Returns:
            Outgoing transitions in definition order.
        """
        return list(self._adjacency.get(step_id, []))

    def reachable_from(self, start: UUID) -> set[UUID]:
        """Collect every step reachable from ``start``.

        Args:
            start: The step to start from.

        Returns:
            IDs of reachable steps, including ``start``.
        """
        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for transition in self._adjacency.get(current, []):
                if transition.to_step_id not in seen:
                    seen.add(transition.to_step_id)
                    queue.append(transition.to_step_id)
        return seen

    def find_cycles(self) -> list[list[UUID]]:
        """Find cycles in the graph.

        Cycles are permitted by the model; editors use this to warn about them.

        Returns:
            One list of step IDs per back edge found, in path order.
        """
        cycles: list[list[UUID]] = []
        state: dict[UUID, int] = {}
        path: list[UUID] = []

        def visit(step_id: UUID) -> None:
            state[step_id] = 1
            path.append(step_id)
            for transition in self._adjacency.get(step_id, []):
                target = transition.to_step_id
                if state.get(target) == 1:
                    cycles.append(path[path.index(target) :])
                elif target not in state and target in self.steps:
                    visit(target)
            path.pop()
            state[step_id] = 2

        for step_id in self.steps:
            if step_id not in state:
                visit(step_id)
        return cycles

    def validate(self) -> list[str]:
        """Validate the graph structure.

        Checks:
        - exactly one TRIGGER step exists
        - transitions reference steps of this workflow
        - branch tags fit their source step type
        - a CONDITION step has at most one transition per branch
        - every step is reachable from the TRIGGER
        - CONDITION steps have both a yes and a no branch

        Returns:
            List of validation error messages. Empty when the graph is valid.
        """
        errors: list[str] = []

        triggers = self.triggers
        if len(triggers) != 1:
            errors.append(f"Workflow must have exactly one TRIGGER step, found {len(triggers)}")

        for transition in self.transitions:
            source = self.steps.get(transition.from_step_id)
            if source is None:
                errors.append(f"Transition '{transition.id}' starts at unknown step '{transition.from_step_id}'")
                continue
            if transition.to_step_id not in self.steps:
                errors.append(f"Transition '{transition.id}' targets unknown step '{transition.to_step_id}'")
            errors.extend(self._check_branch_tag(source, transition))

        for step in self.steps.values():
            if step.type != StepType.CONDITION:
                continue
            branches = [t.branch for t in self._adjacency.get(step.id, []) if t.branch is not None]
            for branch in (Branch.YES, Branch.NO):
                count = branches.count(branch)
                if count > 1:
                    errors.append(f"CONDITION step '{step.name}' has {count} '{branch}' transitions")
                elif count == 0:
                    errors.append(f"CONDITION step '{step.name}' has no '{branch}' transition")

        if len(triggers) == 1:
            reachable = self.reachable_from(triggers[0].id)
            for step in self.steps.values():
                if step.id not in reachable:
                    errors.append(f"Step '{step.name}' is not reachable from the trigger")

        return errors

    @staticmethod
    def _check_branch_tag(source: StepDefinition, transition: TransitionDefinition) -> list[str]:
        branch = transition.branch
        if branch is None:
            return []
        if branch in (Branch.YES, Branch.NO):
            if source.type != StepType.CONDITION:
                return [f"Branch '{branch}' is only valid from a CONDITION step, not '{source.name}'"]
            return []
        if branch == Branch.TIMEOUT:
            if source.type != StepType.WAIT_FOR_EVENT:
                return [f"Branch 'timeout' is only valid from a WAIT_FOR_EVENT step, not '{source.name}'"]
            return []
        return [f"Unknown branch '{branch}' on transition '{transition.id}'"]
