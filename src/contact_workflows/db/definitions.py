"""Workflow definition service.

Editors build workflows through this service. It enforces the structural
rules that can be checked one edit at a time (valid step config, one TRIGGER,
branch tags that fit their source step) and exposes full graph validation for
the rules that only hold once the graph is complete.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

from contact_workflows.core.definition import StepDefinition, TransitionDefinition, decode_step_config
from contact_workflows.core.types import Branch, StepType
from contact_workflows.db.models import WorkflowModel, WorkflowStepModel, WorkflowTransitionModel
from contact_workflows.db.repositories import (
    WorkflowRepository,
    WorkflowStepRepository,
    WorkflowTransitionRepository,
)
from contact_workflows.engine.graph import WorkflowGraph
from contact_workflows.exceptions import StepNotFoundError, WorkflowNotFoundError, WorkflowValidationError

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["WorkflowDefinitionService"]

logger = structlog.get_logger(__name__)


def _step_definition(model: WorkflowStepModel) -> StepDefinition:
    return StepDefinition(
        id=model.id,
        workflow_id=model.workflow_id,
        type=StepType(model.type),
        name=model.name,
        config=dict(model.config or {}),
        template_id=model.template_id,
    )


def _transition_definition(model: WorkflowTransitionModel) -> TransitionDefinition:
    return TransitionDefinition(
        id=model.id,
        from_step_id=model.from_step_id,
        to_step_id=model.to_step_id,
        condition=model.condition,
        priority=model.priority,
    )


class WorkflowDefinitionService:
    """Creates and edits workflow graphs.

    Example:
        >>> service = WorkflowDefinitionService(session_maker)
        >>> workflow_id, trigger_id = await service.create_workflow(project_id, "Welcome", "signup")
        >>> email_id = await service.add_step(workflow_id, StepType.SEND_EMAIL, "Welcome email", {...})
        >>> await service.add_transition(trigger_id, email_id)
        >>> await service.set_enabled(workflow_id, True)
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the service.

        Args:
            session_maker: Factory of sessions to run edits in.
        """
        self.session_maker = session_maker

    async def create_workflow(
        self,
        project_id: UUID,
        name: str,
        trigger_event: str | None = None,
        *,
        description: str | None = None,
        enabled: bool = False,
        allow_reentry: bool = False,
    ) -> tuple[UUID, UUID]:
        """Create a workflow together with its TRIGGER step.

        Args:
            project_id: The owning project.
            name: Display name.
            trigger_event: Event that starts the workflow, if event triggered.
            description: Optional description.
            enabled: Whether new executions may start right away.
            allow_reentry: Whether a contact may run the workflow more than once.

        Returns:
            Tuple of (workflow ID, trigger step ID).
        """
        workflow_id = uuid4()
        trigger_id = uuid4()

        async with self.session_maker() as session:
            await WorkflowRepository(session=session).add(
                WorkflowModel(
                    id=workflow_id,
                    project_id=project_id,
                    name=name,
                    description=description,
                    trigger_event=trigger_event,
                    enabled=enabled,
                    allow_reentry=allow_reentry,
                ),
            )
            await WorkflowStepRepository(session=session).add(
                WorkflowStepModel(
                    id=trigger_id,
                    workflow_id=workflow_id,
                    type=StepType.TRIGGER,
                    name="Trigger",
                    config={"event_name": trigger_event} if trigger_event else {},
                ),
            )
            await session.commit()

        logger.info("workflow_created", workflow_id=str(workflow_id), trigger_event=trigger_event)
        return workflow_id, trigger_id

    async def add_step(
        self,
        workflow_id: UUID,
        step_type: StepType,
        name: str,
        config: dict[str, Any] | None = None,
        *,
        template_id: UUID | None = None,
        position: dict[str, Any] | None = None,
    ) -> UUID:
        """Add a step to a workflow.

        Args:
            workflow_id: The workflow.
            step_type: The step's type.
            name: Display name.
            config: Type-specific configuration.
            template_id: Email template for SEND_EMAIL steps.
            position: Editor layout metadata.

        Returns:
            The new step's ID.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            StepConfigError: If the config does not fit the step type.
            WorkflowValidationError: If a second TRIGGER step is added.
        """
        config = dict(config or {})
        decode_step_config(step_type, config, template_id=template_id)
        step_id = uuid4()

        async with self.session_maker() as session:
            if await WorkflowRepository(session=session).get_one_or_none(id=workflow_id) is None:
                raise WorkflowNotFoundError(workflow_id)

            steps = WorkflowStepRepository(session=session)
            if step_type == StepType.TRIGGER and await steps.find_trigger(workflow_id) is not None:
                raise WorkflowValidationError(["Workflow already has a TRIGGER step"])

            await steps.add(
                WorkflowStepModel(
                    id=step_id,
                    workflow_id=workflow_id,
                    type=step_type,
                    name=name,
                    config=config,
                    template_id=template_id,
                    position=position,
                ),
            )
            await session.commit()

        return step_id

    async def update_step_config(self, step_id: UUID, config: dict[str, Any]) -> None:
        """Replace a step's configuration.

        Running executions pick up the new config the next time they enter the step.

        Raises:
            StepNotFoundError: If the step does not exist.
            StepConfigError: If the config does not fit the step type.
        """
        async with self.session_maker() as session:
            step = await WorkflowStepRepository(session=session).get_one_or_none(id=step_id)
            if step is None:
                raise StepNotFoundError(step_id)
            decode_step_config(StepType(step.type), config, template_id=step.template_id)
            step.config = dict(config)
            await session.commit()

    async def add_transition(
        self,
        from_step_id: UUID,
        to_step_id: UUID,
        *,
        branch: str | None = None,
        priority: int = 0,
    ) -> UUID:
        """Connect two steps of the same workflow.

        Args:
            from_step_id: Source step.
            to_step_id: Target step.
            branch: Branch tag: ``yes``/``no`` from a CONDITION, ``timeout`` from
                a WAIT_FOR_EVENT.
            priority: Ascending tie-break among candidate transitions.

        Returns:
            The new transition's ID.

        Raises:
            StepNotFoundError: If either step does not exist.
            WorkflowValidationError: If the steps belong to different workflows,
                the branch tag does not fit the source step, or the CONDITION
                already has a transition for the branch.
        """
        transition_id = uuid4()

        async with self.session_maker() as session:
            steps = WorkflowStepRepository(session=session)
            source = await steps.get_one_or_none(id=from_step_id)
            if source is None:
                raise StepNotFoundError(from_step_id)
            target = await steps.get_one_or_none(id=to_step_id)
            if target is None:
                raise StepNotFoundError(to_step_id)
            if source.workflow_id != target.workflow_id:
                raise WorkflowValidationError(["Transitions must connect steps of the same workflow"])

            transition = TransitionDefinition(
                id=transition_id,
                from_step_id=from_step_id,
                to_step_id=to_step_id,
                condition={"branch": branch} if branch else None,
                priority=priority,
            )
            errors = WorkflowGraph._check_branch_tag(_step_definition(source), transition)
            if errors:
                raise WorkflowValidationError(errors)

            transitions = WorkflowTransitionRepository(session=session)
            if branch in (Branch.YES, Branch.NO):
                existing = [_transition_definition(t) for t in await transitions.find_from_step(from_step_id)]
                if any(t.branch == branch for t in existing):
                    raise WorkflowValidationError([f"CONDITION step '{source.name}' already has a '{branch}' transition"])

            await transitions.add(
                WorkflowTransitionModel(
                    id=transition_id,
                    from_step_id=from_step_id,
                    to_step_id=to_step_id,
                    condition=transition.condition,
                    priority=priority,
                ),
            )
            await session.commit()

        return transition_id

    async def load_graph(self, workflow_id: UUID) -> WorkflowGraph:
        """Load a workflow's steps and transitions into a graph.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
        """
        async with self.session_maker() as session:
            if await WorkflowRepository(session=session).get_one_or_none(id=workflow_id) is None:
                raise WorkflowNotFoundError(workflow_id)
            steps = [_step_definition(s) for s in await WorkflowStepRepository(session=session).find_by_workflow(workflow_id)]
            transitions = [
                _transition_definition(t)
                for t in await WorkflowTransitionRepository(session=session).find_by_workflow(workflow_id)
            ]
        return WorkflowGraph(steps, transitions)

    async def validate_workflow(self, workflow_id: UUID) -> list[str]:
        """Validate a workflow's graph.

        Args:
            workflow_id: The workflow.

        Returns:
            Validation error messages. Empty when the graph is valid.
        """
        return (await self.load_graph(workflow_id)).validate()

    async def set_enabled(self, workflow_id: UUID, enabled: bool, *, validate: bool = True) -> None:
        """Enable or disable a workflow.

        Disabling stops new executions from starting; running executions continue.

        Args:
            workflow_id: The workflow.
            enabled: The new flag.
            validate: Refuse to enable a workflow whose graph is invalid.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            WorkflowValidationError: If enabling an invalid graph.
        """
        if enabled and validate:
            errors = await self.validate_workflow(workflow_id)
            if errors:
                raise WorkflowValidationError(errors)

        async with self.session_maker() as session:
            workflow = await WorkflowRepository(session=session).get_one_or_none(id=workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id)
            workflow.enabled = enabled
            await session.commit()

        logger.info("workflow_enabled" if enabled else "workflow_disabled", workflow_id=str(workflow_id))
