"""Repository implementations for workflow persistence.

This module provides async repositories for the engine's models using
advanced-alchemy's repository pattern. Every write that coordinates concurrent
workers is a conditional ``UPDATE ... WHERE`` whose affected row count tells
the caller whether it won.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, select, update

from contact_workflows.core.types import ExecutionStatus, StepExecutionStatus, StepType
from contact_workflows.db.models import (
    ContactModel,
    WorkflowExecutionModel,
    WorkflowModel,
    WorkflowStepExecutionModel,
    WorkflowStepModel,
    WorkflowTransitionModel,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

__all__ = [
    "ContactRepository",
    "WorkflowExecutionRepository",
    "WorkflowRepository",
    "WorkflowStepExecutionRepository",
    "WorkflowStepRepository",
    "WorkflowTransitionRepository",
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowRepository(SQLAlchemyAsyncRepository[WorkflowModel]):
    """Repository for workflow CRUD operations."""

    model_type = WorkflowModel

    async def find_triggered_by(self, project_id: UUID, event_name: str) -> Sequence[WorkflowModel]:
        """Find the enabled workflows of a project started by an event.

        Args:
            project_id: The project.
            event_name: The event's name.

        Returns:
            Matching workflows, oldest first.
        """
        stmt = (
            select(WorkflowModel)
            .where(
                and_(
                    WorkflowModel.project_id == project_id,
                    WorkflowModel.trigger_event == event_name,
                    WorkflowModel.enabled == True,  # noqa: E712
                )
            )
            .order_by(WorkflowModel.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class WorkflowStepRepository(SQLAlchemyAsyncRepository[WorkflowStepModel]):
    """Repository for workflow step CRUD operations."""

    model_type = WorkflowStepModel

    async def find_by_workflow(self, workflow_id: UUID) -> Sequence[WorkflowStepModel]:
        """List the steps of a workflow.

        Args:
            workflow_id: The workflow.

        Returns:
            Steps in creation order.
        """
        stmt = (
            select(WorkflowStepModel)
            .where(WorkflowStepModel.workflow_id == workflow_id)
            .order_by(WorkflowStepModel.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_trigger(self, workflow_id: UUID) -> WorkflowStepModel | None:
        """Get the TRIGGER step of a workflow.

        Args:
            workflow_id: The workflow.

        Returns:
            The trigger step or None.
        """
        stmt = (
            select(WorkflowStepModel)
            .where(
                and_(
                    WorkflowStepModel.workflow_id == workflow_id,
                    WorkflowStepModel.type == StepType.TRIGGER,
                )
            )
            .order_by(WorkflowStepModel.created_at)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class WorkflowTransitionRepository(SQLAlchemyAsyncRepository[WorkflowTransitionModel]):
    """Repository for workflow transition CRUD operations."""

    model_type = WorkflowTransitionModel

    async def find_from_step(self, step_id: UUID) -> Sequence[WorkflowTransitionModel]:
        """List the transitions leaving a step.

        Args:
            step_id: The source step.

        Returns:
            Transitions ordered by priority, then ID.
        """
        stmt = (
            select(WorkflowTransitionModel)
            .where(WorkflowTransitionModel.from_step_id == step_id)
            .order_by(WorkflowTransitionModel.priority, WorkflowTransitionModel.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_by_workflow(self, workflow_id: UUID) -> Sequence[WorkflowTransitionModel]:
        """List every transition of a workflow.

        Args:
            workflow_id: The workflow.

        Returns:
            Transitions ordered by priority, then ID.
        """
        stmt = (
            select(WorkflowTransitionModel)
            .join(WorkflowStepModel, WorkflowStepModel.id == WorkflowTransitionModel.from_step_id)
            .where(WorkflowStepModel.workflow_id == workflow_id)
            .order_by(WorkflowTransitionModel.priority, WorkflowTransitionModel.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class WorkflowExecutionRepository(SQLAlchemyAsyncRepository[WorkflowExecutionModel]):
    """Repository for workflow execution operations.

    Provides the guarded writes the coordinator relies on: moving the
    execution to another step and finishing it.
    """

    model_type = WorkflowExecutionModel

    async def find_conflicting(
        self,
        workflow_id: UUID,
        contact_id: UUID,
        *,
        running_only: bool,
    ) -> WorkflowExecutionModel | None:
        """Find an execution that blocks the contact from entering the workflow.

        Args:
            workflow_id: The workflow.
            contact_id: The contact.
            running_only: Only RUNNING executions conflict (re-entrant workflows).

        Returns:
            A conflicting execution or None.
        """
        conditions = [
            WorkflowExecutionModel.workflow_id == workflow_id,
            WorkflowExecutionModel.contact_id == contact_id,
        ]

        if running_only:
            conditions.append(WorkflowExecutionModel.status == ExecutionStatus.RUNNING)

        stmt = select(WorkflowExecutionModel).where(and_(*conditions)).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_workflow(
        self,
        workflow_id: UUID,
        status: ExecutionStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowExecutionModel], int]:
        """Find executions of a workflow with an optional status filter.

        Args:
            workflow_id: The workflow.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (executions, total_count).
        """
        conditions = [WorkflowExecutionModel.workflow_id == workflow_id]

        if status:
            conditions.append(WorkflowExecutionModel.status == status)

        return await self.list_and_count(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="started_at", sort_order="desc"),
        )

    async def move_step(
        self,
        execution_id: UUID,
        *,
        from_step_id: UUID,
        sequence: int,
        to_step_id: UUID,
        context: dict[str, Any],
    ) -> bool:
        """Move a RUNNING execution from one step to the next.

        Args:
            execution_id: The execution.
            from_step_id: The step the caller believes is current.
            sequence: The step sequence the caller believes is current.
            to_step_id: The next step.
            context: The execution context to store.

        Returns:
            True if this caller moved the execution.
        """
        stmt = (
            update(WorkflowExecutionModel)
            .where(
                and_(
                    WorkflowExecutionModel.id == execution_id,
                    WorkflowExecutionModel.current_step_id == from_step_id,
                    WorkflowExecutionModel.step_sequence == sequence,
                    WorkflowExecutionModel.status == ExecutionStatus.RUNNING,
                )
            )
            .values(
                current_step_id=to_step_id,
                step_sequence=sequence + 1,
                context=context,
                updated_at=_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def finish(
        self,
        execution_id: UUID,
        status: ExecutionStatus,
        *,
        expected_step_id: UUID | None = None,
        expected_sequence: int | None = None,
        context: dict[str, Any] | None = None,
        exit_reason: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Move a RUNNING execution to a terminal status.

        The re-entry marker is cleared on the way out, so only running
        executions hold it.

        Args:
            execution_id: The execution.
            status: The terminal status.
            expected_step_id: Only finish if this step is still current.
            expected_sequence: Only finish if this sequence is still current.
            context: The execution context to store, if changed.
            exit_reason: Reason to record.
            error: Failure reason to record.

        Returns:
            True if this caller finished the execution.
        """
        conditions = [
            WorkflowExecutionModel.id == execution_id,
            WorkflowExecutionModel.status == ExecutionStatus.RUNNING,
        ]

        if expected_step_id is not None:
            conditions.append(WorkflowExecutionModel.current_step_id == expected_step_id)
        if expected_sequence is not None:
            conditions.append(WorkflowExecutionModel.step_sequence == expected_sequence)

        now = _now()
        values: dict[str, Any] = {
            "status": status,
            "completed_at": now,
            "updated_at": now,
            "exclusivity_key": None,
        }
        if context is not None:
            values["context"] = context
        if exit_reason is not None:
            values["exit_reason"] = exit_reason
        if error is not None:
            values["error"] = error

        stmt = (
            update(WorkflowExecutionModel)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class WorkflowStepExecutionRepository(SQLAlchemyAsyncRepository[WorkflowStepExecutionModel]):
    """Repository for step visit records."""

    model_type = WorkflowStepExecutionModel

    async def get_visit(self, execution_id: UUID, sequence: int) -> WorkflowStepExecutionModel | None:
        """Get the visit record of an execution's step sequence.

        Args:
            execution_id: The execution.
            sequence: The step sequence.

        Returns:
            The visit or None if the step has not been entered yet.
        """
        stmt = select(WorkflowStepExecutionModel).where(
            and_(
                WorkflowStepExecutionModel.execution_id == execution_id,
                WorkflowStepExecutionModel.sequence == sequence,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_execution(self, execution_id: UUID) -> Sequence[WorkflowStepExecutionModel]:
        """List the visits of an execution.

        Args:
            execution_id: The execution.

        Returns:
            Visits in the order they happened.
        """
        stmt = (
            select(WorkflowStepExecutionModel)
            .where(WorkflowStepExecutionModel.execution_id == execution_id)
            .order_by(WorkflowStepExecutionModel.sequence)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_open(self, execution_id: UUID) -> Sequence[WorkflowStepExecutionModel]:
        """List the PENDING and RUNNING visits of an execution."""
        stmt = select(WorkflowStepExecutionModel).where(
            and_(
                WorkflowStepExecutionModel.execution_id == execution_id,
                WorkflowStepExecutionModel.status.in_(
                    [StepExecutionStatus.PENDING, StepExecutionStatus.RUNNING],
                ),
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_waiting(
        self,
        project_id: UUID,
        contact_id: UUID,
        event_name: str,
    ) -> Sequence[tuple[WorkflowStepExecutionModel, WorkflowStepModel]]:
        """Find parked visits waiting for an event of a contact.

        Args:
            project_id: The project the event belongs to.
            contact_id: The contact the event is about.
            event_name: The event's name.

        Returns:
            Pairs of (visit, step) whose execution is still RUNNING.
        """
        stmt = (
            select(WorkflowStepExecutionModel, WorkflowStepModel)
            .join(WorkflowStepModel, WorkflowStepModel.id == WorkflowStepExecutionModel.step_id)
            .join(WorkflowExecutionModel, WorkflowExecutionModel.id == WorkflowStepExecutionModel.execution_id)
            .join(WorkflowModel, WorkflowModel.id == WorkflowExecutionModel.workflow_id)
            .where(
                and_(
                    WorkflowStepExecutionModel.status == StepExecutionStatus.PENDING,
                    WorkflowStepExecutionModel.waiting_for_event == event_name,
                    WorkflowExecutionModel.status == ExecutionStatus.RUNNING,
                    WorkflowExecutionModel.contact_id == contact_id,
                    WorkflowModel.project_id == project_id,
                )
            )
            .order_by(WorkflowStepExecutionModel.started_at)
        )
        result = await self.session.execute(stmt)
        return [(visit, step) for visit, step in result.all()]

    async def transition(
        self,
        step_execution_id: UUID,
        from_statuses: Iterable[StepExecutionStatus],
        to_status: StepExecutionStatus,
        *,
        output: dict[str, Any] | None = None,
        error: str | None = None,
        waiting_for_event: str | None = None,
        wake_at: datetime | None = None,
    ) -> bool:
        """Change a visit's status if it is still in one of the expected statuses.

        Args:
            step_execution_id: The visit.
            from_statuses: Statuses the caller expects the visit to be in.
            to_status: The new status.
            output: Output to record.
            error: Error to record.
            waiting_for_event: Event a parked visit waits for.
            wake_at: When a parked visit's timer fires.

        Returns:
            True if this caller changed the status.
        """
        now = _now()
        values: dict[str, Any] = {"status": to_status, "updated_at": now}
        if to_status != StepExecutionStatus.PENDING:
            values["completed_at"] = now
        else:
            values["waiting_for_event"] = waiting_for_event
            values["wake_at"] = wake_at
        if output is not None:
            values["output"] = output
        if error is not None:
            values["error"] = error

        stmt = (
            update(WorkflowStepExecutionModel)
            .where(
                and_(
                    WorkflowStepExecutionModel.id == step_execution_id,
                    WorkflowStepExecutionModel.status.in_(list(from_statuses)),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def note_error(self, step_execution_id: UUID, error: str) -> None:
        """Record the error of an attempt that will be retried."""
        stmt = (
            update(WorkflowStepExecutionModel)
            .where(WorkflowStepExecutionModel.id == step_execution_id)
            .values(error=error, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)


class ContactRepository(SQLAlchemyAsyncRepository[ContactModel]):
    """Repository for contacts."""

    model_type = ContactModel

    async def get_for_update(self, contact_id: UUID) -> ContactModel | None:
        """Load a contact and lock its row until the transaction ends.

        Args:
            contact_id: The contact.

        Returns:
            The contact or None.
        """
        stmt = select(ContactModel).where(ContactModel.id == contact_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
