"""SQLAlchemy models for workflow persistence.

This module defines the database models of the engine:
- WorkflowModel: A per-project automation with its trigger and flags
- WorkflowStepModel: A typed step of a workflow graph
- WorkflowTransitionModel: A directed edge between two steps
- WorkflowExecutionModel: One contact's run through a workflow
- WorkflowStepExecutionModel: One visit to one step within an execution
- ContactModel: Minimal contact table backing the reference contact store
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contact_workflows.core.types import ExecutionStatus, StepExecutionStatus, StepType

__all__ = [
    "ContactModel",
    "WorkflowExecutionModel",
    "WorkflowModel",
    "WorkflowStepExecutionModel",
    "WorkflowStepModel",
    "WorkflowTransitionModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowModel(UUIDAuditBase):
    """A workflow belonging to a project.

    Attributes:
        project_id: Owning project.
        name: Display name.
        description: Human-readable description.
        trigger_event: Event name that starts the workflow, if event triggered.
        enabled: Whether new executions may start.
        allow_reentry: Whether a contact may run the workflow more than once.
        steps: The workflow's steps.
    """

    __tablename__ = "workflows"
    __table_args__ = (
        Index("ix_workflows_project_id", "project_id"),
        Index("ix_workflows_project_trigger", "project_id", "trigger_event", "enabled"),
    )

    project_id: Mapped[UUID] = mapped_column(Uuid)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger_event: Mapped[str | None] = mapped_column(String(255), nullable=True)
    enabled: Mapped[bool] = mapped_column(default=False)
    allow_reentry: Mapped[bool] = mapped_column(default=False)

    # Relationships
    steps: Mapped[list[WorkflowStepModel]] = relationship(
        back_populates="workflow",
        lazy="noload",
        cascade="all, delete-orphan",
    )


class WorkflowStepModel(UUIDAuditBase):
    """A typed step of a workflow graph.

    Attributes:
        workflow_id: Owning workflow.
        type: Step type.
        name: Display name.
        config: Type-specific configuration as JSON.
        template_id: Email template reference for SEND_EMAIL steps.
        position: Editor layout metadata, ignored by the engine.
    """

    __tablename__ = "workflow_steps"
    __table_args__ = (Index("ix_workflow_steps_workflow_id", "workflow_id"),)

    workflow_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
    )
    type: Mapped[StepType] = mapped_column(
        Enum(StepType, native_enum=False, length=50),
    )
    name: Mapped[str] = mapped_column(String(255))
    config: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    template_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    position: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Relationships
    workflow: Mapped[WorkflowModel] = relationship(back_populates="steps")


class WorkflowTransitionModel(UUIDAuditBase):
    """A directed edge between two steps of the same workflow.

    Attributes:
        from_step_id: Source step.
        to_step_id: Target step.
        condition: Optional branch tag, e.g. ``{"branch": "yes"}``.
        priority: Ascending tie-break among candidate transitions.
    """

    __tablename__ = "workflow_transitions"
    __table_args__ = (
        Index("ix_workflow_transitions_from_step_id", "from_step_id"),
        Index("ix_workflow_transitions_to_step_id", "to_step_id"),
    )

    from_step_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflow_steps.id", ondelete="CASCADE"),
    )
    to_step_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflow_steps.id", ondelete="CASCADE"),
    )
    condition: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=0)


class WorkflowExecutionModel(UUIDAuditBase):
    """One contact's run through a workflow.

    ``current_step_id`` and ``step_sequence`` are only ever changed with a
    conditional update guarded by their previous values, so concurrent
    deliveries of the same job cannot both move the execution.

    Attributes:
        workflow_id: The workflow being run.
        contact_id: The contact the run is for.
        status: Current execution status.
        current_step_id: The step the execution is at.
        step_sequence: Counter bumped on every step move.
        context: Accumulated execution data as JSON.
        exit_reason: Reason recorded by an EXIT step or cancellation.
        error: Failure reason of a FAILED execution.
        exclusivity_key: Unique marker held while the execution is RUNNING.
        started_at: When the execution started.
        completed_at: When the execution finished.
    """

    __tablename__ = "workflow_executions"
    __table_args__ = (
        Index("ix_workflow_executions_workflow_status", "workflow_id", "status"),
        Index("ix_workflow_executions_contact_id", "contact_id"),
        Index("ix_workflow_executions_exclusivity_key", "exclusivity_key", unique=True),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
    )
    contact_id: Mapped[UUID] = mapped_column(Uuid)
    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(ExecutionStatus, native_enum=False, length=50),
        default=ExecutionStatus.RUNNING,
    )
    current_step_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    step_sequence: Mapped[int] = mapped_column(Integer, default=0)
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    exit_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    exclusivity_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    # Relationships
    step_executions: Mapped[list[WorkflowStepExecutionModel]] = relationship(
        back_populates="execution",
        lazy="noload",
        order_by="WorkflowStepExecutionModel.sequence",
    )


class WorkflowStepExecutionModel(UUIDAuditBase):
    """Record of one visit to one step within an execution.

    ``(execution_id, sequence)`` is unique: whoever inserts the row for a visit
    first owns it, and duplicate deliveries lose on the constraint.

    Attributes:
        execution_id: The execution.
        step_id: The visited step.
        sequence: The execution's ``step_sequence`` when the step was entered.
        status: Visit status.
        waiting_for_event: Event name a parked WAIT_FOR_EVENT visit waits for.
        wake_at: When the parked visit's timer fires.
        output: Output recorded by the handler.
        error: Failure reason.
        started_at: When the visit started.
        completed_at: When the visit finished.
    """

    __tablename__ = "workflow_step_executions"
    __table_args__ = (
        UniqueConstraint("execution_id", "sequence", name="uq_step_executions_execution_sequence"),
        Index("ix_step_executions_status_event", "status", "waiting_for_event"),
    )

    execution_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
    )
    step_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflow_steps.id", ondelete="CASCADE"),
    )
    sequence: Mapped[int] = mapped_column(Integer)
    status: Mapped[StepExecutionStatus] = mapped_column(
        Enum(StepExecutionStatus, native_enum=False, length=50),
        default=StepExecutionStatus.RUNNING,
    )
    waiting_for_event: Mapped[str | None] = mapped_column(String(255), nullable=True)
    wake_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    output: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    # Relationships
    execution: Mapped[WorkflowExecutionModel] = relationship(back_populates="step_executions")


class ContactModel(UUIDAuditBase):
    """A contact of a project.

    Attributes:
        project_id: Owning project.
        email: Email address.
        subscribed: Whether the contact accepts marketing email.
        data: Custom data attributes as JSON.
    """

    __tablename__ = "contacts"
    __table_args__ = (Index("ix_contacts_project_email", "project_id", "email", unique=True),)

    project_id: Mapped[UUID] = mapped_column(Uuid)
    email: Mapped[str] = mapped_column(String(320))
    subscribed: Mapped[bool] = mapped_column(default=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
