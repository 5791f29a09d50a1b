"""Database persistence layer for contact-workflows.

This module provides SQLAlchemy models and repositories for workflows, their
executions and step history, the workflow definition service, and the
reference contact store.
"""

from __future__ import annotations

from contact_workflows.db.contacts import SQLAlchemyContactStore
from contact_workflows.db.definitions import WorkflowDefinitionService
from contact_workflows.db.models import (
    ContactModel,
    WorkflowExecutionModel,
    WorkflowModel,
    WorkflowStepExecutionModel,
    WorkflowStepModel,
    WorkflowTransitionModel,
)
from contact_workflows.db.repositories import (
    ContactRepository,
    WorkflowExecutionRepository,
    WorkflowRepository,
    WorkflowStepExecutionRepository,
    WorkflowStepRepository,
    WorkflowTransitionRepository,
)

__all__ = [
    "ContactModel",
    "ContactRepository",
    "SQLAlchemyContactStore",
    "WorkflowDefinitionService",
    "WorkflowExecutionModel",
    "WorkflowExecutionRepository",
    "WorkflowModel",
    "WorkflowRepository",
    "WorkflowStepExecutionModel",
    "WorkflowStepExecutionRepository",
    "WorkflowStepModel",
    "WorkflowStepRepository",
    "WorkflowTransitionModel",
    "WorkflowTransitionRepository",
]
