"""Workflow execution engine.

This module provides the coordinator that drives executions through their
graphs, the event correlator, the step handler registry and the in-process
scheduling gateway.
"""

from __future__ import annotations

from contact_workflows.engine.coordinator import ExecutionCoordinator
from contact_workflows.engine.correlator import CorrelationResult, EventCorrelator
from contact_workflows.engine.graph import TransitionResolver, WorkflowGraph
from contact_workflows.engine.local import LocalSchedulingGateway
from contact_workflows.engine.registry import StepHandlerRegistry
from contact_workflows.engine.scheduling import StepJob, TimeoutJob, run_job, step_job_key, timeout_job_key

__all__ = [
    "CorrelationResult",
    "EventCorrelator",
    "ExecutionCoordinator",
    "LocalSchedulingGateway",
    "StepHandlerRegistry",
    "StepJob",
    "TimeoutJob",
    "TransitionResolver",
    "WorkflowGraph",
    "run_job",
    "step_job_key",
    "timeout_job_key",
]
