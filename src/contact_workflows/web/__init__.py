"""Web API for contact-workflows.

This module provides REST API controllers for starting, inspecting and
cancelling executions and for tracking contact events. The API is registered
automatically by WorkflowEnginePlugin when ``enable_api=True`` (the default).

Example:
    Basic usage::

        from litestar import Litestar
        from contact_workflows import WorkflowEnginePlugin, WorkflowEnginePluginConfig

        app = Litestar(
            plugins=[
                WorkflowEnginePlugin(
                    config=WorkflowEnginePluginConfig(
                        coordinator=coordinator,
                        api_path_prefix="/automation",
                    )
                ),
            ],
        )

    With authentication guards::

        config = WorkflowEnginePluginConfig(
            coordinator=coordinator,
            api_guards=[require_auth_guard],
        )
"""

from __future__ import annotations

from contact_workflows.web.controllers import EventController, ExecutionController
from contact_workflows.web.dto import (
    CancelExecutionDTO,
    CorrelationDTO,
    ExecutionDetailDTO,
    ExecutionDTO,
    ExecutionListDTO,
    StartExecutionDTO,
    StepExecutionDTO,
    TrackEventDTO,
)
from contact_workflows.web.exceptions import error_status_code, workflows_error_handler

__all__ = [
    "CancelExecutionDTO",
    "CorrelationDTO",
    "EventController",
    "ExecutionController",
    "ExecutionDTO",
    "ExecutionDetailDTO",
    "ExecutionListDTO",
    "StartExecutionDTO",
    "StepExecutionDTO",
    "TrackEventDTO",
    "error_status_code",
    "workflows_error_handler",
]
