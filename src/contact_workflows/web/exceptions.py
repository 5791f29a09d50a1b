"""Exception handling for workflow web endpoints.

This module maps engine errors onto HTTP responses for the workflow REST API.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from contact_workflows.exceptions import (
    ContactNotFoundError,
    ExecutionAlreadyFinishedError,
    ExecutionNotFoundError,
    ReentryConflictError,
    StepConfigError,
    StepNotFoundError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
    WorkflowsError,
    WorkflowValidationError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

__all__ = ["error_status_code", "workflows_error_handler"]

_STATUS_CODES: tuple[tuple[type[WorkflowsError], int, str], ...] = (
    (WorkflowNotFoundError, HTTP_404_NOT_FOUND, "workflow_not_found"),
    (StepNotFoundError, HTTP_404_NOT_FOUND, "step_not_found"),
    (ContactNotFoundError, HTTP_404_NOT_FOUND, "contact_not_found"),
    (ExecutionNotFoundError, HTTP_404_NOT_FOUND, "execution_not_found"),
    (WorkflowDisabledError, HTTP_400_BAD_REQUEST, "workflow_disabled"),
    (WorkflowValidationError, HTTP_400_BAD_REQUEST, "workflow_invalid"),
    (StepConfigError, HTTP_400_BAD_REQUEST, "step_config_invalid"),
    (ReentryConflictError, HTTP_409_CONFLICT, "reentry_conflict"),
    (ExecutionAlreadyFinishedError, HTTP_409_CONFLICT, "execution_finished"),
)


def error_status_code(exc: WorkflowsError) -> tuple[int, str]:
    """Map an engine error to an HTTP status code and error slug.

    Args:
        exc: The engine error.

    Returns:
        Tuple of (status code, error slug).
    """
    for error_type, status_code, slug in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code, slug
    return HTTP_500_INTERNAL_SERVER_ERROR, "workflow_error"


def workflows_error_handler(
    _request: Request,
    exc: WorkflowsError,
) -> Response:
    """Exception handler for WorkflowsError.

    Args:
        request: The Litestar request object.
        exc: The engine error.

    Returns:
        Response with error details.
    """
    status_code, slug = error_status_code(exc)
    content: dict[str, object] = {"error": slug, "message": str(exc)}
    if isinstance(exc, WorkflowValidationError):
        content["errors"] = exc.errors
    return Response(
        content=content,
        status_code=status_code,
        media_type="application/json",
    )
