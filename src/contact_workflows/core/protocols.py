"""Core protocols for contact-workflows.

The engine talks to the durable queue, the email service, contact storage and
the host's event bus only through these structural interfaces.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from contact_workflows.core.events import ExecutionEvent
    from contact_workflows.core.models import ContactSnapshot
    from contact_workflows.engine.scheduling import Job

__all__ = ["ContactStore", "EmailDelivery", "EventBus", "SchedulingGateway"]


@runtime_checkable
class SchedulingGateway(Protocol):
    """Durable job queue the coordinator hands continuation and timeout jobs to.

    Every job carries a deterministic dedupe key. Enqueueing a job whose key is
    already outstanding must be a no-op, and cancelling a key that is not
    outstanding must be harmless.

    Example:
        >>> await gateway.enqueue_after(TimeoutJob(execution_id, step_id, visit_id), 60_000)
        >>> await gateway.cancel(f"workflow-timeout-{visit_id}")
    """

    async def enqueue_now(self, job: Job) -> bool:
        """Schedule a job for immediate delivery.

        Args:
            job: The job to schedule.

        Returns:
            False if a job with the same dedupe key was already outstanding.
        """
        ...

    async def enqueue_after(self, job: Job, delay_ms: int) -> bool:
        """Schedule a job for delivery after a delay.

        Args:
            job: The job to schedule.
            delay_ms: Delay in milliseconds.

        Returns:
            False if a job with the same dedupe key was already outstanding.
        """
        ...

    async def cancel(self, dedupe_key: str) -> bool:
        """Remove a scheduled job.

        Args:
            dedupe_key: Key of the job to remove.

        Returns:
            True if a job was removed.
        """
        ...


@runtime_checkable
class EmailDelivery(Protocol):
    """Email rendering and transport service."""

    async def send(
        self,
        *,
        contact: ContactSnapshot,
        template_id: str | None,
        subject: str | None,
        body: str | None,
        variables: dict[str, Any],
        execution_id: UUID,
        step_execution_id: UUID,
        from_address: str | None = None,
        reply_to: str | None = None,
    ) -> str:
        """Hand an email off for delivery.

        Implementations should treat ``step_execution_id`` as an idempotency
        key: the same visit may be delivered more than once.

        Returns:
            A delivery handle, e.g. the provider's message ID.
        """
        ...


@runtime_checkable
class ContactStore(Protocol):
    """Read and targeted-write access to contacts."""

    async def get(self, contact_id: UUID) -> ContactSnapshot | None:
        """Load a contact, or None if it does not exist."""
        ...

    async def merge_data(self, contact_id: UUID, updates: dict[str, Any]) -> ContactSnapshot:
        """Merge values into a contact's custom data.

        Only the given keys are written; concurrent writers of other keys are
        not overwritten.

        Raises:
            ContactNotFoundError: If the contact does not exist.
        """
        ...


@runtime_checkable
class EventBus(Protocol):
    """Receiver of execution lifecycle events."""

    async def emit(self, event: ExecutionEvent) -> None:
        """Publish an event."""
        ...
