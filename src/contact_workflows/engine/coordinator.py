"""Execution coordinator.

The coordinator is the only writer of an execution's status and current step.
It advances an execution one step at a time in response to queue jobs, and
keeps no state of its own between calls: everything it needs is read from the
database, and every state change is a guarded write that loses quietly when
another worker got there first.

One ``advance`` call:

1. claims the visit of the current step by inserting its step execution row;
2. runs the step's handler outside any transaction;
3. applies the handler's result: park, fail, exit, or follow a transition;
4. runs following synchronous steps inline and hands anything else to the
   scheduling gateway.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog
from advanced_alchemy.exceptions import IntegrityError as RepositoryIntegrityError
from sqlalchemy.exc import IntegrityError

from contact_workflows.config import EngineConfig
from contact_workflows.core.context import StepContext
from contact_workflows.core.definition import StepDefinition, TransitionDefinition, decode_step_config
from contact_workflows.core.events import (
    ExecutionCancelled,
    ExecutionCompleted,
    ExecutionFailed,
    ExecutionStarted,
    StepCompleted,
    StepParked,
    StepTimedOut,
)
from contact_workflows.core.models import ExecutionSnapshot, StepExecutionSnapshot, WorkflowSnapshot
from contact_workflows.core.types import (
    SYNCHRONOUS_STEP_TYPES,
    TERMINAL_STEP_STATUSES,
    ExecutionStatus,
    StepExecutionStatus,
    StepType,
)
from contact_workflows.db.models import WorkflowExecutionModel, WorkflowStepExecutionModel
from contact_workflows.db.repositories import (
    WorkflowExecutionRepository,
    WorkflowRepository,
    WorkflowStepExecutionRepository,
    WorkflowStepRepository,
    WorkflowTransitionRepository,
)
from contact_workflows.engine.graph import TransitionResolver
from contact_workflows.engine.scheduling import StepJob, TimeoutJob, step_job_key, timeout_job_key
from contact_workflows.exceptions import (
    ContactNotFoundError,
    ExecutionAlreadyFinishedError,
    ExecutionNotFoundError,
    ReentryConflictError,
    RetryStepError,
    StepConfigError,
    TransientStepError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from contact_workflows.steps.base import Continue, Exit, Fail, StepResult, Wait

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from contact_workflows.core.events import ExecutionEvent
    from contact_workflows.core.protocols import ContactStore, EventBus, SchedulingGateway
    from contact_workflows.db.models import WorkflowModel, WorkflowStepModel, WorkflowTransitionModel
    from contact_workflows.engine.registry import StepHandlerRegistry

__all__ = ["ExecutionCoordinator"]

logger = structlog.get_logger(__name__)


class _StaleState(Exception):
    """A guarded write affected no rows; another worker moved the execution first."""


@dataclass(frozen=True)
class _Next:
    step_id: UUID
    step_type: StepType


@dataclass(frozen=True)
class _Claim:
    execution_id: UUID
    visit_id: UUID
    sequence: int
    contact_id: UUID
    step: StepDefinition
    workflow: WorkflowSnapshot
    context: dict[str, Any]
    started_at: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _missing_definition(workflow: WorkflowModel | None, step: WorkflowStepModel | None) -> str | None:
    if workflow is None:
        return "Workflow"
    if step is None:
        return "Step"
    return None


def _to_step(model: WorkflowStepModel) -> StepDefinition:
    return StepDefinition(
        id=model.id,
        workflow_id=model.workflow_id,
        type=StepType(model.type),
        name=model.name,
        config=dict(model.config or {}),
        template_id=model.template_id,
    )


def _to_transition(model: WorkflowTransitionModel) -> TransitionDefinition:
    return TransitionDefinition(
        id=model.id,
        from_step_id=model.from_step_id,
        to_step_id=model.to_step_id,
        condition=model.condition,
        priority=model.priority,
    )


def _to_workflow(model: WorkflowModel) -> WorkflowSnapshot:
    return WorkflowSnapshot(
        id=model.id,
        project_id=model.project_id,
        name=model.name,
        trigger_event=model.trigger_event,
        enabled=model.enabled,
        allow_reentry=model.allow_reentry,
    )


def _to_snapshot(
    execution: WorkflowExecutionModel,
    visits: Sequence[tuple[WorkflowStepExecutionModel, WorkflowStepModel | None]] = (),
) -> ExecutionSnapshot:
    return ExecutionSnapshot(
        id=execution.id,
        workflow_id=execution.workflow_id,
        contact_id=execution.contact_id,
        status=ExecutionStatus(execution.status),
        current_step_id=execution.current_step_id,
        context=dict(execution.context or {}),
        started_at=execution.started_at,
        completed_at=execution.completed_at,
        exit_reason=execution.exit_reason,
        error=execution.error,
        steps=[
            StepExecutionSnapshot(
                id=visit.id,
                step_id=visit.step_id,
                step_type=StepType(step.type) if step else None,
                step_name=step.name if step else None,
                sequence=visit.sequence,
                status=StepExecutionStatus(visit.status),
                waiting_for_event=visit.waiting_for_event,
                wake_at=visit.wake_at,
                output=visit.output,
                error=visit.error,
                started_at=visit.started_at,
                completed_at=visit.completed_at,
            )
            for visit, step in visits
        ],
    )


class ExecutionCoordinator:
    """Drives executions through their workflow graphs.

    Attributes:
        config: Engine configuration.
        gateway: Queue continuation and timeout jobs are handed to.
        contacts: Source of contact snapshots.
        handlers: Step handlers by step type.
        event_bus: Optional receiver of lifecycle events.

    Example:
        >>> coordinator = ExecutionCoordinator(
        ...     session_maker,
        ...     gateway=LocalSchedulingGateway(),
        ...     contacts=SQLAlchemyContactStore(session_maker),
        ...     handlers=StepHandlerRegistry.with_defaults(email_delivery=mailer, contacts=contacts),
        ... )
        >>> execution_id = await coordinator.start_execution(workflow_id, contact_id)
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        gateway: SchedulingGateway,
        contacts: ContactStore,
        handlers: StepHandlerRegistry,
        event_bus: EventBus | None = None,
        config: EngineConfig | None = None,
        resolver: TransitionResolver | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            session_maker: Factory of sessions; one session per unit of work.
            gateway: Scheduling gateway.
            contacts: Contact store.
            handlers: Step handler registry.
            event_bus: Optional event bus.
            config: Engine configuration.
            resolver: Transition resolver.
        """
        self.session_maker = session_maker
        self.gateway = gateway
        self.contacts = contacts
        self.handlers = handlers
        self.event_bus = event_bus
        self.config = config or EngineConfig()
        self.resolver = resolver or TransitionResolver()

    # ------------------------------------------------------------------
    # Exposed capabilities
    # ------------------------------------------------------------------

    async def start_execution(
        self,
        workflow_id: UUID,
        contact_id: UUID,
        context: dict[str, Any] | None = None,
    ) -> UUID:
        """Start a contact's run through a workflow.

        The execution row is created synchronously; the TRIGGER step runs
        through the queue.

        Args:
            workflow_id: The workflow.
            contact_id: The contact.
            context: Initial execution context.

        Returns:
            The new execution's ID.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            WorkflowDisabledError: If the workflow is not enabled.
            ContactNotFoundError: If the contact does not exist in the workflow's project.
            WorkflowValidationError: If the workflow has no TRIGGER step.
            ReentryConflictError: If the contact may not enter the workflow again.
        """
        contact = await self.contacts.get(contact_id)

        async with self.session_maker() as session:
            workflow = await WorkflowRepository(session=session).get_one_or_none(id=workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id)
            if not workflow.enabled:
                raise WorkflowDisabledError(workflow_id)
            if contact is None or contact.project_id != workflow.project_id:
                raise ContactNotFoundError(contact_id)

            trigger = await WorkflowStepRepository(session=session).find_trigger(workflow_id)
            if trigger is None:
                raise WorkflowValidationError([f"Workflow '{workflow_id}' has no TRIGGER step"])

            executions = WorkflowExecutionRepository(session=session)
            conflict = await executions.find_conflicting(
                workflow_id,
                contact_id,
                running_only=workflow.allow_reentry,
            )
            if conflict is not None:
                raise ReentryConflictError(workflow_id, contact_id)

            execution_id = uuid4()
            trigger_id = trigger.id
            initial_context = dict(context or {})
            execution = WorkflowExecutionModel(
                id=execution_id,
                workflow_id=workflow_id,
                contact_id=contact_id,
                status=ExecutionStatus.RUNNING,
                current_step_id=trigger_id,
                step_sequence=0,
                context=initial_context,
                exclusivity_key=f"{workflow_id}:{contact_id}",
                started_at=_now(),
            )
            try:
                await executions.add(execution)
                await session.commit()
            except (IntegrityError, RepositoryIntegrityError) as e:
                await session.rollback()
                raise ReentryConflictError(workflow_id, contact_id) from e

        logger.info(
            "execution_started",
            execution_id=str(execution_id),
            workflow_id=str(workflow_id),
            contact_id=str(contact_id),
        )
        await self.gateway.enqueue_now(StepJob(execution_id, trigger_id))
        await self._emit(
            [
                ExecutionStarted(
                    execution_id=execution_id,
                    timestamp=_now(),
                    workflow_id=workflow_id,
                    contact_id=contact_id,
                    context=initial_context,
                ),
            ],
        )
        return execution_id

    async def advance(self, execution_id: UUID, step_id: UUID, *, attempt: int = 1) -> None:
        """Run the current step of an execution, then any synchronous steps after it.

        Silently does nothing when the execution is no longer running, when
        ``step_id`` is not its current step, or when this visit was already
        performed.

        Args:
            execution_id: The execution.
            step_id: The step the job was enqueued for.
            attempt: Delivery attempt of this job, starting at 1.

        Raises:
            RetryStepError: If a step hit a transient failure and attempts remain.
        """
        next_step_id = step_id
        for _ in range(self.config.max_inline_steps):
            following = await self._run_step(execution_id, next_step_id, attempt=attempt)
            if following is None:
                return
            if following.step_type not in SYNCHRONOUS_STEP_TYPES:
                await self.gateway.enqueue_now(StepJob(execution_id, following.step_id))
                return
            next_step_id = following.step_id
            attempt = 1

        logger.info(
            "inline_limit_reached",
            execution_id=str(execution_id),
            step_id=str(next_step_id),
            limit=self.config.max_inline_steps,
        )
        await self.gateway.enqueue_now(StepJob(execution_id, next_step_id))

    async def process_timeout(self, execution_id: UUID, step_id: UUID, step_execution_id: UUID) -> None:
        """Fire the timer of a parked DELAY or WAIT_FOR_EVENT visit.

        DELAY visits succeed and follow the default transition. WAIT_FOR_EVENT
        visits time out and follow the timeout transition if there is one.
        Does nothing if the visit is no longer parked. Fails the execution if
        the parked step or its workflow was deleted in the meantime.

        Args:
            execution_id: The execution.
            step_id: The parked step.
            step_execution_id: The parked visit.
        """
        log = logger.bind(execution_id=str(execution_id), step_execution_id=str(step_execution_id))

        async with self.session_maker() as session:
            execution = await WorkflowExecutionRepository(session=session).get_one_or_none(id=execution_id)
            if (
                execution is None
                or execution.status != ExecutionStatus.RUNNING
                or execution.current_step_id != step_id
            ):
                log.debug("timeout_ignored", reason="execution moved on")
                return

            step = await WorkflowStepRepository(session=session).get_one_or_none(id=step_id)
            workflow = await WorkflowRepository(session=session).get_one_or_none(id=execution.workflow_id)
            missing = _missing_definition(workflow, step)
            if missing is None:
                visit = await WorkflowStepExecutionRepository(session=session).get_one_or_none(id=step_execution_id)
                if (
                    visit is None
                    or visit.status != StepExecutionStatus.PENDING
                    or visit.execution_id != execution_id
                    or visit.step_id != step_id
                    or visit.sequence != execution.step_sequence
                ):
                    log.debug("timeout_ignored", reason="visit not parked")
                    return
                fired = await self._fire_timer(session, execution, visit, step, workflow)

        if missing is not None:
            await self._fail(execution_id, f"{missing} was deleted", step_id=step_id)
            return
        if fired is None:
            log.debug("timeout_lost_race")
            return

        events, following, timed_out = fired
        log.info("timer_fired", step_id=str(step_id), timed_out=timed_out)
        await self._emit(events)
        await self._continue(execution_id, following)

    async def _fire_timer(
        self,
        session: AsyncSession,
        execution: WorkflowExecutionModel,
        visit: WorkflowStepExecutionModel,
        step: WorkflowStepModel,
        workflow: WorkflowModel,
    ) -> tuple[list[ExecutionEvent], _Next | None, bool] | None:
        execution_id = execution.id
        events: list[ExecutionEvent] = []
        timed_out = step.type == StepType.WAIT_FOR_EVENT
        transitions = [
            _to_transition(t) for t in await WorkflowTransitionRepository(session=session).find_from_step(step.id)
        ]
        if timed_out:
            new_status = StepExecutionStatus.TIMED_OUT
            chosen = self.resolver.select_timeout(transitions)
            events.append(StepTimedOut(execution_id, _now(), step_id=step.id, step_execution_id=visit.id))
        else:
            new_status = StepExecutionStatus.SUCCEEDED
            chosen = self.resolver.select(transitions)
            events.append(StepCompleted(execution_id, _now(), step_id=step.id, step_type=str(step.type)))

        try:
            if not await WorkflowStepExecutionRepository(session=session).transition(
                visit.id,
                [StepExecutionStatus.PENDING],
                new_status,
                output={**(visit.output or {}), "timedOut": timed_out},
            ):
                raise _StaleState
            following = await self._move_on(
                session,
                execution_id=execution_id,
                sequence=execution.step_sequence,
                from_step_id=step.id,
                workflow=_to_workflow(workflow),
                transition=chosen,
                context=dict(execution.context or {}),
                events=events,
            )
            await session.commit()
        except _StaleState:
            await session.rollback()
            return None
        return events, following, timed_out

    async def resume_from_event(self, step_execution_id: UUID, event: dict[str, Any]) -> bool:
        """Resume a visit parked on WAIT_FOR_EVENT because its event arrived.

        The event record is stored under ``context["event"]`` and the step's
        default transition is followed. The pending timeout job is cancelled.
        If the parked step or its workflow was deleted, the execution fails
        instead.

        Args:
            step_execution_id: The parked visit.
            event: Event record with ``name``, ``data`` and ``receivedAt``.

        Returns:
            True if this call resumed the execution, False if the visit was no
            longer parked (e.g. its timer fired first).
        """
        log = logger.bind(step_execution_id=str(step_execution_id), event=event.get("name"))
        events: list[ExecutionEvent] = []

        async with self.session_maker() as session:
            visits = WorkflowStepExecutionRepository(session=session)
            visit = await visits.get_one_or_none(id=step_execution_id)
            if visit is None or visit.status != StepExecutionStatus.PENDING:
                return False

            execution_id = visit.execution_id
            step_id = visit.step_id
            execution = await WorkflowExecutionRepository(session=session).get_one_or_none(id=execution_id)
            if (
                execution is None
                or execution.status != ExecutionStatus.RUNNING
                or execution.current_step_id != step_id
                or execution.step_sequence != visit.sequence
            ):
                return False

            step = await WorkflowStepRepository(session=session).get_one_or_none(id=step_id)
            workflow = await WorkflowRepository(session=session).get_one_or_none(id=execution.workflow_id)
            missing = _missing_definition(workflow, step)
            if missing is None:
                transitions = [
                    _to_transition(t)
                    for t in await WorkflowTransitionRepository(session=session).find_from_step(step_id)
                ]
                chosen = self.resolver.select(transitions)
                context = {**(execution.context or {}), "event": event}
                events.append(
                    StepCompleted(
                        execution_id,
                        _now(),
                        step_id=step_id,
                        step_type=str(StepType.WAIT_FOR_EVENT),
                        output={"event": event.get("name")},
                    ),
                )

                try:
                    if not await visits.transition(
                        visit.id,
                        [StepExecutionStatus.PENDING],
                        StepExecutionStatus.SUCCEEDED,
                        output={**(visit.output or {}), "event": event.get("name"), "timedOut": False},
                    ):
                        raise _StaleState
                    following = await self._move_on(
                        session,
                        execution_id=execution_id,
                        sequence=execution.step_sequence,
                        from_step_id=step_id,
                        workflow=_to_workflow(workflow),
                        transition=chosen,
                        context=context,
                        events=events,
                    )
                    await session.commit()
                except _StaleState:
                    await session.rollback()
                    log.debug("resume_lost_race")
                    return False

        if missing is not None:
            await self._fail(execution_id, f"{missing} was deleted", step_id=step_id)
            return False

        await self.gateway.cancel(timeout_job_key(step_execution_id))
        log.info("execution_resumed", execution_id=str(execution_id))
        await self._emit(events)
        await self._continue(execution_id, following)
        return True

    async def cancel_execution(self, execution_id: UUID, reason: str | None = None) -> ExecutionSnapshot:
        """Cancel a running execution.

        Open visits are marked CANCELLED and their scheduled jobs removed.

        Args:
            execution_id: The execution.
            reason: Reason to record. Defaults to ``"cancelled"``.

        Returns:
            The cancelled execution.

        Raises:
            ExecutionNotFoundError: If the execution does not exist.
            ExecutionAlreadyFinishedError: If the execution already finished.
        """
        reason = reason or "cancelled"

        async with self.session_maker() as session:
            executions = WorkflowExecutionRepository(session=session)
            execution = await executions.get_one_or_none(id=execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id)
            if execution.status != ExecutionStatus.RUNNING:
                raise ExecutionAlreadyFinishedError(execution_id, str(execution.status))

            keys = [step_job_key(execution_id, execution.current_step_id)] if execution.current_step_id else []

            if not await executions.finish(
                execution_id,
                ExecutionStatus.CANCELLED,
                exit_reason=reason,
            ):
                await session.rollback()
                raise ExecutionAlreadyFinishedError(execution_id, "finished")

            visits = WorkflowStepExecutionRepository(session=session)
            for visit in await visits.find_open(execution_id):
                if visit.status == StepExecutionStatus.PENDING:
                    keys.append(timeout_job_key(visit.id))
                await visits.transition(
                    visit.id,
                    [StepExecutionStatus.PENDING, StepExecutionStatus.RUNNING],
                    StepExecutionStatus.CANCELLED,
                    error=reason,
                )
            await session.commit()

        for key in keys:
            await self.gateway.cancel(key)

        logger.info("execution_cancelled", execution_id=str(execution_id), reason=reason)
        await self._emit([ExecutionCancelled(execution_id, _now(), reason=reason)])
        return await self.get_execution(execution_id)

    async def get_execution(self, execution_id: UUID) -> ExecutionSnapshot:
        """Load an execution with its step history.

        Args:
            execution_id: The execution.

        Returns:
            The execution snapshot.

        Raises:
            ExecutionNotFoundError: If the execution does not exist.
        """
        async with self.session_maker() as session:
            execution = await WorkflowExecutionRepository(session=session).get_one_or_none(id=execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id)
            steps = {
                step.id: step for step in await WorkflowStepRepository(session=session).find_by_workflow(
                    execution.workflow_id,
                )
            }
            visits = await WorkflowStepExecutionRepository(session=session).find_by_execution(execution_id)
            return _to_snapshot(execution, [(visit, steps.get(visit.step_id)) for visit in visits])

    async def list_executions(
        self,
        workflow_id: UUID,
        status: ExecutionStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[ExecutionSnapshot], int]:
        """List the executions of a workflow, newest first.

        Args:
            workflow_id: The workflow.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (executions without step history, total count).
        """
        async with self.session_maker() as session:
            executions, total = await WorkflowExecutionRepository(session=session).find_by_workflow(
                workflow_id,
                status=status,
                limit=limit,
                offset=offset,
            )
            return [_to_snapshot(execution) for execution in executions], total

    # ------------------------------------------------------------------
    # Step processing
    # ------------------------------------------------------------------

    async def _run_step(self, execution_id: UUID, step_id: UUID, *, attempt: int) -> _Next | None:
        claim = await self._claim(execution_id, step_id, attempt=attempt)
        if claim is None:
            return None

        log = logger.bind(
            execution_id=str(execution_id),
            step_id=str(step_id),
            step_type=str(claim.step.type),
            attempt=attempt,
        )

        contact = await self.contacts.get(claim.contact_id)
        if contact is None:
            return await self._apply(claim, Fail(str(ContactNotFoundError(claim.contact_id))))

        try:
            config = decode_step_config(claim.step.type, claim.step.config, template_id=claim.step.template_id)
            handler = self.handlers.get(claim.step.type)
        except (StepConfigError, KeyError) as e:
            log.warning("step_misconfigured", error=str(e))
            return await self._apply(claim, Fail(str(e)))

        context = StepContext(
            execution_id=execution_id,
            step_execution_id=claim.visit_id,
            workflow=claim.workflow,
            contact=contact,
            data=claim.context,
            started_at=claim.started_at,
            attempt=attempt,
        )

        try:
            result = await handler.execute(claim.step, config, context)
        except TransientStepError as e:
            if attempt < self.config.max_attempts:
                delay_ms = self.config.retry_delay_ms(attempt)
                async with self.session_maker() as session:
                    await WorkflowStepExecutionRepository(session=session).note_error(claim.visit_id, str(e))
                    await session.commit()
                log.warning("step_retry_scheduled", error=str(e), delay_ms=delay_ms)
                raise RetryStepError(execution_id, step_id, attempt, delay_ms) from e
            log.warning("step_attempts_exhausted", error=str(e))
            result = Fail(f"{e.reason} (gave up after {attempt} attempts)")
        except Exception as e:
            log.exception("step_failed")
            result = Fail(f"{type(e).__name__}: {e}")

        return await self._apply(claim, result)

    async def _claim(self, execution_id: UUID, step_id: UUID, *, attempt: int) -> _Claim | None:
        log = logger.bind(execution_id=str(execution_id), step_id=str(step_id))

        async with self.session_maker() as session:
            execution = await WorkflowExecutionRepository(session=session).get_one_or_none(id=execution_id)
            if execution is None or execution.status != ExecutionStatus.RUNNING:
                log.debug("advance_ignored", reason="execution not running")
                return None
            if execution.current_step_id != step_id:
                log.debug("advance_ignored", reason="not the current step")
                await self._reissue_continuation(session, execution)
                return None

            workflow = await WorkflowRepository(session=session).get_one_or_none(id=execution.workflow_id)
            step = await WorkflowStepRepository(session=session).get_one_or_none(id=step_id)
            missing = _missing_definition(workflow, step)
            if missing is None:
                claim = await self._insert_visit(session, execution, workflow, step, attempt=attempt)

        if missing is not None:
            await self._fail(execution_id, f"{missing} was deleted", step_id=step_id)
            return None
        return claim

    async def _reissue_continuation(self, session: AsyncSession, execution: WorkflowExecutionModel) -> None:
        """Re-enqueue the job of the current step if it looks lost.

        Called when a job arrives for a step the execution has already left.
        Without a visit at the current sequence the continuation job never
        ran, so it is enqueued again. A RUNNING visit is taken over with a
        later attempt once it has been idle for ``stale_visit_ms``. The dedupe
        key turns both into no-ops while the original job is outstanding.
        """
        current_step_id = execution.current_step_id
        if current_step_id is None:
            return
        visit = await WorkflowStepExecutionRepository(session=session).get_visit(execution.id, execution.step_sequence)
        if visit is None:
            await self.gateway.enqueue_now(StepJob(execution.id, current_step_id))
        elif visit.status == StepExecutionStatus.RUNNING:
            idle_ms = int((_now() - visit.updated_at).total_seconds() * 1000)
            await self.gateway.enqueue_after(
                StepJob(execution.id, current_step_id, attempt=2),
                max(self.config.stale_visit_ms - idle_ms, 0),
            )
        else:
            return
        logger.info("continuation_reissued", execution_id=str(execution.id), step_id=str(current_step_id))

    async def _insert_visit(
        self,
        session: AsyncSession,
        execution: WorkflowExecutionModel,
        workflow: WorkflowModel,
        step: WorkflowStepModel,
        *,
        attempt: int,
    ) -> _Claim | None:
        execution_id = execution.id
        step_id = step.id
        log = logger.bind(execution_id=str(execution_id), step_id=str(step_id))

        sequence = execution.step_sequence
        visits = WorkflowStepExecutionRepository(session=session)
        visit = await visits.get_visit(execution_id, sequence)
        claim_kwargs: dict[str, Any] = {
            "execution_id": execution_id,
            "sequence": sequence,
            "contact_id": execution.contact_id,
            "step": _to_step(step),
            "workflow": _to_workflow(workflow),
            "context": dict(execution.context or {}),
            "started_at": execution.started_at,
        }

        if visit is not None:
            if visit.status in TERMINAL_STEP_STATUSES:
                log.debug("advance_ignored", reason="visit already finished")
                return None
            if visit.status == StepExecutionStatus.PENDING:
                await self._reissue_timeout(execution_id, step_id, visit)
                return None
            if attempt <= 1:
                # A first delivery while the visit is running belongs to a concurrent worker
                log.debug("advance_ignored", reason="visit in progress")
                return None
            return _Claim(visit_id=visit.id, **claim_kwargs)

        visit_id = uuid4()
        try:
            await visits.add(
                WorkflowStepExecutionModel(
                    id=visit_id,
                    execution_id=execution_id,
                    step_id=step_id,
                    sequence=sequence,
                    status=StepExecutionStatus.RUNNING,
                    started_at=_now(),
                ),
            )
            await session.commit()
        except (IntegrityError, RepositoryIntegrityError):
            await session.rollback()
            log.debug("advance_ignored", reason="visit claimed by another worker")
            return None

        return _Claim(visit_id=visit_id, **claim_kwargs)

    async def _reissue_timeout(self, execution_id: UUID, step_id: UUID, visit: WorkflowStepExecutionModel) -> None:
        remaining_ms = 0
        if visit.wake_at is not None:
            remaining_ms = max(int((visit.wake_at - _now()).total_seconds() * 1000), 0)
        await self.gateway.enqueue_after(TimeoutJob(execution_id, step_id, visit.id), remaining_ms)

    async def _apply(self, claim: _Claim, result: StepResult) -> _Next | None:
        log = logger.bind(execution_id=str(claim.execution_id), step_id=str(claim.step.id))
        events: list[ExecutionEvent] = []
        following: _Next | None = None
        wake_at: datetime | None = None

        async with self.session_maker() as session:
            executions = WorkflowExecutionRepository(session=session)
            visits = WorkflowStepExecutionRepository(session=session)
            try:
                if isinstance(result, Wait):
                    wake_at = _now() + timedelta(milliseconds=result.timeout_ms)
                    if not await visits.transition(
                        claim.visit_id,
                        [StepExecutionStatus.RUNNING],
                        StepExecutionStatus.PENDING,
                        waiting_for_event=result.event_name,
                        wake_at=wake_at,
                        output={"waitingFor": result.event_name, "wakeAt": wake_at.isoformat()},
                    ):
                        raise _StaleState
                    events.append(
                        StepParked(
                            claim.execution_id,
                            _now(),
                            step_id=claim.step.id,
                            step_execution_id=claim.visit_id,
                            wake_at=wake_at,
                            waiting_for_event=result.event_name,
                        ),
                    )

                elif isinstance(result, Fail):
                    if not await visits.transition(
                        claim.visit_id,
                        [StepExecutionStatus.RUNNING],
                        StepExecutionStatus.FAILED,
                        error=result.reason,
                    ):
                        raise _StaleState
                    if not await executions.finish(
                        claim.execution_id,
                        ExecutionStatus.FAILED,
                        expected_step_id=claim.step.id,
                        expected_sequence=claim.sequence,
                        error=result.reason,
                    ):
                        raise _StaleState
                    events.append(
                        ExecutionFailed(claim.execution_id, _now(), error=result.reason, step_id=claim.step.id),
                    )

                elif isinstance(result, Exit):
                    if not await visits.transition(
                        claim.visit_id,
                        [StepExecutionStatus.RUNNING],
                        StepExecutionStatus.SUCCEEDED,
                        output={"reason": result.reason},
                    ):
                        raise _StaleState
                    if not await executions.finish(
                        claim.execution_id,
                        ExecutionStatus.COMPLETED,
                        expected_step_id=claim.step.id,
                        expected_sequence=claim.sequence,
                        exit_reason=result.reason,
                    ):
                        raise _StaleState
                    events.append(ExecutionCompleted(claim.execution_id, _now(), exit_reason=result.reason))

                else:
                    following = await self._complete_step(session, claim, result, events)

                await session.commit()
            except _StaleState:
                await session.rollback()
                log.debug("step_result_discarded", reason="execution moved on")
                return None

        if wake_at is not None and isinstance(result, Wait):
            await self.gateway.enqueue_after(
                TimeoutJob(claim.execution_id, claim.step.id, claim.visit_id),
                result.timeout_ms,
            )
            log.info("execution_parked", waiting_for=result.event_name, wake_at=wake_at.isoformat())
        elif isinstance(result, Fail):
            log.warning("execution_failed", error=result.reason)

        await self._emit(events)
        return following

    async def _complete_step(
        self,
        session: AsyncSession,
        claim: _Claim,
        result: Continue,
        events: list[ExecutionEvent],
    ) -> _Next | None:
        output = dict(result.output)
        if result.branch is not None:
            output.setdefault("branch", str(result.branch))

        if not await WorkflowStepExecutionRepository(session=session).transition(
            claim.visit_id,
            [StepExecutionStatus.RUNNING],
            StepExecutionStatus.SUCCEEDED,
            output=output,
        ):
            raise _StaleState

        events.append(
            StepCompleted(
                claim.execution_id,
                _now(),
                step_id=claim.step.id,
                step_type=str(claim.step.type),
                branch=str(result.branch) if result.branch is not None else None,
                output=output,
            ),
        )

        transitions = [
            _to_transition(t)
            for t in await WorkflowTransitionRepository(session=session).find_from_step(claim.step.id)
        ]
        return await self._move_on(
            session,
            execution_id=claim.execution_id,
            sequence=claim.sequence,
            from_step_id=claim.step.id,
            workflow=claim.workflow,
            transition=self.resolver.select(transitions, result.branch),
            context={**claim.context, **result.context_updates},
            events=events,
        )

    async def _move_on(
        self,
        session: AsyncSession,
        *,
        execution_id: UUID,
        sequence: int,
        from_step_id: UUID,
        workflow: WorkflowSnapshot,
        transition: TransitionDefinition | None,
        context: dict[str, Any],
        events: list[ExecutionEvent],
    ) -> _Next | None:
        executions = WorkflowExecutionRepository(session=session)

        if transition is None:
            if not await executions.finish(
                execution_id,
                ExecutionStatus.COMPLETED,
                expected_step_id=from_step_id,
                expected_sequence=sequence,
                context=context,
            ):
                raise _StaleState
            events.append(ExecutionCompleted(execution_id, _now()))
            return None

        target = await WorkflowStepRepository(session=session).get_one_or_none(id=transition.to_step_id)
        if target is None or target.workflow_id != workflow.id:
            reason = f"Transition '{transition.id}' targets unknown step '{transition.to_step_id}'"
            if not await executions.finish(
                execution_id,
                ExecutionStatus.FAILED,
                expected_step_id=from_step_id,
                expected_sequence=sequence,
                context=context,
                error=reason,
            ):
                raise _StaleState
            events.append(ExecutionFailed(execution_id, _now(), error=reason, step_id=from_step_id))
            return None

        if not await executions.move_step(
            execution_id,
            from_step_id=from_step_id,
            sequence=sequence,
            to_step_id=target.id,
            context=context,
        ):
            raise _StaleState
        return _Next(step_id=target.id, step_type=StepType(target.type))

    async def _continue(self, execution_id: UUID, following: _Next | None) -> None:
        if following is None:
            return
        if following.step_type in SYNCHRONOUS_STEP_TYPES:
            try:
                await self.advance(execution_id, following.step_id)
            except RetryStepError as e:
                await self.gateway.enqueue_after(
                    StepJob(e.execution_id, e.step_id, attempt=e.attempt + 1),
                    e.delay_ms,
                )
        else:
            await self.gateway.enqueue_now(StepJob(execution_id, following.step_id))

    async def _fail(
        self,
        execution_id: UUID,
        reason: str,
        *,
        step_id: UUID | None = None,
    ) -> None:
        async with self.session_maker() as session:
            finished = await WorkflowExecutionRepository(session=session).finish(
                execution_id,
                ExecutionStatus.FAILED,
                expected_step_id=step_id,
                error=reason,
            )
            await session.commit()

        if finished:
            logger.warning("execution_failed", execution_id=str(execution_id), error=reason)
            await self._emit([ExecutionFailed(execution_id, _now(), error=reason, step_id=step_id)])

    async def _emit(self, events: list[ExecutionEvent]) -> None:
        if self.event_bus is None:
            return
        for event in events:
            await self.event_bus.emit(event)
