"""Shared test fixtures for contact-workflows test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from contact_workflows.config import EngineConfig
from contact_workflows.db.models import ContactModel, WorkflowModel
from contact_workflows.engine.scheduling import StepJob, run_job
from contact_workflows.exceptions import RetryStepError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from contact_workflows.core.events import ExecutionEvent
    from contact_workflows.core.models import ContactSnapshot
    from contact_workflows.db.contacts import SQLAlchemyContactStore
    from contact_workflows.db.definitions import WorkflowDefinitionService
    from contact_workflows.engine.coordinator import ExecutionCoordinator
    from contact_workflows.engine.scheduling import Job


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Create an async SQLite engine backed by a temporary file.

    A file database gives every session its own connection, like a real server.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(WorkflowModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory the engine components share."""
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def async_session(session_maker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Create an async session for repository tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# Test Doubles
# =============================================================================


class RecordingGateway:
    """Scheduling gateway that keeps jobs in memory until a test delivers them.

    Attributes:
        scheduled: Outstanding jobs with their delay, keyed by dedupe key.
        history: Every enqueue call as (dedupe key, delay).
        cancelled: Every cancelled dedupe key.
    """

    def __init__(self) -> None:
        self.scheduled: dict[str, tuple[Job, int]] = {}
        self.history: list[tuple[str, int]] = []
        self.cancelled: list[str] = []

    async def enqueue_now(self, job: Job) -> bool:
        return await self.enqueue_after(job, 0)

    async def enqueue_after(self, job: Job, delay_ms: int) -> bool:
        self.history.append((job.dedupe_key, delay_ms))
        if job.dedupe_key in self.scheduled:
            return False
        self.scheduled[job.dedupe_key] = (job, delay_ms)
        return True

    async def cancel(self, dedupe_key: str) -> bool:
        self.cancelled.append(dedupe_key)
        return self.scheduled.pop(dedupe_key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        """Outstanding dedupe keys starting with ``prefix``."""
        return [key for key in self.scheduled if key.startswith(prefix)]

    def timeout_keys(self) -> list[str]:
        return self.keys("workflow-timeout-")

    async def run_due(self, coordinator: ExecutionCoordinator, max_rounds: int = 50) -> None:
        """Deliver immediate jobs one at a time until none is left.

        Delayed jobs (timers and retries) stay scheduled.
        """
        for _ in range(max_rounds):
            due = [key for key, (_, delay_ms) in self.scheduled.items() if delay_ms == 0]
            if not due:
                return
            for key in due:
                if key in self.scheduled:
                    await self.fire(coordinator, key)

    async def fire(self, coordinator: ExecutionCoordinator, dedupe_key: str) -> None:
        """Deliver one outstanding job regardless of its delay."""
        job, _ = self.scheduled.pop(dedupe_key)
        await self.deliver(coordinator, job)

    async def deliver(self, coordinator: ExecutionCoordinator, job: Job) -> None:
        """Deliver a job the way a queue worker would."""
        try:
            await run_job(coordinator, job)
        except RetryStepError as e:
            await self.enqueue_after(StepJob(e.execution_id, e.step_id, attempt=e.attempt + 1), e.delay_ms)


class FakeEmailDelivery:
    """Email delivery double that records sends.

    Attributes:
        sent: Keyword arguments of every successful send.
        fail_times: Number of upcoming sends that raise.
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_times = 0

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
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("mail relay unavailable")
        self.sent.append(
            {
                "to": contact.email,
                "template_id": template_id,
                "subject": subject,
                "body": body,
                "variables": variables,
                "execution_id": execution_id,
                "step_execution_id": step_execution_id,
                "from_address": from_address,
                "reply_to": reply_to,
            },
        )
        return f"msg-{len(self.sent)}"


class MockEventBus:
    """Mock event bus for testing."""

    def __init__(self) -> None:
        """Initialize mock event bus."""
        self.events: list[ExecutionEvent] = []

    async def emit(self, event: ExecutionEvent) -> None:
        """Emit an event."""
        self.events.append(event)

    def types(self) -> list[str]:
        return [type(event).__name__ for event in self.events]


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def project_id() -> UUID:
    """Project the test contacts and workflows belong to."""
    return uuid4()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def email_delivery() -> FakeEmailDelivery:
    return FakeEmailDelivery()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Create mock event bus.

    Returns:
        MockEventBus instance
    """
    return MockEventBus()


@pytest.fixture
def engine_config() -> EngineConfig:
    """Engine configuration with a short retry backoff."""
    return EngineConfig(retry_backoff_ms=10, max_attempts=3)


@pytest.fixture
def contact_store(session_maker: async_sessionmaker[AsyncSession]) -> SQLAlchemyContactStore:
    from contact_workflows.db.contacts import SQLAlchemyContactStore

    return SQLAlchemyContactStore(session_maker)


@pytest.fixture
def definitions(session_maker: async_sessionmaker[AsyncSession]) -> WorkflowDefinitionService:
    from contact_workflows.db.definitions import WorkflowDefinitionService

    return WorkflowDefinitionService(session_maker)


@pytest.fixture
def make_contact(
    session_maker: async_sessionmaker[AsyncSession],
    project_id: UUID,
) -> Callable[..., Awaitable[UUID]]:
    """Factory inserting contacts into the test database.

    Returns:
        Coroutine function returning the new contact's ID.
    """

    async def _make_contact(
        email: str = "ada@example.com",
        *,
        data: dict[str, Any] | None = None,
        subscribed: bool = True,
        project: UUID | None = None,
    ) -> UUID:
        contact_id = uuid4()
        async with session_maker() as session:
            session.add(
                ContactModel(
                    id=contact_id,
                    project_id=project or project_id,
                    email=email,
                    subscribed=subscribed,
                    data=data or {},
                ),
            )
            await session.commit()
        return contact_id

    return _make_contact


@pytest.fixture
def make_coordinator(
    session_maker: async_sessionmaker[AsyncSession],
    gateway: RecordingGateway,
    contact_store: SQLAlchemyContactStore,
    email_delivery: FakeEmailDelivery,
    mock_event_bus: MockEventBus,
    engine_config: EngineConfig,
) -> Callable[..., ExecutionCoordinator]:
    """Factory building coordinators over the shared test doubles."""
    from contact_workflows.engine.coordinator import ExecutionCoordinator
    from contact_workflows.engine.registry import StepHandlerRegistry

    def _make_coordinator(config: EngineConfig | None = None) -> ExecutionCoordinator:
        config = config or engine_config
        handlers = StepHandlerRegistry.with_defaults(
            email_delivery=email_delivery,
            contacts=contact_store,
            config=config,
        )
        return ExecutionCoordinator(
            session_maker,
            gateway=gateway,
            contacts=contact_store,
            handlers=handlers,
            event_bus=mock_event_bus,
            config=config,
        )

    return _make_coordinator


@pytest.fixture
def coordinator(make_coordinator: Callable[..., ExecutionCoordinator]) -> ExecutionCoordinator:
    """Create an execution coordinator wired to the test doubles."""
    return make_coordinator()


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
