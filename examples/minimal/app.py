"""Minimal example of contact-workflows integration.

This example runs a welcome series: when a contact signs up they get a welcome
email, and a day later pro-plan contacts get a tips email while everyone else
is tagged for an upgrade campaign.

Run with:
    cd examples/minimal
    litestar run

Then:
    curl -X POST localhost:8000/automation/events \
        -H 'Content-Type: application/json' \
        -d '{"project_id": "<project_id>", "event_name": "signup", "contact_id": "<contact_id>"}'
"""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

import structlog
from litestar import Litestar, get
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from contact_workflows import EngineConfig, ExecutionCoordinator, WorkflowEnginePlugin, WorkflowEnginePluginConfig
from contact_workflows.core.models import ContactSnapshot
from contact_workflows.core.types import StepType
from contact_workflows.db import ContactModel, SQLAlchemyContactStore, WorkflowDefinitionService, WorkflowModel
from contact_workflows.engine.local import LocalSchedulingGateway
from contact_workflows.engine.registry import StepHandlerRegistry

logger = structlog.get_logger(__name__)

PROJECT_ID = UUID("00000000-0000-0000-0000-000000000001")

# =============================================================================
# Email Delivery
# =============================================================================


class LoggingEmailDelivery:
    """Email delivery that logs instead of sending."""

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
        logger.info("email_sent", to=contact.email, subject=subject, template_id=template_id)
        return f"local-{step_execution_id}"


# =============================================================================
# Engine Wiring
# =============================================================================

engine = create_async_engine("sqlite+aiosqlite:///welcome.db")
session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

config = EngineConfig(log_level="DEBUG")
gateway = LocalSchedulingGateway()
contacts = SQLAlchemyContactStore(session_maker)
coordinator = ExecutionCoordinator(
    session_maker,
    gateway=gateway,
    contacts=contacts,
    handlers=StepHandlerRegistry.with_defaults(
        email_delivery=LoggingEmailDelivery(),
        contacts=contacts,
        config=config,
    ),
    config=config,
)
gateway.attach(coordinator)


# =============================================================================
# Seed Data
# =============================================================================


async def build_welcome_series(definitions: WorkflowDefinitionService) -> UUID:
    """Create and enable the welcome series.

    Flow:
        trigger -> welcome email -> wait 1 day -> plan == pro?
            yes -> tips email
            no  -> tag for upgrade campaign
    """
    workflow_id, trigger_id = await definitions.create_workflow(PROJECT_ID, "Welcome series", "signup")
    welcome = await definitions.add_step(
        workflow_id,
        StepType.SEND_EMAIL,
        "Welcome",
        {"subject": "Welcome, {{firstName}}!", "body": "Thanks for joining us."},
    )
    wait = await definitions.add_step(workflow_id, StepType.DELAY, "Wait a day", {"amount": 1, "unit": "days"})
    is_pro = await definitions.add_step(
        workflow_id,
        StepType.CONDITION,
        "Pro plan?",
        {"field": "data.plan", "operator": "equals", "value": "pro"},
    )
    tips = await definitions.add_step(
        workflow_id,
        StepType.SEND_EMAIL,
        "Pro tips",
        {"subject": "Getting the most out of Pro", "body": "Here are a few tips."},
    )
    tag = await definitions.add_step(workflow_id, StepType.UPDATE_CONTACT, "Tag", {"updates": {"upsell": True}})

    await definitions.add_transition(trigger_id, welcome)
    await definitions.add_transition(welcome, wait)
    await definitions.add_transition(wait, is_pro)
    await definitions.add_transition(is_pro, tips, branch="yes")
    await definitions.add_transition(is_pro, tag, branch="no")
    await definitions.set_enabled(workflow_id, True)
    return workflow_id


async def on_startup() -> None:
    """Create the tables and seed a workflow and a contact."""
    async with engine.begin() as conn:
        await conn.run_sync(WorkflowModel.metadata.create_all)

    workflow_id = await build_welcome_series(WorkflowDefinitionService(session_maker))

    contact_id = uuid4()
    async with session_maker() as session:
        session.add(
            ContactModel(
                id=contact_id,
                project_id=PROJECT_ID,
                email=f"ada-{contact_id.hex[:8]}@example.com",
                data={"firstName": "Ada", "plan": "pro"},
            ),
        )
        await session.commit()

    logger.info("seeded", project_id=str(PROJECT_ID), workflow_id=str(workflow_id), contact_id=str(contact_id))


async def on_shutdown() -> None:
    await gateway.close()
    await engine.dispose()


# =============================================================================
# Application
# =============================================================================


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


app = Litestar(
    route_handlers=[health_check],
    plugins=[WorkflowEnginePlugin(config=WorkflowEnginePluginConfig(coordinator=coordinator))],
    on_startup=[on_startup],
    on_shutdown=[on_shutdown],
    debug=True,
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
