"""Litestar plugin for the workflow engine.

This module provides the WorkflowEnginePlugin that exposes an execution
coordinator and event correlator to a Litestar application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from contact_workflows.config import EngineConfig
from contact_workflows.engine.coordinator import ExecutionCoordinator  # noqa: TC001 - needed for DI
from contact_workflows.engine.correlator import EventCorrelator
from contact_workflows.exceptions import WorkflowsError
from contact_workflows.log import configure_logging

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

__all__ = ["WorkflowEnginePlugin", "WorkflowEnginePluginConfig"]


@dataclass
class WorkflowEnginePluginConfig:
    """Configuration for the WorkflowEnginePlugin.

    Attributes:
        coordinator: The execution coordinator to expose.
        correlator: Optional pre-configured EventCorrelator. If not provided,
            one will be created for the coordinator.
        engine_config: Engine configuration used for logging setup. Defaults
            to the coordinator's configuration.
        configure_logging: Whether to configure structlog on app init.
        dependency_key_coordinator: The key used for dependency injection of
            the coordinator. Defaults to "workflow_coordinator".
        dependency_key_correlator: The key used for dependency injection of
            the correlator. Defaults to "event_correlator".
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all API endpoints.
            Defaults to "/automation".
        api_guards: List of Litestar guards to apply to all API endpoints.
        api_tags: OpenAPI tags to apply to API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
            Defaults to True.
    """

    coordinator: ExecutionCoordinator
    correlator: EventCorrelator | None = None
    engine_config: EngineConfig | None = None
    configure_logging: bool = True
    dependency_key_coordinator: str = "workflow_coordinator"
    dependency_key_correlator: str = "event_correlator"
    enable_api: bool = True
    api_path_prefix: str = "/automation"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Workflow Automation"])
    include_api_in_schema: bool = True


class WorkflowEnginePlugin(InitPluginProtocol):
    """Litestar plugin for workflow automation.

    Example:
        Basic usage::

            from litestar import Litestar
            from contact_workflows import WorkflowEnginePlugin, WorkflowEnginePluginConfig

            app = Litestar(
                plugins=[WorkflowEnginePlugin(config=WorkflowEnginePluginConfig(coordinator=coordinator))],
            )

        Using in a route handler::

            from litestar import post
            from contact_workflows import EventCorrelator


            @post("/signup")
            async def signup(data: SignupDTO, event_correlator: EventCorrelator) -> None:
                contact = await create_contact(data)
                await event_correlator.handle_event(data.project_id, "signup", contact_id=contact.id)
    """

    __slots__ = ("_config", "_coordinator", "_correlator")

    def __init__(self, config: WorkflowEnginePluginConfig) -> None:
        """Initialize the plugin.

        Args:
            config: Configuration for the plugin.
        """
        self._config = config
        self._coordinator: ExecutionCoordinator | None = None
        self._correlator: EventCorrelator | None = None

    @property
    def coordinator(self) -> ExecutionCoordinator:
        """Get the execution coordinator.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._coordinator is None:
            msg = "WorkflowEnginePlugin has not been initialized. Access coordinator after app startup."
            raise RuntimeError(msg)
        return self._coordinator

    @property
    def correlator(self) -> EventCorrelator:
        """Get the event correlator.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._correlator is None:
            msg = "WorkflowEnginePlugin has not been initialized. Access correlator after app startup."
            raise RuntimeError(msg)
        return self._correlator

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Optionally configures structlog
        2. Creates the EventCorrelator if none was provided
        3. Adds dependency providers to the app config
        4. Registers the WorkflowsError exception handler
        5. Optionally registers REST API controllers if enable_api=True

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        self._coordinator = self._config.coordinator
        self._correlator = self._config.correlator or EventCorrelator(self._coordinator)

        if self._config.configure_logging:
            engine_config = self._config.engine_config or self._coordinator.config
            configure_logging(engine_config.log_level, json_logs=engine_config.json_logs)

        # Create dependency providers
        def provide_coordinator() -> ExecutionCoordinator:
            return self._coordinator  # type: ignore[return-value]

        def provide_correlator() -> EventCorrelator:
            return self._correlator  # type: ignore[return-value]

        app_config.dependencies[self._config.dependency_key_coordinator] = Provide(
            provide_coordinator,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_correlator] = Provide(
            provide_correlator,
            sync_to_thread=False,
        )

        from contact_workflows.web.exceptions import workflows_error_handler

        app_config.exception_handlers[WorkflowsError] = workflows_error_handler  # type: ignore[assignment]

        # Register REST API controllers if enabled
        if self._config.enable_api:
            from litestar import Router

            from contact_workflows.web.controllers import EventController, ExecutionController

            workflow_router = Router(
                path=self._config.api_path_prefix,
                route_handlers=[ExecutionController, EventController],
                guards=self._config.api_guards,
                tags=self._config.api_tags,
                include_in_schema=self._config.include_api_in_schema,
            )
            app_config.route_handlers.append(workflow_router)

        return app_config
