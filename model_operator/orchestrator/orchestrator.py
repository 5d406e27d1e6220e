"""Orchestrator for the model operator.

This module wires the store, the registry client and the model controller
together and provides a unified interface for loading manifests, running
reconciliation and stopping the system.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from model_operator.config import (
    ModelControllerConfig,
    RegistryClientConfig,
    WorkQueueConfig,
)
from model_operator.manifest import MODEL_KIND, Model
from model_operator.model_controller import new_controller
from model_operator.registry import HttpRegistryClient, RegistryClient
from model_operator.runtime import Controller
from model_operator.store import Store
from model_operator.task import get_task_service

from .loader import LoadOptions, ResourceLoader

_LOGGER = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    model_controller_config: ModelControllerConfig = field(
        default_factory=ModelControllerConfig
    )
    registry_client_config: RegistryClientConfig = field(
        default_factory=RegistryClientConfig
    )
    work_queue_config: WorkQueueConfig = field(default_factory=WorkQueueConfig)


class Orchestrator:
    """Orchestrator for coordinating the execution of controllers.

    The orchestrator is responsible for:
    - Creating the registry client, unless one is provided
    - Managing the lifecycle of controllers
    - Loading manifests into the store
    - Reporting when all reconciliation work has settled
    """

    def __init__(
        self,
        store: Store,
        registry: RegistryClient | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        """Initialize the orchestrator."""
        self.store = store
        self.config = config or OrchestratorConfig()
        self._owns_registry = registry is None
        self.registry = registry or HttpRegistryClient(
            self.config.registry_client_config
        )
        self.controllers: dict[str, Controller] = {}

    async def start(self) -> None:
        """Start the orchestrator and all controllers."""
        if self.controllers:
            return

        _LOGGER.info("Starting orchestrator")
        self.controllers = {
            "model": new_controller(
                self.store,
                self.registry,
                self.config.model_controller_config,
                self.config.work_queue_config,
            ),
        }
        for controller in self.controllers.values():
            await controller.start()
        _LOGGER.debug("Started controllers: %s", ", ".join(self.controllers.keys()))

    async def stop(self) -> None:
        """Stop the orchestrator and all controllers."""
        if not self.controllers:
            return

        _LOGGER.info("Stopping orchestrator")
        for name, controller in reversed(self.controllers.items()):
            _LOGGER.debug("Stopping controller: %s", name)
            await controller.stop()
        self.controllers.clear()

        await get_task_service().block_till_done()
        if self._owns_registry:
            await self.registry.close()
        _LOGGER.info("Orchestrator stopped")

    async def load(self, options: LoadOptions) -> int:
        """Add the manifests found at the path to the store.

        Returns the number of objects loaded.
        """
        count = 0
        async for obj in ResourceLoader().load(options):
            self.store.add_object(obj)
            count += 1
        _LOGGER.info("Loaded %d objects from %s", count, options.path)
        return count

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no controller has pending work.

        Delayed requeues count as pending work, so this only returns once every
        Model has settled.

        Returns:
            True if the controllers became idle, False if the timeout expired.
        """
        try:
            async with asyncio.timeout(timeout):
                for controller in self.controllers.values():
                    await controller.wait_idle()
        except TimeoutError:
            _LOGGER.info("Timed out waiting for controllers to become idle")
            return False
        return True

    def models(self) -> list[Model]:
        """Return all Models currently in the store."""
        return [
            obj for obj in self.store.list_objects(MODEL_KIND) if isinstance(obj, Model)
        ]
