"""
Model Controller implementation.

This controller installs the config plugin described by a Model into the model
registry of every injected Pod in the Model's namespace, and removes it again
when the Model is deleted.

Key Concepts:
    - Model: Declares a config plugin to distribute to the namespace.
    - Pod: A worker instance. Only Pods annotated as injected host a registry.
    - RegistryStatus: The installation phase of the Model in a single Pod,
      advancing Pending -> Installing -> Installed.
    - Finalizer: Holds the Model in the store until it has been removed from
      every registry.

Each reconcile pass persists at most one RegistryStatus change (or performs at
most one push) and then returns. The resulting status write triggers the next
pass, so every transition is retried independently and a failure never leaves
a partially applied batch of changes behind.
"""

from enum import Enum
import logging

from model_operator.config import ModelControllerConfig, WorkQueueConfig
from model_operator.exceptions import (
    ModelAlreadyExistsError,
    ModelNotFoundError,
    RegistryException,
    StoreException,
)
from model_operator.manifest import (
    MODEL_KIND,
    POD_KIND,
    Model,
    ModelPhase,
    NamedResource,
    Pod,
    RegistryStatus,
)
from model_operator.registry import ConfigModel, RegistryClient
from model_operator.runtime import Controller, Reconciler, ReconcileResult
from model_operator.store import Store

from .mapper import ModelMapper

__all__ = [
    "ModelController",
    "StepResult",
    "new_controller",
    "CONFIG_FINALIZER",
    "CONTROLLER_NAME",
]

_LOGGER = logging.getLogger(__name__)

CONFIG_FINALIZER = "config"
CONTROLLER_NAME = "config-model-controller"

_Log = logging.LoggerAdapter


class StepResult(Enum):
    """Outcome of advancing the registry status of a single Pod."""

    UNCHANGED = "unchanged"
    """Nothing to do for the Pod."""

    REQUEUE = "requeue"
    """The Pod is not ready yet and should be checked again later."""

    ADVANCED = "advanced"
    """A change was persisted and the pass must stop."""


class ModelController(Reconciler):
    """Reconciler for Model resources."""

    def __init__(
        self,
        store: Store,
        registry: RegistryClient,
        config: ModelControllerConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            store: The store holding Models and Pods.
            registry: The client used to reach the registry of each Pod.
            config: The configuration for the controller.
            logger: The logger to report progress on. Defaults to the module logger.
        """
        self._store = store
        self._registry = registry
        self._config = config or ModelControllerConfig()
        self._logger = logger or _LOGGER

    async def reconcile(self, request: NamedResource) -> ReconcileResult:
        """Reconcile the Model identified by the request."""
        log = logging.LoggerAdapter(
            self._logger, {"model": request.namespaced_name}
        )
        log.info("Reconciling Model %s", request.namespaced_name)

        model = self._store.get_object(request, Model)
        if model is None:
            # Deleted after the request was queued, nothing left to clean up
            log.debug("Model %s not found", request.namespaced_name)
            return ReconcileResult()

        if model.deletion_timestamp is None:
            return await self._reconcile_create(model, log)
        return await self._reconcile_delete(model, log)

    async def _reconcile_create(self, model: Model, log: _Log) -> ReconcileResult:
        # A Model without a plugin is not injected into any Pods
        if model.spec.plugin is None:
            return ReconcileResult()

        if not model.has_finalizer(CONFIG_FINALIZER):
            log.debug(
                "Adding '%s' finalizer to Model '%s'",
                CONFIG_FINALIZER,
                model.namespaced_name,
            )
            model.add_finalizer(CONFIG_FINALIZER)
            model = self._store.update_object(model)

        pods = self._list_injected_pods(model.namespace)
        if self._initialize_registry_status(model, pods, log):
            return ReconcileResult()

        requeue = False
        for pod in pods:
            registry_status = model.status.get_registry_status(pod.name)
            if registry_status is None:
                continue
            result = await self._step(model, pod, registry_status, log)
            if result is StepResult.ADVANCED:
                return ReconcileResult()
            if result is StepResult.REQUEUE:
                requeue = True

        if self._prune_registry_statuses(model, log):
            return ReconcileResult()

        if requeue:
            return ReconcileResult(requeue_after=self._config.requeue_after)
        return ReconcileResult()

    def _initialize_registry_status(
        self, model: Model, pods: list[Pod], log: _Log
    ) -> bool:
        """Add a Pending status for the first Pod that has none.

        Returns True if the status was updated.
        """
        for pod in pods:
            if model.status.get_registry_status(pod.name) is not None:
                continue
            log.debug(
                "Initializing Model '%s' status for Pod '%s'",
                model.namespaced_name,
                pod.name,
            )
            model.status.registry_statuses.append(
                RegistryStatus(pod_name=pod.name, phase=ModelPhase.PENDING)
            )
            self._update_status(model, log)
            return True
        return False

    async def _step(
        self,
        model: Model,
        pod: Pod,
        registry_status: RegistryStatus,
        log: _Log,
    ) -> StepResult:
        """Advance the registry status of the Model in a single Pod by one phase."""
        if registry_status.phase == ModelPhase.INSTALLED:
            return StepResult.UNCHANGED

        if not pod.registry_ready:
            log.debug(
                "Pod '%s' registry is not ready for Model '%s'",
                pod.name,
                model.namespaced_name,
            )
            return StepResult.REQUEUE

        if registry_status.phase == ModelPhase.PENDING:
            log.debug(
                "Installing Model '%s' into Pod '%s' registry",
                model.namespaced_name,
                pod.name,
            )
            registry_status.phase = ModelPhase.INSTALLING
            self._update_status(model, log)
            return StepResult.ADVANCED

        await self._push_model(model, pod, log)
        registry_status.phase = ModelPhase.INSTALLED
        self._update_status(model, log)
        return StepResult.ADVANCED

    async def _push_model(self, model: Model, pod: Pod, log: _Log) -> None:
        request = ConfigModel.from_model(model)
        try:
            await self._registry.push_model(
                pod.registry_address(self._config.registry_port), request
            )
        except ModelAlreadyExistsError:
            log.debug(
                "Model '%s' is already installed in Pod '%s' registry",
                model.namespaced_name,
                pod.name,
            )
        except RegistryException as err:
            log.error(
                "PushModel failed for Model '%s' in Pod '%s': %s",
                model.namespaced_name,
                pod.name,
                err,
            )
            raise
        else:
            log.debug(
                "Installed Model '%s' into Pod '%s' registry",
                model.namespaced_name,
                pod.name,
            )

    def _prune_registry_statuses(self, model: Model, log: _Log) -> bool:
        """Remove the status of the first Pod that no longer exists.

        Returns True if the status was updated.
        """
        for registry_status in model.status.registry_statuses:
            pod_id = NamedResource(POD_KIND, model.namespace, registry_status.pod_name)
            if self._store.get_object(pod_id, Pod) is not None:
                continue
            log.debug(
                "Forgetting Model '%s' status for Pod '%s'",
                model.namespaced_name,
                registry_status.pod_name,
            )
            model.status.registry_statuses = [
                s
                for s in model.status.registry_statuses
                if s.pod_name != registry_status.pod_name
            ]
            self._update_status(model, log)
            return True
        return False

    async def _reconcile_delete(self, model: Model, log: _Log) -> ReconcileResult:
        # A Model without a plugin was never injected into any Pods
        if (plugin := model.spec.plugin) is None:
            return ReconcileResult()

        if not model.has_finalizer(CONFIG_FINALIZER):
            return ReconcileResult()
        log.debug("Finalizing Model '%s'", model.namespaced_name)

        for pod in self._list_injected_pods(model.namespace):
            if not pod.status.pod_ip:
                log.warning(
                    "Skipping Pod '%s' without an address for Model '%s'",
                    pod.name,
                    model.namespaced_name,
                )
                continue
            log.debug(
                "Deleting Model '%s' from Pod '%s'", model.namespaced_name, pod.name
            )
            try:
                await self._registry.delete_model(
                    pod.registry_address(self._config.registry_port),
                    plugin.type,
                    plugin.version,
                )
            except ModelNotFoundError:
                log.debug(
                    "Model '%s' is not installed in Pod '%s' registry",
                    model.namespaced_name,
                    pod.name,
                )
            except RegistryException as err:
                log.error(
                    "Failed to delete Model '%s' from Pod '%s': %s",
                    model.namespaced_name,
                    pod.name,
                    err,
                )
                raise

        log.debug("Model '%s' finalized", model.namespaced_name)
        model.remove_finalizer(CONFIG_FINALIZER)
        self._store.update_object(model)
        return ReconcileResult()

    def _list_injected_pods(self, namespace: str) -> list[Pod]:
        """Return the Pods in the namespace that can host a model registry."""
        return [
            obj
            for obj in self._store.list_objects(POD_KIND, namespace)
            if isinstance(obj, Pod) and obj.registry_injected
        ]

    def _update_status(self, model: Model, log: _Log) -> None:
        try:
            self._store.update_status(model)
        except StoreException as err:
            log.warning(
                "Failed to update status for Model '%s': %s",
                model.namespaced_name,
                err,
            )
            raise


def new_controller(
    store: Store,
    registry: RegistryClient,
    config: ModelControllerConfig | None = None,
    queue_config: WorkQueueConfig | None = None,
    logger: logging.Logger | None = None,
) -> Controller:
    """Create a runtime Controller that reconciles Models on store changes.

    Models are reconciled when they change themselves, and every Model in a
    namespace is reconciled when another Model or an injected Pod in that
    namespace changes.
    """
    mapper = ModelMapper(store)
    controller = Controller(
        CONTROLLER_NAME,
        store,
        ModelController(store, registry, config, logger),
        queue_config,
    )
    controller.watch(MODEL_KIND)
    controller.watch(MODEL_KIND, mapper.map)
    controller.watch(POD_KIND, mapper.map)
    return controller
