"""Runtime controller that feeds store changes to a Reconciler.

Store events for watched kinds are translated into reconcile requests by map
functions and placed on a WorkQueue. Workers take requests off the queue and
call the reconciler, scheduling the request again as the result asks for, or
with backoff when the pass fails.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from model_operator.config import WorkQueueConfig
from model_operator.exceptions import ConflictError
from model_operator.manifest import BaseManifest, NamedResource
from model_operator.store import Store, StoreEvent
from model_operator.task import get_task_service

from .queue import WorkQueue
from .reconciler import Reconciler

__all__ = [
    "Controller",
    "MapFunc",
    "enqueue_for_object",
]

_LOGGER = logging.getLogger(__name__)

MapFunc = Callable[[BaseManifest], list[NamedResource]]


def enqueue_for_object(obj: BaseManifest) -> list[NamedResource]:
    """Map an object to a request for the object itself."""
    return [NamedResource(obj.kind, obj.namespace, obj.name)]  # type: ignore[attr-defined]


@dataclass
class _Watch:
    kind: str
    map_func: MapFunc


class Controller:
    """Runs a Reconciler for requests derived from store events."""

    def __init__(
        self,
        name: str,
        store: Store,
        reconciler: Reconciler,
        config: WorkQueueConfig | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            name: Name of the controller, used in logs and task names.
            store: The store whose events trigger reconciliation.
            reconciler: The reconciler to invoke for each request.
            config: Work queue configuration.
        """
        self._name = name
        self._store = store
        self._reconciler = reconciler
        self._config = config or WorkQueueConfig()
        self._queue = WorkQueue(self._config)
        self._watches: list[_Watch] = []
        self._remove_listeners: list[Callable[[], None]] = []
        self._workers: list[asyncio.Task[None]] = []

    @property
    def queue(self) -> WorkQueue:
        """Return the work queue of the controller."""
        return self._queue

    def watch(self, kind: str, map_func: MapFunc = enqueue_for_object) -> None:
        """Reconcile the requests returned by `map_func` whenever an object of the kind changes."""
        if self._workers:
            raise ValueError("Cannot add watches after the controller has started")
        self._watches.append(_Watch(kind, map_func))

    async def start(self) -> None:
        """Register the watches and start the workers."""
        if self._workers:
            return
        _LOGGER.info("Starting controller %s", self._name)
        task_service = get_task_service()
        for i in range(self._config.max_concurrent_reconciles):
            self._workers.append(
                task_service.create_background_task(
                    self._worker(), name=f"{self._name}-worker-{i}"
                )
            )
        for event in StoreEvent:
            self._remove_listeners.append(
                self._store.add_listener(
                    event,
                    self._on_event,
                    flush=(event == StoreEvent.OBJECT_ADDED),
                )
            )

    async def stop(self) -> None:
        """Stop the workers and detach from the store."""
        if not self._workers:
            return
        _LOGGER.info("Stopping controller %s", self._name)
        for remove in self._remove_listeners:
            remove()
        self._remove_listeners.clear()
        self._queue.shutdown()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

    async def wait_idle(self) -> None:
        """Wait until there are no queued, running or scheduled reconciles."""
        await self._queue.wait_idle()

    def _on_event(self, resource_id: NamedResource, obj: BaseManifest) -> None:
        for watch in self._watches:
            if resource_id.kind != watch.kind:
                continue
            for request in watch.map_func(obj):
                self._queue.add(request)

    async def _worker(self) -> None:
        while True:
            request = await self._queue.get()
            try:
                await self._reconcile_handler(request)  # type: ignore[arg-type]
            finally:
                self._queue.done(request)

    async def _reconcile_handler(self, request: NamedResource) -> None:
        try:
            result = await self._reconciler.reconcile(request)
        except ConflictError as err:
            _LOGGER.debug("Conflict reconciling %s, retrying: %s", request, err)
            self._queue.add_rate_limited(request)
            return
        except Exception as err:
            _LOGGER.error(
                "Reconciler %s failed for %s (attempt %d): %s",
                self._name,
                request,
                self._queue.num_requeues(request) + 1,
                err,
                exc_info=_LOGGER.isEnabledFor(logging.DEBUG),
            )
            self._queue.add_rate_limited(request)
            return
        self._queue.forget(request)
        if result.requeue_after:
            self._queue.add_after(request, result.requeue_after)
