"""Module for in memory object store."""

import copy
import dataclasses
import datetime
import itertools
from collections import defaultdict
from collections.abc import Callable
from typing import Any, DefaultDict, TypeVar

import logging

from model_operator.manifest import BaseManifest, NamedResource
from model_operator.exceptions import ConflictError, ObjectNotFoundError

from .store import Store, StoreEvent


_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseManifest)


def _resource_id(obj: BaseManifest) -> NamedResource:
    if (
        not hasattr(obj, "kind")
        or not hasattr(obj, "namespace")
        or not hasattr(obj, "name")
    ):
        raise ValueError("Object must have kind, namespace, and name attributes")
    return NamedResource(obj.kind, obj.namespace, obj.name)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Stores objects keyed by NamedResource and assigns a new resource version
    on every write. Supports event listeners for object changes.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, BaseManifest] = {}
        self._versions = itertools.count(1)
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )

    def add_object(self, obj: T) -> T:
        """Create or replace an object unconditionally.

        Replacing an existing object keeps its finalizers, its deletion marker
        and, for kinds whose status is written by controllers, its status.
        """
        resource_id = _resource_id(obj)
        event = StoreEvent.OBJECT_ADDED
        incoming = copy.deepcopy(obj)
        if (existing := self._objects.get(resource_id)) is not None:
            for name in ("finalizers", "deletion_timestamp"):
                if hasattr(existing, name):
                    setattr(incoming, name, copy.deepcopy(getattr(existing, name)))
            if existing.controller_status:
                incoming.status = copy.deepcopy(existing.status)  # type: ignore[attr-defined]
            incoming.resource_version = existing.resource_version  # type: ignore[attr-defined]
            if dataclasses.asdict(existing) == dataclasses.asdict(incoming):
                _LOGGER.debug(
                    "Object %s already exists in store, skipping", resource_id
                )
                return copy.deepcopy(existing)  # type: ignore[return-value]
            _LOGGER.debug("Updating existing object %s in store", resource_id)
            event = StoreEvent.OBJECT_UPDATED
        else:
            _LOGGER.debug("Adding object %s to store", resource_id)
        return self._write(resource_id, incoming, event)

    def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve an object by resource identity and type."""
        obj = self._objects.get(resource_id)
        if obj is not None:
            if isinstance(obj, cls):
                return copy.deepcopy(obj)
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type {cls.__name__} (was {obj.__class__.__name__})"
            )
        return None

    def list_objects(
        self, kind: str | None = None, namespace: str | None = None
    ) -> list[BaseManifest]:
        """List objects in the store, optionally filtered by kind and namespace."""
        return [
            copy.deepcopy(obj)
            for resource_id, obj in self._objects.items()
            if (kind is None or resource_id.kind == kind)
            and (namespace is None or resource_id.namespace == namespace)
        ]

    def update_object(self, obj: T) -> T:
        """Write the object metadata and spec, leaving the stored status untouched."""
        resource_id, existing = self._check_write(obj)
        updated = copy.deepcopy(obj)
        if hasattr(existing, "status"):
            updated.status = copy.deepcopy(existing.status)  # type: ignore[attr-defined]
        if getattr(updated, "deletion_timestamp", None) and not getattr(
            updated, "finalizers", None
        ):
            _LOGGER.debug("Object %s finalized, removing from store", resource_id)
            self._remove(resource_id)
            return updated
        return self._write(resource_id, updated, StoreEvent.OBJECT_UPDATED)

    def update_status(self, obj: T) -> T:
        """Write only the object status."""
        resource_id, existing = self._check_write(obj)
        if not hasattr(existing, "status"):
            raise ValueError(f"Object {resource_id} does not have a status")
        updated = copy.deepcopy(existing)
        updated.status = copy.deepcopy(obj.status)  # type: ignore[attr-defined]
        return self._write(resource_id, updated, StoreEvent.OBJECT_UPDATED)

    def delete_object(self, resource_id: NamedResource) -> None:
        """Request deletion of an object."""
        if (existing := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"Object {resource_id} not found")
        if not getattr(existing, "finalizers", None):
            _LOGGER.debug("Deleting object %s from store", resource_id)
            self._remove(resource_id)
            return
        if getattr(existing, "deletion_timestamp", None):
            return
        _LOGGER.debug("Marking object %s for deletion", resource_id)
        updated = copy.deepcopy(existing)
        updated.deletion_timestamp = datetime.datetime.now(  # type: ignore[attr-defined]
            datetime.timezone.utc
        ).isoformat()
        self._write(resource_id, updated, StoreEvent.OBJECT_UPDATED)

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, BaseManifest], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a specific event (object added, updated, deleted)."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)

        if flush:
            _LOGGER.debug("Flushing objects for event type %s", event)
            for resource_id, obj in list(self._objects.items()):
                callback(resource_id, copy.deepcopy(obj))

        return remove

    def _check_write(self, obj: BaseManifest) -> tuple[NamedResource, BaseManifest]:
        resource_id = _resource_id(obj)
        if (existing := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"Object {resource_id} not found")
        expected = getattr(obj, "resource_version", None)
        actual = getattr(existing, "resource_version", None)
        if expected != actual:
            raise ConflictError(resource_id.namespaced_name, expected, actual)
        return resource_id, existing

    def _write(self, resource_id: NamedResource, obj: T, event: StoreEvent) -> T:
        obj.resource_version = str(next(self._versions))  # type: ignore[attr-defined]
        self._objects[resource_id] = obj
        self._fire_event(event, resource_id, copy.deepcopy(obj))
        return copy.deepcopy(obj)

    def _remove(self, resource_id: NamedResource) -> None:
        obj = self._objects.pop(resource_id)
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, obj)

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)
