"""Store module for holding Models and Pods."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from model_operator.manifest import BaseManifest, NamedResource

T = TypeVar("T", bound=BaseManifest)


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_UPDATED = "object_updated"
    OBJECT_DELETED = "object_deleted"


class Store(ABC):
    """Abstract base class for the object store with listener support.

    Objects handed out by the store are copies, so callers may modify them
    freely and write them back. Writes are optimistic: an object whose
    `resource_version` no longer matches the stored one is rejected.
    """

    @abstractmethod
    def add_object(self, obj: T) -> T:
        """Create or replace an object unconditionally.

        This is how external actors publish objects and is not used by
        controllers. Replacing an object keeps its finalizers and deletion
        marker, and the status when it is written by controllers.
        """

    @abstractmethod
    def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve an object by resource identity and type, or None if absent."""

    @abstractmethod
    def list_objects(
        self, kind: str | None = None, namespace: str | None = None
    ) -> list[BaseManifest]:
        """List objects in the store, optionally filtered by kind and namespace.

        Objects are returned in the order they were first added.
        """

    @abstractmethod
    def update_object(self, obj: T) -> T:
        """Write the object metadata and spec, leaving the stored status untouched.

        Returns the stored object with its new resource version.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the object was modified since it was read.
        """

    @abstractmethod
    def update_status(self, obj: T) -> T:
        """Write only the object status.

        Returns the stored object with its new resource version.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the object was modified since it was read.
        """

    @abstractmethod
    def delete_object(self, resource_id: NamedResource) -> None:
        """Request deletion of an object.

        Objects holding finalizers are only marked for deletion and are removed
        once the last finalizer is gone.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, BaseManifest], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a specific event (object added, updated, deleted).

        When `flush` is set the callback is invoked immediately for every
        object already in the store.

        Returns a callable that can be called to remove the listener.
        """
