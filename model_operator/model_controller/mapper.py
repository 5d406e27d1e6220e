"""Maps changes of Pods and Models to the Models that need reconciling."""

import logging

from model_operator.exceptions import StoreException
from model_operator.manifest import MODEL_KIND, BaseManifest, NamedResource, Pod
from model_operator.store import Store

__all__ = ["ModelMapper"]

_LOGGER = logging.getLogger(__name__)


class ModelMapper:
    """Reconcile all Models of a namespace when something in it changes."""

    def __init__(self, store: Store) -> None:
        """Initialize the ModelMapper."""
        self._store = store

    def map(self, obj: BaseManifest) -> list[NamedResource]:
        """Return a request for every Model in the namespace of the object.

        Pods that are not injected with a registry never affect a Model.
        """
        if isinstance(obj, Pod) and not obj.registry_injected:
            return []

        namespace = getattr(obj, "namespace", None)
        try:
            models = self._store.list_objects(MODEL_KIND, namespace)
        except StoreException as err:
            _LOGGER.warning("Failed to list Models in namespace %s: %s", namespace, err)
            return []
        return [
            NamedResource(MODEL_KIND, model.namespace, model.name)  # type: ignore[attr-defined]
            for model in models
        ]
