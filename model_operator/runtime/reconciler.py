"""Interface implemented by the objects driven by a runtime Controller."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from model_operator.manifest import NamedResource

__all__ = [
    "Reconciler",
    "ReconcileResult",
]


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a successful reconcile pass."""

    requeue_after: float | None = None
    """Reconcile the object again after this many seconds."""


class Reconciler(ABC):
    """Drives the object identified by a request towards its desired state."""

    @abstractmethod
    async def reconcile(self, request: NamedResource) -> ReconcileResult:
        """Perform a single reconcile pass.

        Raising an exception marks the pass as failed and the request is
        retried with backoff.
        """
