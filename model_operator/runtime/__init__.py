"""Runtime for running reconcilers.

This module provides the work queue and controller that turn store events into
serialized, retried reconcile requests.
"""

from .controller import Controller, MapFunc, enqueue_for_object
from .queue import WorkQueue
from .reconciler import Reconciler, ReconcileResult

__all__ = [
    "Controller",
    "MapFunc",
    "enqueue_for_object",
    "WorkQueue",
    "Reconciler",
    "ReconcileResult",
]
