"""Configuration objects for model-operator."""

from dataclasses import dataclass

DEFAULT_REGISTRY_PORT = 5151


@dataclass
class ModelControllerConfig:
    """Configuration for the ModelController."""

    requeue_after: float = 1.0
    """Seconds to wait before checking again on Pods that are not yet ready."""

    registry_port: int = DEFAULT_REGISTRY_PORT
    """Port the model registry listens on in each Pod."""


@dataclass
class RegistryClientConfig:
    """Configuration for the model registry client."""

    timeout: float | None = 30.0
    """Total timeout in seconds for a single registry call, or None for no limit."""


@dataclass
class WorkQueueConfig:
    """Configuration for the reconcile work queue."""

    max_concurrent_reconciles: int = 1
    """Number of workers reconciling distinct objects at the same time."""

    backoff_base: float = 0.005
    """Delay in seconds before the first retry of a failed reconcile."""

    backoff_max: float = 60.0
    """Upper bound in seconds for the retry delay of a failing object."""
