"""Library for talking to the model registry hosted by a Pod."""

from abc import ABC, abstractmethod

from .model import ConfigModel

__all__ = [
    "RegistryClient",
]


class RegistryClient(ABC):
    """Client for the model registry service.

    Every call is addressed to a single registry by its `host:port` address.
    Implementations report the idempotent outcomes with dedicated exceptions
    so callers can tell them apart from real failures.
    """

    @abstractmethod
    async def push_model(self, address: str, model: ConfigModel) -> None:
        """Install the model into the registry.

        Raises:
            ModelAlreadyExistsError: If the registry already has the model.
            RegistryException: On any other failure.
        """

    @abstractmethod
    async def delete_model(self, address: str, name: str, version: str) -> None:
        """Remove the model from the registry.

        Raises:
            ModelNotFoundError: If the registry does not have the model.
            RegistryException: On any other failure.
        """

    async def close(self) -> None:
        """Release any connections held by the client."""
