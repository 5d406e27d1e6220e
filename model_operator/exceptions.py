"""Exceptions related to model-operator."""

__all__ = [
    "OperatorException",
    "InputException",
    "StoreException",
    "ObjectNotFoundError",
    "ConflictError",
    "RegistryException",
    "ModelAlreadyExistsError",
    "ModelNotFoundError",
]


class OperatorException(Exception):
    """Generic base exception used for this library."""


class InputException(OperatorException):
    """Raised when the input files or values are not formatted as expected."""


class StoreException(OperatorException):
    """Raised when there is a failure reading or writing the object store."""


class ObjectNotFoundError(StoreException):
    """Raised when an object is not found in the store."""


class ConflictError(StoreException):
    """Raised when a write is based on a stale version of an object."""

    def __init__(
        self, resource_name: str, expected: str | None, actual: str | None
    ) -> None:
        super().__init__(
            f"Conflict updating {resource_name}: object has been modified "
            f"(resourceVersion {expected} != {actual})"
        )
        self.resource_name = resource_name
        self.expected = expected
        self.actual = actual


class RegistryException(OperatorException):
    """Raised when a call to a remote model registry fails."""


class ModelAlreadyExistsError(RegistryException):
    """Raised when pushing a model that the registry already has installed."""


class ModelNotFoundError(RegistryException):
    """Raised when deleting a model that the registry does not have."""
