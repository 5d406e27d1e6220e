"""Representation of the objects managed by the model operator.

A `Model` describes a config plugin that should be installed into the model
registry of every eligible `Pod` in the same namespace. Objects are parsed from
raw kubernetes documents and serialized back using the kubernetes field names.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .exceptions import InputException

__all__ = [
    "NamedResource",
    "Model",
    "ModelSpec",
    "ModelStatus",
    "ModelPhase",
    "Plugin",
    "GetStateMode",
    "ConfigModule",
    "RegistryStatus",
    "Pod",
    "PodStatus",
    "ContainerStatus",
    "parse_raw_obj",
]


MODEL_DOMAIN = "config.model-operator.io"
MODEL_KIND = "Model"
POD_KIND = "Pod"

# Pods are only eligible to host a model registry once the registry sidecar
# has been injected
REGISTRY_INJECT_STATUS_ANNOTATION = "registry.config.model-operator.io/inject-status"
REGISTRY_INJECT_STATUS_INJECTED = "injected"

# Name of the container whose readiness gates installation
REGISTRY_CONTAINER_NAME = "model-registry"


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    controller_status: ClassVar[bool] = False
    """Whether an add keeps the stored status of an existing object."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


class GetStateMode(StrEnum):
    """How the registry plugin answers requests for operational state."""

    NONE = "None"
    OP_STATE = "OpState"
    EXPLICIT_RO_PATHS = "ExplicitRoPaths"
    EXPLICIT_RO_PATHS_EXPAND_WILDCARDS = "ExplicitRoPathsExpandWildcards"


class ModelPhase(StrEnum):
    """Installation phase of a Model in a single Pod registry."""

    PENDING = "Pending"
    INSTALLING = "Installing"
    INSTALLED = "Installed"


@dataclass
class Plugin(BaseManifest):
    """The config plugin a Model provides."""

    type: str
    """The model type, used as the model name in the registry."""

    version: str
    """The model version."""

    get_state_mode: GetStateMode = field(
        metadata=field_options(alias="getStateMode"), default=GetStateMode.NONE
    )
    """How the plugin exposes operational state."""


@dataclass
class ConfigModule(BaseManifest):
    """A YANG module that is part of the model."""

    name: str
    """The module name."""

    organization: str = ""
    """The organization that publishes the module."""

    revision: str = ""
    """The module revision."""

    file: str = ""
    """The name of the entry in the Model files holding the module source."""


@dataclass
class ModelSpec(BaseManifest):
    """Desired state of a Model."""

    plugin: Plugin | None = None
    """The plugin to install, or None if the Model is not injected anywhere."""

    modules: list[ConfigModule] = field(default_factory=list)
    """The modules that make up the model."""

    files: dict[str, str] = field(default_factory=dict)
    """Module source files keyed by file name."""


@dataclass
class RegistryStatus(BaseManifest):
    """Installation status of a Model in the registry of a single Pod."""

    pod_name: str = field(metadata=field_options(alias="podName"))
    """The name of the Pod hosting the registry."""

    phase: ModelPhase = ModelPhase.PENDING
    """The installation phase."""


@dataclass
class ModelStatus(BaseManifest):
    """Observed state of a Model."""

    registry_statuses: list[RegistryStatus] = field(
        metadata=field_options(alias="registryStatuses"), default_factory=list
    )
    """Per Pod registry status, in the order the Pods were first observed."""

    def get_registry_status(self, pod_name: str) -> RegistryStatus | None:
        """Return the registry status for the named Pod, if any."""
        for registry_status in self.registry_statuses:
            if registry_status.pod_name == pod_name:
                return registry_status
        return None


def _parse_metadata(cls: type, doc: dict[str, Any]) -> tuple[dict[str, Any], str]:
    if not (metadata := doc.get("metadata")):
        raise InputException(f"Invalid {cls.__name__} missing metadata: {doc}")
    if not (name := metadata.get("name")):
        raise InputException(f"Invalid {cls.__name__} missing metadata.name: {doc}")
    return metadata, name


@dataclass
class Model(BaseManifest):
    """A config model to distribute to the model registries of a namespace."""

    kind: ClassVar[str] = MODEL_KIND
    """The kind of the object."""

    controller_status: ClassVar[bool] = True
    """The status is written by controllers, not by whoever adds the Model."""

    name: str
    """The name of the Model."""

    namespace: str
    """The namespace of the Model."""

    spec: ModelSpec = field(default_factory=ModelSpec)
    """The desired state."""

    status: ModelStatus = field(default_factory=ModelStatus)
    """The observed state."""

    finalizers: list[str] = field(default_factory=list)
    """Finalizers blocking removal of the Model."""

    deletion_timestamp: str | None = field(
        metadata=field_options(alias="deletionTimestamp"), default=None
    )
    """Set once deletion of the Model has been requested."""

    resource_version: str | None = field(
        metadata=field_options(alias="resourceVersion"), default=None
    )
    """Opaque version assigned by the store on every write."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Model":
        """Parse a Model from a kubernetes resource object."""
        if not doc.get("apiVersion", "").startswith(MODEL_DOMAIN):
            raise InputException(
                f"Invalid {cls.__name__} expected '{MODEL_DOMAIN}': {doc}"
            )
        metadata, name = _parse_metadata(cls, doc)
        if not (namespace := metadata.get("namespace")):
            raise InputException(
                f"Invalid {cls.__name__} missing metadata.namespace: {doc}"
            )
        try:
            spec = ModelSpec.from_dict(doc.get("spec") or {})
            status = ModelStatus.from_dict(doc.get("status") or {})
        except (MissingField, InvalidFieldValue) as err:
            raise InputException(
                f"Invalid {cls.__name__} {namespace}/{name}: {err}"
            ) from err
        return cls(
            name=name,
            namespace=namespace,
            spec=spec,
            status=status,
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=metadata.get("deletionTimestamp"),
        )

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.namespace}/{self.name}"

    @property
    def resource_id(self) -> NamedResource:
        """Return the identifier of the Model."""
        return NamedResource(MODEL_KIND, self.namespace, self.name)

    def has_finalizer(self, finalizer: str) -> bool:
        """Return True if the Model carries the finalizer."""
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str) -> None:
        """Add the finalizer if not already present."""
        if finalizer not in self.finalizers:
            self.finalizers.append(finalizer)

    def remove_finalizer(self, finalizer: str) -> None:
        """Remove all occurrences of the finalizer."""
        self.finalizers = [f for f in self.finalizers if f != finalizer]


@dataclass
class ContainerStatus(BaseManifest):
    """Status of a single container in a Pod."""

    name: str
    """The container name."""

    ready: bool = False
    """Whether the container is passing its readiness probe."""


@dataclass
class PodStatus(BaseManifest):
    """Observed state of a Pod."""

    pod_ip: str | None = field(metadata=field_options(alias="podIP"), default=None)
    """The address of the Pod, empty until one is assigned."""

    container_statuses: list[ContainerStatus] = field(
        metadata=field_options(alias="containerStatuses"), default_factory=list
    )
    """The status of each container."""


@dataclass
class Pod(BaseManifest):
    """A worker instance that may host a model registry."""

    kind: ClassVar[str] = POD_KIND
    """The kind of the object."""

    name: str
    """The name of the Pod."""

    namespace: str
    """The namespace of the Pod."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations on the Pod."""

    status: PodStatus = field(default_factory=PodStatus)
    """The observed state."""

    resource_version: str | None = field(
        metadata=field_options(alias="resourceVersion"), default=None
    )
    """Opaque version assigned by the store on every write."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Pod":
        """Parse a Pod from a kubernetes resource object."""
        metadata, name = _parse_metadata(cls, doc)
        if not (namespace := metadata.get("namespace")):
            raise InputException(
                f"Invalid {cls.__name__} missing metadata.namespace: {doc}"
            )
        try:
            status = PodStatus.from_dict(doc.get("status") or {})
        except (MissingField, InvalidFieldValue) as err:
            raise InputException(
                f"Invalid {cls.__name__} {namespace}/{name}: {err}"
            ) from err
        return cls(
            name=name,
            namespace=namespace,
            annotations=dict(metadata.get("annotations") or {}),
            status=status,
        )

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.namespace}/{self.name}"

    @property
    def registry_injected(self) -> bool:
        """Return True if the Pod is prepared to host a model registry."""
        return (
            self.annotations.get(REGISTRY_INJECT_STATUS_ANNOTATION)
            == REGISTRY_INJECT_STATUS_INJECTED
        )

    @property
    def registry_ready(self) -> bool:
        """Return True if the Pod has an address and its registry container is ready."""
        if not self.status.pod_ip:
            return False
        return all(
            container.ready
            for container in self.status.container_statuses
            if container.name == REGISTRY_CONTAINER_NAME
        )

    def registry_address(self, port: int) -> str:
        """Return the network address of the registry in this Pod."""
        return f"{self.status.pod_ip}:{port}"


def parse_raw_obj(obj: dict[str, Any]) -> Model | Pod:
    """Parse a raw kubernetes object into a Model or Pod."""
    if not (kind := obj.get("kind")):
        raise InputException(f"Invalid object missing kind: {obj}")
    if not obj.get("apiVersion"):
        raise InputException(f"Invalid object missing apiVersion: {obj}")
    if kind == MODEL_KIND:
        return Model.parse_doc(obj)
    if kind == POD_KIND:
        return Pod.parse_doc(obj)
    raise InputException(f"Unsupported object kind {kind}")
