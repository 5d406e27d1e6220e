"""The model descriptor pushed to a remote model registry."""

from dataclasses import dataclass, field
import posixpath

from model_operator.manifest import GetStateMode, Model

__all__ = [
    "ConfigModel",
    "ConfigModule",
    "normalize_file_name",
]


def normalize_file_name(name: str) -> str:
    """Return the file name in a platform neutral (POSIX) path form."""
    if not name:
        return name
    path = posixpath.normpath(name.replace("\\", "/"))
    return path.removeprefix("./")


@dataclass(frozen=True)
class ConfigModule:
    """A module of the pushed model."""

    name: str
    organization: str
    revision: str
    file: str


@dataclass(frozen=True)
class ConfigModel:
    """A model as understood by the registry."""

    name: str
    version: str
    get_state_mode: GetStateMode = GetStateMode.NONE
    modules: list[ConfigModule] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_model(cls, model: Model) -> "ConfigModel":
        """Build the registry descriptor for a Model with a plugin."""
        if (plugin := model.spec.plugin) is None:
            raise ValueError(f"Model {model.namespaced_name} does not define a plugin")
        return cls(
            name=plugin.type,
            version=plugin.version,
            get_state_mode=plugin.get_state_mode,
            modules=[
                ConfigModule(
                    name=module.name,
                    organization=module.organization,
                    revision=module.revision,
                    file=normalize_file_name(module.file),
                )
                for module in model.spec.modules
            ],
            files={
                normalize_file_name(name): data
                for name, data in model.spec.files.items()
            },
        )
