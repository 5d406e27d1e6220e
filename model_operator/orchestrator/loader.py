"""Resource loader for populating the store from manifest files.

This module provides the ResourceLoader class which reads Model and Pod
manifests from the filesystem. It stands in for the external actors that
create objects in a real cluster:

- Handles basic YAML/JSON parsing and validation
- Skips documents of kinds the operator does not manage
- Stateless apart from remembering which files were already read
"""

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import yaml

from model_operator.exceptions import InputException, OperatorException
from model_operator.manifest import Model, Pod, parse_raw_obj

__all__ = ["ResourceLoader", "LoadOptions"]

_LOGGER = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass
class LoadOptions:
    """Options for loading resources.

    Attributes:
        path: Filesystem path to load resources from. Can be a file or directory.
        recursive: If True and path is a directory, load resources from all
                  subdirectories as well.
    """

    path: Path
    recursive: bool = True

    def __post_init__(self) -> None:
        """Resolve the path after initialization."""
        self.path = Path(self.path).expanduser().resolve()


class ResourceLoader:
    """Loads Models and Pods from the filesystem."""

    def __init__(self) -> None:
        """Initialize the resource loader."""
        self._processed_files: set[Path] = set()

    async def load(self, options: LoadOptions) -> AsyncGenerator[Model | Pod, None]:
        """Load resources from the given options.

        Raises:
            OperatorException: If the path does not exist or a file cannot be read.
        """
        _LOGGER.info("Loading resources from %s", options.path)

        if not options.path.exists():
            raise OperatorException(f"Path does not exist: {options.path}")

        if options.path.is_file():
            async for resource in self._load_file(options.path):
                yield resource
        elif options.path.is_dir():
            async for resource in self._load_directory(options.path, options):
                yield resource
        else:
            raise OperatorException(f"Path is not a file or directory: {options.path}")

        _LOGGER.info("Finished loading resources")

    async def _load_directory(
        self, path: Path, options: LoadOptions
    ) -> AsyncGenerator[Model | Pod, None]:
        _LOGGER.debug("Loading directory: %s", path)
        for entry in sorted(path.iterdir()):
            if entry.is_file() and entry.suffix.lower() in MANIFEST_SUFFIXES:
                async for resource in self._load_file(entry):
                    yield resource
            elif options.recursive and entry.is_dir():
                async for resource in self._load_directory(entry, options):
                    yield resource

    async def _load_file(self, path: Path) -> AsyncGenerator[Model | Pod, None]:
        if path in self._processed_files:
            _LOGGER.debug("Skipping already processed file: %s", path)
            return

        _LOGGER.debug("Processing file: %s", path)
        self._processed_files.add(path)

        try:
            async with aiofiles.open(path, encoding="utf-8") as manifest_file:
                content = await manifest_file.read()
        except OSError as e:
            raise OperatorException(f"Failed to read file {path}: {e}") from e

        try:
            docs = list(yaml.safe_load_all(content))
        except yaml.YAMLError as e:
            raise OperatorException(f"Invalid YAML in file {path}: {e}") from e

        for doc in docs:
            if not doc:
                continue
            if not isinstance(doc, dict):
                _LOGGER.info("Skipping non-object document in %s", path)
                continue
            try:
                yield parse_raw_obj(doc)
            except InputException as e:
                _LOGGER.info("Skipping document in %s: %s", path, e)
