"""The registry module.

This module provides clients for the model registry that runs alongside each
injected Pod, and the model descriptor that is pushed to it.
"""

from .client import RegistryClient
from .http import HttpRegistryClient
from .model import ConfigModel, ConfigModule, normalize_file_name

__all__ = [
    "RegistryClient",
    "HttpRegistryClient",
    "ConfigModel",
    "ConfigModule",
    "normalize_file_name",
]
