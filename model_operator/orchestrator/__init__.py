"""Orchestrator for the model operator.

This module provides the orchestrator that runs the model controller against a
store and the resource loader used to populate that store.
"""

from .orchestrator import Orchestrator, OrchestratorConfig
from .loader import LoadOptions, ResourceLoader

__all__ = [
    "Orchestrator",
    "OrchestratorConfig",
    "LoadOptions",
    "ResourceLoader",
]
