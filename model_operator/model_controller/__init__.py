"""Model Controller module.

This module provides the ModelController for installing Model config plugins
into the model registries of injected Pods.
"""

from .controller import ModelController, StepResult, new_controller
from .mapper import ModelMapper

__all__ = [
    "ModelController",
    "ModelMapper",
    "StepResult",
    "new_controller",
]
