"""Task tracking module for the model operator.

This module provides a simple task tracking service used by the runtime to
start and cancel its reconcile workers.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
