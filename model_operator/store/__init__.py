"""
The store module provides the object store that Models and Pods are read from
and written to by the model controller.

- Uses NamedResource as the key for all objects.
- Stores values as dataclass instances from manifest.py for type safety.
- Writes are optimistic and rejected when based on a stale resource version.

This abstract interface allows for various implementations (in-memory, a
kubernetes API server, etc.).
"""

from .store import Store, StoreEvent
from .in_memory import InMemoryStore

__all__ = [
    "Store",
    "StoreEvent",
    "InMemoryStore",
]
