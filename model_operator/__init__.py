"""
A controller that installs config Models into the model registries of Pods.

The `model_controller` module holds the reconciliation logic. The `store`,
`registry` and `runtime` modules provide the object store, the registry client
and the work queue it runs on.
"""

__all__ = [
    "manifest",
    "model_controller",
    "registry",
    "store",
    "runtime",
    "orchestrator",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
