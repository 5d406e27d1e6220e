"""Model-operator reconcile action."""

import logging
import pathlib
import sys
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import Any, cast

import yaml

from model_operator.config import (
    ModelControllerConfig,
    RegistryClientConfig,
    WorkQueueConfig,
)
from model_operator.exceptions import OperatorException
from model_operator.manifest import MODEL_DOMAIN, Model
from model_operator.orchestrator import LoadOptions, Orchestrator, OrchestratorConfig
from model_operator.store import InMemoryStore

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def model_doc(model: Model) -> dict[str, Any]:
    """Return the kubernetes document for the Model without its spec."""
    metadata: dict[str, Any] = {"name": model.name, "namespace": model.namespace}
    if model.finalizers:
        metadata["finalizers"] = list(model.finalizers)
    return {
        "apiVersion": f"{MODEL_DOMAIN}/v1beta1",
        "kind": model.kind,
        "metadata": metadata,
        "status": model.status.to_dict(),
    }


class ReconcileAction:
    """Model-operator reconcile action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "reconcile",
                help="Install Models into the registries of local Pod manifests",
                description=(
                    "Load Model and Pod manifests, reconcile every Model against the "
                    "model registries of the injected Pods and print the resulting "
                    "Model status."
                ),
            ),
        )
        args.add_argument(
            "--path",
            help="Path to a file or directory with Model and Pod manifests",
            type=pathlib.Path,
            default=pathlib.Path("."),
        )
        args.add_argument(
            "--timeout",
            help="Seconds to wait for all Models to settle",
            type=float,
            default=DEFAULT_TIMEOUT,
        )
        args.add_argument(
            "--registry-port",
            help="Port of the model registry in each Pod",
            type=int,
            default=ModelControllerConfig.registry_port,
        )
        args.add_argument(
            "--registry-timeout",
            help="Timeout in seconds of a single model registry call",
            type=float,
            default=RegistryClientConfig.timeout,
        )
        args.add_argument(
            "--requeue-after",
            help="Seconds between checks on Pods that are not ready yet",
            type=float,
            default=ModelControllerConfig.requeue_after,
        )
        args.add_argument(
            "--max-concurrent-reconciles",
            help="Number of Models reconciled in parallel",
            type=int,
            default=WorkQueueConfig.max_concurrent_reconciles,
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        timeout: float,
        registry_port: int,
        registry_timeout: float,
        requeue_after: float,
        max_concurrent_reconciles: int,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        config = OrchestratorConfig(
            model_controller_config=ModelControllerConfig(
                requeue_after=requeue_after,
                registry_port=registry_port,
            ),
            registry_client_config=RegistryClientConfig(timeout=registry_timeout),
            work_queue_config=WorkQueueConfig(
                max_concurrent_reconciles=max_concurrent_reconciles
            ),
        )
        orchestrator = Orchestrator(InMemoryStore(), config=config)
        await orchestrator.start()
        try:
            await orchestrator.load(LoadOptions(path=path))
            settled = await orchestrator.wait_idle(timeout)
            models = orchestrator.models()
        finally:
            await orchestrator.stop()

        yaml.dump_all(
            [model_doc(model) for model in models],
            sys.stdout,
            sort_keys=False,
            explicit_start=True,
        )
        if not settled:
            raise OperatorException(
                f"Models did not settle within {timeout} seconds"
            )
