"""Tests for the model controller."""

import logging

import pytest

from model_operator.config import ModelControllerConfig
from model_operator.exceptions import ConflictError, RegistryException
from model_operator.manifest import (
    MODEL_KIND,
    Model,
    ModelPhase,
    ModelStatus,
    NamedResource,
    RegistryStatus,
)
from model_operator.model_controller import ModelController
from model_operator.model_controller.controller import CONFIG_FINALIZER
from model_operator.runtime import ReconcileResult
from model_operator.store import InMemoryStore

from ..fakes import NAMESPACE, FakeRegistryClient, make_model, make_pod

MODEL_ID = NamedResource(MODEL_KIND, NAMESPACE, "model")
P1_ADDRESS = "10.0.0.1:5151"
P2_ADDRESS = "10.0.0.2:5151"


@pytest.fixture(name="controller")
def controller_fixture(
    store: InMemoryStore, registry: FakeRegistryClient
) -> ModelController:
    """Create a ModelController backed by the store and fake registry."""
    return ModelController(store, registry)


def get_model(store: InMemoryStore) -> Model:
    model = store.get_object(MODEL_ID, Model)
    assert model is not None
    return model


def phases(store: InMemoryStore) -> dict[str, ModelPhase]:
    """Return the phase of the Model in each Pod registry."""
    return {
        status.pod_name: status.phase
        for status in get_model(store).status.registry_statuses
    }


def installed_model(*pod_names: str) -> Model:
    """Return a Model that is already installed in the named Pods."""
    model = make_model()
    model.finalizers = [CONFIG_FINALIZER]
    model.status = ModelStatus(
        registry_statuses=[
            RegistryStatus(pod_name=name, phase=ModelPhase.INSTALLED)
            for name in pod_names
        ]
    )
    return model


async def test_model_not_found(
    controller: ModelController, registry: FakeRegistryClient
) -> None:
    """Test that reconciling a missing Model is a no-op."""
    result = await controller.reconcile(MODEL_ID)
    assert result == ReconcileResult()
    assert not registry.pushes
    assert not registry.deletes


async def test_model_without_plugin(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test that a Model without a plugin is left untouched."""
    store.add_object(make_model(with_plugin=False))
    store.add_object(make_pod("p1"))
    version = get_model(store).resource_version

    result = await controller.reconcile(MODEL_ID)
    assert result == ReconcileResult()

    model = get_model(store)
    assert model.resource_version == version
    assert not model.finalizers
    assert not model.status.registry_statuses
    assert not registry.pushes


async def test_finalizer_added_without_pods(
    controller: ModelController, store: InMemoryStore
) -> None:
    """Test the finalizer is persisted even when there is nothing to install."""
    store.add_object(make_model())

    result = await controller.reconcile(MODEL_ID)
    assert result == ReconcileResult()

    model = get_model(store)
    assert model.finalizers == [CONFIG_FINALIZER]
    assert not model.status.registry_statuses


async def test_worked_example(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test installing into a ready Pod and a Pod that becomes ready later."""
    store.add_object(make_model())
    store.add_object(make_pod("p1", pod_ip="10.0.0.1"))
    store.add_object(make_pod("p2", pod_ip="10.0.0.2", ready=False))

    # Pass 1: P1 entry created
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert get_model(store).finalizers == [CONFIG_FINALIZER]
    assert phases(store) == {"p1": ModelPhase.PENDING}

    # Pass 2: P2 entry created
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.PENDING, "p2": ModelPhase.PENDING}

    # Pass 3: P1 Pending -> Installing
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLING, "p2": ModelPhase.PENDING}
    assert not registry.pushes

    # Pass 4: P1 pushed and Installed
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLED, "p2": ModelPhase.PENDING}
    assert [address for address, _ in registry.pushes] == [P1_ADDRESS]

    # Pass 5: P2 is not ready
    assert await controller.reconcile(MODEL_ID) == ReconcileResult(requeue_after=1.0)
    assert phases(store) == {"p1": ModelPhase.INSTALLED, "p2": ModelPhase.PENDING}

    store.add_object(make_pod("p2", pod_ip="10.0.0.2"))

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLED, "p2": ModelPhase.INSTALLING}

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLED, "p2": ModelPhase.INSTALLED}
    assert [address for address, _ in registry.pushes] == [P1_ADDRESS, P2_ADDRESS]

    # Converged
    version = get_model(store).resource_version
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert get_model(store).resource_version == version
    assert len(registry.pushes) == 2


async def test_pushed_model(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test the model descriptor sent to the registry."""
    model = make_model()
    model.spec.modules[0].file = ".\\yang\\test.yang"
    model.spec.files = {"yang\\test.yang": "module test {}"}
    model.status = ModelStatus(
        registry_statuses=[RegistryStatus(pod_name="p1", phase=ModelPhase.INSTALLING)]
    )
    model.finalizers = [CONFIG_FINALIZER]
    store.add_object(model)
    store.add_object(make_pod("p1"))

    await controller.reconcile(MODEL_ID)

    assert len(registry.pushes) == 1
    address, pushed = registry.pushes[0]
    assert address == P1_ADDRESS
    assert pushed.name == "t"
    assert pushed.version == "v1"
    assert pushed.get_state_mode == "OpState"
    assert [module.file for module in pushed.modules] == ["yang/test.yang"]
    assert pushed.files == {"yang/test.yang": "module test {}"}


async def test_ignores_pods_without_annotation(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test that only injected Pods receive the Model."""
    store.add_object(make_model())
    store.add_object(make_pod("plain", injected=False))
    store.add_object(make_pod("other-ns", namespace="other"))

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {}
    assert not registry.pushes


async def test_idempotence(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test a fully installed Model makes no remote calls and no writes."""
    store.add_object(installed_model("p1", "p2"))
    store.add_object(make_pod("p1", pod_ip="10.0.0.1"))
    store.add_object(make_pod("p2", pod_ip="10.0.0.2"))
    version = get_model(store).resource_version

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()

    assert get_model(store).resource_version == version
    assert not registry.pushes


async def test_single_mutation_per_pass(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test every pass changes at most one registry status until converged."""
    store.add_object(make_model())
    for i in range(1, 4):
        store.add_object(make_pod(f"p{i}", pod_ip=f"10.0.0.{i}"))

    for _ in range(20):
        before = phases(store)
        version = get_model(store).resource_version
        result = await controller.reconcile(MODEL_ID)
        assert result == ReconcileResult()
        after = phases(store)
        changed = {
            name
            for name in before.keys() | after.keys()
            if before.get(name) != after.get(name)
        }
        assert len(changed) <= 1
        if get_model(store).resource_version == version:
            break
    else:
        pytest.fail("Model did not converge")

    assert phases(store) == {
        "p1": ModelPhase.INSTALLED,
        "p2": ModelPhase.INSTALLED,
        "p3": ModelPhase.INSTALLED,
    }
    assert len(registry.pushes) == 3


async def test_push_already_exists(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test a model already present in the registry counts as installed."""
    registry.installed[P1_ADDRESS].add(("t", "v1"))
    model = make_model()
    model.status = ModelStatus(
        registry_statuses=[RegistryStatus(pod_name="p1", phase=ModelPhase.INSTALLING)]
    )
    store.add_object(model)
    store.add_object(make_pod("p1"))

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLED}
    assert len(registry.pushes) == 1


async def test_push_failure(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test a failed push is raised and the phase does not change."""
    model = make_model()
    model.status = ModelStatus(
        registry_statuses=[RegistryStatus(pod_name="p1", phase=ModelPhase.INSTALLING)]
    )
    store.add_object(model)
    store.add_object(make_pod("p1"))
    registry.errors[P1_ADDRESS] = RegistryException("connection refused")

    with pytest.raises(RegistryException, match="connection refused"):
        await controller.reconcile(MODEL_ID)
    assert phases(store) == {"p1": ModelPhase.INSTALLING}

    # The retry succeeds once the registry is reachable
    del registry.errors[P1_ADDRESS]
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLED}


@pytest.mark.parametrize(
    ("pod_ip", "ready"),
    [
        (None, True),
        ("", True),
        ("10.0.0.1", False),
    ],
)
@pytest.mark.parametrize("phase", [ModelPhase.PENDING, ModelPhase.INSTALLING])
async def test_readiness_gating(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
    pod_ip: str | None,
    ready: bool,
    phase: ModelPhase,
) -> None:
    """Test a Pod that is not ready never advances and the pass requeues."""
    model = make_model()
    model.finalizers = [CONFIG_FINALIZER]
    model.status = ModelStatus(
        registry_statuses=[RegistryStatus(pod_name="p1", phase=phase)]
    )
    store.add_object(model)
    store.add_object(make_pod("p1", pod_ip=pod_ip, ready=ready))
    version = get_model(store).resource_version

    result = await controller.reconcile(MODEL_ID)
    assert result == ReconcileResult(requeue_after=1.0)
    assert get_model(store).resource_version == version
    assert phases(store) == {"p1": phase}
    assert not registry.pushes


async def test_requeue_interval_from_config(
    store: InMemoryStore, registry: FakeRegistryClient
) -> None:
    """Test the requeue interval and registry port come from the config."""
    controller = ModelController(
        store,
        registry,
        ModelControllerConfig(requeue_after=0.25, registry_port=8080),
    )
    model = make_model()
    model.status = ModelStatus(
        registry_statuses=[
            RegistryStatus(pod_name="p1", phase=ModelPhase.INSTALLING),
            RegistryStatus(pod_name="p2", phase=ModelPhase.PENDING),
        ]
    )
    store.add_object(model)
    store.add_object(make_pod("p1", pod_ip="10.0.0.1"))
    store.add_object(make_pod("p2", pod_ip=None))

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert [address for address, _ in registry.pushes] == ["10.0.0.1:8080"]
    assert await controller.reconcile(MODEL_ID) == ReconcileResult(requeue_after=0.25)


async def test_garbage_collection(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test the status of a vanished Pod is removed one entry per pass."""
    store.add_object(installed_model("gone-1", "p1", "gone-2"))
    store.add_object(make_pod("p1"))

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLED, "gone-2": ModelPhase.INSTALLED}

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLED}

    # Never recreated without a Pod of that name
    version = get_model(store).resource_version
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert get_model(store).resource_version == version
    assert not registry.pushes


async def test_pod_deleted_and_recreated(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test a Pod recreated with the same name gets the Model installed again."""
    store.add_object(installed_model("p1"))
    store.add_object(make_pod("p1"))

    store.delete_object(NamedResource("Pod", NAMESPACE, "p1"))
    await controller.reconcile(MODEL_ID)
    assert phases(store) == {}

    store.add_object(make_pod("p1"))
    for _ in range(3):
        await controller.reconcile(MODEL_ID)
    assert phases(store) == {"p1": ModelPhase.INSTALLED}
    assert len(registry.pushes) == 1


class StaleReadStore(InMemoryStore):
    """Store where another writer updates a Model right after it is read."""

    def __init__(self) -> None:
        super().__init__()
        self.race = False

    def get_object(self, resource_id, cls):  # type: ignore[no-untyped-def]
        obj = super().get_object(resource_id, cls)
        if self.race and isinstance(obj, Model):
            self.race = False
            self.update_status(super().get_object(resource_id, Model))
        return obj


async def test_conflict_on_stale_write(registry: FakeRegistryClient) -> None:
    """Test a write based on a stale read fails instead of overwriting."""
    store = StaleReadStore()
    controller = ModelController(store, registry)
    store.add_object(make_model())
    store.add_object(make_pod("p1"))

    store.race = True
    with pytest.raises(ConflictError):
        await controller.reconcile(MODEL_ID)
    assert not get_model(store).finalizers

    # A fresh pass succeeds
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert get_model(store).finalizers == [CONFIG_FINALIZER]
    assert phases(store) == {"p1": ModelPhase.PENDING}


async def test_injected_logger(
    store: InMemoryStore,
    registry: FakeRegistryClient,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test progress is reported on the logger passed to the controller."""
    logger = logging.getLogger("test.model-controller")
    controller = ModelController(store, registry, logger=logger)
    store.add_object(make_model())

    with caplog.at_level(logging.DEBUG, logger="test.model-controller"):
        await controller.reconcile(MODEL_ID)

    messages = [r.getMessage() for r in caplog.records if r.name == logger.name]
    assert "Reconciling Model test-ns/model" in messages
    assert "Adding 'config' finalizer to Model 'test-ns/model'" in messages


async def test_delete_without_pods(
    controller: ModelController, store: InMemoryStore
) -> None:
    """Test the finalizer is removed in one pass when there are no Pods."""
    store.add_object(installed_model())
    store.delete_object(MODEL_ID)
    assert get_model(store).deletion_timestamp is not None

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert store.get_object(MODEL_ID, Model) is None


async def test_delete_from_all_pods(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test the Model is removed from every injected Pod before finalizing."""
    registry.installed[P1_ADDRESS].add(("t", "v1"))
    store.add_object(installed_model("p1", "p2"))
    store.add_object(make_pod("p1", pod_ip="10.0.0.1"))
    # Never installed, the registry answers not found
    store.add_object(make_pod("p2", pod_ip="10.0.0.2"))
    store.add_object(make_pod("plain", pod_ip="10.0.0.3", injected=False))
    store.add_object(make_pod("no-address", pod_ip=None))
    store.delete_object(MODEL_ID)

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()

    assert registry.deletes == [
        (P1_ADDRESS, "t", "v1"),
        (P2_ADDRESS, "t", "v1"),
    ]
    assert not registry.installed[P1_ADDRESS]
    assert store.get_object(MODEL_ID, Model) is None


async def test_delete_failure_keeps_finalizer(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test a failed delete keeps the finalizer and the retry covers all Pods."""
    registry.installed[P1_ADDRESS].add(("t", "v1"))
    registry.installed[P2_ADDRESS].add(("t", "v1"))
    store.add_object(installed_model("p1", "p2"))
    store.add_object(make_pod("p1", pod_ip="10.0.0.1"))
    store.add_object(make_pod("p2", pod_ip="10.0.0.2"))
    store.delete_object(MODEL_ID)
    registry.errors[P2_ADDRESS] = RegistryException("unavailable")

    with pytest.raises(RegistryException, match="unavailable"):
        await controller.reconcile(MODEL_ID)
    model = get_model(store)
    assert model.finalizers == [CONFIG_FINALIZER]
    assert not registry.installed[P1_ADDRESS]

    del registry.errors[P2_ADDRESS]
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert store.get_object(MODEL_ID, Model) is None
    assert [address for address, _, _ in registry.deletes] == [
        P1_ADDRESS,
        P2_ADDRESS,
        P1_ADDRESS,
        P2_ADDRESS,
    ]
    assert not registry.installed[P2_ADDRESS]


async def test_delete_without_finalizer(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test a Model being deleted without the finalizer is left alone."""
    model = make_model()
    model.finalizers = ["other"]
    store.add_object(model)
    store.add_object(make_pod("p1"))
    store.delete_object(MODEL_ID)

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert not registry.deletes
    assert get_model(store).finalizers == ["other"]


async def test_delete_keeps_other_finalizers(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test only the config finalizer is removed."""
    model = installed_model()
    model.finalizers = ["other", CONFIG_FINALIZER]
    store.add_object(model)
    store.delete_object(MODEL_ID)

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    model = get_model(store)
    assert model.finalizers == ["other"]
    assert model.deletion_timestamp is not None


async def test_update_then_delete(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test an externally updated Model is still uninstalled when deleted."""
    store.add_object(make_model())
    store.add_object(make_pod("p1", pod_ip="10.0.0.1"))
    for _ in range(4):
        await controller.reconcile(MODEL_ID)
    assert phases(store) == {"p1": ModelPhase.INSTALLED}

    updated = make_model()
    updated.spec.files = {"test.yang": "module test { }"}
    store.add_object(updated)
    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert phases(store) == {"p1": ModelPhase.INSTALLED}
    assert get_model(store).finalizers == [CONFIG_FINALIZER]
    assert len(registry.pushes) == 1

    store.delete_object(MODEL_ID)
    assert get_model(store).deletion_timestamp is not None

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert registry.deletes == [(P1_ADDRESS, "t", "v1")]
    assert not registry.installed[P1_ADDRESS]
    assert store.get_object(MODEL_ID, Model) is None


async def test_delete_without_plugin(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
) -> None:
    """Test a Model without a plugin being deleted is left alone."""
    model = make_model(with_plugin=False)
    model.finalizers = [CONFIG_FINALIZER]
    store.add_object(model)
    store.add_object(make_pod("p1", pod_ip="10.0.0.1"))
    store.delete_object(MODEL_ID)

    assert await controller.reconcile(MODEL_ID) == ReconcileResult()
    assert not registry.deletes
    model = get_model(store)
    assert model.finalizers == [CONFIG_FINALIZER]
    assert model.deletion_timestamp is not None


async def test_delete_warns_for_pod_without_address(
    controller: ModelController,
    store: InMemoryStore,
    registry: FakeRegistryClient,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test a Pod without an address is skipped with a warning on delete."""
    store.add_object(installed_model("p1"))
    store.add_object(make_pod("p1", pod_ip=None))
    store.delete_object(MODEL_ID)

    with caplog.at_level(logging.WARNING):
        assert await controller.reconcile(MODEL_ID) == ReconcileResult()

    assert not registry.deletes
    assert store.get_object(MODEL_ID, Model) is None
    assert [
        r.getMessage() for r in caplog.records if r.levelno == logging.WARNING
    ] == ["Skipping Pod 'p1' without an address for Model 'test-ns/model'"]
