"""Shared fixtures for floe-kubetest tests.

Fixtures:
    - settings: KubetestSettings with zero waits and tmp output paths
    - cluster: in-memory default cluster (with kube-system)
    - edge_cluster: in-memory cluster behind the "edge" context
    - manager_factory: counting factory of managers over both clusters
    - suite: identity of a sample test class
    - make_session: SessionStore with a bound primary manager
    - orchestrator: SessionOrchestrator over the in-memory clusters
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from floe_kubetest.config import SessionConfig
from floe_kubetest.namespaces import NamespaceManager
from floe_kubetest.orchestrator import SessionOrchestrator
from floe_kubetest.resources import KubeResourceManager, TestIdentity
from floe_kubetest.settings import KubetestSettings
from floe_kubetest.store import SessionStore
from floe_kubetest.testing import InMemoryKubeClient, in_memory_manager_factory


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requirement(id): Mark test as covering a specific requirement",
    )
    config.addinivalue_line(
        "markers",
        "integration: Test requires a live Kubernetes cluster",
    )


class CountingFactory:
    """Manager factory that counts how many managers it built."""

    def __init__(self, factory: Callable[[], KubeResourceManager]) -> None:
        self._factory = factory
        self.built: list[KubeResourceManager] = []

    def __call__(self) -> KubeResourceManager:
        manager = self._factory()
        self.built.append(manager)
        return manager


# =============================================================================
# Settings and clusters
# =============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> KubetestSettings:
    """Settings with no waits and output below tmp_path."""
    return KubetestSettings(
        log_path=tmp_path / "logs",
        yaml_path=tmp_path / "yamls",
        namespace_propagation_wait=0.0,
        wait_timeout=0.0,
        poll_interval=0.0,
    )


@pytest.fixture
def cluster(settings: KubetestSettings) -> InMemoryKubeClient:
    """In-memory default cluster."""
    return InMemoryKubeClient(existing_namespaces=["kube-system"], settings=settings)


@pytest.fixture
def edge_cluster(settings: KubetestSettings) -> InMemoryKubeClient:
    """In-memory cluster of the "edge" context."""
    return InMemoryKubeClient(context="edge", settings=settings)


@pytest.fixture
def manager_factory(
    cluster: InMemoryKubeClient,
    edge_cluster: InMemoryKubeClient,
    settings: KubetestSettings,
) -> CountingFactory:
    """Counting manager factory over the default and edge clusters."""
    return CountingFactory(
        in_memory_manager_factory({"default": cluster, "edge": edge_cluster}, settings=settings)
    )


# =============================================================================
# Sessions
# =============================================================================


@pytest.fixture
def suite() -> TestIdentity:
    """Identity of a sample test class."""
    return TestIdentity("tests.unit.test_app.TestApp")


@pytest.fixture
def make_session(
    manager_factory: CountingFactory,
    suite: TestIdentity,
) -> Callable[..., SessionStore]:
    """Build a SessionStore with a primary manager bound to the suite."""

    def factory(config: SessionConfig | None = None, **values: Any) -> SessionStore:
        session = SessionStore(suite=suite, config=config or SessionConfig(**values))
        manager = manager_factory()
        manager.bind_test(suite)
        session.resource_manager = manager
        session.context_release = manager.use_context(session.config.context)
        return session

    return factory


@pytest.fixture
def log_lines() -> list[str]:
    """Lines written by the orchestrator's STARTED/FINISHED log."""
    return []


@pytest.fixture
def orchestrator(
    manager_factory: CountingFactory,
    settings: KubetestSettings,
    log_lines: list[str],
) -> SessionOrchestrator:
    """Orchestrator over the in-memory clusters."""
    return SessionOrchestrator(
        manager_factory,
        settings=settings,
        namespace_manager=NamespaceManager(settings, sleep=lambda _: None),
        log=log_lines.append,
    )


def config_map(name: str, namespace: str = "ns1") -> dict[str, Any]:
    """Serialized ConfigMap."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": {"key": "value"},
    }


@pytest.fixture
def make_config_map() -> Callable[..., dict[str, Any]]:
    """Factory of serialized ConfigMaps."""
    return config_map
