"""Integration test fixtures.

Integration tests run sessions against a real cluster reachable through
the default context (KUBECONFIG, KUBE_URL/KUBE_TOKEN or in-cluster
configuration). They fail, not skip, when no cluster is reachable.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import NoReturn

import pytest

from floe_kubetest.client import KubeClient
from floe_kubetest.resources import KubeResourceManager
from floe_kubetest.settings import DEFAULT_CONTEXT, KubetestSettings, discover_cluster_configs


def _fail(message: str) -> NoReturn:
    pytest.fail(message)
    raise AssertionError("Unreachable")  # For type checker


@pytest.fixture(scope="session")
def live_settings(tmp_path_factory: pytest.TempPathFactory) -> KubetestSettings:
    """Settings writing diagnostics below a session temp dir."""
    root: Path = tmp_path_factory.mktemp("kubetest-live")
    return KubetestSettings(log_path=root / "logs", yaml_path=root / "yamls")


@pytest.fixture(scope="session")
def live_client(live_settings: KubetestSettings) -> KubeClient:
    """KubeClient of the default context, verified to reach the API."""
    cluster = discover_cluster_configs()[DEFAULT_CONTEXT]
    try:
        kube = KubeClient.from_cluster_config(cluster, settings=live_settings)
        kube.namespace_exists("kube-system")
    except Exception as e:  # noqa: BLE001
        _fail(f"No reachable Kubernetes cluster for context '{DEFAULT_CONTEXT}': {e}")
    return kube


@pytest.fixture(scope="session")
def live_manager_factory(
    live_settings: KubetestSettings,
    live_client: KubeClient,
) -> Callable[[], KubeResourceManager]:
    """Factory of managers bound to the live cluster."""

    def factory() -> KubeResourceManager:
        return KubeResourceManager.from_environment(live_settings)

    return factory
