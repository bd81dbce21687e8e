"""Unit tests for LogCollector.

Writes into tmp_path from an in-memory cluster and checks the on-disk layout.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml
from kubernetes.client.rest import ApiException

from floe_kubetest.collector import (
    LogCollector,
    LogCollectorConfig,
    pod_description_file,
    pod_log_file,
    resource_file,
)
from floe_kubetest.errors import TransientDiagnosticsError
from floe_kubetest.testing import InMemoryKubeClient

FOLDER = "failure-test-execution-test_deploy"


@pytest.fixture
def populated(cluster: InMemoryKubeClient) -> InMemoryKubeClient:
    """Cluster with one pod, one event and one ConfigMap in ns1."""
    cluster.add_namespace("ns1")
    cluster.add_pod(
        "ns1",
        "App-Pod",
        ["main", "sidecar"],
        logs={"main": "started\n"},
        previous_logs={"main": "crashed\n"},
    )
    cluster.add_event("ns1", "Scheduled", "assigned to node-a")
    cluster.listed_resources["configmaps"] = [
        {"kind": "ConfigMap", "metadata": {"name": "Settings", "namespace": "ns1"}},
        {"kind": "ConfigMap", "metadata": {"name": "other", "namespace": "ns2"}},
    ]
    cluster.listed_resources["nodes"] = [
        {"apiVersion": "v1", "kind": "Node", "metadata": {"name": "Node-A"}},
    ]
    return cluster


def make_collector(
    root: Path,
    kube: InMemoryKubeClient,
    **values: object,
) -> LogCollector:
    config = LogCollectorConfig(root_path=root, **values)
    return LogCollector(config, kube)  # type: ignore[arg-type]


class TestFileNames:
    """Tests for file name helpers."""

    @pytest.mark.requirement("KT-FR-032")
    def test_names_are_lowercased(self) -> None:
        """Test every generated file name is lowercase."""
        assert pod_log_file("App", "Main") == "logs-pod-app-container-main.log"
        assert pod_log_file("App", "Main", previous=True) == (
            "previous-logs-pod-app-container-main.log"
        )
        assert pod_description_file("App") == "describe-pod-app.log"
        assert resource_file("Settings") == "settings.yaml"


class TestCollectFromNamespace:
    """Tests for namespace collection."""

    @pytest.mark.requirement("KT-FR-032")
    def test_pod_logs_and_description(
        self,
        tmp_path: Path,
        populated: InMemoryKubeClient,
    ) -> None:
        """Test container logs and pod descriptions land under pod/."""
        make_collector(tmp_path, populated).collect_from_namespace("ns1", FOLDER)

        pod_dir = tmp_path / FOLDER / "ns1" / "pod"
        assert (pod_dir / "logs-pod-app-pod-container-main.log").read_text() == "started\n"
        assert not (pod_dir / "logs-pod-app-pod-container-sidecar.log").exists()
        assert not (pod_dir / "previous-logs-pod-app-pod-container-main.log").exists()
        description = yaml.safe_load((pod_dir / "describe-pod-app-pod.log").read_text())
        assert description["metadata"]["name"] == "App-Pod"

    @pytest.mark.requirement("KT-FR-032")
    def test_previous_logs(self, tmp_path: Path, populated: InMemoryKubeClient) -> None:
        """Test previous container logs are written when enabled."""
        collector = make_collector(tmp_path, populated, collect_previous_logs=True)
        collector.collect_from_namespace("ns1", FOLDER)

        pod_dir = tmp_path / FOLDER / "ns1" / "pod"
        assert (pod_dir / "previous-logs-pod-app-pod-container-main.log").read_text() == "crashed\n"

    @pytest.mark.requirement("KT-FR-032")
    def test_events(self, tmp_path: Path, populated: InMemoryKubeClient) -> None:
        """Test events are written one per line."""
        make_collector(tmp_path, populated).collect_from_namespace("ns1", FOLDER)

        lines = (tmp_path / FOLDER / "ns1" / "events.log").read_text().splitlines()
        assert len(lines) == 1
        assert "Scheduled Pod/app: assigned to node-a" in lines[0]

    @pytest.mark.requirement("KT-FR-032")
    def test_empty_namespace_still_has_events_file(
        self,
        tmp_path: Path,
        cluster: InMemoryKubeClient,
    ) -> None:
        """Test an empty namespace yields an empty events.log and no pod folder."""
        make_collector(tmp_path, cluster).collect_from_namespace("quiet")

        assert (tmp_path / "quiet" / "events.log").read_text() == ""
        assert not (tmp_path / "quiet" / "pod").exists()

    @pytest.mark.requirement("KT-FR-032")
    def test_namespaced_resources(self, tmp_path: Path, populated: InMemoryKubeClient) -> None:
        """Test only resources of the collected namespace are dumped."""
        make_collector(tmp_path, populated).collect_from_namespace("ns1", FOLDER)

        dump_dir = tmp_path / FOLDER / "ns1" / "configmaps"
        assert [path.name for path in dump_dir.iterdir()] == ["settings.yaml"]
        assert yaml.safe_load((dump_dir / "settings.yaml").read_text())["kind"] == "ConfigMap"

    @pytest.mark.requirement("KT-FR-032")
    def test_folder_is_lowercased(self, tmp_path: Path, populated: InMemoryKubeClient) -> None:
        """Test the failure folder and namespace directories are lowercased."""
        collector = make_collector(tmp_path, populated)
        collector.collect_from_namespace("ns1", "Failure-Before-All-TestApp")

        assert (tmp_path / "failure-before-all-testapp" / "ns1" / "events.log").exists()

    @pytest.mark.requirement("KT-FR-033")
    def test_list_failure_is_transient(self, tmp_path: Path, cluster: InMemoryKubeClient) -> None:
        """Test API failures surface as TransientDiagnosticsError."""
        cluster.list_pods = MagicMock(  # type: ignore[method-assign]
            side_effect=ApiException(status=403, reason="Forbidden"),
        )
        collector = make_collector(tmp_path, cluster)

        with pytest.raises(TransientDiagnosticsError, match="Forbidden \\(HTTP 403\\)") as exc_info:
            collector.collect_from_namespace("ns1")

        assert exc_info.value.operation == "collect namespace ns1"

    @pytest.mark.requirement("KT-FR-033")
    def test_unreadable_namespace_is_skipped(
        self,
        tmp_path: Path,
        cluster: InMemoryKubeClient,
    ) -> None:
        """Test one unreadable namespace does not stop the others."""
        cluster.add_event("ns2", "Scheduled", "assigned ns2/app to node-1")

        def list_pods(namespace: str) -> list[object]:
            if namespace == "ns1":
                raise ApiException(status=403, reason="Forbidden")
            return []

        cluster.list_pods = MagicMock(side_effect=list_pods)  # type: ignore[method-assign]
        collector = make_collector(tmp_path, cluster)

        failures = collector.collect_from_namespaces(["ns1", "ns2"], FOLDER)

        assert [failure.operation for failure in failures] == ["collect namespace ns1"]
        assert "Scheduled" in (tmp_path / FOLDER / "ns2" / "events.log").read_text()


class TestCollectClusterWide:
    """Tests for cluster-scoped resource dumps."""

    @pytest.mark.requirement("KT-FR-032")
    def test_cluster_wide_resources(self, tmp_path: Path, populated: InMemoryKubeClient) -> None:
        """Test cluster-scoped kinds land under cluster-wide-resources/."""
        collector = make_collector(tmp_path, populated, cluster_wide_resources=["nodes"])
        collector.collect_cluster_wide_resources(FOLDER)

        node = tmp_path / FOLDER / "cluster-wide-resources" / "nodes" / "node-a.yaml"
        assert yaml.safe_load(node.read_text())["metadata"]["name"] == "Node-A"

    @pytest.mark.requirement("KT-FR-032")
    def test_nothing_configured(self, tmp_path: Path, populated: InMemoryKubeClient) -> None:
        """Test no folder is created without configured kinds."""
        make_collector(tmp_path, populated).collect_cluster_wide_resources(FOLDER)
        assert not (tmp_path / FOLDER).exists()
