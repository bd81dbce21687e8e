"""Diagnostics collector.

Writes the state of namespaces to disk so a failed test can be debugged
after the cluster is gone:

    {root}/[{folder}/]{namespace}/pod/logs-pod-{pod}-container-{container}.log
    {root}/[{folder}/]{namespace}/pod/previous-logs-pod-{pod}-container-{container}.log
    {root}/[{folder}/]{namespace}/pod/describe-pod-{pod}.log
    {root}/[{folder}/]{namespace}/events.log
    {root}/[{folder}/]{namespace}/{resource type}/{name}.yaml
    {root}/[{folder}/]cluster-wide-resources/{resource type}/{name}.yaml

All file and folder names are lowercased.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from floe_kubetest.config import DEFAULT_NAMESPACED_RESOURCES
from floe_kubetest.errors import TransientDiagnosticsError, sanitize_api_error

if TYPE_CHECKING:
    from floe_kubetest.client import KubeClient

logger = structlog.get_logger(__name__)

CLUSTER_WIDE_FOLDER = "cluster-wide-resources"
POD_FOLDER = "pod"
EVENTS_FILE = "events.log"


class LogCollectorConfig(BaseModel):
    """What a collector writes and where."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    root_path: Path = Field(..., description="Root directory of this collector")
    namespaced_resources: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NAMESPACED_RESOURCES),
        description="Namespaced resource kinds dumped as YAML",
    )
    cluster_wide_resources: list[str] = Field(
        default_factory=list,
        description="Cluster-scoped resource kinds dumped as YAML",
    )
    collect_previous_logs: bool = Field(
        default=False,
        description="Also collect logs of previous container instances",
    )


def pod_log_file(pod: str, container: str, *, previous: bool = False) -> str:
    """File name of a container log."""
    prefix = "previous-logs" if previous else "logs"
    return f"{prefix}-pod-{pod}-container-{container}.log".lower()


def pod_description_file(pod: str) -> str:
    """File name of a pod description."""
    return f"describe-pod-{pod}.log".lower()


def resource_file(name: str) -> str:
    """File name of a resource dump."""
    return f"{name}.yaml".lower()


def _format_event(event: Any) -> str:
    involved = event.involved_object
    timestamp = event.last_timestamp or event.event_time or event.first_timestamp
    target = f"{involved.kind}/{involved.name}" if involved is not None else "-"
    return f"{timestamp} {event.type} {event.reason} {target}: {event.message}"


class LogCollector:
    """Collects pod logs, events and resource dumps for namespaces.

    Example:
        >>> collector = LogCollector(LogCollectorConfig(root_path=Path("target/logs")), kube)
        >>> collector.collect_from_namespaces(["payments"], folder="failure-before-all-testfoo")
        >>> collector.collect_cluster_wide_resources(folder="failure-before-all-testfoo")
    """

    def __init__(self, config: LogCollectorConfig, kube_client: KubeClient) -> None:
        self.config = config
        self.kube_client = kube_client

    def _base(self, folder: str | None) -> Path:
        if folder:
            return self.config.root_path / folder.lower()
        return self.config.root_path

    def collect_from_namespaces(
        self,
        namespaces: Iterable[str],
        folder: str | None = None,
    ) -> list[TransientDiagnosticsError]:
        """Collect every namespace in ``namespaces``.

        A namespace that cannot be read is logged and skipped; the others
        are still collected.

        Returns:
            Failures of the skipped namespaces, in order.
        """
        failures: list[TransientDiagnosticsError] = []
        for namespace in namespaces:
            try:
                self.collect_from_namespace(namespace, folder)
            except TransientDiagnosticsError as e:
                logger.warning(
                    "log_collector.namespace_skipped",
                    namespace=namespace,
                    error=str(e),
                )
                failures.append(e)
        return failures

    def collect_from_namespace(self, namespace: str, folder: str | None = None) -> None:
        """Collect pods, events and configured resource kinds of one namespace.

        Raises:
            TransientDiagnosticsError: If the namespace cannot be read.
        """
        target = self._base(folder) / namespace.lower()
        logger.info("log_collector.collecting_namespace", namespace=namespace, path=str(target))
        try:
            target.mkdir(parents=True, exist_ok=True)
            self._collect_pods(namespace, target / POD_FOLDER)
            self._collect_events(namespace, target)
            for resource_type in self.config.namespaced_resources:
                self._dump_resources(resource_type, target / resource_type.lower(), namespace)
        except TransientDiagnosticsError:
            raise
        except Exception as e:
            raise TransientDiagnosticsError(
                f"collect namespace {namespace}",
                reason=sanitize_api_error(e),
            ) from e

    def collect_cluster_wide_resources(self, folder: str | None = None) -> None:
        """Dump the configured cluster-scoped resource kinds.

        Raises:
            TransientDiagnosticsError: If a resource kind cannot be listed.
        """
        if not self.config.cluster_wide_resources:
            return
        target = self._base(folder) / CLUSTER_WIDE_FOLDER
        try:
            for resource_type in self.config.cluster_wide_resources:
                self._dump_resources(resource_type, target / resource_type.lower(), None)
        except Exception as e:
            raise TransientDiagnosticsError(
                "collect cluster-wide resources",
                reason=sanitize_api_error(e),
            ) from e

    def _collect_pods(self, namespace: str, target: Path) -> None:
        pods = self.kube_client.list_pods(namespace)
        if not pods:
            return
        target.mkdir(parents=True, exist_ok=True)
        for pod in pods:
            pod_name = pod.metadata.name
            (target / pod_description_file(pod_name)).write_text(
                self.kube_client.to_yaml(pod),
                encoding="utf-8",
            )
            containers = [c.name for c in (pod.spec.containers or [])]
            containers += [c.name for c in (pod.spec.init_containers or [])]
            for container in containers:
                self._write_container_log(namespace, pod_name, container, target, previous=False)
                if self.config.collect_previous_logs:
                    self._write_container_log(namespace, pod_name, container, target, previous=True)

    def _write_container_log(
        self,
        namespace: str,
        pod: str,
        container: str,
        target: Path,
        *,
        previous: bool,
    ) -> None:
        # A container that never started (or never restarted) has no log.
        try:
            log = self.kube_client.read_pod_log(pod, namespace, container, previous=previous)
        except Exception as e:  # noqa: BLE001
            logger.debug(
                "log_collector.container_log_unavailable",
                namespace=namespace,
                pod=pod,
                container=container,
                previous=previous,
                error=sanitize_api_error(e),
            )
            return
        (target / pod_log_file(pod, container, previous=previous)).write_text(log, encoding="utf-8")

    def _collect_events(self, namespace: str, target: Path) -> None:
        events = self.kube_client.list_events(namespace)
        lines = [_format_event(event) for event in events]
        content = "".join(f"{line}\n" for line in lines)
        (target / EVENTS_FILE).write_text(content, encoding="utf-8")

    def _dump_resources(self, resource_type: str, target: Path, namespace: str | None) -> None:
        resources = self.kube_client.list_resources(resource_type, namespace)
        if not resources:
            return
        target.mkdir(parents=True, exist_ok=True)
        for resource in resources:
            name = (resource.get("metadata") or {}).get("name", "unnamed")
            (target / resource_file(name)).write_text(
                self.kube_client.to_yaml(resource),
                encoding="utf-8",
            )


__all__ = [
    "LogCollector",
    "LogCollectorConfig",
    "pod_description_file",
    "pod_log_file",
    "resource_file",
]
