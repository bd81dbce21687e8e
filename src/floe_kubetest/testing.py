"""In-memory cluster double for unit tests.

``InMemoryKubeClient`` implements the KubeClient surface against plain
dicts, records what happened to namespaces and resources, and lets tests
inject failures. Models are real ``kubernetes.client`` objects, so code
under test sees the same types it gets from a live cluster.

Example:
    >>> cluster = InMemoryKubeClient(existing_namespaces=["kube-system"])
    >>> factory = in_memory_manager_factory({"default": cluster})
    >>> orchestrator = SessionOrchestrator(factory)
    >>> orchestrator.suite_setup({"namespaces": ["ns1"]}, TestIdentity("tests.TestApp"))
    >>> cluster.created_namespaces
    ['ns1']
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import yaml
from kubernetes import client
from kubernetes.client.rest import ApiException

from floe_kubetest.client import (
    NAMESPACE_KIND,
    describe,
    resource_kind,
    resource_name,
    resource_namespace,
)
from floe_kubetest.errors import UnknownClusterContextError
from floe_kubetest.resources import KubeResourceManager
from floe_kubetest.settings import DEFAULT_CONTEXT, KubetestSettings

METADATA_NAME_LABEL = "kubernetes.io/metadata.name"


def _not_found(what: str) -> ApiException:
    return ApiException(status=404, reason=f"Not Found: {what}")


def _conflict(what: str) -> ApiException:
    return ApiException(status=409, reason=f"AlreadyExists: {what}")


def _matches(labels: Mapping[str, str] | None, selector: str) -> bool:
    labels = labels or {}
    for term in filter(None, (part.strip() for part in selector.split(","))):
        key, sep, value = term.partition("=")
        if sep:
            if labels.get(key) != value:
                return False
        elif key not in labels:
            return False
    return True


class InMemoryKubeClient:
    """Fake cluster implementing the KubeClient surface.

    Attributes:
        context: Context id this fake answers for.
        created_namespaces: Names passed to create_namespace, in order.
        deleted_namespaces: Names passed to delete_namespace, in order.
        labeled_namespaces: (name, key, value) of every label_namespace call.
        deleted_resources: Descriptions of deleted non-namespace resources.
        label_query_error: Raised by list_namespaces when set.
        label_error: Raised by label_namespace when set.
        delete_errors: Raised by delete_namespace/delete_resource per name.
        label_lag: When True, reads return namespaces without labels.
    """

    def __init__(
        self,
        *,
        context: str = DEFAULT_CONTEXT,
        existing_namespaces: Iterable[str] = (),
        settings: KubetestSettings | None = None,
    ) -> None:
        self.context = context
        self.settings = settings or KubetestSettings()
        self.api_client = client.ApiClient()
        self._namespaces: dict[str, client.V1Namespace] = {}
        self._resources: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.pods: dict[str, list[client.V1Pod]] = {}
        self.pod_logs: dict[tuple[str, str, str, bool], str] = {}
        self.events: dict[str, list[client.CoreV1Event]] = {}
        self.listed_resources: dict[str, list[dict[str, Any]]] = {}

        self.created_namespaces: list[str] = []
        self.deleted_namespaces: list[str] = []
        self.labeled_namespaces: list[tuple[str, str, str]] = []
        self.deleted_resources: list[str] = []

        self.label_query_error: Exception | None = None
        self.label_error: Exception | None = None
        self.delete_errors: dict[str, Exception] = {}
        self.label_lag = False

        for name in existing_namespaces:
            self.add_namespace(name)

    # =========================================================================
    # Seeding
    # =========================================================================

    def add_namespace(
        self,
        name: str,
        labels: Mapping[str, str] | None = None,
    ) -> client.V1Namespace:
        """Seed a pre-existing namespace (not recorded as created)."""
        namespace = client.V1Namespace(
            api_version="v1",
            kind=NAMESPACE_KIND,
            metadata=client.V1ObjectMeta(
                name=name,
                labels={METADATA_NAME_LABEL: name, **(labels or {})},
            ),
            status=client.V1NamespaceStatus(phase="Active"),
        )
        self._namespaces[name] = namespace
        return namespace

    def add_pod(
        self,
        namespace: str,
        name: str,
        containers: Iterable[str],
        logs: Mapping[str, str] | None = None,
        previous_logs: Mapping[str, str] | None = None,
    ) -> client.V1Pod:
        """Seed a pod with container logs."""
        pod = client.V1Pod(
            api_version="v1",
            kind="Pod",
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            spec=client.V1PodSpec(
                containers=[client.V1Container(name=c, image="busybox") for c in containers]
            ),
        )
        self.pods.setdefault(namespace, []).append(pod)
        for container, log in (logs or {}).items():
            self.pod_logs[(namespace, name, container, False)] = log
        for container, log in (previous_logs or {}).items():
            self.pod_logs[(namespace, name, container, True)] = log
        return pod

    def add_event(self, namespace: str, reason: str, message: str) -> client.CoreV1Event:
        """Seed an event."""
        event = client.CoreV1Event(
            metadata=client.V1ObjectMeta(name=f"{reason.lower()}-event", namespace=namespace),
            involved_object=client.V1ObjectReference(kind="Pod", name="app", namespace=namespace),
            reason=reason,
            message=message,
            type="Normal",
        )
        self.events.setdefault(namespace, []).append(event)
        return event

    def namespace_names(self) -> list[str]:
        """Names of the namespaces currently in the fake cluster."""
        return list(self._namespaces)

    def resource_keys(self) -> list[tuple[str, str | None, str]]:
        """(kind, namespace, name) of stored non-namespace resources."""
        return list(self._resources)

    # =========================================================================
    # Namespaces
    # =========================================================================

    def get_namespace(self, name: str) -> client.V1Namespace | None:
        namespace = self._namespaces.get(name)
        if namespace is None:
            return None
        found = copy.deepcopy(namespace)
        if self.label_lag:
            found.metadata.labels = None
        return found

    def namespace_exists(self, name: str) -> bool:
        return name in self._namespaces

    def create_namespace(self, namespace: Any) -> client.V1Namespace:
        body = self.to_dict(namespace)
        name = resource_name(body)
        if name in self._namespaces:
            raise _conflict(f"namespace {name}")
        metadata = body.get("metadata") or {}
        self.created_namespaces.append(name)
        self._namespaces[name] = client.V1Namespace(
            api_version="v1",
            kind=NAMESPACE_KIND,
            metadata=client.V1ObjectMeta(
                name=name,
                labels={METADATA_NAME_LABEL: name, **(metadata.get("labels") or {})},
                annotations=dict(metadata.get("annotations") or {}) or None,
            ),
            status=client.V1NamespaceStatus(phase="Active"),
        )
        return copy.deepcopy(self._namespaces[name])

    def delete_namespace(self, name: str, *, wait: bool = True) -> None:
        self.deleted_namespaces.append(name)
        if name in self.delete_errors:
            raise self.delete_errors[name]
        self._namespaces.pop(name, None)
        for key in [key for key in self._resources if key[1] == name]:
            del self._resources[key]

    def list_namespaces(self, label_selector: str = "") -> list[client.V1Namespace]:
        if self.label_query_error is not None:
            raise self.label_query_error
        return [
            copy.deepcopy(namespace)
            for namespace in self._namespaces.values()
            if _matches(namespace.metadata.labels, label_selector)
        ]

    def label_namespace(self, name: str, key: str, value: str) -> None:
        if self.label_error is not None:
            raise self.label_error
        namespace = self._namespaces.get(name)
        if namespace is None:
            raise _not_found(f"namespace {name}")
        namespace.metadata.labels = {**(namespace.metadata.labels or {}), key: value}
        self.labeled_namespaces.append((name, key, value))

    # =========================================================================
    # Pods and events
    # =========================================================================

    def list_pods(self, namespace: str) -> list[client.V1Pod]:
        return list(self.pods.get(namespace, []))

    def read_pod_log(
        self,
        name: str,
        namespace: str,
        container: str,
        *,
        previous: bool = False,
    ) -> str:
        key = (namespace, name, container, previous)
        if key not in self.pod_logs:
            raise ApiException(status=400, reason="Bad Request")
        return self.pod_logs[key]

    def list_events(self, namespace: str) -> list[client.CoreV1Event]:
        return list(self.events.get(namespace, []))

    # =========================================================================
    # Arbitrary resources
    # =========================================================================

    def list_resources(
        self,
        resource_type: str,
        namespace: str | None = None,
    ) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(resource)
            for resource in self.listed_resources.get(resource_type, [])
            if namespace is None or resource_namespace(resource) == namespace
        ]

    def _key(self, resource: dict[str, Any]) -> tuple[str, str | None, str]:
        return (resource_kind(resource), resource_namespace(resource), resource_name(resource))

    def create_resource(self, resource: dict[str, Any]) -> dict[str, Any]:
        if resource_kind(resource) == NAMESPACE_KIND:
            return self.to_dict(self.create_namespace(resource))
        key = self._key(resource)
        if key in self._resources:
            raise _conflict(describe(resource))
        self._resources[key] = copy.deepcopy(resource)
        return copy.deepcopy(resource)

    def apply_resource(self, resource: dict[str, Any]) -> dict[str, Any]:
        if resource_kind(resource) == NAMESPACE_KIND and self.get_resource(resource) is None:
            return self.create_resource(resource)
        self._resources[self._key(resource)] = copy.deepcopy(resource)
        return copy.deepcopy(resource)

    def get_resource(self, resource: dict[str, Any]) -> dict[str, Any] | None:
        if resource_kind(resource) == NAMESPACE_KIND:
            namespace = self.get_namespace(resource_name(resource))
            return None if namespace is None else self.to_dict(namespace)
        found = self._resources.get(self._key(resource))
        return copy.deepcopy(found) if found is not None else None

    def delete_resource(self, resource: dict[str, Any], *, wait: bool = True) -> None:
        if resource_kind(resource) == NAMESPACE_KIND:
            self.delete_namespace(resource_name(resource), wait=wait)
            return
        self.deleted_resources.append(describe(resource))
        if resource_name(resource) in self.delete_errors:
            raise self.delete_errors[resource_name(resource)]
        self._resources.pop(self._key(resource), None)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return dict(self.api_client.sanitize_for_serialization(obj))

    def to_yaml(self, obj: Any) -> str:
        return str(yaml.safe_dump(self.to_dict(obj), sort_keys=False, default_flow_style=False))


def in_memory_manager_factory(
    clusters: Mapping[str, InMemoryKubeClient],
    *,
    settings: KubetestSettings | None = None,
) -> Callable[[], KubeResourceManager]:
    """Manager factory whose contexts resolve to in-memory clusters.

    Every manager built by the factory shares the same fake clusters, the
    way managers share real clusters.
    """

    def client_factory(context: str) -> Any:
        cluster = clusters.get(context)
        if cluster is None:
            raise UnknownClusterContextError(context, available=list(clusters))
        return cluster

    def factory() -> KubeResourceManager:
        return KubeResourceManager(client_factory, settings=settings)

    return factory


__all__ = [
    "InMemoryKubeClient",
    "METADATA_NAME_LABEL",
    "in_memory_manager_factory",
]
