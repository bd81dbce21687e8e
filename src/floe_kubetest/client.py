"""Kubernetes API client for one cluster context.

Wraps ``CoreV1Api`` for namespaces, pods and events, and the dynamic client
for arbitrary resource kinds. All methods are synchronous; create and delete
barriers poll through :func:`floe_kubetest.polling.wait_for_condition`.

Example:
    >>> from floe_kubetest.client import KubeClient
    >>> from floe_kubetest.settings import discover_cluster_configs
    >>> kube = KubeClient.from_cluster_config(discover_cluster_configs()["default"])
    >>> kube.namespace_exists("kube-system")
    True
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
import yaml

from floe_kubetest.errors import sanitize_api_error
from floe_kubetest.polling import wait_for_condition
from floe_kubetest.settings import DEFAULT_CONTEXT, ClusterConfig, KubetestSettings

if TYPE_CHECKING:
    from kubernetes.client import CoreV1Event, V1Namespace, V1Pod

logger = structlog.get_logger(__name__)

NAMESPACE_KIND = "Namespace"


def _is_not_found(exc: Exception) -> bool:
    return getattr(exc, "status", None) == 404


def resource_kind(resource: dict[str, Any]) -> str:
    """Kind of a serialized resource."""
    return str(resource.get("kind", ""))


def resource_name(resource: dict[str, Any]) -> str:
    """metadata.name of a serialized resource."""
    return str((resource.get("metadata") or {}).get("name", ""))


def resource_namespace(resource: dict[str, Any]) -> str | None:
    """metadata.namespace of a serialized resource, None if cluster-scoped."""
    return (resource.get("metadata") or {}).get("namespace")


def describe(resource: dict[str, Any]) -> str:
    """Short ``Kind/namespace/name`` description for logs and errors."""
    namespace = resource_namespace(resource)
    parts = [resource_kind(resource), namespace, resource_name(resource)]
    return "/".join(part for part in parts if part)


class KubeClient:
    """Cluster API client bound to one cluster context.

    Attributes:
        context: Cluster context id this client talks to.
        api_client: Underlying ``kubernetes.client.ApiClient``.
    """

    def __init__(
        self,
        api_client: Any,
        *,
        context: str = DEFAULT_CONTEXT,
        settings: KubetestSettings | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_client: Configured ``kubernetes.client.ApiClient``.
            context: Cluster context id.
            settings: Wait timeouts. Uses defaults if None.
        """
        self.context = context
        self.api_client = api_client
        self.settings = settings or KubetestSettings()
        self._core: Any = None
        self._dynamic: Any = None

    @classmethod
    def from_cluster_config(
        cls,
        cluster: ClusterConfig,
        *,
        settings: KubetestSettings | None = None,
    ) -> KubeClient:
        """Build a client from discovered credentials.

        Kubeconfig and token credentials are used as given. Without either,
        in-cluster configuration is tried first, then the default kubeconfig.

        Args:
            cluster: Credentials of the context.
            settings: Wait timeouts. Uses defaults if None.

        Returns:
            Client bound to ``cluster.context``.
        """
        from kubernetes import client
        from kubernetes import config as k8s_config
        from kubernetes.config.config_exception import ConfigException

        if cluster.source == "kubeconfig":
            api_client = k8s_config.new_client_from_config(config_file=cluster.kubeconfig_path)
        elif cluster.source == "token":
            configuration = client.Configuration()
            configuration.host = cluster.url
            configuration.api_key = {
                "authorization": cluster.token.get_secret_value() if cluster.token else ""
            }
            configuration.api_key_prefix = {"authorization": "Bearer"}
            api_client = client.ApiClient(configuration)
        else:
            configuration = client.Configuration()
            try:
                k8s_config.load_incluster_config(client_configuration=configuration)
                logger.debug("kube_client.incluster_config_loaded", context=cluster.context)
            except ConfigException:
                k8s_config.load_kube_config(client_configuration=configuration)
                logger.debug("kube_client.kubeconfig_loaded", context=cluster.context)
            api_client = client.ApiClient(configuration)

        logger.info("kube_client.initialized", context=cluster.context, source=cluster.source)
        return cls(api_client, context=cluster.context, settings=settings)

    @property
    def core(self) -> Any:
        """``CoreV1Api`` for this context."""
        if self._core is None:
            from kubernetes import client

            self._core = client.CoreV1Api(self.api_client)
        return self._core

    @property
    def dynamic(self) -> Any:
        """``DynamicClient`` for this context. Runs API discovery on first use."""
        if self._dynamic is None:
            from kubernetes.dynamic import DynamicClient

            self._dynamic = DynamicClient(self.api_client)
        return self._dynamic

    # =========================================================================
    # Namespaces
    # =========================================================================

    def get_namespace(self, name: str) -> V1Namespace | None:
        """Read a namespace, None if it does not exist."""
        from kubernetes.client.rest import ApiException

        try:
            return self.core.read_namespace(name=name)
        except ApiException as e:
            if _is_not_found(e):
                return None
            raise

    def namespace_exists(self, name: str) -> bool:
        """Whether the namespace exists."""
        return self.get_namespace(name) is not None

    def create_namespace(self, namespace: V1Namespace | dict[str, Any]) -> V1Namespace:
        """Create a namespace and return the server's copy."""
        created = self.core.create_namespace(body=namespace)
        logger.debug(
            "kube_client.namespace_created",
            context=self.context,
            namespace=resource_name(self.to_dict(namespace)),
        )
        return created

    def delete_namespace(self, name: str, *, wait: bool = True) -> None:
        """Delete a namespace.

        Args:
            name: Namespace to delete. A missing namespace is not an error.
            wait: Block until the API no longer returns the namespace.

        Raises:
            PollingTimeoutError: If ``wait`` and the namespace outlives the
                configured wait timeout.
        """
        from kubernetes.client.rest import ApiException

        try:
            self.core.delete_namespace(name=name)
        except ApiException as e:
            if not _is_not_found(e):
                raise
            logger.debug("kube_client.namespace_already_gone", context=self.context, namespace=name)
            return

        if wait:
            wait_for_condition(
                lambda: not self.namespace_exists(name),
                self.settings.polling(f"namespace {name} deletion"),
            )
        logger.debug("kube_client.namespace_deleted", context=self.context, namespace=name)

    def list_namespaces(self, label_selector: str = "") -> list[V1Namespace]:
        """List namespaces, optionally filtered by a label selector."""
        return list(self.core.list_namespace(label_selector=label_selector).items)

    def label_namespace(self, name: str, key: str, value: str) -> None:
        """Add or replace one label on a namespace."""
        self.core.patch_namespace(name=name, body={"metadata": {"labels": {key: value}}})

    # =========================================================================
    # Pods and events
    # =========================================================================

    def list_pods(self, namespace: str) -> list[V1Pod]:
        """List pods in a namespace."""
        return list(self.core.list_namespaced_pod(namespace=namespace).items)

    def read_pod_log(
        self,
        name: str,
        namespace: str,
        container: str,
        *,
        previous: bool = False,
    ) -> str:
        """Read the log of one container, or of its previous instance."""
        return str(
            self.core.read_namespaced_pod_log(
                name=name,
                namespace=namespace,
                container=container,
                previous=previous,
            )
        )

    def list_events(self, namespace: str) -> list[CoreV1Event]:
        """List events in a namespace."""
        return list(self.core.list_namespaced_event(namespace=namespace).items)

    # =========================================================================
    # Arbitrary resources
    # =========================================================================

    def _plural_api(self, plural: str) -> Any:
        matches = list(self.dynamic.resources.search(name=plural))
        if not matches:
            msg = f"Unknown resource type '{plural}' in context '{self.context}'"
            raise ValueError(msg)
        core_matches = [m for m in matches if not getattr(m, "group", "")]
        return (core_matches or matches)[0]

    def _api_for(self, resource: dict[str, Any]) -> Any:
        return self.dynamic.resources.get(
            api_version=resource.get("apiVersion"),
            kind=resource_kind(resource),
        )

    def list_resources(
        self,
        resource_type: str,
        namespace: str | None = None,
    ) -> list[dict[str, Any]]:
        """List resources of a type by plural name (``pods``, ``nodes``).

        Args:
            resource_type: Plural resource name.
            namespace: Namespace to list in; None lists cluster-wide.

        Returns:
            Serialized resources.
        """
        result = self._plural_api(resource_type).get(namespace=namespace)
        return list(result.to_dict().get("items") or [])

    def create_resource(self, resource: dict[str, Any]) -> dict[str, Any]:
        """Create a resource from its serialized form."""
        if resource_kind(resource) == NAMESPACE_KIND:
            return self.to_dict(self.create_namespace(resource))

        created = self._api_for(resource).create(
            body=resource,
            namespace=resource_namespace(resource),
        )
        return dict(created.to_dict())

    def apply_resource(self, resource: dict[str, Any]) -> dict[str, Any]:
        """Create a resource, or replace it if it already exists."""
        existing = self.get_resource(resource)
        if existing is None:
            return self.create_resource(resource)
        metadata = dict(resource.get("metadata") or {})
        metadata["resourceVersion"] = (existing.get("metadata") or {}).get("resourceVersion")
        replaced = self._api_for(resource).replace(
            body={**resource, "metadata": metadata},
            namespace=resource_namespace(resource),
        )
        return dict(replaced.to_dict())

    def get_resource(self, resource: dict[str, Any]) -> dict[str, Any] | None:
        """Read the live copy of a resource, None if it does not exist."""
        from kubernetes.client.rest import ApiException

        if resource_kind(resource) == NAMESPACE_KIND:
            namespace = self.get_namespace(resource_name(resource))
            return None if namespace is None else self.to_dict(namespace)

        try:
            found = self._api_for(resource).get(
                name=resource_name(resource),
                namespace=resource_namespace(resource),
            )
        except ApiException as e:
            if _is_not_found(e):
                return None
            raise
        return dict(found.to_dict())

    def delete_resource(self, resource: dict[str, Any], *, wait: bool = True) -> None:
        """Delete a resource. A missing resource is not an error."""
        from kubernetes.client.rest import ApiException

        if resource_kind(resource) == NAMESPACE_KIND:
            self.delete_namespace(resource_name(resource), wait=wait)
            return

        try:
            self._api_for(resource).delete(
                name=resource_name(resource),
                namespace=resource_namespace(resource),
            )
        except ApiException as e:
            if not _is_not_found(e):
                logger.warning(
                    "kube_client.delete_failed",
                    context=self.context,
                    resource=describe(resource),
                    error=sanitize_api_error(e),
                )
                raise
            return

        if wait:
            wait_for_condition(
                lambda: self.get_resource(resource) is None,
                self.settings.polling(f"{describe(resource)} deletion"),
            )

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self, obj: Any) -> dict[str, Any]:
        """Serialize a kubernetes model (or pass a dict through) to camelCase."""
        if isinstance(obj, dict):
            return obj
        return dict(self.api_client.sanitize_for_serialization(obj))

    def to_yaml(self, obj: Any) -> str:
        """Serialize a kubernetes model or dict to YAML."""
        return str(yaml.safe_dump(self.to_dict(obj), sort_keys=False, default_flow_style=False))


__all__ = [
    "KubeClient",
    "NAMESPACE_KIND",
    "describe",
    "resource_kind",
    "resource_name",
    "resource_namespace",
]
