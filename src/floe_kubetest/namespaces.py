"""Namespace provisioning and cleanup.

Namespaces that already exist are protected: they are reused exactly as
found, never labeled, annotated or deleted. Only namespaces the session
creates land on a context's created-list, and only the created-list is
deleted at suite end.

Example:
    >>> manager = NamespaceManager(settings)
    >>> manager.setup_namespaces(session, config, resource_manager, registry.get_or_create)
    >>> ...
    >>> manager.cleanup_namespaces(session)           # primary context
    >>> manager.cleanup_namespaces(session, "edge")   # one additional context

See Also:
    - floe_kubetest.contexts: supplies managers for additional contexts
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

import structlog

from floe_kubetest.client import NAMESPACE_KIND, resource_kind, resource_name
from floe_kubetest.errors import NamespaceUnavailableError, TeardownError, sanitize_api_error
from floe_kubetest.settings import DEFAULT_CONTEXT, KubetestSettings

if TYPE_CHECKING:
    from kubernetes.client import V1Namespace

    from floe_kubetest.config import ContextMapping, SessionConfig
    from floe_kubetest.resources import KubeResourceManager
    from floe_kubetest.store import SessionStore

logger = structlog.get_logger(__name__)

LOG_COLLECTION_LABEL_KEY = "kubetest.floe.dev/log-collection"
LOG_COLLECTION_LABEL_VALUE = "enabled"
LOG_COLLECTION_SELECTOR = f"{LOG_COLLECTION_LABEL_KEY}={LOG_COLLECTION_LABEL_VALUE}"

ManagerLookup = Callable[["SessionStore", str], "KubeResourceManager"]


def build_namespace(
    name: str,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
) -> V1Namespace:
    """Build a namespace object ready to be created."""
    from kubernetes import client

    return client.V1Namespace(
        api_version="v1",
        kind=NAMESPACE_KIND,
        metadata=client.V1ObjectMeta(
            name=name,
            labels=dict(labels) if labels else None,
            annotations=dict(annotations) if annotations else None,
        ),
    )


def reconcile_created_namespace(built: V1Namespace, live: V1Namespace | None) -> V1Namespace:
    """Pick the object to keep for a namespace that was just created.

    The server copy wins once it carries at least the labels that were sent.
    Until then the built object is kept, with the server status copied over.
    """
    built_labels = built.metadata.labels or {}
    live_labels = live.metadata.labels if live is not None and live.metadata else None
    if live is None or live_labels is None or len(live_labels) < len(built_labels):
        if live is not None:
            built.status = live.status
        return built
    return live


class NamespaceManager:
    """Provisions, reuses and cleans up namespaces per cluster context."""

    def __init__(
        self,
        settings: KubetestSettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or KubetestSettings()
        self._sleep = sleep

    @staticmethod
    def context_name(session: SessionStore, context: str) -> str:
        """Cluster context behind a store key ("" is the primary context)."""
        if context:
            return context
        if session.config is not None and session.config.context:
            return session.config.context
        return DEFAULT_CONTEXT

    def setup_namespaces(
        self,
        session: SessionStore,
        config: SessionConfig,
        resource_manager: KubeResourceManager,
        manager_for: ManagerLookup,
    ) -> None:
        """Provision the namespaces of the primary context and every mapping.

        Args:
            session: Session state receiving namespace maps and created-lists.
            config: Session configuration.
            resource_manager: Primary resource manager.
            manager_for: Returns the resource manager of an additional context.

        Raises:
            NamespaceUnavailableError: If a namespace is absent and may not
                be created.
        """
        self._provision(session, "", config.namespaces, resource_manager, config, None)
        for mapping in config.context_mappings:
            manager = manager_for(session, mapping.context)
            self._provision(session, mapping.context, mapping.namespaces, manager, config, mapping)

    def _provision(
        self,
        session: SessionStore,
        context: str,
        names: Iterable[str],
        resource_manager: KubeResourceManager,
        config: SessionConfig,
        mapping: ContextMapping | None,
    ) -> None:
        objects = session.namespace_objects_for(context)
        created = session.created_namespaces_for(context)
        context_name = self.context_name(session, context)
        kube = resource_manager.kube_client

        for name in names:
            existing = kube.get_namespace(name)
            if existing is not None:
                objects[name] = existing
                logger.info(
                    "namespace_manager.namespace_reused",
                    namespace=name,
                    context=context_name,
                )
                continue

            if not config.create_namespaces_for(mapping):
                raise NamespaceUnavailableError(name, context=context_name)

            built = build_namespace(
                name,
                labels=config.labels_for(mapping),
                annotations=config.annotations_for(mapping),
            )
            resource_manager.create_resource_with_wait(built, track=False)
            self._sleep(self.settings.namespace_propagation_wait)
            objects[name] = reconcile_created_namespace(built, kube.get_namespace(name))
            created.append(name)
            logger.info(
                "namespace_manager.namespace_created",
                namespace=name,
                context=context_name,
            )

    def setup_auto_labeling(self, resource_manager: KubeResourceManager) -> None:
        """Label every namespace the manager creates for diagnostics discovery.

        Label failures are logged and never raised.
        """

        def label_namespace(resource: dict[str, Any]) -> None:
            if resource_kind(resource) != NAMESPACE_KIND:
                return
            name = resource_name(resource)
            try:
                resource_manager.kube_client.label_namespace(
                    name,
                    LOG_COLLECTION_LABEL_KEY,
                    LOG_COLLECTION_LABEL_VALUE,
                )
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "namespace_manager.auto_label_failed",
                    namespace=name,
                    context=resource_manager.current_context,
                    error=sanitize_api_error(e),
                )
                return
            logger.debug("namespace_manager.auto_labeled", namespace=name)

        resource_manager.add_create_hook(label_namespace)

    def cleanup_namespaces(self, session: SessionStore, context: str = "") -> list[TeardownError]:
        """Delete the namespaces this session created in one context.

        Every namespace is attempted; failures are logged and returned.

        Args:
            session: Session state.
            context: Store key of the context ("" for the primary context).

        Returns:
            One TeardownError per namespace that could not be deleted.
        """
        created = session.created_namespaces_for(context)
        if not created:
            return []

        context_name = self.context_name(session, context)
        try:
            kube = session.require_resource_manager(context).client_for(context_name)
        except Exception as e:  # noqa: BLE001
            error = TeardownError(f"namespaces in context {context_name}", reason=str(e))
            logger.error(
                "namespace_manager.cleanup_unavailable",
                context=context_name,
                error=str(e),
            )
            return [error]

        errors: list[TeardownError] = []
        for name in list(created):
            try:
                kube.delete_namespace(name, wait=True)
            except Exception as e:  # noqa: BLE001
                error = TeardownError(f"namespace {name}", reason=sanitize_api_error(e))
                errors.append(error)
                logger.error(
                    "namespace_manager.namespace_delete_failed",
                    namespace=name,
                    context=context_name,
                    error=error.reason,
                )
                continue
            created.remove(name)
            logger.info("namespace_manager.namespace_deleted", namespace=name, context=context_name)
        return errors


__all__ = [
    "LOG_COLLECTION_LABEL_KEY",
    "LOG_COLLECTION_LABEL_VALUE",
    "LOG_COLLECTION_SELECTOR",
    "ManagerLookup",
    "NamespaceManager",
    "build_namespace",
    "reconcile_created_namespace",
]
