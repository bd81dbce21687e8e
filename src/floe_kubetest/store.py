"""Typed state of one test session.

Every entry the orchestrator and its managers share lives here. Map-valued
entries use get-or-create accessors: the first access in a session
installs an empty container and later accesses return that same instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from floe_kubetest.errors import ResourceManagerUnavailableError
from floe_kubetest.settings import DEFAULT_CONTEXT

if TYPE_CHECKING:
    from kubernetes.client import V1Namespace

    from floe_kubetest.collector import LogCollector
    from floe_kubetest.config import SessionConfig
    from floe_kubetest.resources import ContextRelease, KubeResourceManager, TestIdentity


@dataclass
class SessionStore:
    """Session-scoped state, created at suite setup and dropped at suite end.

    Attributes:
        suite: Identity of the test class.
        config: Session configuration, None until built.
        resource_manager: Primary resource manager.
        context_release: Release handle of the primary context switch.
        log_collector: Primary diagnostics collector.
        namespace_objects: Primary namespaces, by name.
        created_namespaces: Primary namespaces this session created.
        context_managers: Resource manager per additional context.
        context_releases: Release handle per additional context.
        context_namespace_objects: Namespaces per additional context.
        context_created_namespaces: Created namespaces per additional context.
    """

    suite: TestIdentity
    config: SessionConfig | None = None
    resource_manager: KubeResourceManager | None = None
    context_release: ContextRelease | None = None
    log_collector: LogCollector | None = None
    namespace_objects: dict[str, V1Namespace] = field(default_factory=dict)
    created_namespaces: list[str] = field(default_factory=list)
    context_managers: dict[str, KubeResourceManager] = field(default_factory=dict)
    context_releases: dict[str, ContextRelease] = field(default_factory=dict)
    context_namespace_objects: dict[str, dict[str, V1Namespace]] = field(default_factory=dict)
    context_created_namespaces: dict[str, list[str]] = field(default_factory=dict)

    @staticmethod
    def is_primary(context: str) -> bool:
        """Whether ``context`` is the primary key (the empty string)."""
        return context == ""

    def namespace_objects_for(self, context: str = "") -> dict[str, V1Namespace]:
        """Namespace map of ``context``; the same instance for the whole session."""
        if self.is_primary(context):
            return self.namespace_objects
        return self.context_namespace_objects.setdefault(context, {})

    def created_namespaces_for(self, context: str = "") -> list[str]:
        """Created-list of ``context``; the same instance for the whole session."""
        if self.is_primary(context):
            return self.created_namespaces
        return self.context_created_namespaces.setdefault(context, [])

    def require_resource_manager(self, context: str = "") -> KubeResourceManager:
        """Resource manager bound for ``context``.

        Raises:
            ResourceManagerUnavailableError: If none is bound.
        """
        if self.is_primary(context):
            manager = self.resource_manager
        else:
            manager = self.context_managers.get(context)
        if manager is None:
            raise ResourceManagerUnavailableError(context or DEFAULT_CONTEXT)
        return manager

    def all_managers(self) -> list[KubeResourceManager]:
        """Primary manager (if bound) followed by every context manager."""
        return [manager for _, manager in self.managers_by_context()]

    def managers_by_context(self) -> list[tuple[str, KubeResourceManager]]:
        """(context key, manager) pairs, primary first under the empty key."""
        pairs: list[tuple[str, KubeResourceManager]] = []
        if self.resource_manager is not None:
            pairs.append(("", self.resource_manager))
        return pairs + list(self.context_managers.items())


__all__ = ["SessionStore"]
