"""Resource manager for one test session.

The manager owns one :class:`KubeClient` per cluster context, tracks the
resources each test creates on a per-test cleanup stack, runs create and
delete hooks, and optionally writes every created resource as YAML.

It carries two bindings that the session orchestrator moves around: the
current test identity and the current cluster context. Both are plain
attributes of the manager; managers are never shared between sessions.

Example:
    >>> manager = KubeResourceManager.from_environment()
    >>> manager.bind_test(TestIdentity("tests.test_app.TestApp", "test_deploy"))
    >>> manager.create_resource_with_wait(config_map)
    >>> manager.delete_resources()  # LIFO, only what test_deploy created
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from floe_kubetest.client import (
    KubeClient,
    describe,
    resource_kind,
    resource_name,
    resource_namespace,
)
from floe_kubetest.errors import (
    ContextReleaseError,
    ResourceCleanupError,
    UnknownClusterContextError,
)
from floe_kubetest.polling import wait_for_condition
from floe_kubetest.settings import DEFAULT_CONTEXT, KubetestSettings, discover_cluster_configs

logger = structlog.get_logger(__name__)

ResourceHook = Callable[[dict[str, Any]], None]
ClientFactory = Callable[[str], KubeClient]


@dataclass(frozen=True)
class TestIdentity:
    """Who owns the resources being created.

    Attributes:
        suite: Dotted test class identity (``tests.test_app.TestApp``).
        name: Test name, None for suite-level work.
    """

    __test__ = False

    suite: str
    name: str | None = None

    @property
    def class_name(self) -> str:
        """Short test class name."""
        return self.suite.rsplit(".", 1)[-1]

    @property
    def display_name(self) -> str:
        """Test name, or the class name for suite-level work."""
        return self.name or self.class_name

    @property
    def key(self) -> str:
        """Stable key for cleanup stacks."""
        return f"{self.suite}::{self.name}" if self.name else self.suite

    def for_test(self, name: str) -> TestIdentity:
        """Identity of a test within this suite."""
        return TestIdentity(self.suite, name)

    def for_suite(self) -> TestIdentity:
        """Identity of the enclosing suite."""
        return TestIdentity(self.suite)


@dataclass
class ContextRelease:
    """One-shot handle that restores the previous cluster context.

    Usable as a context manager.

    Raises:
        ContextReleaseError: On a second release.
    """

    context: str
    _restore: Callable[[], None] = field(repr=False)
    released: bool = False

    def release(self) -> None:
        """Restore the previous context."""
        if self.released:
            raise ContextReleaseError(self.context)
        self.released = True
        self._restore()

    def __enter__(self) -> ContextRelease:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self.released:
            self.release()


class KubeResourceManager:
    """Creates, tracks and deletes cluster resources for one session.

    Attributes:
        settings: Wait timeouts and default paths.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        settings: KubetestSettings | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            client_factory: Builds a KubeClient for a context id. Raises
                UnknownClusterContextError for unknown contexts.
            settings: Wait timeouts. Uses defaults if None.
        """
        self.settings = settings or KubetestSettings()
        self._client_factory = client_factory
        self._clients: dict[str, KubeClient] = {}
        self._context = DEFAULT_CONTEXT
        self._test: TestIdentity | None = None
        self._create_hooks: list[ResourceHook] = []
        self._delete_hooks: list[ResourceHook] = []
        self._stacks: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self._yaml_path: Path | None = None

    @classmethod
    def from_environment(cls, settings: KubetestSettings | None = None) -> KubeResourceManager:
        """Build a manager whose contexts come from environment variables."""
        settings = settings or KubetestSettings()
        configs = discover_cluster_configs()

        def factory(context: str) -> KubeClient:
            cluster = configs.get(context.lower())
            if cluster is None:
                raise UnknownClusterContextError(context, available=list(configs))
            return KubeClient.from_cluster_config(cluster, settings=settings)

        return cls(factory, settings=settings)

    # =========================================================================
    # Bindings
    # =========================================================================

    @property
    def current_context(self) -> str:
        """Cluster context new operations target."""
        return self._context

    @property
    def current_test(self) -> TestIdentity | None:
        """Identity that owns newly created resources."""
        return self._test

    @property
    def kube_client(self) -> KubeClient:
        """Client of the current cluster context."""
        return self.client_for(self._context)

    def client_for(self, context: str) -> KubeClient:
        """Client of ``context``, built once per manager."""
        context = context or DEFAULT_CONTEXT
        if context not in self._clients:
            self._clients[context] = self._client_factory(context)
        return self._clients[context]

    def use_context(self, context: str) -> ContextRelease:
        """Switch the current cluster context.

        Args:
            context: Context id; empty selects the default context.

        Returns:
            Release handle restoring the previous context.

        Raises:
            UnknownClusterContextError: If no credentials exist for ``context``.
        """
        context = context or DEFAULT_CONTEXT
        self.client_for(context)
        previous = self._context
        self._context = context
        logger.debug("resource_manager.context_switched", context=context, previous=previous)

        def restore() -> None:
            self._context = previous
            logger.debug("resource_manager.context_restored", context=previous)

        return ContextRelease(context, restore)

    def bind_test(self, identity: TestIdentity) -> None:
        """Attribute newly created resources to ``identity``."""
        self._test = identity

    def clean_test_binding(self) -> None:
        """Forget the bound test identity."""
        self._test = None

    def clean_cluster_context(self) -> None:
        """Reset the current context to the default context."""
        self._context = DEFAULT_CONTEXT

    # =========================================================================
    # Hooks and YAML export
    # =========================================================================

    def add_create_hook(self, hook: ResourceHook) -> None:
        """Run ``hook`` with every resource this manager creates."""
        self._create_hooks.append(hook)

    def add_delete_hook(self, hook: ResourceHook) -> None:
        """Run ``hook`` with every resource this manager deletes."""
        self._delete_hooks.append(hook)

    @property
    def store_yaml_path(self) -> Path | None:
        """Root of the YAML export, None when export is disabled."""
        return self._yaml_path

    def set_store_yaml_path(self, path: Path | str | None) -> None:
        """Enable YAML export below ``path``; None disables it."""
        self._yaml_path = Path(path) if path is not None else None

    def yaml_file_for(self, resource: dict[str, Any]) -> Path | None:
        """Where ``resource`` is exported, None when export is disabled.

        Layout: ``{root}/{context}/test-files/{suite}[/{test}]/{Kind}-[{ns}-]{name}.yaml``.
        """
        if self._yaml_path is None:
            return None
        folder = self._yaml_path / self._context / "test-files"
        if self._test is not None:
            folder = folder / self._test.suite
            if self._test.name:
                folder = folder / self._test.name
        namespace = resource_namespace(resource)
        prefix = f"{namespace}-" if namespace else ""
        return folder / f"{resource_kind(resource)}-{prefix}{resource_name(resource)}.yaml"

    def _write_yaml(self, resource: dict[str, Any]) -> None:
        target = self.yaml_file_for(resource)
        if target is None:
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.kube_client.to_yaml(resource), encoding="utf-8")
        logger.debug("resource_manager.yaml_stored", path=str(target))

    # =========================================================================
    # Create and delete
    # =========================================================================

    def _stack_for(self, context: str, identity: TestIdentity) -> list[dict[str, Any]]:
        return self._stacks.setdefault((context, identity.key), [])

    def _track(self, resource: dict[str, Any]) -> None:
        if self._test is None:
            logger.warning("resource_manager.untracked_resource", resource=describe(resource))
            return
        self._stack_for(self._context, self._test).append(resource)

    def tracked_resources(self, identity: TestIdentity | None = None) -> list[dict[str, Any]]:
        """Resources awaiting cleanup for ``identity`` (default: bound test)."""
        identity = identity or self._test
        if identity is None:
            return []
        return [
            resource
            for (_, key), stack in self._stacks.items()
            if key == identity.key
            for resource in stack
        ]

    def _wait_until_present(self, resource: dict[str, Any]) -> None:
        client = self.kube_client
        wait_for_condition(
            lambda: client.get_resource(resource) is not None,
            self.settings.polling(f"{describe(resource)} creation"),
        )

    def create_resource_with_wait(
        self,
        *resources: Any,
        track: bool = True,
    ) -> list[dict[str, Any]]:
        """Create resources and wait until the API returns each of them.

        Args:
            *resources: Kubernetes models or serialized dicts.
            track: Push the resources on the bound test's cleanup stack.

        Returns:
            Server copies of the created resources.
        """
        client = self.kube_client
        created: list[dict[str, Any]] = []
        for resource in resources:
            body = client.to_dict(resource)
            result = client.create_resource(body)
            self._wait_until_present(body)
            logger.info(
                "resource_manager.resource_created",
                context=self._context,
                resource=describe(body),
            )
            self._write_yaml(body)
            if track:
                self._track(body)
            for hook in self._create_hooks:
                hook(body)
            created.append(result)
        return created

    def create_or_update_resource_with_wait(self, *resources: Any) -> list[dict[str, Any]]:
        """Create resources, replacing any that already exist."""
        client = self.kube_client
        applied: list[dict[str, Any]] = []
        for resource in resources:
            body = client.to_dict(resource)
            result = client.apply_resource(body)
            self._wait_until_present(body)
            self._write_yaml(body)
            self._track(body)
            for hook in self._create_hooks:
                hook(body)
            applied.append(result)
        return applied

    def delete_resource_with_wait(self, *resources: Any) -> None:
        """Delete resources in the current context and wait until they are gone."""
        client = self.kube_client
        for resource in resources:
            body = client.to_dict(resource)
            client.delete_resource(body, wait=True)
            self._untrack(body)
            logger.info(
                "resource_manager.resource_deleted",
                context=self._context,
                resource=describe(body),
            )
            for hook in self._delete_hooks:
                hook(body)

    def _untrack(self, resource: dict[str, Any]) -> None:
        target = (resource_kind(resource), resource_namespace(resource), resource_name(resource))
        for stack in self._stacks.values():
            stack[:] = [
                tracked
                for tracked in stack
                if (resource_kind(tracked), resource_namespace(tracked), resource_name(tracked))
                != target
            ]

    def delete_resources(self) -> None:
        """Delete everything the bound identity created, newest first.

        Covers every context the identity created resources in. All
        resources are attempted even when some deletions fail.

        Raises:
            ResourceCleanupError: If any deletion failed.
        """
        if self._test is None:
            return

        failures: dict[str, Exception] = {}
        for (context, key), stack in list(self._stacks.items()):
            if key != self._test.key:
                continue
            client = self.client_for(context)
            while stack:
                resource = stack.pop()
                try:
                    client.delete_resource(resource, wait=True)
                except Exception as e:  # noqa: BLE001
                    failures[describe(resource)] = e
                    logger.warning(
                        "resource_manager.cleanup_failed",
                        context=context,
                        resource=describe(resource),
                        error=str(e),
                    )
                    continue
                for hook in self._delete_hooks:
                    hook(resource)
            del self._stacks[(context, key)]

        if failures:
            raise ResourceCleanupError(failures)


__all__ = [
    "ClientFactory",
    "ContextRelease",
    "KubeResourceManager",
    "ResourceHook",
    "TestIdentity",
]
