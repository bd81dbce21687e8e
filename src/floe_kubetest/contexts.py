"""Registry of per-context resource managers.

Each additional cluster context gets its own resource manager, created
lazily on first use and memoized in the session store, so a context is
switched to at most once per session.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

import structlog

from floe_kubetest.errors import ResourceManagerUnavailableError, TeardownError

if TYPE_CHECKING:
    from floe_kubetest.resources import KubeResourceManager, TestIdentity
    from floe_kubetest.store import SessionStore

logger = structlog.get_logger(__name__)

ManagerFactory = Callable[[], "KubeResourceManager"]
ManagerInitializer = Callable[["SessionStore", "KubeResourceManager"], None]


class ContextRegistry:
    """Creates and memoizes one resource manager per cluster context."""

    def __init__(
        self,
        manager_factory: ManagerFactory,
        *,
        initializers: Iterable[ManagerInitializer] = (),
    ) -> None:
        """Initialize the registry.

        Args:
            manager_factory: Builds a fresh, unbound resource manager.
            initializers: Run once on every newly created manager.
        """
        self._manager_factory = manager_factory
        self._initializers = list(initializers)

    def add_initializer(self, initializer: ManagerInitializer) -> None:
        """Run ``initializer`` on every manager created from now on."""
        self._initializers.append(initializer)

    def get(self, session: SessionStore, context: str) -> KubeResourceManager | None:
        """The manager of ``context`` if one was created this session."""
        return session.context_managers.get(context)

    def get_or_create(self, session: SessionStore, context: str) -> KubeResourceManager:
        """Return the manager of ``context``, creating it on first use.

        A new manager is switched to the context (the release handle goes
        into the session), bound to the current test, given the primary
        manager's YAML export path and passed through the initializers.

        Raises:
            ResourceManagerUnavailableError: If the context cannot be
                switched to. Nothing is memoized in that case.
        """
        cached = session.context_managers.get(context)
        if cached is not None:
            return cached

        manager = self._manager_factory()
        try:
            release = manager.use_context(context)
        except Exception as e:
            logger.error("context_registry.switch_failed", context=context, error=str(e))
            raise ResourceManagerUnavailableError(context, reason=str(e)) from e

        session.context_releases[context] = release
        session.context_managers[context] = manager

        primary = session.resource_manager
        identity = primary.current_test if primary is not None else None
        manager.bind_test(identity or session.suite)

        config = session.config
        if config is not None and config.store_yaml and primary is not None:
            manager.set_store_yaml_path(primary.store_yaml_path)

        for initializer in self._initializers:
            initializer(session, manager)

        logger.info("context_registry.manager_created", context=context)
        return manager

    def bind_test(self, session: SessionStore, identity: TestIdentity) -> None:
        """Bind every manager of the session to ``identity``."""
        for manager in session.all_managers():
            manager.bind_test(identity)

    def release_all(self, session: SessionStore) -> list[TeardownError]:
        """Release the primary handle, then every per-context handle.

        Failures are logged and returned; every handle is attempted.
        """
        handles = [("", session.context_release), *session.context_releases.items()]
        errors: list[TeardownError] = []
        for context, handle in handles:
            if handle is None or handle.released:
                continue
            try:
                handle.release()
            except Exception as e:  # noqa: BLE001
                name = context or "primary"
                error = TeardownError(f"context {name}", reason=str(e))
                errors.append(error)
                logger.error("context_registry.release_failed", context=name, error=str(e))
        return errors

    def clear_bindings(self, session: SessionStore) -> None:
        """Clear the test and context bindings of every manager."""
        for manager in session.all_managers():
            manager.clean_test_binding()
            manager.clean_cluster_context()


__all__ = [
    "ContextRegistry",
    "ManagerFactory",
    "ManagerInitializer",
]
