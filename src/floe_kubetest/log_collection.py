"""Diagnostics collection across cluster contexts.

Collection targets the union of the namespaces a session declared and the
namespaces carrying the log-collection label, in every context the session
touched. Collection never raises: diagnostics must not mask the failure
that triggered them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from floe_kubetest.collector import LogCollector, LogCollectorConfig
from floe_kubetest.errors import sanitize_api_error
from floe_kubetest.namespaces import LOG_COLLECTION_SELECTOR
from floe_kubetest.settings import KubetestSettings

if TYPE_CHECKING:
    from floe_kubetest.client import KubeClient
    from floe_kubetest.config import SessionConfig
    from floe_kubetest.resources import KubeResourceManager, TestIdentity
    from floe_kubetest.store import SessionStore

logger = structlog.get_logger(__name__)

CollectorFactory = Callable[[LogCollectorConfig, "KubeClient"], LogCollector]


def build_log_path(base: Path, suite: TestIdentity, context: str | None = None) -> Path:
    """Collector root for a suite, with a context sub-folder for additional contexts."""
    path = base / suite.suite
    return path / context if context else path


def _union(first: Iterable[str], second: Iterable[str]) -> list[str]:
    return list(dict.fromkeys([*first, *second]))


class LogCollectionManager:
    """Attaches collectors to sessions and runs collection."""

    def __init__(
        self,
        settings: KubetestSettings | None = None,
        *,
        collector_factory: CollectorFactory = LogCollector,
    ) -> None:
        self.settings = settings or KubetestSettings()
        self._collector_factory = collector_factory

    def base_path(self, config: SessionConfig) -> Path:
        """Configured diagnostics root, else the settings default."""
        if config.log_collection_path:
            return Path(config.log_collection_path)
        return self.settings.log_path

    def _collector_config(self, config: SessionConfig, root: Path) -> LogCollectorConfig:
        return LogCollectorConfig(
            root_path=root,
            namespaced_resources=config.collect_namespaced_resources,
            cluster_wide_resources=config.collect_cluster_wide_resources,
            collect_previous_logs=config.collect_previous_logs,
        )

    def attach(
        self,
        session: SessionStore,
        config: SessionConfig,
        resource_manager: KubeResourceManager,
    ) -> LogCollector:
        """Build the primary collector of the session and store it."""
        root = build_log_path(self.base_path(config), session.suite)
        collector = self._collector_factory(
            self._collector_config(config, root),
            resource_manager.kube_client,
        )
        session.log_collector = collector
        logger.info("log_collection.collector_attached", suite=session.suite.suite, path=str(root))
        return collector

    def _labeled_namespaces(self, kube: KubeClient, context: str) -> list[str]:
        try:
            namespaces = kube.list_namespaces(label_selector=LOG_COLLECTION_SELECTOR)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "log_collection.label_query_failed",
                context=context,
                error=sanitize_api_error(e),
            )
            return []
        return [ns.metadata.name for ns in namespaces]

    def collect(self, session: SessionStore, suffix: str) -> None:
        """Collect diagnostics of every context into ``{root}/{suffix}``.

        Never raises.
        """
        try:
            self._collect(session, suffix)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "log_collection.collection_failed",
                suite=session.suite.suite,
                suffix=suffix,
                error=str(e),
            )

    def _collect(self, session: SessionStore, suffix: str) -> None:
        collector = session.log_collector
        config = session.config
        if collector is None or config is None:
            logger.warning("log_collection.no_collector", suite=session.suite.suite, suffix=suffix)
            return

        logger.info("log_collection.collecting", suite=session.suite.suite, suffix=suffix)

        primary_context = config.context or "primary"
        namespaces = _union(
            config.namespaces,
            self._labeled_namespaces(collector.kube_client, primary_context),
        )
        if namespaces:
            collector.collect_from_namespaces(namespaces, suffix)
            collector.collect_cluster_wide_resources(suffix)

        base = self.base_path(config)
        for context, manager in session.context_managers.items():
            kube = manager.client_for(context)
            mapping = config.mapping_for(context)
            declared = mapping.namespaces if mapping is not None else []
            namespaces = _union(declared, self._labeled_namespaces(kube, context))
            if not namespaces:
                continue
            context_collector = self._collector_factory(
                self._collector_config(config, build_log_path(base, session.suite, context)),
                kube,
            )
            context_collector.collect_from_namespaces(namespaces, suffix)
            context_collector.collect_cluster_wide_resources(suffix)


__all__ = [
    "CollectorFactory",
    "LogCollectionManager",
    "build_log_path",
]
