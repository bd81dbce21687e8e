"""floe-kubetest: per-test-session Kubernetes orchestration for pytest.

Test classes marked with ``kubernetes_test`` get their namespaces
provisioned (or reused) before the first test, resources they create
deleted after each test, diagnostics collected when a phase fails, and
self-created namespaces deleted after the last test. Sessions can span
several cluster contexts.

Example:
    >>> import pytest
    >>> @pytest.mark.kubernetes_test(
    ...     namespaces=["payments"],
    ...     collect_logs=True,
    ...     context_mappings=[{"context": "edge", "namespaces": ["payments-edge"]}],
    ... )
    ... class TestPayments:
    ...     def test_namespace(self, kube_namespaces) -> None:
    ...         assert "payments" in kube_namespaces

Modules:
    orchestrator: SessionOrchestrator lifecycle
    plugin: pytest hooks and fixtures
    config: SessionConfig and strategies
    resources: KubeResourceManager and TestIdentity
    namespaces: namespace provisioning and cleanup
    contexts: per-context manager registry
    log_collection: diagnostics collection across contexts
    failures: failure coordination
    injection: field injection markers
    errors: custom exception types
"""

from __future__ import annotations

from importlib import import_module

__version__ = "0.1.0"
__all__ = [
    # Lifecycle
    "SessionOrchestrator",
    "SessionState",
    # Configuration
    "CleanupStrategy",
    "ContextMapping",
    "KubetestSettings",
    "LogCollectionStrategy",
    "SessionConfig",
    # Cluster access
    "KubeClient",
    "KubeResourceManager",
    "TestIdentity",
    # Injection
    "InjectKubeClient",
    "InjectNamespace",
    "InjectNamespaces",
    "InjectResource",
    "InjectResourceManager",
    "InjectionScope",
    # Errors
    "KubeTestError",
    "NamespaceUnavailableError",
    "ResourceManagerUnavailableError",
]

_EXPORTS = {
    "SessionOrchestrator": "floe_kubetest.orchestrator",
    "SessionState": "floe_kubetest.orchestrator",
    "CleanupStrategy": "floe_kubetest.config",
    "ContextMapping": "floe_kubetest.config",
    "LogCollectionStrategy": "floe_kubetest.config",
    "SessionConfig": "floe_kubetest.config",
    "KubetestSettings": "floe_kubetest.settings",
    "KubeClient": "floe_kubetest.client",
    "KubeResourceManager": "floe_kubetest.resources",
    "TestIdentity": "floe_kubetest.resources",
    "InjectKubeClient": "floe_kubetest.injection",
    "InjectNamespace": "floe_kubetest.injection",
    "InjectNamespaces": "floe_kubetest.injection",
    "InjectResource": "floe_kubetest.injection",
    "InjectResourceManager": "floe_kubetest.injection",
    "InjectionScope": "floe_kubetest.injection",
    "KubeTestError": "floe_kubetest.errors",
    "NamespaceUnavailableError": "floe_kubetest.errors",
    "ResourceManagerUnavailableError": "floe_kubetest.errors",
}


# Lazy imports keep plugin loading cheap for projects without marked classes
def __getattr__(name: str) -> object:
    """Lazy import of package components."""
    module = _EXPORTS.get(name)
    if module is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)
    return getattr(import_module(module), name)
