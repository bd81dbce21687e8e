"""Custom exceptions for floe-kubetest.

Exception Hierarchy:
    KubeTestError (base)
    ├── ConfigurationMissingError
    ├── NamespaceUnavailableError
    ├── ResourceManagerUnavailableError
    ├── TransientDiagnosticsError
    ├── TeardownError
    ├── ResourceCleanupError
    ├── ContextReleaseError
    └── UnknownClusterContextError (also a ValueError)

Example:
    >>> from floe_kubetest.errors import NamespaceUnavailableError
    >>> raise NamespaceUnavailableError("payments", context="default")
    NamespaceUnavailableError: Namespace 'payments' does not exist in context 'default' ...
"""

from __future__ import annotations

from typing import Any


class KubeTestError(Exception):
    """Base exception for all floe-kubetest errors.

    Attributes:
        message: Human-readable error message.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
        """
        self.message = message
        super().__init__(message)


class ConfigurationMissingError(KubeTestError):
    """Raised when a test class has no kubernetes_test declaration.

    Attributes:
        suite: Identity of the test class that was being set up.
    """

    def __init__(self, suite: str) -> None:
        self.suite = suite
        super().__init__(
            f"Test class '{suite}' has no kubernetes_test declaration; "
            "add @pytest.mark.kubernetes_test(...) to the class"
        )


class NamespaceUnavailableError(KubeTestError):
    """Raised when a required namespace is absent and creation is disabled.

    Attributes:
        namespace: The namespace that was requested.
        context: The cluster context it was looked up in.
    """

    def __init__(self, namespace: str, *, context: str) -> None:
        self.namespace = namespace
        self.context = context
        super().__init__(
            f"Namespace '{namespace}' does not exist in context '{context}' "
            "and create_namespaces is false"
        )


class ResourceManagerUnavailableError(KubeTestError):
    """Raised when no resource manager can be bound for a cluster context.

    Attributes:
        context: The cluster context that was requested.
        reason: Additional context about the failure.
    """

    def __init__(self, context: str, *, reason: str = "") -> None:
        self.context = context
        self.reason = reason
        message = f"No resource manager available for cluster context '{context}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransientDiagnosticsError(KubeTestError):
    """Raised when diagnostics collection fails.

    Never fatal: the log collection manager catches it and carries on.

    Attributes:
        operation: What was being collected.
        reason: Underlying failure description.
    """

    def __init__(self, operation: str, *, reason: str = "") -> None:
        self.operation = operation
        self.reason = reason
        message = f"Diagnostics operation '{operation}' failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TeardownError(KubeTestError):
    """Raised (or recorded) when a teardown step fails.

    Teardown is best-effort, so these are usually collected and logged
    rather than propagated.

    Attributes:
        resource: What was being torn down (namespace, context handle, ...).
        reason: Underlying failure description.
    """

    def __init__(self, resource: str, *, reason: str = "") -> None:
        self.resource = resource
        self.reason = reason
        message = f"Teardown of '{resource}' failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ResourceCleanupError(KubeTestError):
    """Raised when one or more tracked resources could not be deleted.

    Attributes:
        failures: Mapping of resource description to the exception raised.
    """

    def __init__(self, failures: dict[str, Exception]) -> None:
        self.failures = failures
        names = ", ".join(sorted(failures))
        super().__init__(f"Failed to delete {len(failures)} resource(s): {names}")


class ContextReleaseError(KubeTestError):
    """Raised when a cluster-context release handle is released twice."""

    def __init__(self, context: str) -> None:
        self.context = context
        super().__init__(f"Release handle for cluster context '{context}' was already released")


class UnknownClusterContextError(KubeTestError, ValueError):
    """Raised when switching to a cluster context with no discovered credentials.

    Attributes:
        context: The requested context.
        available: Contexts that were discovered.
    """

    def __init__(self, context: str, *, available: list[str] | None = None) -> None:
        self.context = context
        self.available = available or []
        message = f"Unknown cluster context '{context}'"
        if self.available:
            message = f"{message} (known: {', '.join(sorted(self.available))})"
        KubeTestError.__init__(self, message)


def sanitize_api_error(exc: Any) -> str:
    """Return a loggable summary of a Kubernetes ApiException.

    Response bodies can carry tokens or object payloads, so only the
    reason and status are kept.

    Args:
        exc: The exception raised by the kubernetes client.

    Returns:
        "Reason (HTTP status)" for API errors, the exception type otherwise.
    """
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None)
    if status is None and reason is None:
        return f"{type(exc).__name__}: {exc}"
    return f"{reason or 'Unknown'} (HTTP {status})"


__all__ = [
    "ConfigurationMissingError",
    "ContextReleaseError",
    "KubeTestError",
    "NamespaceUnavailableError",
    "ResourceCleanupError",
    "ResourceManagerUnavailableError",
    "TeardownError",
    "TransientDiagnosticsError",
    "UnknownClusterContextError",
    "sanitize_api_error",
]
