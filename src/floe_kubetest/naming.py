"""Namespace naming utilities.

Generates session namespace names for test classes that do not declare
any, and validates names against Kubernetes naming rules.

Functions:
    generate_session_namespace: Build a timestamped namespace for a test class
    validate_namespace: Check if a namespace name is valid for K8s

Example:
    from floe_kubetest.naming import generate_session_namespace

    namespace = generate_session_namespace("TestPolarisCatalog")
    # Returns: "test-testpolariscatalog-20260117-101500"
"""

from __future__ import annotations

import re
from datetime import datetime

# K8s namespace constraints
MAX_NAMESPACE_LENGTH = 63
NAMESPACE_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class InvalidNamespaceError(ValueError):
    """Raised when a namespace name is invalid for Kubernetes."""

    def __init__(self, namespace: str, reason: str) -> None:
        self.namespace = namespace
        self.reason = reason
        super().__init__(f"Invalid namespace '{namespace}': {reason}")


def normalize_name(value: str) -> str:
    """Lowercase a name and strip characters Kubernetes does not accept."""
    normalized = value.lower().replace("_", "-").replace(".", "-")
    normalized = re.sub(r"[^a-z0-9-]", "", normalized)
    normalized = re.sub(r"-{2,}", "-", normalized)
    return normalized.strip("-")


def generate_session_namespace(suite_name: str, now: datetime | None = None) -> str:
    """Generate a namespace name for a test class.

    The name has the form ``test-{class name}-{yyyymmdd-HHMMSS}``. The class
    part is normalized and shortened so the result stays within 63 chars.

    Args:
        suite_name: Test class name (e.g., "TestPolarisCatalog").
        now: Timestamp to use. Defaults to the current local time.

    Returns:
        Namespace string (e.g., "test-testpolariscatalog-20260117-101500").

    Raises:
        InvalidNamespaceError: If the generated name is not a valid K8s name.

    Example:
        >>> from datetime import datetime
        >>> generate_session_namespace("TestFoo", datetime(2026, 1, 17, 10, 15))
        'test-testfoo-20260117-101500'
    """
    stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    class_part = normalize_name(suite_name) or "suite"

    max_class_length = MAX_NAMESPACE_LENGTH - len("test--") - len(stamp)
    if len(class_part) > max_class_length:
        class_part = class_part[:max_class_length].rstrip("-")

    namespace = f"test-{class_part}-{stamp}"

    if not validate_namespace(namespace):
        raise InvalidNamespaceError(
            namespace,
            "Generated namespace does not match K8s naming rules",
        )

    return namespace


def validate_namespace(namespace: str) -> bool:
    """Check if a namespace name is valid for Kubernetes.

    Validates that the namespace follows K8s naming rules:
    - Contains only lowercase alphanumeric characters and hyphens
    - Starts and ends with alphanumeric character
    - Maximum 63 characters

    Args:
        namespace: The namespace name to validate.

    Returns:
        True if valid, False otherwise.

    Example:
        >>> validate_namespace("test-namespace-abc123")
        True
        >>> validate_namespace("Test_Namespace")
        False
    """
    if not namespace:
        return False

    if len(namespace) > MAX_NAMESPACE_LENGTH:
        return False

    return bool(NAMESPACE_PATTERN.match(namespace))


__all__ = [
    "InvalidNamespaceError",
    "MAX_NAMESPACE_LENGTH",
    "NAMESPACE_PATTERN",
    "generate_session_namespace",
    "normalize_name",
    "validate_namespace",
]
