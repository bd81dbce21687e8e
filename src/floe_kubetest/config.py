"""Session configuration models.

A test class declares its cluster requirements with the
``kubernetes_test`` marker. The marker keywords are validated into a
frozen :class:`SessionConfig` once, at suite setup, and never change
for the rest of the session.

Example:
    >>> import pytest
    >>> @pytest.mark.kubernetes_test(
    ...     namespaces=["payments", "ledger"],
    ...     collect_logs=True,
    ...     context_mappings=[{"context": "edge", "namespaces": ["payments"]}],
    ... )
    ... class TestPayments:
    ...     ...

See Also:
    - floe_kubetest.orchestrator: consumes SessionConfig at suite setup
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from floe_kubetest.errors import ConfigurationMissingError
from floe_kubetest.naming import generate_session_namespace, validate_namespace

DEFAULT_NAMESPACED_RESOURCES = ["pods", "services", "configmaps", "secrets"]


class CleanupStrategy(str, Enum):
    """What happens to resources created during a test.

    Attributes:
        AUTOMATIC: Tracked resources are deleted after each test and
            self-created namespaces after the suite.
        MANUAL: Nothing is deleted; the test owns cleanup.
    """

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class LogCollectionStrategy(str, Enum):
    """When diagnostics are collected.

    Attributes:
        NEVER: Never collect, even with collect_logs enabled.
        ON_FAILURE: Collect when any lifecycle phase fails.
        AFTER_EACH: Collect on failure and after every passing test.
    """

    NEVER = "never"
    ON_FAILURE = "on_failure"
    AFTER_EACH = "after_each"


def parse_key_values(entries: Iterable[str]) -> dict[str, str]:
    """Parse ``key=value`` strings into a dict.

    Entries split on the first ``=`` so values may contain ``=``. Later
    entries win on key collision.

    Args:
        entries: Strings of the form ``key=value``.

    Returns:
        Ordered mapping of keys to values.

    Example:
        >>> parse_key_values(["team=payments", "query=a=b"])
        {'team': 'payments', 'query': 'a=b'}
    """
    parsed: dict[str, str] = {}
    for entry in entries:
        key, _, value = entry.partition("=")
        parsed[key] = value
    return parsed


def _coerce_enum_value(value: Any) -> Any:
    # Accept both the member names ("ON_FAILURE") and the values ("on_failure")
    if isinstance(value, str) and not isinstance(value, Enum):
        return value.strip().lower()
    return value


def _check_namespaces(namespaces: list[str]) -> list[str]:
    seen: set[str] = set()
    for namespace in namespaces:
        if not validate_namespace(namespace):
            msg = f"'{namespace}' is not a valid Kubernetes namespace name"
            raise ValueError(msg)
        if namespace in seen:
            msg = f"Namespace '{namespace}' is declared more than once"
            raise ValueError(msg)
        seen.add(namespace)
    return namespaces


def _check_key_values(entries: list[str]) -> list[str]:
    for entry in entries:
        key, sep, _ = entry.partition("=")
        if not sep or not key.strip():
            msg = f"'{entry}' must have the form key=value"
            raise ValueError(msg)
    return entries


class ContextMapping(BaseModel):
    """Namespaces required in an additional cluster context.

    Namespaces are scoped per context: two mappings (or a mapping and the
    primary context) may declare the same namespace name.

    Attributes:
        context: Cluster context name, as discovered from the environment.
        namespaces: Namespaces required in that context.
        create_namespaces: Override of the session create flag. None inherits.
        cleanup: Override of the session cleanup policy. None inherits.
        namespace_labels: ``k=v`` labels merged over the session labels.
        namespace_annotations: ``k=v`` annotations merged over the session ones.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    context: str = Field(
        ...,
        min_length=1,
        description="Cluster context name",
        examples=["edge", "eu-west"],
    )
    namespaces: list[str] = Field(
        default_factory=list,
        description="Namespaces required in this context",
    )
    create_namespaces: bool | None = Field(
        default=None,
        description="Create missing namespaces; None inherits the session flag",
    )
    cleanup: CleanupStrategy | None = Field(
        default=None,
        description="Cleanup policy override; None inherits the session policy",
    )
    namespace_labels: list[str] = Field(
        default_factory=list,
        description="Extra labels (key=value) for created namespaces",
    )
    namespace_annotations: list[str] = Field(
        default_factory=list,
        description="Extra annotations (key=value) for created namespaces",
    )

    @field_validator("namespaces")
    @classmethod
    def validate_namespaces(cls, v: list[str]) -> list[str]:
        """Reject invalid or duplicated namespace names."""
        return _check_namespaces(v)

    @field_validator("namespace_labels", "namespace_annotations")
    @classmethod
    def validate_key_values(cls, v: list[str]) -> list[str]:
        """Reject entries without a key=value shape."""
        return _check_key_values(v)

    @field_validator("cleanup", mode="before")
    @classmethod
    def normalize_cleanup(cls, v: Any) -> Any:
        """Accept upper-case strategy names."""
        return _coerce_enum_value(v)


class SessionConfig(BaseModel):
    """Immutable configuration of one test session.

    Built once from the ``kubernetes_test`` marker at suite setup.

    Example:
        >>> config = SessionConfig(namespaces=["payments"], collect_logs=True)
        >>> config.log_collection_strategy
        <LogCollectionStrategy.ON_FAILURE: 'on_failure'>
        >>> config.cleanup
        <CleanupStrategy.AUTOMATIC: 'automatic'>
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    namespaces: list[str] = Field(
        default_factory=list,
        description="Namespaces required in the primary context, in order",
    )
    create_namespaces: bool = Field(
        default=True,
        description="Create namespaces that do not exist yet",
    )
    cleanup: CleanupStrategy = Field(
        default=CleanupStrategy.AUTOMATIC,
        description="Cleanup policy for resources and created namespaces",
    )
    context: str = Field(
        default="",
        description="Primary cluster context; empty means the default context",
    )
    store_yaml: bool = Field(
        default=False,
        description="Write every created resource as YAML",
    )
    yaml_store_path: str = Field(
        default="",
        description="Root directory for stored YAML; empty uses the settings default",
    )
    namespace_labels: list[str] = Field(
        default_factory=list,
        description="Labels (key=value) applied to created namespaces",
    )
    namespace_annotations: list[str] = Field(
        default_factory=list,
        description="Annotations (key=value) applied to created namespaces",
    )
    visual_separator_char: str = Field(
        default="#",
        min_length=1,
        description="Character used for log separators",
    )
    visual_separator_length: int = Field(
        default=76,
        ge=1,
        description="Length of log separators",
    )
    collect_logs: bool = Field(
        default=False,
        description="Enable diagnostics collection",
    )
    log_collection_strategy: LogCollectionStrategy = Field(
        default=LogCollectionStrategy.ON_FAILURE,
        description="When diagnostics are collected",
    )
    log_collection_path: str = Field(
        default="",
        description="Root directory for diagnostics; empty uses the settings default",
    )
    collect_previous_logs: bool = Field(
        default=False,
        description="Also collect logs of previous container instances",
    )
    collect_namespaced_resources: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NAMESPACED_RESOURCES),
        description="Namespaced resource kinds dumped as YAML",
        examples=[["pods", "services", "deployments"]],
    )
    collect_cluster_wide_resources: list[str] = Field(
        default_factory=list,
        description="Cluster-scoped resource kinds dumped as YAML",
        examples=[["nodes", "storageclasses"]],
    )
    context_mappings: list[ContextMapping] = Field(
        default_factory=list,
        description="Namespaces required in additional cluster contexts",
    )

    @field_validator("namespaces")
    @classmethod
    def validate_namespaces(cls, v: list[str]) -> list[str]:
        """Reject invalid or duplicated namespace names."""
        return _check_namespaces(v)

    @field_validator("namespace_labels", "namespace_annotations")
    @classmethod
    def validate_key_values(cls, v: list[str]) -> list[str]:
        """Reject entries without a key=value shape."""
        return _check_key_values(v)

    @field_validator("cleanup", "log_collection_strategy", mode="before")
    @classmethod
    def normalize_strategies(cls, v: Any) -> Any:
        """Accept upper-case strategy names."""
        return _coerce_enum_value(v)

    @model_validator(mode="after")
    def validate_context_mappings(self) -> SessionConfig:
        """Reject mappings that name the same context twice."""
        seen: set[str] = set()
        for mapping in self.context_mappings:
            if mapping.context in seen:
                msg = f"Context '{mapping.context}' is mapped more than once"
                raise ValueError(msg)
            seen.add(mapping.context)
        return self

    @property
    def collection_active(self) -> bool:
        """Whether failures trigger diagnostics collection."""
        return self.collect_logs and self.log_collection_strategy in (
            LogCollectionStrategy.ON_FAILURE,
            LogCollectionStrategy.AFTER_EACH,
        )

    @property
    def automatic_cleanup(self) -> bool:
        """Whether the session cleanup policy is AUTOMATIC."""
        return self.cleanup == CleanupStrategy.AUTOMATIC

    @property
    def any_automatic_cleanup(self) -> bool:
        """Whether the session or any context mapping cleans up automatically."""
        return any(
            self.cleanup_for(mapping) == CleanupStrategy.AUTOMATIC
            for mapping in [None, *self.context_mappings]
        )

    def cleanup_for(self, mapping: ContextMapping | None) -> CleanupStrategy:
        """Effective cleanup policy: the mapping override, else the session policy."""
        if mapping is not None and mapping.cleanup is not None:
            return mapping.cleanup
        return self.cleanup

    def automatic_cleanup_for(self, context: str) -> bool:
        """Whether resources created in ``context`` are deleted automatically.

        The primary context (empty string) follows the session policy.
        """
        mapping = self.mapping_for(context) if context else None
        return self.cleanup_for(mapping) == CleanupStrategy.AUTOMATIC

    def mapping_for(self, context: str) -> ContextMapping | None:
        """Return the mapping declared for ``context``, if any."""
        for mapping in self.context_mappings:
            if mapping.context == context:
                return mapping
        return None

    def create_namespaces_for(self, mapping: ContextMapping | None) -> bool:
        """Effective create flag: the mapping override, else the session flag."""
        if mapping is not None and mapping.create_namespaces is not None:
            return mapping.create_namespaces
        return self.create_namespaces

    def labels_for(self, mapping: ContextMapping | None) -> dict[str, str]:
        """Session labels with the mapping's labels merged over them."""
        extra = mapping.namespace_labels if mapping is not None else []
        return parse_key_values([*self.namespace_labels, *extra])

    def annotations_for(self, mapping: ContextMapping | None) -> dict[str, str]:
        """Session annotations with the mapping's annotations merged over them."""
        extra = mapping.namespace_annotations if mapping is not None else []
        return parse_key_values([*self.namespace_annotations, *extra])


def build_session_config(
    declaration: Mapping[str, Any] | None,
    *,
    suite_name: str,
    now: datetime | None = None,
) -> SessionConfig:
    """Build the session configuration from a marker declaration.

    Args:
        declaration: Keyword arguments of the ``kubernetes_test`` marker, or
            None when the test class carries no marker.
        suite_name: Short class name, used to generate a namespace when the
            declaration names none.
        now: Timestamp for namespace generation. Defaults to now.

    Returns:
        Validated SessionConfig.

    Raises:
        ConfigurationMissingError: If ``declaration`` is None.
        pydantic.ValidationError: If the declaration is invalid.
    """
    if declaration is None:
        raise ConfigurationMissingError(suite_name)

    values = dict(declaration)
    if not values.get("namespaces"):
        values["namespaces"] = [generate_session_namespace(suite_name, now)]

    return SessionConfig.model_validate(values)


__all__ = [
    "CleanupStrategy",
    "ContextMapping",
    "DEFAULT_NAMESPACED_RESOURCES",
    "LogCollectionStrategy",
    "SessionConfig",
    "build_session_config",
    "parse_key_values",
]
