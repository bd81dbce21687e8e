"""Unit tests for session configuration models.

Tests SessionConfig and ContextMapping validation, defaults, label
merging and marker declaration parsing.
"""

from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from floe_kubetest.config import (
    DEFAULT_NAMESPACED_RESOURCES,
    CleanupStrategy,
    ContextMapping,
    LogCollectionStrategy,
    SessionConfig,
    build_session_config,
    parse_key_values,
)
from floe_kubetest.errors import ConfigurationMissingError


class TestSessionConfigDefaults:
    """Tests for SessionConfig default values."""

    @pytest.mark.requirement("KT-FR-001")
    def test_defaults(self) -> None:
        """Test every documented default."""
        config = SessionConfig()
        assert config.namespaces == []
        assert config.create_namespaces is True
        assert config.cleanup == CleanupStrategy.AUTOMATIC
        assert config.context == ""
        assert config.store_yaml is False
        assert config.visual_separator_char == "#"
        assert config.visual_separator_length == 76
        assert config.collect_logs is False
        assert config.log_collection_strategy == LogCollectionStrategy.ON_FAILURE
        assert config.collect_previous_logs is False
        assert config.collect_namespaced_resources == DEFAULT_NAMESPACED_RESOURCES
        assert config.collect_cluster_wide_resources == []
        assert config.context_mappings == []

    @pytest.mark.requirement("KT-FR-001")
    def test_default_resource_list_is_not_shared(self) -> None:
        """Test each config gets its own copy of the default kinds."""
        first = SessionConfig()
        first.collect_namespaced_resources.append("deployments")
        assert SessionConfig().collect_namespaced_resources == DEFAULT_NAMESPACED_RESOURCES


class TestSessionConfigValidation:
    """Tests for SessionConfig validation rules."""

    @pytest.mark.requirement("KT-FR-002")
    def test_frozen(self) -> None:
        """Test the config cannot be changed after construction."""
        config = SessionConfig(namespaces=["ns1"])
        with pytest.raises(ValidationError):
            config.collect_logs = True  # type: ignore[misc]

    @pytest.mark.requirement("KT-FR-002")
    def test_unknown_option_rejected(self) -> None:
        """Test misspelled marker keywords are rejected."""
        with pytest.raises(ValidationError, match="colect_logs"):
            SessionConfig(colect_logs=True)  # type: ignore[call-arg]

    @pytest.mark.requirement("KT-FR-002")
    def test_invalid_namespace_rejected(self) -> None:
        """Test namespace names must be valid Kubernetes names."""
        with pytest.raises(ValidationError, match="not a valid Kubernetes namespace"):
            SessionConfig(namespaces=["Bad_Name"])

    @pytest.mark.requirement("KT-FR-002")
    def test_duplicate_namespace_rejected(self) -> None:
        """Test namespace names must be unique."""
        with pytest.raises(ValidationError, match="declared more than once"):
            SessionConfig(namespaces=["ns1", "ns1"])

    @pytest.mark.requirement("KT-FR-002")
    @pytest.mark.parametrize("entry", ["no-separator", "=value"])
    def test_malformed_label_rejected(self, entry: str) -> None:
        """Test labels need a key=value shape."""
        with pytest.raises(ValidationError, match="key=value"):
            SessionConfig(namespace_labels=[entry])

    @pytest.mark.requirement("KT-FR-002")
    def test_separator_char_must_not_be_empty(self) -> None:
        """Test an empty separator char is rejected."""
        with pytest.raises(ValidationError):
            SessionConfig(visual_separator_char="")

    @pytest.mark.requirement("KT-FR-001")
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("AFTER_EACH", LogCollectionStrategy.AFTER_EACH),
            ("after_each", LogCollectionStrategy.AFTER_EACH),
            ("Never", LogCollectionStrategy.NEVER),
            (LogCollectionStrategy.ON_FAILURE, LogCollectionStrategy.ON_FAILURE),
        ],
    )
    def test_strategy_names_accepted(self, value: str, expected: LogCollectionStrategy) -> None:
        """Test strategy names and values are both accepted."""
        config = SessionConfig(log_collection_strategy=value)  # type: ignore[arg-type]
        assert config.log_collection_strategy == expected

    @pytest.mark.requirement("KT-FR-001")
    def test_cleanup_name_accepted(self) -> None:
        """Test upper-case cleanup names."""
        config = SessionConfig(cleanup="MANUAL")  # type: ignore[arg-type]
        assert config.cleanup == CleanupStrategy.MANUAL


class TestContextMappings:
    """Tests for ContextMapping and its merge rules."""

    @pytest.mark.requirement("KT-FR-004")
    def test_mapping_from_dict(self) -> None:
        """Test mappings declared as dicts become ContextMapping models."""
        config = SessionConfig.model_validate(
            {"context_mappings": [{"context": "edge", "namespaces": ["ns1"]}]}
        )
        mapping = config.context_mappings[0]
        assert isinstance(mapping, ContextMapping)
        assert mapping.create_namespaces is None
        assert mapping.cleanup is None

    @pytest.mark.requirement("KT-FR-004")
    def test_same_namespace_in_two_contexts(self) -> None:
        """Test namespaces are scoped per context."""
        config = SessionConfig(
            namespaces=["shared"],
            context_mappings=[
                ContextMapping(context="edge", namespaces=["shared"]),
                ContextMapping(context="west", namespaces=["shared"]),
            ],
        )
        assert [m.namespaces for m in config.context_mappings] == [["shared"], ["shared"]]

    @pytest.mark.requirement("KT-FR-004")
    def test_duplicate_context_rejected(self) -> None:
        """Test a context may only be mapped once."""
        with pytest.raises(ValidationError, match="mapped more than once"):
            SessionConfig(
                context_mappings=[ContextMapping(context="edge"), ContextMapping(context="edge")]
            )

    @pytest.mark.requirement("KT-FR-004")
    def test_empty_context_rejected(self) -> None:
        """Test a mapping needs a context name."""
        with pytest.raises(ValidationError):
            ContextMapping(context="")

    @pytest.mark.requirement("KT-FR-004")
    def test_mapping_for(self) -> None:
        """Test mapping lookup by context."""
        edge = ContextMapping(context="edge")
        config = SessionConfig(context_mappings=[edge])
        assert config.mapping_for("edge") == edge
        assert config.mapping_for("west") is None

    @pytest.mark.requirement("KT-FR-011")
    def test_create_flag_override(self) -> None:
        """Test the mapping create flag wins over the session flag."""
        config = SessionConfig(create_namespaces=True)
        assert config.create_namespaces_for(None) is True
        assert config.create_namespaces_for(ContextMapping(context="edge")) is True
        override = ContextMapping(context="edge", create_namespaces=False)
        assert config.create_namespaces_for(override) is False

    @pytest.mark.requirement("KT-FR-011")
    def test_labels_merge_mapping_over_session(self) -> None:
        """Test mapping labels override session labels on key collision."""
        config = SessionConfig(namespace_labels=["team=payments", "tier=backend"])
        mapping = ContextMapping(context="edge", namespace_labels=["team=edge"])
        assert config.labels_for(None) == {"team": "payments", "tier": "backend"}
        assert config.labels_for(mapping) == {"team": "edge", "tier": "backend"}

    @pytest.mark.requirement("KT-FR-011")
    def test_annotations_merge_mapping_over_session(self) -> None:
        """Test mapping annotations override session annotations."""
        config = SessionConfig(namespace_annotations=["owner=a"])
        mapping = ContextMapping(context="edge", namespace_annotations=["owner=b", "x=y"])
        assert config.annotations_for(mapping) == {"owner": "b", "x": "y"}


class TestStrategyProperties:
    """Tests for the derived strategy flags."""

    @pytest.mark.requirement("KT-FR-041")
    @pytest.mark.parametrize(
        ("collect_logs", "strategy", "expected"),
        [
            (False, LogCollectionStrategy.ON_FAILURE, False),
            (False, LogCollectionStrategy.AFTER_EACH, False),
            (True, LogCollectionStrategy.NEVER, False),
            (True, LogCollectionStrategy.ON_FAILURE, True),
            (True, LogCollectionStrategy.AFTER_EACH, True),
        ],
    )
    def test_collection_active(
        self,
        collect_logs: bool,
        strategy: LogCollectionStrategy,
        expected: bool,
    ) -> None:
        """Test collection is active only when enabled with a collecting strategy."""
        config = SessionConfig(collect_logs=collect_logs, log_collection_strategy=strategy)
        assert config.collection_active is expected

    @pytest.mark.requirement("KT-FR-042")
    def test_automatic_cleanup(self) -> None:
        """Test the AUTOMATIC flag."""
        assert SessionConfig().automatic_cleanup is True
        assert SessionConfig(cleanup=CleanupStrategy.MANUAL).automatic_cleanup is False

    @pytest.mark.requirement("KT-FR-042")
    def test_cleanup_for_context(self) -> None:
        """Test a mapping's cleanup override applies to its context only."""
        config = SessionConfig(
            context_mappings=[
                ContextMapping(context="edge", cleanup=CleanupStrategy.MANUAL),
                ContextMapping(context="west"),
            ]
        )

        assert config.cleanup_for(config.mapping_for("edge")) == CleanupStrategy.MANUAL
        assert config.cleanup_for(config.mapping_for("west")) == CleanupStrategy.AUTOMATIC
        assert config.automatic_cleanup_for("") is True
        assert config.automatic_cleanup_for("edge") is False
        assert config.automatic_cleanup_for("west") is True
        assert config.automatic_cleanup_for("unmapped") is True

    @pytest.mark.requirement("KT-FR-042")
    def test_any_automatic_cleanup(self) -> None:
        """Test a MANUAL session still cleans up when one mapping is AUTOMATIC."""
        manual = SessionConfig(cleanup=CleanupStrategy.MANUAL)
        mixed = SessionConfig(
            cleanup=CleanupStrategy.MANUAL,
            context_mappings=[ContextMapping(context="edge", cleanup=CleanupStrategy.AUTOMATIC)],
        )

        assert manual.any_automatic_cleanup is False
        assert mixed.any_automatic_cleanup is True
        assert mixed.automatic_cleanup_for("") is False


class TestParseKeyValues:
    """Tests for parse_key_values."""

    @pytest.mark.requirement("KT-FR-011")
    def test_splits_on_first_equals(self) -> None:
        """Test values may contain '='."""
        assert parse_key_values(["query=a=b"]) == {"query": "a=b"}

    @pytest.mark.requirement("KT-FR-011")
    def test_later_entries_win(self) -> None:
        """Test key collisions keep the last value."""
        assert parse_key_values(["team=a", "team=b"]) == {"team": "b"}

    @pytest.mark.requirement("KT-FR-011")
    def test_empty_value(self) -> None:
        """Test an empty value is allowed."""
        assert parse_key_values(["flag="]) == {"flag": ""}


class TestBuildSessionConfig:
    """Tests for build_session_config."""

    @pytest.mark.requirement("KT-FR-050")
    def test_missing_declaration(self) -> None:
        """Test a class without the marker cannot start a session."""
        with pytest.raises(ConfigurationMissingError):
            build_session_config(None, suite_name="TestApp")

    @pytest.mark.requirement("KT-FR-003")
    def test_generates_namespace_when_none_declared(self) -> None:
        """Test an empty declaration gets a generated namespace."""
        config = build_session_config(
            {},
            suite_name="TestApp",
            now=datetime(2026, 1, 17, 10, 15),
        )
        assert config.namespaces == ["test-testapp-20260117-101500"]

    @pytest.mark.requirement("KT-FR-001")
    def test_declared_values(self) -> None:
        """Test declared keywords are validated into the config."""
        config = build_session_config(
            {
                "namespaces": ["ns1", "ns2"],
                "collect_logs": True,
                "log_collection_strategy": "AFTER_EACH",
                "context_mappings": [{"context": "edge", "namespaces": ["ns1"]}],
            },
            suite_name="TestApp",
        )
        assert config.namespaces == ["ns1", "ns2"]
        assert config.log_collection_strategy == LogCollectionStrategy.AFTER_EACH
        assert config.context_mappings[0].context == "edge"

    @pytest.mark.requirement("KT-FR-002")
    def test_invalid_declaration(self) -> None:
        """Test invalid declarations raise ValidationError."""
        with pytest.raises(ValidationError):
            build_session_config({"namespaces": ["ns1"], "cleanup": "sometimes"}, suite_name="T")
