"""Unit tests for structlog configuration and separators."""

from __future__ import annotations

from collections.abc import Generator

import pytest
import structlog
from structlog.testing import capture_logs

from floe_kubetest.log import configure_logging, log_separator, separator


@pytest.fixture
def reset_structlog() -> Generator[None, None, None]:
    """Restore the default structlog configuration after the test."""
    yield
    structlog.reset_defaults()


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.mark.requirement("CR-005")
    @pytest.mark.usefixtures("reset_structlog")
    @pytest.mark.parametrize("json_output", [True, False])
    def test_configures_structlog(self, json_output: bool) -> None:
        """Test structlog is configured for both renderers."""
        configure_logging(log_level="debug", json_output=json_output)
        assert structlog.is_configured()

    @pytest.mark.requirement("CR-005")
    def test_unknown_level(self) -> None:
        """Test unknown levels are rejected."""
        with pytest.raises(ValueError, match="Unknown log level: LOUD"):
            configure_logging(log_level="LOUD")


class TestSeparator:
    """Tests for visual separators."""

    @pytest.mark.requirement("KT-FR-056")
    def test_default_separator(self) -> None:
        """Test the default separator is 76 hashes."""
        assert separator() == "#" * 76

    @pytest.mark.requirement("KT-FR-056")
    def test_custom_separator(self) -> None:
        """Test custom char and length."""
        assert separator("=", 5) == "====="

    @pytest.mark.requirement("KT-FR-056")
    def test_log_separator(self) -> None:
        """Test the separator is logged at info level."""
        with capture_logs() as logs:
            log_separator("-", 3)
        assert logs == [{"event": "---", "log_level": "info"}]
