"""Sessions against a live cluster.

Run with ``pytest -m integration`` and a reachable cluster.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from floe_kubetest.client import KubeClient
from floe_kubetest.naming import generate_session_namespace
from floe_kubetest.orchestrator import SessionOrchestrator, SessionState
from floe_kubetest.resources import KubeResourceManager, TestIdentity
from floe_kubetest.settings import KubetestSettings

pytestmark = pytest.mark.integration

SUITE = TestIdentity("tests.integration.test_live_cluster.TestLive")


@pytest.fixture
def namespace() -> str:
    """Unique namespace name for one test."""
    return generate_session_namespace("TestLive", datetime.now(timezone.utc))


class TestLiveSession:
    """Full sessions against the default context."""

    @pytest.mark.requirement("KT-FR-050")
    def test_namespace_created_and_deleted(
        self,
        live_manager_factory: Callable[[], KubeResourceManager],
        live_settings: KubetestSettings,
        live_client: KubeClient,
        namespace: str,
    ) -> None:
        """Test a session creates its namespace and deletes it at the end."""
        orchestrator = SessionOrchestrator(live_manager_factory, settings=live_settings)

        session = orchestrator.suite_setup({"namespaces": [namespace]}, SUITE)
        try:
            assert live_client.namespace_exists(namespace)
            assert session.created_namespaces == [namespace]
        finally:
            errors = orchestrator.suite_teardown()

        assert errors == []
        assert orchestrator.state == SessionState.FINISHED
        assert not live_client.namespace_exists(namespace)

    @pytest.mark.requirement("KT-FR-055")
    def test_failure_diagnostics(
        self,
        live_manager_factory: Callable[[], KubeResourceManager],
        live_settings: KubetestSettings,
        namespace: str,
    ) -> None:
        """Test a failing body writes diagnostics for the session namespace."""
        orchestrator = SessionOrchestrator(live_manager_factory, settings=live_settings)
        orchestrator.suite_setup({"namespaces": [namespace], "collect_logs": True}, SUITE)
        test = SUITE.for_test("test_fails")
        try:
            orchestrator.test_setup(test)
            orchestrator.begin_test_body()
            with pytest.raises(AssertionError):
                orchestrator.test_body_failed(test, AssertionError("boom"))
            orchestrator.test_teardown(test, failed=True)
        finally:
            orchestrator.suite_teardown()

        folder = live_settings.log_path / SUITE.suite / "failure-test-execution-test_fails"
        assert (folder / namespace / "events.log").exists()
