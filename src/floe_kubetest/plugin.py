"""pytest plugin.

Test classes opt in with the ``kubernetes_test`` marker. For every such
class a SessionOrchestrator is created; a class-scoped autouse fixture
runs suite setup, a function-scoped autouse fixture runs test setup and
teardown, and hook wrappers route failures raised by the test body or by
user fixtures through the failure coordinator. Suite teardown runs from
the teardown hook of the class's last test, after its failures are routed.
Tests marked xfail are never routed.

Example:
    >>> @pytest.mark.kubernetes_test(namespaces=["payments"], collect_logs=True)
    ... class TestPayments:
    ...     def test_namespace_is_active(self, kube_namespaces) -> None:
    ...         assert kube_namespaces["payments"].status.phase == "Active"

Fixtures:
    - kubetest_settings: KubetestSettings (override to change defaults)
    - kubetest_manager_factory: builds resource managers (override for fakes)
    - kubetest_session: SessionStore of the current test class
    - kube_resource_manager: primary KubeResourceManager
    - kube_client: KubeClient of the primary context
    - kube_namespaces: primary namespaces, by name
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import TYPE_CHECKING

import pytest
import structlog

from floe_kubetest.errors import ResourceManagerUnavailableError
from floe_kubetest.failures import LifecyclePhase
from floe_kubetest.log import configure_logging
from floe_kubetest.orchestrator import SessionOrchestrator, SessionState
from floe_kubetest.resources import KubeResourceManager, TestIdentity
from floe_kubetest.settings import KubetestSettings

if TYPE_CHECKING:
    from kubernetes.client import V1Namespace

    from floe_kubetest.client import KubeClient
    from floe_kubetest.store import SessionStore

logger = structlog.get_logger(__name__)

KUBETEST_MARKER = "kubernetes_test"

ORCHESTRATOR_KEY = pytest.StashKey[SessionOrchestrator]()
REPORTS_KEY = pytest.StashKey[dict[str, pytest.TestReport]]()
PENDING_TEARDOWN_KEY = pytest.StashKey[list[SessionOrchestrator]]()


def pytest_configure(config: pytest.Config) -> None:
    """Register the marker and optionally configure structlog."""
    config.addinivalue_line(
        "markers",
        f"{KUBETEST_MARKER}(**options): provision Kubernetes namespaces, contexts "
        "and diagnostics for a test class",
    )
    settings = KubetestSettings()
    if settings.configure_logging:
        configure_logging(settings.log_level, settings.json_logs)


def _orchestrator_for(item: pytest.Item) -> SessionOrchestrator | None:
    parent = item.getparent(pytest.Class)
    if parent is None:
        return None
    return parent.stash.get(ORCHESTRATOR_KEY, None)


def _expects_failure(item: pytest.Item) -> bool:
    marker = item.get_closest_marker("xfail")
    if marker is None:
        return False
    # String conditions count as met
    conditions = marker.args or (marker.kwargs.get("condition", True),)
    return any(bool(condition) for condition in conditions)


def _should_route(
    orchestrator: SessionOrchestrator | None,
    item: pytest.Item,
    failure: BaseException,
) -> bool:
    if orchestrator is None or orchestrator.session is None:
        return False
    if isinstance(failure, pytest.xfail.Exception) or _expects_failure(item):
        return False
    if not isinstance(failure, (Exception, pytest.fail.Exception)):
        return False
    return not orchestrator.failures.was_handled(failure)


def _suite_identity(cls: type) -> TestIdentity:
    return TestIdentity(f"{cls.__module__}.{cls.__qualname__}")


def _succeeded(reports: dict[str, pytest.TestReport]) -> bool:
    """Whether no phase failed; an expected failure does not count as success."""
    return not any(
        report.failed or (report.skipped and hasattr(report, "wasxfail"))
        for report in reports.values()
    )


def _finish_suites(config: pytest.Config) -> None:
    """Tear down every session whose class fixture has been finalized."""
    pending = config.stash.get(PENDING_TEARDOWN_KEY, [])
    while pending:
        pending.pop(0).suite_teardown()


# =============================================================================
# Configuration fixtures
# =============================================================================


@pytest.fixture(scope="session")
def kubetest_settings() -> KubetestSettings:
    """Plugin settings read from KUBETEST_* environment variables."""
    return KubetestSettings()


@pytest.fixture(scope="session")
def kubetest_manager_factory(
    kubetest_settings: KubetestSettings,
) -> Callable[[], KubeResourceManager]:
    """Factory of resource managers whose contexts come from the environment.

    Override this fixture to run sessions against another backend.
    """

    def factory() -> KubeResourceManager:
        return KubeResourceManager.from_environment(kubetest_settings)

    return factory


# =============================================================================
# Lifecycle fixtures
# =============================================================================


@pytest.fixture(scope="class", autouse=True)
def _kubetest_suite(
    request: pytest.FixtureRequest,
    kubetest_settings: KubetestSettings,
    kubetest_manager_factory: Callable[[], KubeResourceManager],
) -> Generator[SessionOrchestrator | None, None, None]:
    """Suite setup for classes carrying the kubernetes_test marker; queues suite teardown."""
    cls = request.cls
    marker = request.node.get_closest_marker(KUBETEST_MARKER) if cls is not None else None
    if cls is None or marker is None:
        yield None
        return

    suite = _suite_identity(cls)
    logger.debug("plugin.session_declared", suite=suite.suite, options=sorted(marker.kwargs))
    orchestrator = SessionOrchestrator(kubetest_manager_factory, settings=kubetest_settings)
    request.node.stash[ORCHESTRATOR_KEY] = orchestrator
    try:
        orchestrator.suite_setup(dict(marker.kwargs), suite, target=cls)
    except BaseException:
        orchestrator.suite_teardown()
        raise

    yield orchestrator
    # pytest finalizes the class before re-raising teardown failures of its last
    # test; suite teardown runs in pytest_runtest_teardown once those are routed
    request.config.stash.setdefault(PENDING_TEARDOWN_KEY, []).append(orchestrator)


@pytest.fixture(autouse=True)
def _kubetest_test(
    request: pytest.FixtureRequest,
    _kubetest_suite: SessionOrchestrator | None,
) -> Generator[None, None, None]:
    """Test setup and teardown inside a kubernetes_test session."""
    orchestrator = _kubetest_suite
    if orchestrator is None or orchestrator.session is None:
        yield
        return

    test = orchestrator.session.suite.for_test(request.node.name)
    orchestrator.test_setup(test, target=request.instance)
    yield
    reports = request.node.stash.get(REPORTS_KEY, {})
    orchestrator.test_teardown(test, failed=not _succeeded(reports))


# =============================================================================
# Failure routing
# =============================================================================


@pytest.hookimpl(wrapper=True)
def pytest_runtest_setup(item: pytest.Item) -> Generator[None, None, None]:
    """Route failures of user fixtures during setup."""
    try:
        return (yield)
    except BaseException as failure:
        orchestrator = _orchestrator_for(item)
        if orchestrator is not None and _should_route(orchestrator, item, failure):
            assert orchestrator.session is not None
            if orchestrator.state == SessionState.SUITE_SETUP:
                phase, name = LifecyclePhase.SUITE_SETUP, orchestrator.session.suite.display_name
            else:
                phase, name = LifecyclePhase.TEST_SETUP, item.name
            orchestrator.route_failure(phase, name, failure)
        raise


@pytest.hookimpl(wrapper=True)
def pytest_runtest_call(item: pytest.Item) -> Generator[None, None, None]:
    """Route failures of the test body."""
    orchestrator = _orchestrator_for(item)
    if orchestrator is not None and orchestrator.session is not None:
        orchestrator.begin_test_body()
    try:
        return (yield)
    except BaseException as failure:
        if orchestrator is not None and _should_route(orchestrator, item, failure):
            assert orchestrator.session is not None
            orchestrator.test_body_failed(orchestrator.session.suite.for_test(item.name), failure)
        raise


@pytest.hookimpl(wrapper=True)
def pytest_runtest_teardown(
    item: pytest.Item,
    nextitem: pytest.Item | None,
) -> Generator[None, None, None]:
    """Route failures of user fixtures during teardown, then finish ended suites.

    Failures are attributed to the test being torn down, including those of
    its class fixtures when it is the last test of its class.
    """
    try:
        return (yield)
    except BaseException as failure:
        orchestrator = _orchestrator_for(item)
        if orchestrator is not None and _should_route(orchestrator, item, failure):
            assert orchestrator.session is not None
            if orchestrator.state == SessionState.FINISHED:
                phase = LifecyclePhase.SUITE_TEARDOWN
                name = orchestrator.session.suite.display_name
            else:
                phase, name = LifecyclePhase.TEST_TEARDOWN, item.name
            orchestrator.route_failure(phase, name, failure)
        raise
    finally:
        _finish_suites(item.config)


@pytest.hookimpl(wrapper=True)
def pytest_sessionfinish(session: pytest.Session) -> Generator[None, None, None]:
    """Finish sessions whose classes were torn down outside a test teardown."""
    try:
        return (yield)
    finally:
        _finish_suites(session.config)


@pytest.hookimpl(wrapper=True, tryfirst=True)
def pytest_runtest_makereport(
    item: pytest.Item,
    call: pytest.CallInfo[None],
) -> Generator[None, pytest.TestReport, pytest.TestReport]:
    """Keep the reports of each phase for test teardown."""
    report = yield
    item.stash.setdefault(REPORTS_KEY, {})[report.when] = report
    return report


# =============================================================================
# User fixtures
# =============================================================================


@pytest.fixture
def kubetest_session(request: pytest.FixtureRequest) -> SessionStore:
    """Session state of the current kubernetes_test class."""
    orchestrator = _orchestrator_for(request.node)
    if orchestrator is None or orchestrator.session is None:
        raise ResourceManagerUnavailableError(
            "default",
            reason=f"'{request.node.name}' is not in a {KUBETEST_MARKER} class",
        )
    return orchestrator.session


@pytest.fixture
def kube_resource_manager(kubetest_session: SessionStore) -> KubeResourceManager:
    """Primary resource manager of the session."""
    return kubetest_session.require_resource_manager()


@pytest.fixture
def kube_client(kube_resource_manager: KubeResourceManager) -> KubeClient:
    """KubeClient of the primary context."""
    return kube_resource_manager.kube_client


@pytest.fixture
def kube_namespaces(kubetest_session: SessionStore) -> dict[str, V1Namespace]:
    """Primary namespaces of the session, by name."""
    return dict(kubetest_session.namespace_objects_for())


__all__ = [
    "KUBETEST_MARKER",
    "ORCHESTRATOR_KEY",
]
