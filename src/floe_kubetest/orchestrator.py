"""Session orchestrator.

Sequences one test session (a test class) through its lifecycle:

    NOT_STARTED -> SUITE_SETUP -> (TEST_SETUP -> TEST_BODY -> TEST_TEARDOWN)*
                -> SUITE_TEARDOWN -> FINISHED

Setup failures are routed through the FailureCoordinator and re-raised.
Suite teardown is best-effort: every step runs even when earlier ones
fail, and the orchestrator always ends in FINISHED.

Example:
    >>> orchestrator = SessionOrchestrator(lambda: KubeResourceManager.from_environment())
    >>> suite = TestIdentity("tests.test_app.TestApp")
    >>> orchestrator.suite_setup({"namespaces": ["ns1", "ns2"]}, suite)
    >>> orchestrator.test_setup(suite.for_test("test_deploy"))
    >>> orchestrator.begin_test_body()
    >>> orchestrator.test_teardown(suite.for_test("test_deploy"), failed=False)
    >>> orchestrator.suite_teardown()  # deletes ns1 and ns2

See Also:
    - floe_kubetest.plugin: drives the orchestrator from pytest hooks
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from floe_kubetest.config import LogCollectionStrategy, SessionConfig, build_session_config
from floe_kubetest.contexts import ContextRegistry, ManagerFactory
from floe_kubetest.errors import TeardownError
from floe_kubetest.failures import FailureCoordinator, LifecyclePhase
from floe_kubetest.injection import DependencyInjector, InjectionScope
from floe_kubetest.log import separator
from floe_kubetest.log_collection import LogCollectionManager
from floe_kubetest.namespaces import NamespaceManager
from floe_kubetest.resources import KubeResourceManager, TestIdentity
from floe_kubetest.settings import KubetestSettings
from floe_kubetest.store import SessionStore

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    """Lifecycle state of a session."""

    NOT_STARTED = "not_started"
    SUITE_SETUP = "suite_setup"
    TEST_SETUP = "test_setup"
    TEST_BODY = "test_body"
    TEST_TEARDOWN = "test_teardown"
    SUITE_TEARDOWN = "suite_teardown"
    FINISHED = "finished"


_PHASE_BY_STATE = {
    SessionState.NOT_STARTED: LifecyclePhase.SUITE_SETUP,
    SessionState.SUITE_SETUP: LifecyclePhase.SUITE_SETUP,
    SessionState.TEST_SETUP: LifecyclePhase.TEST_SETUP,
    SessionState.TEST_BODY: LifecyclePhase.TEST_BODY,
    SessionState.TEST_TEARDOWN: LifecyclePhase.TEST_TEARDOWN,
    SessionState.SUITE_TEARDOWN: LifecyclePhase.SUITE_TEARDOWN,
    SessionState.FINISHED: LifecyclePhase.SUITE_TEARDOWN,
}


class SessionOrchestrator:
    """Drives namespaces, contexts, diagnostics and cleanup for one session.

    Attributes:
        state: Current lifecycle state.
        session: Session state, None before suite setup.
        namespaces: Namespace manager.
        log_collection: Log collection manager.
        registry: Per-context resource manager registry.
        failures: Failure coordinator.
        injector: Field injector.
    """

    def __init__(
        self,
        manager_factory: ManagerFactory,
        *,
        settings: KubetestSettings | None = None,
        namespace_manager: NamespaceManager | None = None,
        log_collection: LogCollectionManager | None = None,
        injector: DependencyInjector | None = None,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.settings = settings or KubetestSettings()
        self._manager_factory = manager_factory
        self.namespaces = namespace_manager or NamespaceManager(self.settings)
        self.log_collection = log_collection or LogCollectionManager(self.settings)
        self.registry = ContextRegistry(
            manager_factory,
            initializers=[self._initialize_context_manager],
        )
        self.failures = FailureCoordinator(self.collect_logs, self.handle_automatic_cleanup)
        self.injector = injector or DependencyInjector()
        self.state = SessionState.NOT_STARTED
        self.session: SessionStore | None = None
        self._current: TestIdentity | None = None
        self._log = log or logger.info

    @property
    def config(self) -> SessionConfig | None:
        """Session configuration, None before it is built."""
        return self.session.config if self.session is not None else None

    @property
    def current_phase(self) -> LifecyclePhase:
        """Lifecycle phase matching the current state."""
        return _PHASE_BY_STATE[self.state]

    def _separator(self) -> None:
        config = self.config
        if config is None:
            self._log(separator())
        else:
            self._log(separator(config.visual_separator_char, config.visual_separator_length))

    def _require_session(self) -> SessionStore:
        if self.session is None:
            msg = "Suite setup has not run for this session"
            raise RuntimeError(msg)
        return self.session

    def _initialize_context_manager(
        self,
        session: SessionStore,
        manager: KubeResourceManager,
    ) -> None:
        config = session.config
        if config is not None and config.collect_logs:
            self.namespaces.setup_auto_labeling(manager)

    # =========================================================================
    # Suite setup
    # =========================================================================

    def suite_setup(
        self,
        declaration: Mapping[str, Any] | None,
        suite: TestIdentity,
        target: Any = None,
    ) -> SessionStore:
        """Set up the session of a test class.

        Args:
            declaration: ``kubernetes_test`` marker keywords, None if absent.
            suite: Identity of the test class.
            target: Test class receiving suite-scoped injected fields.

        Returns:
            The new session state.

        Raises:
            ConfigurationMissingError: If ``declaration`` is None.
            NamespaceUnavailableError: If a required namespace is missing
                and may not be created.
        """
        self.state = SessionState.SUITE_SETUP
        session = SessionStore(suite=suite)
        self.session = session
        self._current = suite

        try:
            self._suite_setup(session, declaration, suite, target)
        except Exception as failure:
            self.failures.on_suite_setup_failure(session, suite.display_name, failure)
        return session

    def _suite_setup(
        self,
        session: SessionStore,
        declaration: Mapping[str, Any] | None,
        suite: TestIdentity,
        target: Any,
    ) -> None:
        config = build_session_config(declaration, suite_name=suite.class_name)
        session.config = config

        self._separator()
        self._log(f"TestClass {suite.suite} STARTED")
        logger.info(
            "orchestrator.suite_setup",
            suite=suite.suite,
            namespaces=config.namespaces,
            context=config.context or "default",
            contexts=[mapping.context for mapping in config.context_mappings],
        )

        manager = self._manager_factory()
        session.resource_manager = manager
        manager.bind_test(suite)
        session.context_release = manager.use_context(config.context)

        if config.store_yaml:
            yaml_path = (
                Path(config.yaml_store_path) if config.yaml_store_path else self.settings.yaml_path
            )
            manager.set_store_yaml_path(yaml_path)

        if config.collect_logs:
            self.log_collection.attach(session, config, manager)
            self.namespaces.setup_auto_labeling(manager)

        self.namespaces.setup_namespaces(session, config, manager, self.registry.get_or_create)

        if target is not None:
            self.injector.inject_fields(session, target, InjectionScope.SUITE)

        logger.info("orchestrator.suite_ready", suite=suite.suite)

    # =========================================================================
    # Tests
    # =========================================================================

    def test_setup(self, test: TestIdentity, target: Any = None) -> None:
        """Bind the managers to ``test`` and inject test-scoped fields.

        Raises:
            Exception: Whatever setup raised, after the FailureCoordinator
                handled it.
        """
        session = self._require_session()
        self.state = SessionState.TEST_SETUP
        self._current = test
        try:
            self._separator()
            self._log(f"Test {test.key} STARTED")
            self.registry.bind_test(session, test)
            if target is not None:
                self.injector.inject_fields(session, target, InjectionScope.TEST)
        except Exception as failure:
            self.failures.on_test_setup_failure(session, test.display_name, failure)

    def begin_test_body(self) -> None:
        """Mark the start of the test body."""
        self.state = SessionState.TEST_BODY

    def test_body_failed(self, test: TestIdentity, failure: BaseException) -> None:
        """Route a failure of the test body. Always re-raises ``failure``."""
        self.failures.on_test_body_failure(self._require_session(), test.display_name, failure)

    def test_teardown(self, test: TestIdentity, *, failed: bool) -> None:
        """Clean up after ``test`` and collect diagnostics for AFTER_EACH.

        Args:
            test: The test that just ran.
            failed: Whether the test failed in setup or body.
        """
        session = self._require_session()
        config = session.config
        self.state = SessionState.TEST_TEARDOWN
        try:
            if config is not None:
                if config.any_automatic_cleanup:
                    self.handle_automatic_cleanup(session)
                if (
                    not failed
                    and config.collect_logs
                    and config.log_collection_strategy == LogCollectionStrategy.AFTER_EACH
                ):
                    self.collect_logs(session, f"after-each-success-{test.display_name}".lower())
        except Exception as failure:
            self.failures.on_test_teardown_failure(session, test.display_name, failure)
        finally:
            self._log(f"Test {test.key} {'FAILED' if failed else 'SUCCEEDED'}")
            self._current = session.suite
            self.registry.bind_test(session, session.suite)

    # =========================================================================
    # Suite teardown
    # =========================================================================

    def suite_teardown(self) -> list[TeardownError]:
        """Tear the session down.

        Runs automatic cleanup, deletes self-created namespaces of every
        context, releases every context handle and clears manager bindings.
        Each step is attempted regardless of earlier failures.

        Returns:
            Teardown errors that were logged along the way.
        """
        session = self.session
        self.state = SessionState.SUITE_TEARDOWN
        errors: list[TeardownError] = []
        if session is None:
            self.state = SessionState.FINISHED
            return errors

        config = session.config
        try:
            self._current = session.suite
            self.registry.bind_test(session, session.suite)

            if config is not None and config.any_automatic_cleanup:
                errors.extend(self.handle_automatic_cleanup(session))

            errors.extend(self.namespaces.cleanup_namespaces(session))
            for context in list(session.context_created_namespaces):
                errors.extend(self.namespaces.cleanup_namespaces(session, context))

            errors.extend(self.registry.release_all(session))
        finally:
            try:
                self.registry.clear_bindings(session)
            except Exception as e:  # noqa: BLE001
                errors.append(TeardownError("manager bindings", reason=str(e)))
                logger.error("orchestrator.clear_bindings_failed", error=str(e))
            self.injector.restore()
            self.state = SessionState.FINISHED
            self._log(f"TestClass {session.suite.suite} FINISHED")
            self._separator()

        if errors:
            logger.warning(
                "orchestrator.suite_teardown_errors",
                suite=session.suite.suite,
                count=len(errors),
                errors=[str(error) for error in errors],
            )
        return errors

    # =========================================================================
    # Callbacks
    # =========================================================================

    def handle_automatic_cleanup(self, session: SessionStore | None = None) -> list[TeardownError]:
        """Delete what the current identity created, in every AUTOMATIC context.

        Contexts whose effective cleanup policy is MANUAL keep their
        resources. Failures are logged and returned, never raised.
        """
        session = session or self._require_session()
        config = session.config
        errors: list[TeardownError] = []
        for context, manager in session.managers_by_context():
            if config is not None and not config.automatic_cleanup_for(context):
                logger.debug("orchestrator.cleanup_skipped", context=context, policy="manual")
                continue
            try:
                manager.delete_resources()
            except Exception as e:  # noqa: BLE001
                owner = manager.current_test
                error = TeardownError(
                    f"resources of {owner.key if owner else 'session'}",
                    reason=str(e),
                )
                errors.append(error)
                logger.error(
                    "orchestrator.cleanup_failed",
                    context=manager.current_context,
                    error=str(e),
                )
        return errors

    def collect_logs(self, session: SessionStore | None, suffix: str) -> None:
        """Collect diagnostics into ``suffix``. Never raises."""
        self.log_collection.collect(session or self._require_session(), suffix)

    def route_failure(
        self,
        phase: LifecyclePhase,
        display_name: str,
        failure: BaseException,
    ) -> None:
        """Route a failure raised outside the orchestrator (e.g. a fixture). Re-raises it."""
        self.failures.on_failure(phase, self._require_session(), display_name, failure)


__all__ = [
    "SessionOrchestrator",
    "SessionState",
]
