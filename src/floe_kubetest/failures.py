"""Failure coordination across lifecycle phases.

Every phase of a session (suite setup, test setup, test body, test
teardown, suite teardown) routes its failures through one handler that:

1. skips everything when the session has no configuration yet,
2. collects diagnostics when log collection is on and the strategy is
   ON_FAILURE or AFTER_EACH,
3. runs cleanup when the session or any context cleans up automatically,
4. re-raises the original failure unchanged.

Diagnostics go to ``failure-{phase}-{display name}``, e.g.
``failure-test-execution-test_deploy[eu]``.

Example:
    >>> coordinator = FailureCoordinator(collect_logs=log_manager.collect,
    ...                                  cleanup=orchestrator.handle_automatic_cleanup)
    >>> try:
    ...     run_test()
    ... except Exception as failure:
    ...     coordinator.on_test_body_failure(session, "test_deploy", failure)
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, NoReturn, Protocol, runtime_checkable

import structlog

if TYPE_CHECKING:
    from floe_kubetest.store import SessionStore

logger = structlog.get_logger(__name__)


class LifecyclePhase(str, Enum):
    """Lifecycle phase tags, as used in diagnostics folder names."""

    SUITE_SETUP = "before-all"
    TEST_SETUP = "before-each"
    TEST_BODY = "test-execution"
    TEST_TEARDOWN = "after-each"
    SUITE_TEARDOWN = "after-all"


def failure_suffix(phase: LifecyclePhase, display_name: str) -> str:
    """Diagnostics folder name for a failure.

    The display name is lowercased and a trailing ``()`` is dropped.

    Example:
        >>> failure_suffix(LifecyclePhase.TEST_BODY, "Complex Test Name (With Params)")
        'failure-test-execution-complex test name (with params)'
    """
    name = display_name.removesuffix("()").lower()
    return f"failure-{phase.value}-{name}"


@runtime_checkable
class LogCollectionCallback(Protocol):
    """Collects diagnostics for a session into a suffix folder."""

    def __call__(self, session: SessionStore, suffix: str) -> None: ...


@runtime_checkable
class CleanupCallback(Protocol):
    """Deletes the resources tracked for the session's current identity."""

    def __call__(self, session: SessionStore) -> object: ...


class FailureCoordinator:
    """Turns phase failures into diagnostics and cleanup, then re-raises."""

    def __init__(self, collect_logs: LogCollectionCallback, cleanup: CleanupCallback) -> None:
        self._collect_logs = collect_logs
        self._cleanup = cleanup
        self._handled: list[BaseException] = []

    def was_handled(self, failure: BaseException) -> bool:
        """Whether ``failure`` (this very object) already went through the coordinator."""
        return any(handled is failure for handled in self._handled)

    def on_suite_setup_failure(
        self, session: SessionStore, display_name: str, failure: BaseException
    ) -> NoReturn:
        """Handle a failure while setting up the suite."""
        self._handle(LifecyclePhase.SUITE_SETUP, session, display_name, failure)

    def on_test_setup_failure(
        self, session: SessionStore, display_name: str, failure: BaseException
    ) -> NoReturn:
        """Handle a failure while setting up a test."""
        self._handle(LifecyclePhase.TEST_SETUP, session, display_name, failure)

    def on_test_body_failure(
        self, session: SessionStore, display_name: str, failure: BaseException
    ) -> NoReturn:
        """Handle a failure raised by a test body."""
        self._handle(LifecyclePhase.TEST_BODY, session, display_name, failure)

    def on_test_teardown_failure(
        self, session: SessionStore, display_name: str, failure: BaseException
    ) -> NoReturn:
        """Handle a failure while tearing down a test."""
        self._handle(LifecyclePhase.TEST_TEARDOWN, session, display_name, failure)

    def on_suite_teardown_failure(
        self, session: SessionStore, display_name: str, failure: BaseException
    ) -> NoReturn:
        """Handle a failure while tearing down the suite."""
        self._handle(LifecyclePhase.SUITE_TEARDOWN, session, display_name, failure)

    def on_failure(
        self,
        phase: LifecyclePhase,
        session: SessionStore,
        display_name: str,
        failure: BaseException,
    ) -> NoReturn:
        """Handle a failure of an explicit phase."""
        self._handle(phase, session, display_name, failure)

    def _handle(
        self,
        phase: LifecyclePhase,
        session: SessionStore,
        display_name: str,
        failure: BaseException,
    ) -> NoReturn:
        self._handled.append(failure)
        config = session.config
        logger.error(
            "failure_coordinator.phase_failed",
            phase=phase.value,
            test=display_name,
            error=f"{type(failure).__name__}: {failure}",
        )

        if config is None:
            logger.debug("failure_coordinator.no_config", phase=phase.value)
            raise failure

        if config.collection_active:
            suffix = failure_suffix(phase, display_name)
            try:
                self._collect_logs(session, suffix)
            except Exception as e:  # noqa: BLE001
                logger.error(
                    "failure_coordinator.collection_failed",
                    phase=phase.value,
                    suffix=suffix,
                    error=str(e),
                )

        if config.any_automatic_cleanup:
            try:
                self._cleanup(session)
            except Exception as e:  # noqa: BLE001
                logger.error(
                    "failure_coordinator.cleanup_failed",
                    phase=phase.value,
                    test=display_name,
                    error=str(e),
                )

        raise failure


__all__ = [
    "CleanupCallback",
    "FailureCoordinator",
    "LifecyclePhase",
    "LogCollectionCallback",
    "failure_suffix",
]
