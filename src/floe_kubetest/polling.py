"""Bounded polling for cluster state changes.

Used for the create and delete barriers of the resource manager: a
namespace delete returns long before the namespace is gone, so callers
poll until the API stops returning it.

Example:
    from floe_kubetest.polling import PollingConfig, wait_for_condition

    wait_for_condition(
        lambda: not client.namespace_exists("payments"),
        config=PollingConfig(timeout=120.0, description="namespace payments deletion"),
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field


class PollingConfig(BaseModel):
    """Configuration for polling.

    Attributes:
        timeout: Maximum wait time in seconds. Defaults to 120.0.
        interval: Poll interval in seconds. Defaults to 1.0.
        description: Description for error messages. Defaults to "condition".
    """

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(
        default=120.0,
        ge=0.0,
        description="Maximum wait time in seconds",
    )
    interval: float = Field(
        default=1.0,
        ge=0.0,
        description="Poll interval in seconds",
    )
    description: str = Field(
        default="condition",
        min_length=1,
        description="Description for error messages",
    )


class PollingTimeoutError(TimeoutError):
    """Raised when a polling operation times out.

    Attributes:
        description: What was being waited for
        timeout: How long we waited
        last_error: Last exception encountered during polling (if any)
    """

    def __init__(
        self,
        description: str,
        timeout: float,
        last_error: Exception | None = None,
    ) -> None:
        self.description = description
        self.timeout = timeout
        self.last_error = last_error
        message = f"Timeout waiting for {description} after {timeout:.1f}s"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)


def wait_for_condition(
    condition: Callable[[], bool],
    config: PollingConfig | None = None,
    *,
    raise_on_timeout: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll until condition is True or timeout.

    Exceptions raised by ``condition`` count as "not yet" and are reported
    as ``last_error`` if the wait times out.

    Args:
        condition: Callable returning True when the condition is met.
        config: Timeout, interval and description. Defaults to PollingConfig().
        raise_on_timeout: If True, raise PollingTimeoutError on timeout.
            If False, return False on timeout. Defaults to True.
        sleep: Sleep function, replaceable in tests.

    Returns:
        True if condition was met within timeout.
        False if raise_on_timeout=False and timeout occurred.

    Raises:
        PollingTimeoutError: If condition not met within timeout and
            raise_on_timeout=True.
    """
    config = config or PollingConfig()
    start_time = time.monotonic()
    last_error: Exception | None = None

    while True:
        try:
            if condition():
                return True
        except Exception as e:  # noqa: BLE001
            last_error = e

        elapsed = time.monotonic() - start_time
        if elapsed >= config.timeout:
            if raise_on_timeout:
                raise PollingTimeoutError(config.description, config.timeout, last_error)
            return False

        # Sleep for interval, but don't exceed remaining time
        sleep_time = min(config.interval, config.timeout - elapsed)
        if sleep_time > 0:
            sleep(sleep_time)


__all__ = [
    "PollingConfig",
    "PollingTimeoutError",
    "wait_for_condition",
]
