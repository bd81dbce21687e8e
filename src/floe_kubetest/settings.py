"""Environment settings and cluster context discovery.

Two things are read from the environment:

* ``KubetestSettings``: plugin-wide knobs with the ``KUBETEST_`` prefix
  (log level, default output paths, wait timeouts).
* Cluster contexts: the default context from ``KUBECONFIG`` or
  ``KUBE_URL`` + ``KUBE_TOKEN`` (falling back to in-cluster or
  ``~/.kube/config``), and every named context ``<id>`` from
  ``KUBECONFIG_<ID>`` or ``KUBE_URL_<ID>`` + ``KUBE_TOKEN_<ID>``.
  Context ids are lowercased, so ``KUBECONFIG_EDGE`` defines ``edge``.

Example:
    >>> configs = discover_cluster_configs({"KUBECONFIG_EDGE": "/tmp/edge.yaml"})
    >>> sorted(configs)
    ['default', 'edge']
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from floe_kubetest.polling import PollingConfig

logger = structlog.get_logger(__name__)

DEFAULT_CONTEXT = "default"

KUBECONFIG_ENV = "KUBECONFIG"
KUBE_URL_ENV = "KUBE_URL"
KUBE_TOKEN_ENV = "KUBE_TOKEN"


class ClusterConfig(BaseModel):
    """Credentials for one cluster context.

    At most one of ``kubeconfig_path`` or ``url``/``token`` is set. With
    neither, the client falls back to in-cluster config, then the default
    kubeconfig.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    context: str = Field(..., min_length=1, description="Cluster context id")
    kubeconfig_path: str | None = Field(default=None, description="Kubeconfig file")
    url: str | None = Field(default=None, description="API server URL")
    token: SecretStr | None = Field(default=None, description="Bearer token")

    @property
    def source(self) -> Literal["kubeconfig", "token", "auto"]:
        """How the client should be configured."""
        if self.kubeconfig_path:
            return "kubeconfig"
        if self.url and self.token is not None:
            return "token"
        return "auto"


def _context_config(
    context: str,
    environ: Mapping[str, str],
    suffix: str = "",
) -> ClusterConfig | None:
    kubeconfig = environ.get(f"{KUBECONFIG_ENV}{suffix}")
    if kubeconfig:
        return ClusterConfig(context=context, kubeconfig_path=kubeconfig)
    url = environ.get(f"{KUBE_URL_ENV}{suffix}")
    token = environ.get(f"{KUBE_TOKEN_ENV}{suffix}")
    if url and token:
        return ClusterConfig(context=context, url=url, token=SecretStr(token))
    if url or token:
        logger.warning(
            "settings.incomplete_token_credentials",
            context=context,
            has_url=bool(url),
            has_token=bool(token),
        )
    return None


def discover_cluster_configs(
    environ: Mapping[str, str] | None = None,
) -> dict[str, ClusterConfig]:
    """Discover cluster contexts from environment variables.

    Args:
        environ: Environment to read. Defaults to ``os.environ``.

    Returns:
        Mapping of context id to ClusterConfig. Always contains the
        default context.
    """
    env = os.environ if environ is None else environ

    configs = {
        DEFAULT_CONTEXT: _context_config(DEFAULT_CONTEXT, env)
        or ClusterConfig(context=DEFAULT_CONTEXT)
    }

    suffixes: set[str] = set()
    for key in env:
        for prefix in (KUBECONFIG_ENV, KUBE_URL_ENV, KUBE_TOKEN_ENV):
            if key.startswith(f"{prefix}_") and len(key) > len(prefix) + 1:
                suffixes.add(key[len(prefix) :])

    for suffix in sorted(suffixes):
        context = suffix[1:].lower()
        found = _context_config(context, env, suffix)
        if found is not None:
            configs[context] = found

    logger.debug("settings.contexts_discovered", contexts=sorted(configs))
    return configs


class KubetestSettings(BaseSettings):
    """Plugin-wide settings.

    Environment Variables:
        KUBETEST_LOG_LEVEL: Minimum log level (default INFO)
        KUBETEST_JSON_LOGS: Render logs as JSON (default false)
        KUBETEST_CONFIGURE_LOGGING: Let the plugin configure structlog
        KUBETEST_LOG_PATH: Default diagnostics root
        KUBETEST_YAML_PATH: Default root for stored resource YAML
        KUBETEST_NAMESPACE_PROPAGATION_WAIT: Pause before re-reading a
            created namespace, in seconds
        KUBETEST_WAIT_TIMEOUT: Create/delete wait timeout, in seconds
        KUBETEST_POLL_INTERVAL: Create/delete poll interval, in seconds
    """

    model_config = SettingsConfigDict(
        env_prefix="KUBETEST_",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_logs: bool = Field(default=False, description="Render logs as JSON")
    configure_logging: bool = Field(
        default=False,
        description="Configure structlog when the plugin loads",
    )
    log_path: Path = Field(
        default_factory=lambda: Path.cwd() / "target" / "test-logs",
        description="Default diagnostics root",
    )
    yaml_path: Path = Field(
        default_factory=lambda: Path.cwd() / "target" / "test-yamls",
        description="Default root for stored resource YAML",
    )
    namespace_propagation_wait: float = Field(
        default=0.1,
        ge=0.0,
        description="Pause before re-reading a created namespace",
    )
    wait_timeout: float = Field(
        default=120.0,
        ge=0.0,
        description="Create/delete wait timeout in seconds",
    )
    poll_interval: float = Field(
        default=1.0,
        ge=0.0,
        description="Create/delete poll interval in seconds",
    )

    def polling(self, description: str) -> PollingConfig:
        """Polling configuration for one wait."""
        return PollingConfig(
            timeout=self.wait_timeout,
            interval=self.poll_interval,
            description=description,
        )


__all__ = [
    "ClusterConfig",
    "DEFAULT_CONTEXT",
    "KubetestSettings",
    "discover_cluster_configs",
]
