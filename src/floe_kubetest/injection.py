"""Field injection for test classes.

Test classes declare what they need as class attributes holding marker
objects. Suite-scoped markers are resolved once at suite setup and set on
the class; test-scoped markers are resolved before every test and set on
the test instance.

Example:
    >>> @pytest.mark.kubernetes_test(namespaces=["payments"])
    ... class TestPayments:
    ...     kube = InjectKubeClient()
    ...     payments = InjectNamespace("payments", scope=InjectionScope.SUITE)
    ...     app = InjectResource("manifests/app.yaml")
    ...
    ...     def test_payments_is_active(self) -> None:
    ...         assert self.payments.status.phase == "Active"
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from floe_kubetest.errors import KubeTestError

if TYPE_CHECKING:
    from floe_kubetest.store import SessionStore

logger = structlog.get_logger(__name__)


class InjectionScope(str, Enum):
    """When an injected field is resolved."""

    SUITE = "suite"
    TEST = "test"


class Injection:
    """Base class of injection markers."""

    context: str
    scope: InjectionScope


@dataclass(frozen=True)
class InjectKubeClient(Injection):
    """Inject the KubeClient of a context."""

    context: str = ""
    scope: InjectionScope = InjectionScope.TEST


@dataclass(frozen=True)
class InjectResourceManager(Injection):
    """Inject the KubeResourceManager of a context."""

    context: str = ""
    scope: InjectionScope = InjectionScope.TEST


@dataclass(frozen=True)
class InjectNamespaces(Injection):
    """Inject all namespaces of a context as a name-to-object dict."""

    context: str = ""
    scope: InjectionScope = InjectionScope.TEST


@dataclass(frozen=True)
class InjectNamespace(Injection):
    """Inject one namespace object of a context."""

    name: str
    context: str = ""
    scope: InjectionScope = InjectionScope.TEST


@dataclass(frozen=True)
class InjectResource(Injection):
    """Create the resources of a YAML file and inject the created objects.

    A single-document file injects one dict, a multi-document file a list.
    Created resources are tracked, so automatic cleanup deletes them.
    """

    path: str
    context: str = ""
    scope: InjectionScope = InjectionScope.TEST


def declared_injections(owner: type) -> dict[str, Injection]:
    """Injection markers declared on ``owner`` and its bases."""
    found: dict[str, Injection] = {}
    for klass in reversed(owner.__mro__):
        for name, value in vars(klass).items():
            if isinstance(value, Injection):
                found[name] = value
    return found


class DependencyInjector:
    """Resolves injection markers against a session."""

    def __init__(self) -> None:
        self._replaced: list[tuple[type, str, Injection]] = []

    def inject_fields(self, session: SessionStore, target: Any, scope: InjectionScope) -> None:
        """Resolve every ``scope`` marker of ``target`` and set the values.

        Args:
            session: Session providing managers and namespaces.
            target: Test class (suite scope) or test instance (test scope).
            scope: Which markers to resolve.

        Raises:
            ResourceManagerUnavailableError: If a marker names a context
                without a bound manager.
        """
        owner = target if isinstance(target, type) else type(target)
        for name, marker in declared_injections(owner).items():
            if marker.scope != scope:
                continue
            value = self.resolve(session, marker)
            if isinstance(target, type):
                self._replaced.append((target, name, marker))
            setattr(target, name, value)
            logger.debug(
                "injector.field_injected",
                target=owner.__name__,
                field=name,
                marker=type(marker).__name__,
            )

    def resolve(self, session: SessionStore, marker: Injection) -> Any:
        """Value of one marker."""
        manager = session.require_resource_manager(marker.context)

        if isinstance(marker, InjectKubeClient):
            return manager.kube_client
        if isinstance(marker, InjectResourceManager):
            return manager
        if isinstance(marker, InjectNamespaces):
            return dict(session.namespace_objects_for(marker.context))
        if isinstance(marker, InjectNamespace):
            namespaces = session.namespace_objects_for(marker.context)
            if marker.name not in namespaces:
                msg = (
                    f"Namespace '{marker.name}' is not managed by this session "
                    f"in context '{marker.context or 'primary'}'"
                )
                raise KubeTestError(msg)
            return namespaces[marker.name]
        if isinstance(marker, InjectResource):
            documents = [
                doc
                for doc in yaml.safe_load_all(Path(marker.path).read_text(encoding="utf-8"))
                if doc
            ]
            created = manager.create_resource_with_wait(*documents)
            return created[0] if len(created) == 1 else created

        msg = f"Unsupported injection marker: {type(marker).__name__}"
        raise TypeError(msg)

    def restore(self) -> None:
        """Put suite-scoped markers back on the classes they were resolved on."""
        while self._replaced:
            owner, name, marker = self._replaced.pop()
            setattr(owner, name, marker)


__all__ = [
    "DependencyInjector",
    "InjectKubeClient",
    "InjectNamespace",
    "InjectNamespaces",
    "InjectResource",
    "InjectResourceManager",
    "Injection",
    "InjectionScope",
    "declared_injections",
]
