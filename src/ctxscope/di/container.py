"""Dependency container for wiring context-aware components.

Keys are arbitrary hashable tokens; a ContextKey works as one. A factory is
registered with the keys of its dependencies, which are resolved first and
passed to it positionally. Dependencies that are not registered keys are
passed through as literal values.

Example:
    container = Container()
    context = AsyncLocalContext(container)
    context.register(REQUEST_CONTEXT)

    container.register(AUDIT_SERVICE, AuditService, REQUEST_CONTEXT)

    async def handle():
        # AuditService received the request accessor, not a request value
        container.resolve(AUDIT_SERVICE).record("login")

    await context.run_with_context(REQUEST_CONTEXT, RequestContext("r1"), handle)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional, Set, Tuple

from ctxscope.config.logging_config import get_logger

log = get_logger(__name__)


class Lifecycle(str, enum.Enum):
    """How long a resolved instance is reused."""

    SINGLETON = "singleton"
    TRANSIENT = "transient"


class ContainerError(Exception):
    """Base class for container errors."""


class UnregisteredKeyError(ContainerError, KeyError):
    """Raised when resolving a key that was never registered."""

    def __init__(self, key: Hashable):
        self.key = key
        super().__init__(f"{_describe(key)} is not registered. Call container.register() first.")

    def __str__(self) -> str:
        return str(self.args[0])


class CyclicDependencyError(ContainerError):
    """Raised when a key depends on itself, directly or transitively."""

    def __init__(self, path: List[Hashable]):
        self.path = path
        chain = " -> ".join(_describe(k) for k in path)
        super().__init__(f"Cyclic dependency detected: {chain}")


def _describe(key: Hashable) -> str:
    name = getattr(key, "name", None)
    return name if isinstance(name, str) else repr(key)


@dataclass
class Registration:
    factory: Callable[..., Any]
    dependencies: Tuple[Any, ...]
    lifecycle: Lifecycle
    instance: Any = None
    has_instance: bool = False
    dependents: Set[Hashable] = field(default_factory=set)


class Container:
    """
    Minimal dependency container with singleton and transient lifecycles.

    Re-registering a key drops its cached instance and, transitively, the
    cached instances of every singleton that was built from it.
    """

    def __init__(self) -> None:
        self._registrations: Dict[Hashable, Registration] = {}
        self._resolving: List[Hashable] = []

    def register(
        self,
        key: Hashable,
        factory: Callable[..., Any],
        *dependencies: Any,
        lifecycle: Lifecycle = Lifecycle.SINGLETON,
    ) -> None:
        """
        Register a factory for ``key``.

        Args:
            key: Token identifying the component.
            factory: Callable (function or class) building the component.
            *dependencies: Keys (or literal values) passed to ``factory``.
            lifecycle: Whether the built instance is cached.
        """
        previous = self._registrations.get(key)
        registration = Registration(
            factory=factory,
            dependencies=dependencies,
            lifecycle=Lifecycle(lifecycle),
        )
        if previous is not None:
            registration.dependents = previous.dependents
            self._invalidate_dependents(key)
            self._forget_dependent(key, previous)
            log.debug("Re-registered %s", _describe(key))
        self._registrations[key] = registration
        for dep in dependencies:
            dep_registration = self._lookup(dep)
            if dep_registration is not None:
                dep_registration.dependents.add(key)

    def has(self, key: Hashable) -> bool:
        return self._lookup(key) is not None

    def unregister(self, key: Hashable) -> None:
        """Remove ``key``; cached dependents are invalidated. No-op if absent."""
        self._invalidate_dependents(key)
        registration = self._registrations.pop(key, None)
        if registration is not None:
            self._forget_dependent(key, registration)

    def clear(self) -> None:
        self._registrations.clear()
        self._resolving.clear()

    def resolve(self, key: Hashable) -> Any:
        """
        Build (or return the cached) instance for ``key``.

        Raises:
            UnregisteredKeyError: If ``key`` was never registered.
            CyclicDependencyError: If resolving ``key`` requires itself.
        """
        registration = self._lookup(key)
        if registration is None:
            raise UnregisteredKeyError(key)
        if registration.has_instance:
            return registration.instance
        if key in self._resolving:
            start = self._resolving.index(key)
            raise CyclicDependencyError(self._resolving[start:] + [key])

        self._resolving.append(key)
        try:
            args = [self.resolve(dep) if self.has(dep) else dep for dep in registration.dependencies]
            instance = registration.factory(*args)
        finally:
            self._resolving.pop()

        if registration.lifecycle == Lifecycle.SINGLETON:
            registration.instance = instance
            registration.has_instance = True
        return instance

    def keys(self) -> List[Hashable]:
        return list(self._registrations)

    def _lookup(self, key: Any) -> Optional[Registration]:
        try:
            return self._registrations.get(key)
        except TypeError:
            # Unhashable literal dependency
            return None

    def _forget_dependent(self, key: Hashable, registration: Registration) -> None:
        for dep in registration.dependencies:
            dep_registration = self._lookup(dep)
            if dep_registration is not None:
                dep_registration.dependents.discard(key)

    def _invalidate_dependents(self, key: Hashable) -> None:
        registration = self._registrations.get(key)
        if registration is None:
            return
        pending = list(registration.dependents)
        seen: Set[Hashable] = set()
        while pending:
            dependent = pending.pop()
            if dependent in seen:
                continue
            seen.add(dependent)
            dep_registration = self._registrations.get(dependent)
            if dep_registration is None:
                continue
            dep_registration.instance = None
            dep_registration.has_instance = False
            pending.extend(dep_registration.dependents)
