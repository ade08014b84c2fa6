"""
Scope runner for ambient, async-call-scoped context values.

``AsyncLocalContext.run_with_context(key, value, handler)`` either starts a new
scope root holding ``{key: value}`` or, when a scope is already active,
temporarily overrides ``key`` inside it. Every key registered with the context
resolves to a ContextProxy whose fields always reflect the value for that key
in the scope the reading code runs under.

Usage:
    from ctxscope import AsyncLocalContext, ContextKey

    REQUEST_CONTEXT: ContextKey[RequestContext] = ContextKey("request_context")

    context = AsyncLocalContext()
    request = context.register(REQUEST_CONTEXT)

    async def handle():
        await asyncio.sleep(0.01)
        return request.request_id

    assert await context.run_with_context(REQUEST_CONTEXT, RequestContext("r1"), handle) == "r1"

Limitations:
    - Racing, non-awaited nested overrides of the same key inside one scope
      are undefined; await each nested call before starting the next.
    - A handler whose awaitable never settles keeps its Store alive forever.
      ``stats()`` exposes such roots; nothing cancels them.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Optional,
    TypeVar,
    Union,
)

from ctxscope.config.logging_config import get_logger
from ctxscope.runtime.keys import ContextKey
from ctxscope.runtime.proxy import ContextProxy, resolve_value
from ctxscope.runtime.registry import Store
from ctxscope.runtime.tracker import (
    ExecutionTracker,
    TrackerStats,
    UnitRef,
    allocate_id,
    bind_unit,
    enter_unit,
    exit_unit,
    get_default_tracker,
)

if TYPE_CHECKING:
    from ctxscope.di.container import Container

log = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Handler = Callable[[], Union[R, Awaitable[R]]]

_MISSING: Any = object()


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


async def _await_in_scope(awaitable: Awaitable[R]) -> R:
    return await awaitable


class AsyncLocalContext:
    """
    Runs handlers under ambient context values and hands out their accessors.

    Several AsyncLocalContext instances may share one ExecutionTracker (the
    process-wide default unless one is passed in); scopes are keyed by
    ContextKey, so independent keys nest independently.

    Args:
        container: Optional dependency container. Every registered key is
            bound in it as a singleton resolving to the key's proxy, so
            factories can receive the accessor as a plain parameter.
        tracker: Tracker to use instead of the process-wide default.
    """

    def __init__(
        self,
        container: "Container | None" = None,
        tracker: ExecutionTracker | None = None,
    ) -> None:
        self.container = container
        self.tracker = tracker or get_default_tracker()
        self._proxies: Dict[ContextKey[Any], ContextProxy[Any]] = {}

    # ------------------------------------------------------------------
    # Key registration
    # ------------------------------------------------------------------

    def register(self, key: ContextKey[T]) -> ContextProxy[T]:
        """
        Associate a context key with this context and return its accessor.

        Idempotent: registering the same key again returns the same proxy.
        """
        proxy = self._proxies.get(key)
        if proxy is not None:
            return proxy
        proxy = ContextProxy(key, self.tracker)
        self._proxies[key] = proxy
        if self.container is not None:
            from ctxscope.di.container import Lifecycle

            self.container.register(key, lambda: proxy, lifecycle=Lifecycle.SINGLETON)
        log.debug("Registered context key %s", key.name)
        return proxy

    def accessor(self, key: ContextKey[T]) -> ContextProxy[T]:
        """Return the accessor for ``key``, registering it on first use."""
        return self.register(key)

    def is_registered(self, key: ContextKey[Any]) -> bool:
        return key in self._proxies

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def has_scope(self) -> bool:
        """Return True if the calling code runs under an active scope."""
        return self.tracker.current_scope() is not None

    def current(self, key: ContextKey[T], default: Any = _MISSING) -> T:
        """
        Return the raw value bound to ``key`` in the active scope.

        Args:
            key: The context key to look up.
            default: Returned instead of raising when there is no scope or no
                value for ``key``.

        Raises:
            OutsideScopeError: No active scope and no default given.
            UninitializedContextError: No value for ``key`` and no default given.
        """
        if default is _MISSING:
            return resolve_value(self.tracker, key)
        store = self.tracker.current_scope()
        if store is None:
            return default
        return store.get(key, default)

    def stats(self) -> TrackerStats:
        return self.tracker.stats()

    # ------------------------------------------------------------------
    # Scope runner
    # ------------------------------------------------------------------

    def run_with_context(
        self,
        key: ContextKey[T],
        value: T,
        handler: Handler[R],
    ) -> Union[R, "asyncio.Task[R]", Awaitable[R]]:
        """
        Run ``handler`` with ``value`` bound to ``key``.

        All work reached from the handler, including tasks it spawns and
        callbacks it schedules, sees ``value`` through the key's accessor.

        Args:
            key: The context key to bind.
            value: The caller-owned value; referenced, not copied.
            handler: Zero-argument callable. May return a plain value or an
                awaitable (typically a coroutine).

        Returns:
            The handler's result for synchronous handlers. For handlers that
            return an awaitable, an awaitable resolving to its result. A new
            root is released before that awaitable completes unless tasks it
            spawned are still running; those keep the Store alive until they
            finish. A nested override is restored before it completes.

        Raises:
            Whatever the handler raises, unchanged, after cleanup.
        """
        self.register(key)
        store = self.tracker.current_scope()
        if store is None:
            return self._run_root(key, value, handler)
        return self._run_nested(store, key, value, handler)

    def _run_root(self, key: ContextKey[T], value: T, handler: Handler[R]) -> Any:
        tracker = self.tracker
        root_id = allocate_id()
        store = tracker.registry.create_root(root_id, {key: value})
        tracker.attach_root(root_id, store)

        context = contextvars.copy_context()
        bind_unit(context, UnitRef(task_id=root_id, root_id=root_id, store=store))

        loop = _running_loop()
        if loop is not None:
            tracker.install(loop)

        def finish(*_args: Any) -> None:
            tracker.on_task_destroyed(root_id)

        try:
            result = context.run(handler)
        except BaseException:
            finish()
            raise

        if not inspect.isawaitable(result):
            finish()
            return result

        if loop is None:
            finish()
            if inspect.iscoroutine(result):
                result.close()
            raise RuntimeError(
                f"Handler for context '{key.name}' returned an awaitable but no event loop is running"
            )

        # Drive the awaitable as its own task inside the root context so every
        # unit it spawns is attributed to this root. The done-callback is added
        # before the caller can await the task, so cleanup always runs first.
        coro = result if inspect.iscoroutine(result) else _await_in_scope(result)
        task = loop.create_task(coro, context=context)
        task.add_done_callback(finish)
        return task

    def _run_nested(self, store: Store, key: ContextKey[T], value: T, handler: Handler[R]) -> Any:
        had_previous = key in store
        previous = store.get(key)
        store[key] = value

        def restore() -> None:
            if had_previous:
                store[key] = previous
            else:
                store.pop(key, None)

        try:
            result = handler()
        except BaseException:
            restore()
            raise

        if inspect.isawaitable(result):
            return self._restore_after(result, restore)

        restore()
        return result

    @staticmethod
    async def _restore_after(awaitable: Awaitable[R], restore: Callable[[], None]) -> R:
        try:
            return await awaitable
        finally:
            restore()

    def context_scope(self, key: ContextKey[T], value: T) -> "ContextScope[T]":
        """
        Context manager form of ``run_with_context`` for code that cannot be
        wrapped in a handler callable.

        Example:
            async with context.context_scope(REQUEST_CONTEXT, ctx) as request:
                await do_work()
                log.info("done %s", request.request_id)
        """
        return ContextScope(self, key, value)


class ContextScope(Generic[T]):
    """
    Binds a context value for the body of a ``with`` / ``async with`` block.

    The enclosing code joins the scope for the duration of the block: it is
    the scope root when no scope was active, otherwise ``key`` is overridden
    in the active scope and restored on exit. Tasks spawned in the block are
    attributed to the scope and keep its Store alive until they finish.

    Enter and exit must happen in the same task.
    """

    def __init__(self, context: AsyncLocalContext, key: ContextKey[T], value: T) -> None:
        self._context = context
        self._key = key
        self._value = value
        self._root_id: Optional[int] = None
        self._token: Optional[contextvars.Token[Any]] = None
        self._store: Optional[Store] = None
        self._had_previous = False
        self._previous: Any = None

    def __enter__(self) -> ContextProxy[T]:
        if self._store is not None:
            raise RuntimeError(f"Scope for context '{self._key.name}' is already active")
        tracker = self._context.tracker
        proxy = self._context.register(self._key)
        store = tracker.current_scope()
        if store is None:
            root_id = allocate_id()
            store = tracker.registry.create_root(root_id, {self._key: self._value})
            tracker.attach_root(root_id, store)
            loop = _running_loop()
            if loop is not None:
                tracker.install(loop)
            self._root_id = root_id
            self._token = enter_unit(UnitRef(task_id=root_id, root_id=root_id, store=store))
        else:
            self._had_previous = self._key in store
            self._previous = store.get(self._key)
            store[self._key] = self._value
        self._store = store
        return proxy

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        store = self._store
        if store is None:
            return
        self._store = None
        if self._root_id is not None:
            root_id, self._root_id = self._root_id, None
            token, self._token = self._token, None
            try:
                if token is not None:
                    exit_unit(token)
            finally:
                self._context.tracker.on_task_destroyed(root_id)
        elif self._had_previous:
            store[self._key] = self._previous
        else:
            store.pop(self._key, None)
        self._previous = None

    async def __aenter__(self) -> ContextProxy[T]:
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


_default_context: Optional[AsyncLocalContext] = None


def get_default_context() -> AsyncLocalContext:
    """Return the process-wide AsyncLocalContext, creating it on first use."""
    global _default_context
    if _default_context is None:
        _default_context = AsyncLocalContext()
    return _default_context


def register_context_key(key: ContextKey[T]) -> ContextProxy[T]:
    """Register ``key`` with the default context and return its accessor."""
    return get_default_context().register(key)


def run_with_context(key: ContextKey[T], value: T, handler: Handler[R]) -> Any:
    """``AsyncLocalContext.run_with_context`` on the default context."""
    return get_default_context().run_with_context(key, value, handler)


__all__ = [
    "AsyncLocalContext",
    "ContextScope",
    "get_default_context",
    "register_context_key",
    "run_with_context",
]
