"""
Ambient accessor for a context key.

A ContextProxy has no state of its own: every attribute or item access is
redirected to the value currently stored for its key in the active scope.
The value is referenced, never copied, so writes through the proxy mutate the
caller-owned object in place.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ctxscope.runtime.errors import OutsideScopeError, UninitializedContextError
from ctxscope.runtime.keys import ContextKey

if TYPE_CHECKING:
    from ctxscope.runtime.tracker import ExecutionTracker

T = TypeVar("T")


def resolve_value(tracker: "ExecutionTracker", key: ContextKey[T]) -> T:
    """
    Return the value bound to ``key`` in the active scope.

    Raises:
        OutsideScopeError: If no scope is active.
        UninitializedContextError: If the active scope has no value for ``key``.
    """
    store = tracker.current_scope()
    if store is None:
        raise OutsideScopeError(key.name)
    if key not in store:
        raise UninitializedContextError(key.name)
    return store[key]


class ContextProxy(Generic[T]):
    """
    Dynamic accessor whose fields always reflect the active scope's value.

    Example:
        request = context.register(REQUEST_CONTEXT)

        async def handler():
            log.info("handling %s", request.request_id)
            request.user_id = "user-123"

        await context.run_with_context(REQUEST_CONTEXT, RequestContext("r1"), handler)
    """

    __slots__ = ("_ctx_key", "_ctx_tracker")

    def __init__(self, key: ContextKey[T], tracker: "ExecutionTracker") -> None:
        object.__setattr__(self, "_ctx_key", key)
        object.__setattr__(self, "_ctx_tracker", tracker)

    def _ctx_value(self) -> T:
        return resolve_value(self._ctx_tracker, self._ctx_key)

    def __getattr__(self, name: str) -> Any:
        # Only reached for names the proxy itself does not define. Methods
        # come back bound to the underlying value.
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)
        return getattr(self._ctx_value(), name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self._ctx_value(), name, value)

    def __delattr__(self, name: str) -> None:
        delattr(self._ctx_value(), name)

    def __getitem__(self, item: Any) -> Any:
        return self._ctx_value()[item]  # type: ignore[index]

    def __setitem__(self, item: Any, value: Any) -> None:
        self._ctx_value()[item] = value  # type: ignore[index]

    def __delitem__(self, item: Any) -> None:
        del self._ctx_value()[item]  # type: ignore[attr-defined]

    def __contains__(self, item: Any) -> bool:
        return item in self._ctx_value()  # type: ignore[operator]

    def __repr__(self) -> str:
        return f"<ContextProxy {self._ctx_key.name}>"


__all__ = ["ContextProxy", "resolve_value"]
