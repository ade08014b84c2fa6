"""
ctxscope - ambient, async-call-scoped context values for asyncio.

Attach "current request" or "current task" state to an execution flow and read
it back from any code reached from it, including spawned tasks and scheduled
callbacks, without threading it through every signature.
"""

from .di.container import Container, Lifecycle
from .runtime.context import (
    AsyncLocalContext,
    ContextScope,
    get_default_context,
    register_context_key,
    run_with_context,
)
from .runtime.errors import ContextScopeError, OutsideScopeError, UninitializedContextError
from .runtime.keys import ContextKey
from .runtime.proxy import ContextProxy
from .runtime.tracker import ExecutionTracker, TrackerStats

__all__ = [
    "AsyncLocalContext",
    "Container",
    "ContextKey",
    "ContextProxy",
    "ContextScope",
    "ContextScopeError",
    "ExecutionTracker",
    "Lifecycle",
    "OutsideScopeError",
    "TrackerStats",
    "UninitializedContextError",
    "get_default_context",
    "register_context_key",
    "run_with_context",
]
