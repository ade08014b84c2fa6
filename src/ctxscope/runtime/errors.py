from __future__ import annotations

_OUTSIDE_SCOPE_MESSAGE = (
    "Context '{name}' accessed outside of an active async context. "
    "Ensure AsyncLocalContext.run_with_context is used to wrap request handling."
)

_NOT_INITIALIZED_MESSAGE = (
    "Context '{name}' accessed before it was initialized in this async scope. "
    "Ensure AsyncLocalContext.run_with_context is used to provide a value for this key."
)


class ContextScopeError(Exception):
    """Base class for errors raised by ambient context accessors."""

    def __init__(self, key_name: str, message: str):
        self.key_name = key_name
        self.message = message
        super().__init__(self.message)


class OutsideScopeError(ContextScopeError):
    """Raised when a context accessor is used with no active scope."""

    def __init__(self, key_name: str):
        super().__init__(key_name, _OUTSIDE_SCOPE_MESSAGE.format(name=key_name))


class UninitializedContextError(ContextScopeError):
    """Raised when the active scope holds no value for the accessed key."""

    def __init__(self, key_name: str):
        super().__init__(key_name, _NOT_INITIALIZED_MESSAGE.format(name=key_name))


__all__ = [
    "ContextScopeError",
    "OutsideScopeError",
    "UninitializedContextError",
]
