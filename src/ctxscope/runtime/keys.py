from __future__ import annotations

from typing import Generic, TypeVar

T = TypeVar("T")


class ContextKey(Generic[T]):
    """
    Process-wide token naming one kind of ambient context.

    Keys compare and hash by identity, so two keys created with the same name
    are still independent and nest independently. The name is only used for
    diagnostics.

    Example:
        @dataclass
        class RequestContext:
            request_id: str
            user_id: str | None = None

        REQUEST_CONTEXT: ContextKey[RequestContext] = ContextKey("request_context")
    """

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("ContextKey name must be a non-empty string")
        self.name = name

    def __repr__(self) -> str:
        return f"ContextKey({self.name!r})"
