"""Starlette/FastAPI middleware running each request inside a request context.

Provides per-request context isolation for API endpoints: every request gets
its own RequestContext, reachable from endpoints, dependencies and any task
they spawn through the REQUEST_CONTEXT accessor.
"""

import uuid
from typing import Callable, Optional

from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ctxscope.config.environment import Environment
from ctxscope.config.logging_config import get_logger
from ctxscope.runtime.context import AsyncLocalContext, get_default_context
from ctxscope.runtime.keys import ContextKey
from ctxscope.runtime.proxy import ContextProxy

log = get_logger(__name__)


class RequestContext(BaseModel):
    """Ambient per-request state."""

    request_id: str
    method: Optional[str] = None
    path: Optional[str] = None
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None


REQUEST_CONTEXT: ContextKey[RequestContext] = ContextKey("request_context")


def get_request_context(context: AsyncLocalContext | None = None) -> ContextProxy[RequestContext]:
    """Return the REQUEST_CONTEXT accessor of ``context`` (default context if None)."""
    return (context or get_default_context()).register(REQUEST_CONTEXT)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware binding a RequestContext for each API request.

    This middleware:
    1. Builds a RequestContext, taking the request id from the request id
       header or generating one
    2. Runs the rest of the request inside a context scope
    3. Echoes the request id on the response

    Configuration:
    - Exempt paths skip the context entirely
    - The header name defaults to the REQUEST_ID_HEADER setting
    """

    def __init__(
        self,
        app: Callable,
        context: AsyncLocalContext | None = None,
        key: ContextKey[RequestContext] = REQUEST_CONTEXT,
        header_name: Optional[str] = None,
        exempt_paths: Optional[set[str]] = None,
    ):
        """Initialize the middleware.

        Args:
            app: The ASGI application
            context: Context to run requests in (process default if None)
            key: Key the RequestContext is bound to
            header_name: Request id header (REQUEST_ID_HEADER setting if None)
            exempt_paths: Set of paths that should skip the request context
        """
        super().__init__(app)
        self.context = context or get_default_context()
        self.key = key
        self.header_name = header_name or Environment.get_request_id_header()
        self.exempt_paths = exempt_paths if exempt_paths is not None else {"/health", "/ping"}
        self.context.register(key)

    def build_context(self, request: Request) -> RequestContext:
        request_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        return RequestContext(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process the request with its RequestContext bound.

        Args:
            request: The incoming request
            call_next: The next middleware/handler

        Returns:
            The response
        """
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        request_context = self.build_context(request)
        try:
            # call_next spawns the downstream app as a task; it inherits the
            # scope and keeps it alive while the response body streams.
            async with self.context.context_scope(self.key, request_context):
                response = await call_next(request)
        except Exception as e:
            log.error(
                f"Error handling {request.url.path} (request {request_context.request_id}): {e}",
                exc_info=True,
            )
            raise
        response.headers[self.header_name] = request_context.request_id
        return response
