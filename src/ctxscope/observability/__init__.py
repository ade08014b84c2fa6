"""
Observability helpers for ctxscope.

Example:
    from ctxscope.observability import ContextLogFilter

    handler.addFilter(ContextLogFilter(context, REQUEST_CONTEXT, fields=("request_id",)))
"""

from .log_context import PLACEHOLDER, ContextLogFilter

__all__ = ["ContextLogFilter", "PLACEHOLDER"]
