"""
Log correlation for ambient context values.

ContextLogFilter copies fields of the active context onto every LogRecord so
formatters can reference them, e.g. ``%(request_id)s``. Records emitted
outside any scope get a placeholder instead.

Usage:
    handler = logging.StreamHandler()
    handler.addFilter(ContextLogFilter(context, REQUEST_CONTEXT, fields=("request_id", "user_id")))
    handler.setFormatter(logging.Formatter("%(request_id)s | %(message)s"))
"""

import logging
from typing import Any, Iterable, Mapping

from ctxscope.runtime.context import AsyncLocalContext
from ctxscope.runtime.keys import ContextKey

PLACEHOLDER = "-"


class ContextLogFilter(logging.Filter):
    """Attach fields of an ambient context value to log records."""

    def __init__(
        self,
        context: AsyncLocalContext,
        key: ContextKey[Any],
        fields: Iterable[str],
        placeholder: str = PLACEHOLDER,
        name: str = "",
    ) -> None:
        super().__init__(name)
        self.context = context
        self.key = key
        self.fields = tuple(fields)
        self.placeholder = placeholder

    def filter(self, record: logging.LogRecord) -> bool:
        value = self.context.current(self.key, default=None)
        for field_name in self.fields:
            setattr(record, field_name, self._read(value, field_name))
        return True

    def _read(self, value: Any, field_name: str) -> Any:
        if value is None:
            return self.placeholder
        if isinstance(value, Mapping):
            found = value.get(field_name)
        else:
            found = getattr(value, field_name, None)
        return self.placeholder if found is None else found


__all__ = ["ContextLogFilter", "PLACEHOLDER"]
