"""Process logging setup for ctxscope.

``get_logger(__name__)`` is what modules call; the first call configures the
root logger once. Applications that want ambient context fields in every
line pass filters (typically a ContextLogFilter) to ``configure_logging`` and
reference the fields in the format, e.g. ``%(request_id)s``.
"""

import logging
import os
import sys
from typing import ClassVar, Iterable, Optional

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
COLOR_FORMAT = "\x1b[90m%(asctime)s\x1b[0m | %(levelname_color)s | \x1b[36m%(name)s\x1b[0m | %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_configured_level: Optional[str | int] = None
_installed_filters: list[logging.Filter] = []


def _supports_color() -> bool:
    if os.getenv("NO_COLOR") is not None:
        return False
    stream = sys.stderr
    return hasattr(stream, "isatty") and stream.isatty()


class LevelColorFormatter(logging.Formatter):
    """Formatter exposing ``%(levelname_color)s``, colored only on a terminal."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\x1b[37m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }
    RESET: ClassVar[str] = "\x1b[0m"

    def __init__(self, fmt: str, datefmt: str, use_color: bool) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_color else None
        record.levelname_color = f"{color}{record.levelname}{self.RESET}" if color else record.levelname
        return super().format(record)


def _stream_handlers(root: logging.Logger) -> list[logging.Handler]:
    return [h for h in root.handlers if isinstance(h, logging.StreamHandler)]


def configure_logging(
    level: Optional[str | int] = None,
    fmt: Optional[str] = None,
    datefmt: Optional[str] = None,
    filters: Iterable[logging.Filter] = (),
) -> str | int:
    """Configure the root logger's level, format and filters.

    Repeated calls with the same level and no new format or filters are
    no-ops. Existing stream handlers (e.g. pytest's) are reused, not replaced.

    Environment overrides:
    - `LOG_LEVEL`, `DEBUG`, `CTXSCOPE_LOG_LEVEL` (see Environment.get_log_level)
    - `CTXSCOPE_LOG_FORMAT`
    - `CTXSCOPE_LOG_DATEFMT`
    """
    from ctxscope.config.environment import Environment

    global _configured_level

    if isinstance(level, str):
        level = level.upper()
    if level is None:
        level = Environment.get_log_level()

    filters = list(filters)
    if _configured_level == level and fmt is None and not filters:
        return level
    _configured_level = level

    use_color = _supports_color()
    if fmt is None:
        fmt = os.getenv("CTXSCOPE_LOG_FORMAT") or (COLOR_FORMAT if use_color else DEFAULT_FORMAT)
    datefmt = datefmt or os.getenv("CTXSCOPE_LOG_DATEFMT") or DEFAULT_DATEFMT

    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
        # Quiet chatty libraries only when we own the root handler
        logging.getLogger("asyncio").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
    root.setLevel(level)

    formatter = LevelColorFormatter(fmt=fmt, datefmt=datefmt, use_color=use_color)
    for handler in _stream_handlers(root):
        handler.setFormatter(formatter)
        for log_filter in filters:
            handler.addFilter(log_filter)
    _installed_filters.extend(filters)
    return level


def reset_logging() -> None:
    """Remove filters added by configure_logging and forget the configured level."""
    global _configured_level
    root = logging.getLogger()
    for handler in root.handlers:
        for log_filter in _installed_filters:
            handler.removeFilter(log_filter)
    _installed_filters.clear()
    _configured_level = None


def get_logger(name: str) -> logging.Logger:
    """Return a module-scoped logger."""
    level = configure_logging()
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
