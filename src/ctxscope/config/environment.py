"""
Environment Configuration Management Module

Centralized configuration access for ctxscope through the Environment class.
Values are read from, in order of precedence:

- Environment variables (including ones loaded from .env files)
- The YAML settings file (settings.yaml or CTXSCOPE_SETTINGS_FILE)
- Default values (DEFAULT_ENV)
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from ctxscope.config.settings import get_value, load_settings

DEFAULT_ENV = {
    "ENV": "development",
    "LOG_LEVEL": None,
    "DEBUG": None,
    "CTXSCOPE_TRACE_TASKS": "0",
    "REQUEST_ID_HEADER": "X-Request-ID",
}

_TRUTHY = ("1", "true", "yes", "on")


def load_dotenv_files(base_dir: Path | None = None) -> None:
    """Load environment variables from .env files based on the current environment."""
    from dotenv import load_dotenv

    root = base_dir or Path.cwd()
    env_name = os.environ.get("ENV", "development")

    # Later files do not override earlier ones or the real process environment
    env_files = [
        root / f".env.{env_name}.local",
        root / f".env.{env_name}",
        root / ".env",
    ]

    for env_file in env_files:
        if env_file.exists():
            load_dotenv(env_file, override=False)


class Environment(object):
    """
    Manages environment variables and settings with defaults and type conversions.
    """

    settings: Optional[Dict[str, Any]] = None

    @classmethod
    def load_settings(cls):
        load_dotenv_files()
        cls.settings = load_settings()

    @classmethod
    def get_settings(cls) -> Dict[str, Any]:
        if cls.settings is None:
            cls.load_settings()
        assert cls.settings is not None
        return cls.settings

    @classmethod
    def reset(cls) -> None:
        """Forget loaded settings so the next access re-reads them."""
        cls.settings = None

    @classmethod
    def get(cls, key: str, default: Any = None):
        return get_value(key, cls.get_settings(), DEFAULT_ENV, default)

    @classmethod
    def get_bool(cls, key: str, default: bool = False) -> bool:
        value = cls.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUTHY

    @classmethod
    def get_env(cls):
        """
        The environment is "development", "production" or "test".
        """
        return cls.get("ENV")

    @classmethod
    def is_production(cls):
        return cls.get_env() == "production"

    @classmethod
    def is_test(cls):
        return os.environ.get("PYTEST_CURRENT_TEST") is not None

    @classmethod
    def is_debug(cls) -> bool:
        return cls.get_bool("DEBUG")

    @classmethod
    def trace_tasks(cls) -> bool:
        """Whether task-level lifecycle events should be logged."""
        return cls.get_bool("CTXSCOPE_TRACE_TASKS")

    @classmethod
    def get_request_id_header(cls) -> str:
        return str(cls.get("REQUEST_ID_HEADER") or "X-Request-ID")

    @classmethod
    def get_log_level(cls):
        """Return desired log level string.

        Priority:
        1) Explicit LOG_LEVEL env var
        2) If DEBUG env is truthy, return "DEBUG"
        3) CTXSCOPE_LOG_LEVEL env (default "INFO")

        Only the process environment is consulted so that logging can be
        configured before the settings file is read.
        """
        level = os.getenv("LOG_LEVEL")
        if level:
            return str(level).upper()
        debug_env = os.getenv("DEBUG")
        if debug_env and debug_env.lower() not in ("0", "false", "no", "off", ""):
            return "DEBUG"
        return os.getenv("CTXSCOPE_LOG_LEVEL", "INFO").upper()
