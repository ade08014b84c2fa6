"""Utility functions for reading the optional YAML settings file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

SETTINGS_FILE = "settings.yaml"
MISSING_MESSAGE = "Missing required setting: {}"
NOT_GIVEN = object()


@dataclass(frozen=True)
class Setting:
    """A documented configuration key."""

    env_var: str
    group: str
    description: str
    choices: Tuple[str, ...] = ()


_registry: Dict[str, Setting] = {}


def register_setting(env_var: str, group: str, description: str, choices: Tuple[str, ...] = ()) -> Setting:
    """Document a configuration key. Values outside ``choices`` are rejected on load."""
    setting = Setting(env_var=env_var, group=group, description=description, choices=tuple(choices))
    _registry[env_var] = setting
    return setting


def get_settings_registry() -> Dict[str, Setting]:
    return dict(_registry)


register_setting(
    env_var="LOG_LEVEL",
    group="Logging",
    description="Log level for ctxscope loggers (overrides CTXSCOPE_LOG_LEVEL)",
    choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
)
register_setting(
    env_var="CTXSCOPE_TRACE_TASKS",
    group="Logging",
    description=(
        "Set to 1 to log every tracked task creation and destruction at DEBUG level. "
        "Useful when hunting scopes that never release their store."
    ),
)
register_setting(
    env_var="REQUEST_ID_HEADER",
    group="Middleware",
    description="HTTP header read (and echoed) by RequestContextMiddleware as the request id",
)
register_setting(
    env_var="CTXSCOPE_SETTINGS_FILE",
    group="Configuration",
    description="Path of the YAML settings file (defaults to ./settings.yaml)",
)


def get_settings_path() -> Path:
    """Return the location of the YAML settings file."""
    return Path(os.environ.get("CTXSCOPE_SETTINGS_FILE", SETTINGS_FILE))


def validate_settings(settings: Dict[str, Any]) -> None:
    """Raise ValueError for a registered key whose value is not one of its choices."""
    for key, value in settings.items():
        setting = _registry.get(key)
        if setting is None or not setting.choices or value is None:
            continue
        if str(value).upper() not in setting.choices:
            raise ValueError(f"Invalid value {value!r} for {key}; expected one of {', '.join(setting.choices)}")


def load_settings(path: Path | None = None) -> Dict[str, Any]:
    """Load settings from the YAML file, returning an empty dict when absent."""
    settings_file = path or get_settings_path()
    if not settings_file.exists():
        return {}
    with open(settings_file, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {settings_file} must contain a mapping, got {type(data).__name__}")
    validate_settings(data)
    return data


def get_value(
    key: str,
    settings: Dict[str, Any],
    default_env: Dict[str, Any],
    default: Any = NOT_GIVEN,
) -> Any:
    """Retrieve a configuration value from the environment, settings, or defaults."""
    value = os.environ.get(key)
    if value is None or value == "":
        value = settings.get(key)

    if value is None:
        value = default_env.get(key, default)

    if value is not NOT_GIVEN:
        return value
    raise KeyError(MISSING_MESSAGE.format(key))
