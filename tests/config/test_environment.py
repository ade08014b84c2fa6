"""Tests for environment and settings-file configuration."""

import logging
import os

import pytest

from ctxscope.config.environment import Environment, load_dotenv_files
from ctxscope.config.logging_config import (
    LevelColorFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from ctxscope.config.settings import get_settings_registry, load_settings


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    path = tmp_path / "settings.yaml"
    monkeypatch.setenv("CTXSCOPE_SETTINGS_FILE", str(path))
    return path


class TestPrecedence:
    """Environment variables beat the settings file, which beats defaults."""

    def test_defaults(self, settings_file, monkeypatch):
        monkeypatch.delenv("REQUEST_ID_HEADER", raising=False)
        monkeypatch.delenv("CTXSCOPE_TRACE_TASKS", raising=False)

        assert Environment.get_request_id_header() == "X-Request-ID"
        assert Environment.trace_tasks() is False

    def test_settings_file_overrides_defaults(self, settings_file, monkeypatch):
        monkeypatch.delenv("REQUEST_ID_HEADER", raising=False)
        monkeypatch.delenv("CTXSCOPE_TRACE_TASKS", raising=False)
        settings_file.write_text("REQUEST_ID_HEADER: X-Trace-ID\nCTXSCOPE_TRACE_TASKS: true\n")

        assert Environment.get_request_id_header() == "X-Trace-ID"
        assert Environment.trace_tasks() is True

    def test_environment_overrides_settings_file(self, settings_file, monkeypatch):
        settings_file.write_text("REQUEST_ID_HEADER: X-Trace-ID\n")
        monkeypatch.setenv("REQUEST_ID_HEADER", "X-Env-ID")

        assert Environment.get_request_id_header() == "X-Env-ID"

    def test_settings_cached_until_reset(self, settings_file, monkeypatch):
        monkeypatch.delenv("REQUEST_ID_HEADER", raising=False)
        settings_file.write_text("REQUEST_ID_HEADER: X-First\n")
        assert Environment.get_request_id_header() == "X-First"

        settings_file.write_text("REQUEST_ID_HEADER: X-Second\n")
        assert Environment.get_request_id_header() == "X-First"

        Environment.reset()
        assert Environment.get_request_id_header() == "X-Second"

    @pytest.mark.parametrize("raw", ["1", "true", "YES", "on"])
    def test_truthy_values(self, settings_file, monkeypatch, raw):
        monkeypatch.setenv("CTXSCOPE_TRACE_TASKS", raw)

        assert Environment.trace_tasks() is True

    def test_unknown_key_uses_default(self, settings_file):
        assert Environment.get("CTXSCOPE_NOT_A_SETTING", "fallback") == "fallback"


class TestSettingsFile:
    def test_missing_file_is_empty(self, tmp_path):
        assert load_settings(tmp_path / "absent.yaml") == {}

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ValueError, match="must contain a mapping"):
            load_settings(path)

    def test_invalid_choice_rejected(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("LOG_LEVEL: LOUD\n")

        with pytest.raises(ValueError, match="LOG_LEVEL"):
            load_settings(path)

    def test_registry_documents_keys(self):
        registry = get_settings_registry()

        assert {"LOG_LEVEL", "CTXSCOPE_TRACE_TASKS", "REQUEST_ID_HEADER"} <= set(registry)
        assert registry["LOG_LEVEL"].choices[0] == "DEBUG"

    def test_dotenv_does_not_override_process_env(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("REQUEST_ID_HEADER=X-From-Dotenv\nCTXSCOPE_DOTENV_ONLY=loaded\n")
        monkeypatch.setenv("REQUEST_ID_HEADER", "X-From-Process")
        monkeypatch.delenv("CTXSCOPE_DOTENV_ONLY", raising=False)

        load_dotenv_files(tmp_path)

        assert os.environ["REQUEST_ID_HEADER"] == "X-From-Process"
        assert os.environ["CTXSCOPE_DOTENV_ONLY"] == "loaded"
        monkeypatch.delenv("CTXSCOPE_DOTENV_ONLY")


class TestLogLevel:
    def test_log_level_env_wins(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        monkeypatch.setenv("DEBUG", "1")

        assert Environment.get_log_level() == "WARNING"

    def test_debug_flag(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("DEBUG", "true")

        assert Environment.get_log_level() == "DEBUG"

    def test_falsy_debug_flag(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("DEBUG", "0")
        monkeypatch.setenv("CTXSCOPE_LOG_LEVEL", "error")

        assert Environment.get_log_level() == "ERROR"


class TestLogging:
    def test_get_logger_sets_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        reset_logging()
        try:
            logger = get_logger("ctxscope.tests.level")
            assert logger.level == logging.DEBUG
        finally:
            reset_logging()

    def test_filters_attached_and_removed(self):
        class Tag(logging.Filter):
            def filter(self, record):
                record.tag = "tagged"
                return True

        tag = Tag()
        root = logging.getLogger()
        added = root.handlers == []
        try:
            configure_logging("INFO", filters=[tag])
            stream_handlers = [h for h in root.handlers if isinstance(h, logging.StreamHandler)]
            assert stream_handlers
            assert all(tag in h.filters for h in stream_handlers)
        finally:
            reset_logging()
            if added:
                for handler in list(root.handlers):
                    root.removeHandler(handler)

        assert all(tag not in h.filters for h in root.handlers)

    def test_color_formatter_without_color(self):
        formatter = LevelColorFormatter("%(levelname_color)s %(message)s", "%H", use_color=False)
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "boom", None, None)

        assert formatter.format(record) == "ERROR boom"

    def test_color_formatter_with_color(self):
        formatter = LevelColorFormatter("%(levelname_color)s", "%H", use_color=True)
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

        assert formatter.format(record) == "\x1b[32mINFO\x1b[0m"
