"""Tests for settings and logging configuration."""

import json
import logging
import sys

import pytest

from roomsync.config import DEFAULT_DB_PATH, DEFAULT_MODEL, PROJECT_ROOT, Settings, resolve_db_path
from roomsync.logging_config import QUIET_LOGGERS, JSONFormatter, setup_logging

ENV_VARS = (
    "BACKEND_URL",
    "BACKEND_KEY",
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "VECTOR_STORE_ID",
    "ASSISTANT_SENDER_ID",
    "ASSISTANT_DISPLAY_NAME",
    "DEFAULT_MODEL",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # setenv first so values loaded from .env files are undone on teardown
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return tmp_path / ".env"


class TestSettings:
    """Tests for Settings.from_env()."""

    def test_defaults(self, clean_env):
        """Test an empty environment selects the local channel."""
        settings = Settings.from_env(clean_env)

        assert settings.db_path == DEFAULT_DB_PATH
        assert settings.default_model == DEFAULT_MODEL
        assert settings.assistant_display_name == "Assistant"
        assert settings.uses_remote_backend is False

    def test_from_environment(self, clean_env, monkeypatch):
        """Test values are read from environment variables."""
        monkeypatch.setenv("BACKEND_URL", "https://example.test")
        monkeypatch.setenv("BACKEND_KEY", "anon")
        monkeypatch.setenv("VECTOR_STORE_ID", "vs_1")
        monkeypatch.setenv("DEFAULT_MODEL", "gpt-4o")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = Settings.from_env(clean_env)

        assert settings.uses_remote_backend is True
        assert settings.vector_store_id == "vs_1"
        assert settings.default_model == "gpt-4o"
        assert settings.log_level == "DEBUG"

    def test_env_file(self, clean_env):
        """Test a .env file fills missing values."""
        clean_env.write_text("ASSISTANT_SENDER_ID=bot-7\nDATABASE_URL=:memory:\n")

        settings = Settings.from_env(clean_env)

        assert settings.assistant_sender_id == "bot-7"
        assert settings.db_path == ":memory:"

    def test_backend_needs_url_and_key(self):
        """Test a URL alone does not select the hosted backend."""
        assert Settings(backend_url="https://example.test").uses_remote_backend is False


class TestResolveDbPath:
    """Tests for resolve_db_path()."""

    def test_relative_paths_anchor_to_project(self):
        """Test relative paths resolve under the project root."""
        assert resolve_db_path("03_data/x.db") == PROJECT_ROOT / "03_data" / "x.db"

    def test_absolute_and_memory(self, tmp_path):
        """Test absolute paths and :memory: pass through."""
        assert resolve_db_path(tmp_path / "x.db") == tmp_path / "x.db"
        assert resolve_db_path(":memory:") == ":memory:"
        assert resolve_db_path(None) == DEFAULT_DB_PATH


class TestLogging:
    """Tests for structured logging."""

    def test_json_formatter_includes_context(self):
        """Test context passed via extra lands in the JSON line."""
        record = logging.LogRecord("roomsync.test", logging.INFO, __file__, 1, "hi %s", ("there",), None)
        record.context = {"room_id": "r1"}

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "hi there"
        assert data["level"] == "INFO"
        assert data["context"] == {"room_id": "r1"}

    def test_json_formatter_exception_without_context(self):
        """Test tracebacks are kept and records without context omit the key."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "roomsync.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        data = json.loads(JSONFormatter().format(record))

        assert "context" not in data
        assert "ValueError: boom" in data["exception"]

    def test_setup_logging_writes_file(self, tmp_path):
        """Test setup_logging creates the log directory and writes JSON lines."""
        log_file = tmp_path / "logs" / "app.log"
        root = logging.getLogger()
        previous = list(root.handlers), root.level
        try:
            setup_logging("DEBUG", str(log_file), console=False)
            logging.getLogger("roomsync.test").info("started")
            for handler in root.handlers:
                handler.flush()

            lines = log_file.read_text(encoding="utf-8").splitlines()
            assert json.loads(lines[-1])["message"] == "started"
            for name in QUIET_LOGGERS:
                assert logging.getLogger(name).level == logging.WARNING
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in previous[0]:
                root.addHandler(handler)
            root.setLevel(previous[1])
