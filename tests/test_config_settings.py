"""Tests for config/settings.py and logging.py."""

import logging
from unittest.mock import patch

import structlog

from stackpilot.config import Settings, get_settings
from stackpilot.logging import configure_from_settings, configure_logging
from stackpilot.orchestration import RetryPolicy


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        """Test defaults are sequential with a file state store."""
        for name in ("STACKPILOT_MAX_WORKERS", "STACKPILOT_STATE_BACKEND", "STACKPILOT_MAX_ATTEMPTS"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.max_workers == 1
        assert settings.state_backend == "file"
        assert settings.state_path == ".stackpilot/state.json"
        assert settings.max_attempts == 5

    def test_environment_prefix(self, monkeypatch):
        """Test STACKPILOT_ variables configure settings."""
        monkeypatch.setenv("STACKPILOT_MAX_WORKERS", "4")
        monkeypatch.setenv("STACKPILOT_STATE_BACKEND", "sql")
        monkeypatch.setenv("STACKPILOT_RUN_TIMEOUT", "600")

        settings = Settings(_env_file=None)

        assert settings.max_workers == 4
        assert settings.state_backend == "sql"
        assert settings.run_timeout == 600.0

    def test_get_settings_is_cached(self):
        """Test get_settings returns one shared instance."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()

    def test_retry_policy_from_settings(self):
        """Test retry bounds come from settings."""
        policy = RetryPolicy.from_settings(
            Settings(_env_file=None, max_attempts=7, backoff_multiplier=0.5, backoff_max=10, state_retry_attempts=2)
        )

        assert policy == RetryPolicy(max_attempts=7, multiplier=0.5, max_wait=10, state_attempts=2)


class TestLogging:
    """Tests for configure_logging."""

    def test_configure_accepts_level_names(self):
        """Test a string level is converted before configuring stdlib logging."""
        previous = structlog.get_config()
        try:
            with patch("stackpilot.logging.logging.basicConfig") as basic_config:
                configure_logging("debug", fmt="console")

            assert basic_config.call_args.kwargs["level"] == logging.DEBUG
            assert structlog.is_configured()
        finally:
            structlog.configure(**previous)

    def test_configure_from_settings(self):
        """Test level and format come from settings."""
        with patch("stackpilot.logging.configure_logging") as configure:
            configure_from_settings(Settings(_env_file=None, log_level="WARNING", log_format="console"))

        configure.assert_called_once_with("WARNING", fmt="console")
