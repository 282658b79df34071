"""Tests for environment-driven configuration."""

from __future__ import annotations

import logging
import sys

import pytest

from algorun.config import Config
from algorun.log import configure_logging

ENV_VARS = [
    "ALGORUN_SANDBOX",
    "JUDGE0_URL",
    "JUDGE0_API_KEY",
    "JUDGE0_RAPIDAPI_KEY",
    "JUDGE0_RAPIDAPI_HOST",
    "JUDGE0_LANGUAGE_ID",
    "ALGORUN_TEST_TIMEOUT_MS",
    "ALGORUN_CPU_TIME_LIMIT",
    "ALGORUN_MAX_MEMORY_MB",
    "ALGORUN_MAX_OUTPUT_KB",
    "ALGORUN_SESSION_IDLE_TIMEOUT",
    "ALGORUN_INTERACTIVE_TIMEOUT",
    "ALGORUN_PYTHON",
    "ALGORUN_ECHO_INPUT",
    "ALGORUN_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestConfig:
    def test_defaults(self, clean_env):
        config = Config.from_env()
        assert config.sandbox_type == "local"
        assert config.test_timeout_ms == 15000
        assert config.max_memory_mb == 256
        assert config.interactive_timeout == 30.0
        assert config.python_executable == sys.executable
        assert config.max_output_kb == 1024
        assert config.session_idle_timeout == 1800.0
        assert config.echo_input is False

    def test_env_values(self, clean_env):
        clean_env.setenv("ALGORUN_SANDBOX", "judge0")
        clean_env.setenv("JUDGE0_URL", "https://judge0.example")
        clean_env.setenv("JUDGE0_LANGUAGE_ID", "92")
        clean_env.setenv("ALGORUN_TEST_TIMEOUT_MS", "2000")
        clean_env.setenv("ALGORUN_INTERACTIVE_TIMEOUT", "2.5")
        clean_env.setenv("ALGORUN_ECHO_INPUT", "true")
        clean_env.setenv("ALGORUN_MAX_OUTPUT_KB", "64")
        clean_env.setenv("ALGORUN_SESSION_IDLE_TIMEOUT", "90")
        config = Config.from_env()
        assert config.sandbox_type == "judge0"
        assert config.judge0_url == "https://judge0.example"
        assert config.judge0_language_id == 92
        assert config.test_timeout_ms == 2000
        assert config.interactive_timeout == 2.5
        assert config.echo_input is True
        assert config.max_output_kb == 64
        assert config.session_idle_timeout == 90.0

    def test_echo_input_off(self, clean_env):
        clean_env.setenv("ALGORUN_ECHO_INPUT", "0")
        assert Config.from_env().echo_input is False

    def test_overrides_win_and_none_is_ignored(self, clean_env):
        clean_env.setenv("ALGORUN_TEST_TIMEOUT_MS", "2000")
        config = Config.from_env(test_timeout_ms=500, judge0_url=None)
        assert config.test_timeout_ms == 500
        assert config.judge0_url == "http://localhost:2358"

    def test_bad_integer(self, clean_env):
        clean_env.setenv("ALGORUN_TEST_TIMEOUT_MS", "soon")
        with pytest.raises(ValueError, match="ALGORUN_TEST_TIMEOUT_MS must be int"):
            Config.from_env()

    def test_unknown_sandbox(self, clean_env):
        clean_env.setenv("ALGORUN_SANDBOX", "docker")
        with pytest.raises(ValueError, match="Unknown sandbox type"):
            Config.from_env()

    def test_non_positive_timeout(self):
        with pytest.raises(ValueError):
            Config(test_timeout_ms=0)

    def test_non_positive_limits(self):
        with pytest.raises(ValueError, match="max_output_kb"):
            Config(max_output_kb=0)
        with pytest.raises(ValueError, match="session_idle_timeout"):
            Config(session_idle_timeout=-1)


def test_configure_logging_installs_single_handler():
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        configure_logging("debug")
        configure_logging("DEBUG")
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
        configure_logging("nonsense")
        assert root.level == logging.INFO
    finally:
        root.setLevel(saved[0])
        root.handlers = saved[1]
