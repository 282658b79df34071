"""Configuration for algorun, loaded from environment variables."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field


def _flag(value: str) -> bool:
    return value.lower() not in ("0", "false", "no", "off", "")


@dataclass
class Config:
    sandbox_type: str = "local"  # "local" or "judge0"
    judge0_url: str = "http://localhost:2358"
    judge0_api_key: str = ""
    judge0_rapidapi_key: str = ""
    judge0_rapidapi_host: str = "judge0-ce.p.rapidapi.com"
    judge0_language_id: int = 71  # Python 3
    test_timeout_ms: int = 15000
    cpu_time_limit: int = 10  # seconds, enforced by the sandbox
    max_memory_mb: int = 256
    max_output_kb: int = 1024  # combined stdout/stderr per run
    interactive_timeout: float = 30.0  # seconds per interactive replay
    session_idle_timeout: float = 1800.0  # seconds before the web API drops an idle session
    python_executable: str = field(default_factory=lambda: sys.executable)
    echo_input: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.sandbox_type not in ("local", "judge0"):
            raise ValueError(f"Unknown sandbox type: {self.sandbox_type!r} (expected 'local' or 'judge0')")
        if self.test_timeout_ms <= 0:
            raise ValueError("test_timeout_ms must be positive")
        if self.interactive_timeout <= 0:
            raise ValueError("interactive_timeout must be positive")
        if self.max_output_kb <= 0:
            raise ValueError("max_output_kb must be positive")
        if self.session_idle_timeout <= 0:
            raise ValueError("session_idle_timeout must be positive")

    @classmethod
    def from_env(cls, **overrides) -> Config:
        kwargs: dict = {}
        env_map: dict[str, tuple[str, type]] = {
            "ALGORUN_SANDBOX": ("sandbox_type", str),
            "JUDGE0_URL": ("judge0_url", str),
            "JUDGE0_API_KEY": ("judge0_api_key", str),
            "JUDGE0_RAPIDAPI_KEY": ("judge0_rapidapi_key", str),
            "JUDGE0_RAPIDAPI_HOST": ("judge0_rapidapi_host", str),
            "JUDGE0_LANGUAGE_ID": ("judge0_language_id", int),
            "ALGORUN_TEST_TIMEOUT_MS": ("test_timeout_ms", int),
            "ALGORUN_CPU_TIME_LIMIT": ("cpu_time_limit", int),
            "ALGORUN_MAX_MEMORY_MB": ("max_memory_mb", int),
            "ALGORUN_MAX_OUTPUT_KB": ("max_output_kb", int),
            "ALGORUN_INTERACTIVE_TIMEOUT": ("interactive_timeout", float),
            "ALGORUN_SESSION_IDLE_TIMEOUT": ("session_idle_timeout", float),
            "ALGORUN_PYTHON": ("python_executable", str),
            "ALGORUN_LOG_LEVEL": ("log_level", str),
        }
        for env_var, (field_name, conv) in env_map.items():
            val = os.environ.get(env_var)
            if val is not None and val != "":
                try:
                    kwargs[field_name] = conv(val)
                except ValueError:
                    raise ValueError(f"{env_var} must be {conv.__name__}, got {val!r}") from None
        # ALGORUN_ECHO_INPUT: "1" or "true" echoes consumed input in graded output
        echo_val = os.environ.get("ALGORUN_ECHO_INPUT")
        if echo_val is not None:
            kwargs["echo_input"] = _flag(echo_val)
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)
