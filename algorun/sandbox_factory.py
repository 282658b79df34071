"""Factory for creating sandboxes based on configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from algorun.sandbox import LocalSandbox
from algorun.sandbox_base import ExecutionSandbox

if TYPE_CHECKING:
    from algorun.config import Config


def create_sandbox(config: Config) -> ExecutionSandbox:
    """Create a sandbox based on config.sandbox_type."""
    if config.sandbox_type == "judge0":
        from algorun.sandbox_judge0 import Judge0Config, Judge0Sandbox

        return Judge0Sandbox(
            Judge0Config(
                base_url=config.judge0_url,
                api_key=config.judge0_api_key,
                rapidapi_key=config.judge0_rapidapi_key,
                rapidapi_host=config.judge0_rapidapi_host,
                language_id=config.judge0_language_id,
                cpu_time_limit=config.cpu_time_limit,
                max_memory_mb=config.max_memory_mb,
            )
        )
    return LocalSandbox(
        python_executable=config.python_executable,
        cpu_time_limit=config.cpu_time_limit,
        max_memory_mb=config.max_memory_mb,
        max_output_bytes=config.max_output_kb * 1024,
    )
