"""Subprocess-based sandbox with resource limits."""

from __future__ import annotations

import asyncio
import logging
import sys
import time

from algorun.models import SandboxResponse
from algorun.sandbox_base import (
    STATUS_ACCEPTED,
    STATUS_INTERNAL_ERROR,
    STATUS_RUNTIME_ERROR_NZEC,
    STATUS_RUNTIME_ERROR_SIGXFSZ,
    STATUS_TLE,
    with_echo_prelude,
)
from algorun.subprocess_io import communicate_capped, kill

logger = logging.getLogger(__name__)

# Return codes of a child killed by RLIMIT_CPU (SIGXCPU, then SIGKILL at the hard limit)
_CPU_LIMIT_EXITS = (-24, -9)


def _limits(cpu_seconds: int, max_memory_mb: int):
    """Build a preexec_fn applying CPU and address-space limits (Unix only)."""

    def apply() -> None:
        try:
            import resource
        except ImportError:
            return
        try:
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
        except (ValueError, OSError):
            pass
        limit_bytes = max_memory_mb * 1024 * 1024
        try:
            resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, limit_bytes))
        except (ValueError, OSError):
            pass

    return apply


class LocalSandbox:
    """Executes submissions locally in a fresh ``python -c`` process."""

    def __init__(
        self,
        python_executable: str | None = None,
        cpu_time_limit: int = 10,
        max_memory_mb: int = 256,
        max_output_bytes: int = 1024 * 1024,
    ) -> None:
        self._python = python_executable or sys.executable
        self._cpu_time_limit = cpu_time_limit
        self._max_memory_mb = max_memory_mb
        self._max_output_bytes = max_output_bytes

    async def submit(
        self,
        source: str,
        stdin: str = "",
        expected_output: str | None = None,
        timeout_ms: int = 15000,
        echo_input: bool = False,
    ) -> SandboxResponse:
        # expected_output is only meaningful to remote judges; comparison happens in the harness
        code, prelude_lines = with_echo_prelude(source, echo_input)
        preexec_fn = _limits(self._cpu_time_limit, self._max_memory_mb) if sys.platform != "win32" else None
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                self._python, "-I", "-X", "utf8", "-c", code,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={"PATH": "/usr/bin:/bin:/usr/local/bin"},
                preexec_fn=preexec_fn,
            )
        except OSError as e:
            return SandboxResponse(
                status_code=STATUS_INTERNAL_ERROR,
                stderr=str(e),
                description="Internal Error",
                prelude_lines=prelude_lines,
            )

        try:
            out, err, exceeded = await asyncio.wait_for(
                communicate_capped(proc, (stdin or "").encode("utf-8"), self._max_output_bytes),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            kill(proc)
            await proc.wait()
            return SandboxResponse(
                status_code=STATUS_TLE,
                stderr="Execution timed out",
                time_ms=(time.monotonic() - start) * 1000,
                description="Time Limit Exceeded",
                prelude_lines=prelude_lines,
            )
        except asyncio.CancelledError:
            kill(proc)
            raise

        elapsed_ms = (time.monotonic() - start) * 1000
        stdout = out.decode("utf-8", errors="replace")
        stderr = err.decode("utf-8", errors="replace")
        if exceeded:
            # the child was killed for flooding its output
            status, description = STATUS_RUNTIME_ERROR_SIGXFSZ, "Runtime Error (SIGXFSZ)"
            stderr = f"{stderr}\nOutput limit exceeded ({self._max_output_bytes} bytes)".lstrip("\n")
        elif proc.returncode == 0:
            status, description = STATUS_ACCEPTED, "Accepted"
        elif proc.returncode in _CPU_LIMIT_EXITS:
            status, description = STATUS_TLE, "Time Limit Exceeded"
        else:
            status, description = STATUS_RUNTIME_ERROR_NZEC, "Runtime Error (NZEC)"
        logger.debug("Local submission finished: status=%s in %.0f ms", status, elapsed_ms)
        return SandboxResponse(
            status_code=status,
            stdout=stdout,
            stderr=stderr,
            time_ms=elapsed_ms,
            description=description,
            prelude_lines=prelude_lines,
        )
