"""Abstract interface for sandboxed, non-interactive code execution."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from algorun.models import SandboxResponse, SandboxStatus

# Judge0 status codes; the local sandbox reports the same ids.
STATUS_IN_QUEUE = 1
STATUS_PROCESSING = 2
STATUS_ACCEPTED = 3  # ran successfully (exit code 0)
STATUS_WRONG_ANSWER = 4
STATUS_TLE = 5
STATUS_COMPILATION_ERROR = 6
STATUS_RUNTIME_ERROR_SIGSEGV = 7
STATUS_RUNTIME_ERROR_SIGXFSZ = 8
STATUS_RUNTIME_ERROR_SIGFPE = 9
STATUS_RUNTIME_ERROR_SIGABRT = 10
STATUS_RUNTIME_ERROR_NZEC = 11
STATUS_RUNTIME_ERROR_OTHER = 12
STATUS_INTERNAL_ERROR = 13
STATUS_EXEC_FORMAT_ERROR = 14

STATUS_MESSAGES = {
    STATUS_IN_QUEUE: "In Queue",
    STATUS_PROCESSING: "Processing",
    STATUS_ACCEPTED: "Accepted",
    STATUS_WRONG_ANSWER: "Wrong Answer",
    STATUS_TLE: "Time Limit Exceeded",
    STATUS_COMPILATION_ERROR: "Compilation Error",
    STATUS_RUNTIME_ERROR_SIGSEGV: "Runtime Error (SIGSEGV)",
    STATUS_RUNTIME_ERROR_SIGXFSZ: "Runtime Error (SIGXFSZ)",
    STATUS_RUNTIME_ERROR_SIGFPE: "Runtime Error (SIGFPE)",
    STATUS_RUNTIME_ERROR_SIGABRT: "Runtime Error (SIGABRT)",
    STATUS_RUNTIME_ERROR_NZEC: "Runtime Error (NZEC)",
    STATUS_RUNTIME_ERROR_OTHER: "Runtime Error (Other)",
    STATUS_INTERNAL_ERROR: "Internal Error",
    STATUS_EXEC_FORMAT_ERROR: "Exec Format Error",
}

# Prepended (as one line) when graded output should show consumed input.
ECHO_PRELUDE = (
    "import builtins as _b; _b.input = (lambda _i: lambda p='': "
    "(lambda v: (print(v), v)[1])(_i(p)))(_b.input); del _b"
)


def interpret_status(status_code: int) -> SandboxStatus:
    """Map a Judge0 status id onto the four outcomes the harness distinguishes.

    Wrong Answer still means the program ran to completion; output comparison
    is the harness's job, so it counts as success here.
    """
    if status_code in (STATUS_ACCEPTED, STATUS_WRONG_ANSWER):
        return SandboxStatus.SUCCESS
    if status_code == STATUS_TLE:
        return SandboxStatus.TIMEOUT
    if status_code == STATUS_COMPILATION_ERROR or (
        STATUS_RUNTIME_ERROR_SIGSEGV <= status_code <= STATUS_RUNTIME_ERROR_OTHER
    ):
        return SandboxStatus.RUNTIME_ERROR
    return SandboxStatus.INFRA_ERROR


def status_message(status_code: int) -> str:
    return STATUS_MESSAGES.get(status_code, "Unknown Status")


def with_echo_prelude(source: str, echo_input: bool) -> tuple[str, int]:
    """Return (source, prelude_lines) with the echo shim applied if requested."""
    if not echo_input:
        return source, 0
    return f"{ECHO_PRELUDE}\n{source}", 1


@runtime_checkable
class ExecutionSandbox(Protocol):
    async def submit(
        self,
        source: str,
        stdin: str = "",
        expected_output: str | None = None,
        timeout_ms: int = 15000,
        echo_input: bool = False,
    ) -> SandboxResponse: ...
