"""Data models for algorun."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import NamedTuple


class SessionState(enum.Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    WAITING_FOR_INPUT = "WAITING_FOR_INPUT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)


class FragmentKind(enum.Enum):
    PROGRAM_OUTPUT = "program-output"
    INPUT_ECHO = "input-echo"
    INPUT_PROMPT = "input-prompt"
    SYSTEM_MESSAGE = "system-message"


class ErrorKind(enum.Enum):
    INTERPRETER_NOT_READY = "interpreter-not-ready"
    INTERPRETER_RUNTIME_ERROR = "interpreter-runtime-error"
    INTERPRETER_INFRASTRUCTURE_ERROR = "interpreter-infrastructure-error"
    SANDBOX_TIMEOUT = "sandbox-timeout"
    SANDBOX_RUNTIME_ERROR = "sandbox-runtime-error"
    SANDBOX_INFRASTRUCTURE_ERROR = "sandbox-infrastructure-error"
    CANCELLED = "cancelled"


class SandboxStatus(enum.Enum):
    SUCCESS = "success"
    RUNTIME_ERROR = "runtime-error"
    TIMEOUT = "timeout"
    INFRA_ERROR = "infra-error"


@dataclass(frozen=True)
class RawOutput:
    """One output event as produced by the embedded interpreter."""

    text: str
    is_stdout: bool = False
    is_stderr: bool = False
    is_prompt_signal: bool = False
    is_echo: bool = False


@dataclass(frozen=True)
class OutputFragment:
    kind: FragmentKind
    text: str

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "content": self.text}


@dataclass
class ExecutionOutcome:
    """Result of one top-to-bottom run of the embedded interpreter."""

    events: list[RawOutput] = field(default_factory=list)
    completed: bool = False
    waiting_for_input: bool = False
    input_prompt: str | None = None
    error: str | None = None  # raw traceback or infrastructure message
    error_kind: ErrorKind | None = None

    @property
    def stdout(self) -> str:
        return "\n".join(e.text for e in self.events if e.is_stdout)

    @property
    def stderr(self) -> str:
        return "\n".join(e.text for e in self.events if e.is_stderr)


@dataclass(frozen=True)
class TestCase:
    input: str
    expected_output: str
    hidden: bool = False
    description: str = ""


@dataclass
class TestResult:
    input: str
    expected_output: str
    passed: bool
    actual_output: str | None = None  # None on timeout / infrastructure failure
    error_kind: ErrorKind | None = None
    error: str | None = None
    execution_time_ms: float | None = None
    hidden: bool = False

    def to_dict(self) -> dict:
        return {
            "input": self.input,
            "expected_output": self.expected_output,
            "actual_output": self.actual_output,
            "passed": self.passed,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
            "hidden": self.hidden,
        }


@dataclass
class SandboxResponse:
    status_code: int
    stdout: str = ""
    stderr: str = ""
    time_ms: float | None = None
    description: str = ""
    prelude_lines: int = 0  # lines the sandbox prepended to the submitted source


class WrappedSource(NamedTuple):
    source: str
    body_line_offset: int


@dataclass
class Aggregate:
    all_passed: bool
    passed_count: int
    first_failure: TestResult | None = None


@dataclass
class ProgressRecord:
    attempts: int = 0
    completed: bool = False
    best_score: int = 0

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "completed": self.completed,
            "bestScore": self.best_score,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> ProgressRecord | None:
        if not data:
            return None
        return cls(
            attempts=int(data.get("attempts", 0)),
            completed=bool(data.get("completed", False)),
            best_score=int(data.get("bestScore", data.get("best_score", 0))),
        )


class CancellationToken:
    """Set-once flag shared between a batch run and whoever may stop it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class BatchRun:
    total: int
    results: list[TestResult] = field(default_factory=list)
    current: int = 0
    cancelled: bool = False
    stopped_early: bool = False  # harness-level infrastructure failure
    token: CancellationToken = field(default_factory=CancellationToken, repr=False)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def score(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.passed_count / self.total * 100)

    @property
    def completed(self) -> bool:
        return (
            not self.cancelled
            and self.total > 0
            and len(self.results) == self.total
            and self.passed_count == self.total
        )

    def summary(self) -> dict:
        return {
            "passed": self.passed_count,
            "total": self.total,
            "score": self.score,
            "completed": self.completed,
            "cancelled": self.cancelled,
            "stopped_early": self.stopped_early,
        }
