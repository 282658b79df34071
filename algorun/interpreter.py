"""Subprocess-backed Python runtime that replays programs with recorded input."""

from __future__ import annotations

import asyncio
import atexit
import json
import logging
import os
import shutil
import sys
import tempfile

from algorun.config import Config
from algorun.errors import InterpreterNotReady
from algorun.models import ErrorKind, ExecutionOutcome, RawOutput
from algorun.subprocess_io import communicate_capped, kill

logger = logging.getLogger(__name__)

# Marks runtime event lines on the child's real stdout; anything else the
# program manages to write there is treated as plain output.
_EVENT_PREFIX = "\x1ealgorun\x1e"


# Runs inside the child interpreter. The learner's program is compiled as
# "<exec>"; print()/sys.stdout/sys.stderr are captured line by line and
# input() replays recorded values. Once they run out the child reports
# "waiting" and ends with os._exit, so no learner except/finally block runs
# past the pending input.
_RUNTIME = r'''
import builtins as _builtins
import json as _json
import os as _os
import random as _random
import sys as _sys
import traceback as _traceback

_PAYLOAD = _json.loads(__PAYLOAD__)
_PREFIX = __PREFIX__
_real_stdout = _sys.stdout


def _emit(kind, text=""):
    _real_stdout.write(_PREFIX + _json.dumps({"kind": kind, "text": text}) + "\n")
    _real_stdout.flush()


class _LineStream:
    encoding = "utf-8"

    def __init__(self, kind):
        self.kind = kind
        self.pending = ""

    def write(self, text):
        if not isinstance(text, str):
            raise TypeError("write() argument must be str, not " + type(text).__name__)
        self.pending += text
        while "\n" in self.pending:
            line, self.pending = self.pending.split("\n", 1)
            _emit(self.kind, line)
        return len(text)

    def drain(self):
        if self.pending:
            _emit(self.kind, self.pending)
            self.pending = ""

    def flush(self):
        pass

    def isatty(self):
        return False

    def writable(self):
        return True


class _Stdin:
    encoding = "utf-8"

    def readline(self, size=-1):
        return _input() + "\n"

    # Input never reaches end-of-file; each supplied value is one line.
    def read(self, size=-1):
        return self.readline()

    def readlines(self, hint=-1):
        return [self.readline()]

    def __iter__(self):
        return self

    def __next__(self):
        return self.readline()

    def readable(self):
        return True

    def isatty(self):
        return False


_stdout = _LineStream("stdout")
_stderr = _LineStream("stderr")
_inputs = list(_PAYLOAD["inputs"])


def _drain():
    _stdout.drain()
    _stderr.drain()


def _input(prompt=""):
    _drain()
    prompt = str(prompt)
    _emit("prompt", prompt)
    if not _inputs:
        _emit("waiting", prompt)
        _os._exit(0)
    value = _inputs.pop(0)
    _emit("echo", value)
    return value


def _learner_traceback(exc):
    tb = exc.__traceback__
    while tb is not None and tb.tb_frame.f_code.co_filename != "<exec>":
        tb = tb.tb_next
    return "".join(_traceback.format_exception(type(exc), exc, tb))


_sys.stdout = _stdout
_sys.stderr = _stderr
_sys.stdin = _Stdin()
_builtins.input = _input
if _PAYLOAD["seed"] is not None:
    _random.seed(_PAYLOAD["seed"])

_namespace = {"__name__": "__main__", "__builtins__": _builtins}
try:
    exec(compile(_PAYLOAD["source"], "<exec>", "exec"), _namespace)
except SystemExit as _exit:
    _drain()
    if _exit.code is None or _exit.code == 0:
        _emit("exit")
    else:
        _emit("error", _learner_traceback(_exit))
except BaseException as _exc:
    _drain()
    _emit("error", _learner_traceback(_exc))
else:
    _drain()
    _emit("exit")
'''


def build_runtime(source: str, inputs: list[str], seed: int | None = None) -> str:
    """Return the child-process script that runs *source* with *inputs*."""
    payload = json.dumps({"source": source, "inputs": list(inputs), "seed": seed})
    # The prefix goes in first so learner text inside the payload is never substituted.
    return (
        _RUNTIME.replace("__PREFIX__", repr(_EVENT_PREFIX), 1)
        .replace("__PAYLOAD__", repr(payload), 1)
    )


def parse_events(stdout_text: str, stderr_text: str = "", returncode: int | None = 0) -> ExecutionOutcome:
    """Turn the child's event lines into an :class:`ExecutionOutcome`."""
    outcome = ExecutionOutcome()
    finished = False

    # str.splitlines() also breaks on "\x1e", which the event prefix contains.
    lines = stdout_text.split("\n")
    if lines[-1] == "":
        lines.pop()
    for line in lines:
        if not line.startswith(_EVENT_PREFIX):
            outcome.events.append(RawOutput(text=line, is_stdout=True))
            continue
        try:
            record = json.loads(line[len(_EVENT_PREFIX):])
            kind = record["kind"]
            text = str(record.get("text", ""))
        except (ValueError, KeyError, TypeError, AttributeError):
            logger.debug("Ignoring malformed runtime event: %r", line)
            continue

        if kind == "stdout":
            outcome.events.append(RawOutput(text=text, is_stdout=True))
        elif kind == "stderr":
            outcome.events.append(RawOutput(text=text, is_stderr=True))
        elif kind == "prompt":
            outcome.events.append(RawOutput(text=text, is_prompt_signal=True))
        elif kind == "echo":
            outcome.events.append(RawOutput(text=text, is_echo=True))
        elif kind == "waiting":
            outcome.waiting_for_input = True
            outcome.input_prompt = text
            finished = True
        elif kind == "exit":
            outcome.completed = True
            finished = True
        elif kind == "error":
            outcome.error = text
            outcome.error_kind = ErrorKind.INTERPRETER_RUNTIME_ERROR
            finished = True

    if not finished:
        detail = stderr_text.strip().splitlines()[-1] if stderr_text.strip() else ""
        outcome.error = detail or f"Python runtime exited unexpectedly (exit code {returncode})"
        outcome.error_kind = ErrorKind.INTERPRETER_INFRASTRUCTURE_ERROR
    return outcome


class LocalInterpreter:
    """Runs learner programs in a child Python process, one replay per call."""

    def __init__(
        self,
        python_executable: str | None = None,
        timeout: float = 30.0,
        max_output_bytes: int = 1024 * 1024,
    ) -> None:
        self._python = python_executable or sys.executable
        self._timeout = timeout
        self._max_output_bytes = max_output_bytes
        self._workdir: str | None = None
        self._ready = False
        self.lock = asyncio.Lock()

    @property
    def workdir(self) -> str | None:
        return self._workdir

    def _command(self, script: str) -> list[str]:
        return [self._python, "-I", "-X", "utf8", "-c", script]

    async def initialize(self) -> None:
        if self._ready:
            return
        async with self.lock:
            if not self._ready:
                await self._start()

    async def _start(self) -> None:
        logger.info("Starting Python runtime %s", self._python)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command("print(1 + 1)"),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise InterpreterNotReady(f"Failed to start Python runtime: {e}") from e
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            kill(proc)
            raise InterpreterNotReady("Python runtime did not respond") from None
        if proc.returncode != 0 or out.strip() != b"2":
            raise InterpreterNotReady(
                f"Python runtime self-check failed: {err.decode(errors='replace').strip() or proc.returncode}"
            )
        self._workdir = tempfile.mkdtemp(prefix="algorun-")
        self._ready = True
        logger.info("Python runtime ready (workdir %s)", self._workdir)

    def is_ready(self) -> bool:
        return self._ready

    def reset_state(self) -> None:
        """Remove everything earlier runs left in the working directory."""
        if not self._workdir or not os.path.isdir(self._workdir):
            return
        for entry in os.scandir(self._workdir):
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path, ignore_errors=True)
            else:
                os.remove(entry.path)

    async def execute(
        self,
        source: str,
        prior_inputs: list[str],
        seed: int | None = None,
    ) -> ExecutionOutcome:
        if not self._ready:
            return ExecutionOutcome(
                error="Python interpreter is not ready",
                error_kind=ErrorKind.INTERPRETER_NOT_READY,
            )

        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command(build_runtime(source, prior_inputs, seed)),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._workdir,
            )
        except OSError as e:
            return ExecutionOutcome(
                error=f"Failed to start Python runtime: {e}",
                error_kind=ErrorKind.INTERPRETER_INFRASTRUCTURE_ERROR,
            )

        try:
            out, err, exceeded = await asyncio.wait_for(
                communicate_capped(proc, limit=self._max_output_bytes),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            kill(proc)
            await proc.wait()
            return ExecutionOutcome(
                error=f"Execution timed out after {self._timeout:g} seconds",
                error_kind=ErrorKind.INTERPRETER_INFRASTRUCTURE_ERROR,
            )
        except asyncio.CancelledError:
            kill(proc)
            raise

        outcome = parse_events(
            out.decode("utf-8", errors="replace"),
            err.decode("utf-8", errors="replace"),
            proc.returncode,
        )
        if exceeded:
            logger.warning("Program output exceeded %d bytes, run stopped", self._max_output_bytes)
            outcome.completed = False
            outcome.waiting_for_input = False
            outcome.input_prompt = None
            outcome.error = f"Output limit exceeded ({self._max_output_bytes} bytes)"
            outcome.error_kind = ErrorKind.INTERPRETER_INFRASTRUCTURE_ERROR
        return outcome

    def close(self) -> None:
        if self._workdir:
            shutil.rmtree(self._workdir, ignore_errors=True)
        self._workdir = None
        self._ready = False


_shared: LocalInterpreter | None = None


def get_interpreter(config: Config | None = None) -> LocalInterpreter:
    """Return the process-wide interpreter, creating it on first use.

    Initialisation is left to the first session that needs it.
    """
    global _shared
    if _shared is None:
        config = config or Config.from_env()
        _shared = LocalInterpreter(
            config.python_executable,
            config.interactive_timeout,
            max_output_bytes=config.max_output_kb * 1024,
        )
        atexit.register(_shared.close)
    return _shared
