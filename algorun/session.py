"""Interactive sessions: one suspendable run of a learner program.

The embedded interpreter cannot pause, so a session resumes by replaying the
whole program with every input supplied so far and showing only the part of
the transcript the learner has not seen yet.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Callable
from typing import Generic, TypeVar

from algorun.classifier import classify_all, system_message
from algorun.errors import InterpreterNotReady, SessionStateError
from algorun.interpreter import get_interpreter
from algorun.interpreter_base import EmbeddedInterpreter
from algorun.models import (
    ErrorKind,
    ExecutionOutcome,
    FragmentKind,
    OutputFragment,
    SessionState,
)
from algorun.scaffold import clean_error, wrap

logger = logging.getLogger(__name__)

COMPLETED_MESSAGE = "Program completed."
LOADING_MESSAGE = "Loading Python interpreter..."
RETRY_MESSAGE = "Python interpreter not ready, retrying..."
READY_MESSAGE = "Python interpreter ready."
DIVERGED_MESSAGE = (
    "Note: the program behaved differently when re-run with your input "
    "(randomness, time or files?), so earlier output may not match this run."
)

T = TypeVar("T")


class FragmentStream(Generic[T]):
    """Ordered fan-out from one producer to any number of subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, item: T) -> None:
        for callback in list(self._subscribers):
            callback(item)


class InteractiveSession:
    """Drives one learner program through the embedded interpreter.

    Lifecycle: IDLE -> RUNNING -> (WAITING_FOR_INPUT <-> RUNNING) ->
    COMPLETED | FAILED. ``reset()`` returns to IDLE from anywhere, passing
    through ABORTED when a run was live.
    """

    def __init__(
        self,
        interpreter: EmbeddedInterpreter | None = None,
        session_id: str | None = None,
    ) -> None:
        self._interpreter = interpreter or get_interpreter()
        self.session_id = session_id or uuid.uuid4().hex
        self._state = SessionState.IDLE
        self._log: list[OutputFragment] = []
        self._shown: list[OutputFragment] = []  # interpreter fragments already in the log
        self._inputs: list[str] = []
        self._pending_prompt: str | None = None
        self._source = ""
        self._line_offset = 0
        self._seed: int | None = None
        self._error_kind: ErrorKind | None = None
        self._epoch = 0
        self._call: asyncio.Future | None = None
        self._outputs: FragmentStream[OutputFragment] = FragmentStream()
        self._states: FragmentStream[SessionState] = FragmentStream()

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def output(self) -> list[OutputFragment]:
        return list(self._log)

    @property
    def waiting_for_input(self) -> bool:
        return self._state is SessionState.WAITING_FOR_INPUT

    @property
    def pending_prompt(self) -> str | None:
        return self._pending_prompt

    @property
    def inputs(self) -> list[str]:
        return list(self._inputs)

    @property
    def line_offset(self) -> int:
        return self._line_offset

    @property
    def error_kind(self) -> ErrorKind | None:
        return self._error_kind

    def snapshot(self) -> dict:
        return {
            "id": self.session_id,
            "state": self._state.value,
            "output": [f.to_dict() for f in self._log],
            "waiting_for_input": self.waiting_for_input,
            "pending_prompt": self._pending_prompt,
            "line_offset": self._line_offset,
            "error_kind": self._error_kind.value if self._error_kind else None,
        }

    def on_output(self, callback: Callable[[OutputFragment], None]) -> Callable[[], None]:
        """Call *callback* once per appended fragment; returns an unsubscribe function."""
        return self._outputs.subscribe(callback)

    def on_state(self, callback: Callable[[SessionState], None]) -> Callable[[], None]:
        return self._states.subscribe(callback)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def run(self, header: str, body: str, footer: str = "") -> SessionState:
        """Start the program from the top, replacing whatever ran before."""
        self._discard_current()
        epoch = self._epoch
        self._source, self._line_offset = wrap(header, body, footer)
        self._seed = int.from_bytes(os.urandom(4), "big")
        logger.info("Session %s: run (body offset %d)", self.session_id, self._line_offset)
        self._set_state(SessionState.RUNNING)
        return await self._execute(epoch)

    async def supply_input(self, text: str) -> SessionState:
        """Answer the pending input request and run on to the next suspension point."""
        if self._state is not SessionState.WAITING_FOR_INPUT:
            raise SessionStateError(
                f"Session {self.session_id} is {self._state.value}, not waiting for input"
            )
        self._inputs.append(str(text).rstrip("\r\n"))
        self._pending_prompt = None
        logger.info("Session %s: resuming with input #%d", self.session_id, len(self._inputs))
        self._set_state(SessionState.RUNNING)
        return await self._execute(self._epoch)

    def reset(self) -> None:
        """Abandon the session; responses still in flight will be discarded."""
        live = self._state in (SessionState.RUNNING, SessionState.WAITING_FOR_INPUT)
        self._discard_current()
        self._source = ""
        self._line_offset = 0
        self._seed = None
        if live:
            logger.info("Session %s: aborted", self.session_id)
            self._set_state(SessionState.ABORTED)
        self._set_state(SessionState.IDLE)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _discard_current(self) -> None:
        self._epoch += 1
        if self._call is not None and not self._call.done():
            self._call.cancel()
        self._call = None
        self._log = []
        self._shown = []
        self._inputs = []
        self._pending_prompt = None
        self._error_kind = None

    def _append(self, fragment: OutputFragment) -> None:
        self._log.append(fragment)
        self._outputs.publish(fragment)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._state = state
        self._states.publish(state)

    async def _ensure_ready(self, epoch: int) -> bool:
        if self._interpreter.is_ready():
            return True
        self._append(system_message(LOADING_MESSAGE))
        for attempt in (1, 2):
            try:
                await self._interpreter.initialize()
            except InterpreterNotReady as e:
                if epoch != self._epoch:
                    return False
                logger.warning("Interpreter initialisation failed (attempt %d): %s", attempt, e)
                if attempt == 1:
                    self._append(system_message(RETRY_MESSAGE))
                    continue
                self._error_kind = ErrorKind.INTERPRETER_NOT_READY
                self._append(system_message(f"Failed to initialize Python interpreter: {e}"))
                self._set_state(SessionState.FAILED)
                return False
            if epoch != self._epoch:
                return False
            self._append(system_message(READY_MESSAGE))
            return True
        return False

    async def _replay(self) -> ExecutionOutcome:
        async with self._interpreter.lock:
            self._interpreter.reset_state()
            return await self._interpreter.execute(self._source, list(self._inputs), seed=self._seed)

    async def _execute(self, epoch: int) -> SessionState:
        if not await self._ensure_ready(epoch):
            return self._state

        call = asyncio.ensure_future(self._replay())
        self._call = call
        try:
            outcome = await call
        except asyncio.CancelledError:
            if epoch != self._epoch:
                logger.debug("Session %s: in-flight run cancelled", self.session_id)
                return self._state
            raise
        finally:
            if self._call is call:
                self._call = None

        if epoch != self._epoch:
            logger.debug("Session %s: discarding stale response", self.session_id)
            return self._state
        self._apply(outcome)
        return self._state

    def _apply(self, outcome: ExecutionOutcome) -> None:
        fragments = classify_all(outcome.events)
        seen = len(self._shown)
        if fragments[:seen] != self._shown:
            logger.warning("Session %s: replay diverged from the shown transcript", self.session_id)
            self._append(system_message(DIVERGED_MESSAGE))
        for fragment in fragments[seen:]:
            self._shown.append(fragment)
            self._append(fragment)

        if outcome.waiting_for_input:
            self._pending_prompt = outcome.input_prompt or ""
            self._set_state(SessionState.WAITING_FOR_INPUT)
            return

        if outcome.completed:
            self._append(system_message(COMPLETED_MESSAGE))
            logger.info("Session %s: completed", self.session_id)
            self._set_state(SessionState.COMPLETED)
            return

        self._error_kind = outcome.error_kind or ErrorKind.INTERPRETER_RUNTIME_ERROR
        if self._error_kind is ErrorKind.INTERPRETER_RUNTIME_ERROR:
            message = clean_error(outcome.error or "", self._line_offset, filenames=("<exec>",))
            self._append(OutputFragment(kind=FragmentKind.PROGRAM_OUTPUT, text=message))
        else:
            self._append(system_message(outcome.error or "Execution failed"))
        logger.info("Session %s: failed (%s)", self.session_id, self._error_kind.value)
        self._set_state(SessionState.FAILED)
