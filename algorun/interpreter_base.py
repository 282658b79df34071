"""Abstract interface for the embedded interpreter used by interactive sessions."""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from algorun.models import ExecutionOutcome


@runtime_checkable
class EmbeddedInterpreter(Protocol):
    """Runs a program from the top, feeding it a list of recorded inputs.

    There is no checkpoint/resume: every call re-executes the whole source.
    When the program asks for more input than was recorded, the call returns
    with ``waiting_for_input`` set instead of blocking.

    One instance is shared by every session; ``lock`` serialises
    reset-then-execute sequences across them.
    """

    lock: asyncio.Lock

    async def initialize(self) -> None: ...

    def is_ready(self) -> bool: ...

    def reset_state(self) -> None: ...

    async def execute(
        self,
        source: str,
        prior_inputs: list[str],
        seed: int | None = None,
    ) -> ExecutionOutcome: ...
