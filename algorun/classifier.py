"""Classify raw interpreter output into terminal transcript fragments."""

from __future__ import annotations

from collections.abc import Iterable

from algorun.models import FragmentKind, OutputFragment, RawOutput


def classify(event: object) -> FragmentKind:
    """Return the transcript kind for one raw output event.

    Prompt signals win over echo, and echo over plain program output, so
    typed input never merges into what the program printed. Anything that is
    not a recognisable event is a system message.
    """
    if not isinstance(event, RawOutput):
        return FragmentKind.SYSTEM_MESSAGE
    if event.is_prompt_signal:
        return FragmentKind.INPUT_PROMPT
    if event.is_echo:
        return FragmentKind.INPUT_ECHO
    if event.is_stdout or event.is_stderr:
        return FragmentKind.PROGRAM_OUTPUT
    return FragmentKind.SYSTEM_MESSAGE


def to_fragment(event: object) -> OutputFragment:
    text = getattr(event, "text", None)
    if text is None:
        text = "" if event is None else str(event)
    return OutputFragment(kind=classify(event), text=str(text))


def classify_all(events: Iterable[object]) -> list[OutputFragment]:
    return [to_fragment(e) for e in events]


def system_message(text: str) -> OutputFragment:
    return OutputFragment(kind=FragmentKind.SYSTEM_MESSAGE, text=text)
