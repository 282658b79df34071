"""Header/footer scaffolding around learner code and error line remapping."""

from __future__ import annotations

import os
import re

from algorun.models import WrappedSource

# Filenames under which the combined source runs: the embedded interpreter
# compiles it as "<exec>", ``python -c`` reports "<string>", Judge0 saves it
# as script.py (main.py on some language images).
SCRIPT_FILENAMES = ("<exec>", "<string>", "script.py", "main.py")

_FRAME_RE = re.compile(r'^\s*File "(?P<file>[^"]+)", line (?P<line>\d+)', re.MULTILINE)
_KIND_RE = re.compile(r"^(?P<kind>[A-Za-z_][\w.]*(?:Error|Exception|Exit|Interrupt|Iteration))(?:: (?P<msg>.*))?$")


def wrap(header: str, body: str, footer: str = "") -> WrappedSource:
    """Combine header + body + footer and report where the body starts.

    ``body_line_offset`` is the number of combined-source lines that precede
    the learner's first line.
    """
    parts = []
    offset = 0
    if header:
        parts.append(header)
        offset = len(header.split("\n"))
    parts.append(body)
    if footer:
        parts.append(footer)
    return WrappedSource(source="\n".join(parts), body_line_offset=offset)


def remap_error_line(reported_line: int, body_line_offset: int) -> int:
    """Translate a combined-source line number into the learner's coordinates."""
    return max(1, int(reported_line) - max(0, int(body_line_offset)))


def _script_frames(traceback_text: str, filenames: tuple[str, ...]) -> list[int]:
    lines = []
    for match in _FRAME_RE.finditer(traceback_text):
        if os.path.basename(match.group("file")) in filenames:
            lines.append(int(match.group("line")))
    return lines


def _kind_line(lines: list[str]) -> str | None:
    for line in reversed(lines):
        stripped = line.strip()
        if _KIND_RE.match(stripped):
            return stripped
    return None


def _fallback_line(lines: list[str]) -> str | None:
    for line in reversed(lines):
        stripped = line.strip()
        if not stripped or stripped.startswith("Traceback"):
            continue
        if 'File "' in stripped or stripped.startswith("^"):
            continue
        return stripped
    return None


def clean_error(
    traceback_text: str,
    body_line_offset: int = 0,
    filenames: tuple[str, ...] = SCRIPT_FILENAMES,
) -> str:
    """Reduce a traceback to one learner-facing line.

    Keeps the final ``Kind: message`` line and prefixes it with the learner
    line of the deepest frame that belongs to the submitted script, e.g.
    ``Line 1: NameError: name 'x' is not defined``.
    """
    if not traceback_text or not traceback_text.strip():
        return "Unknown error"

    lines = traceback_text.strip().splitlines()
    message = _kind_line(lines) or _fallback_line(lines) or traceback_text.strip()

    frames = _script_frames(traceback_text, filenames)
    if frames and not message.startswith("Line "):
        learner_line = remap_error_line(frames[-1], body_line_offset)
        return f"Line {learner_line}: {message}"
    return message
