"""Exception types raised at algorun's internal seams."""

from __future__ import annotations


class AlgorunError(Exception):
    """Base class for algorun errors."""


class InterpreterNotReady(AlgorunError):
    """The embedded interpreter could not be initialised."""


class SandboxUnavailable(AlgorunError):
    """The sandboxed execution service could not be reached at all."""


class SessionStateError(AlgorunError):
    """An operation was requested that the session's current state forbids."""
