"""Summaries of batch results and per-exercise progress bookkeeping."""

from __future__ import annotations

from algorun.models import Aggregate, BatchRun, ProgressRecord, TestResult


def aggregate(results: list[TestResult]) -> Aggregate:
    first_failure = next((r for r in results if not r.passed), None)
    return Aggregate(
        all_passed=bool(results) and first_failure is None,
        passed_count=sum(1 for r in results if r.passed),
        first_failure=first_failure,
    )


def score(passed: int, total: int) -> int:
    """Percentage of passed cases, rounded to the nearest integer."""
    if total <= 0:
        return 0
    return round(passed / total * 100)


def record_attempt(previous: ProgressRecord | None, run: BatchRun) -> ProgressRecord | None:
    """Fold a finished batch run into the learner's stored progress.

    Returns None for cancelled runs, which leave progress untouched.
    """
    if run.cancelled:
        return None
    previous = previous or ProgressRecord()
    return ProgressRecord(
        attempts=previous.attempts + 1,
        completed=previous.completed or run.completed,
        best_score=max(previous.best_score, score(run.passed_count, run.total)),
    )
