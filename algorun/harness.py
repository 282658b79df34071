"""Batch test harness: grades a submission against a list of test cases."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from algorun.errors import SandboxUnavailable
from algorun.models import (
    BatchRun,
    ErrorKind,
    SandboxResponse,
    SandboxStatus,
    TestCase,
    TestResult,
)
from algorun.sandbox_base import ExecutionSandbox, interpret_status
from algorun.scaffold import clean_error, wrap

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
ResultCallback = Callable[[TestResult], None]


class BatchTestHarness:
    def __init__(
        self,
        sandbox: ExecutionSandbox,
        timeout_ms: int = 15000,
        echo_input: bool = False,
    ) -> None:
        self.sandbox = sandbox
        self.timeout_ms = timeout_ms
        self.echo_input = echo_input
        self._active: BatchRun | None = None

    @property
    def active_run(self) -> BatchRun | None:
        return self._active

    def cancel(self) -> None:
        """Stop the active run; the case in flight is discarded."""
        if self._active is not None and not self._active.token.cancelled:
            logger.info("Cancelling batch run at case %d/%d", self._active.current, self._active.total)
            self._active.token.cancel()

    async def run_tests(
        self,
        source: str,
        test_cases: list[TestCase],
        on_progress: ProgressCallback | None = None,
        on_result: ResultCallback | None = None,
        header: str = "",
        footer: str = "",
        timeout_ms: int | None = None,
        run: BatchRun | None = None,
    ) -> BatchRun:
        """Run every case in order and return the finished batch.

        Pass ``run`` to hold on to the ``BatchRun`` (and its token) before
        execution starts; a new run always replaces the previous one.
        """
        self.cancel()
        run = run or BatchRun(total=len(test_cases))
        run.total = len(test_cases)
        self._active = run

        wrapped = wrap(header, source, footer)
        timeout_ms = timeout_ms or self.timeout_ms
        logger.info("Starting batch run: %d case(s), timeout %d ms", run.total, timeout_ms)

        try:
            for i, case in enumerate(test_cases):
                if run.token.cancelled:
                    run.cancelled = True
                    break

                run.current = i + 1
                if on_progress is not None:
                    on_progress(i + 1, run.total)

                start = time.monotonic()
                try:
                    response = await self._submit(run, wrapped.source, case, timeout_ms)
                except asyncio.TimeoutError:
                    result = TestResult(
                        input=case.input,
                        expected_output=case.expected_output,
                        passed=False,
                        error_kind=ErrorKind.SANDBOX_TIMEOUT,
                        error=f"Test execution timeout ({timeout_ms / 1000:g} seconds)",
                        execution_time_ms=(time.monotonic() - start) * 1000,
                        hidden=case.hidden,
                    )
                except SandboxUnavailable as e:
                    logger.error("Sandbox unavailable, stopping batch at case %d: %s", i + 1, e)
                    result = TestResult(
                        input=case.input,
                        expected_output=case.expected_output,
                        passed=False,
                        error_kind=ErrorKind.SANDBOX_INFRASTRUCTURE_ERROR,
                        error=str(e),
                        hidden=case.hidden,
                    )
                    self._emit(run, result, on_result)
                    run.stopped_early = True
                    break
                except Exception as e:
                    logger.exception("Unexpected failure on case %d", i + 1)
                    result = TestResult(
                        input=case.input,
                        expected_output=case.expected_output,
                        passed=False,
                        error_kind=ErrorKind.SANDBOX_INFRASTRUCTURE_ERROR,
                        error=str(e) or type(e).__name__,
                        hidden=case.hidden,
                    )
                else:
                    if response is None:
                        run.cancelled = True
                        break
                    result = self._evaluate(case, response, wrapped.body_line_offset, timeout_ms)

                self._emit(run, result, on_result)
        finally:
            if run.token.cancelled:
                run.cancelled = True
            if self._active is run:
                self._active = None

        logger.info(
            "Batch run finished: %d/%d passed%s%s",
            run.passed_count,
            run.total,
            " (cancelled)" if run.cancelled else "",
            " (stopped early)" if run.stopped_early else "",
        )
        return run

    async def _submit(
        self, run: BatchRun, source: str, case: TestCase, timeout_ms: int
    ) -> SandboxResponse | None:
        """Race one submission against the timeout and the cancellation token.

        Returns None when the run was cancelled first.
        """
        submission = asyncio.ensure_future(
            asyncio.wait_for(
                self.sandbox.submit(
                    source,
                    stdin=case.input,
                    expected_output=case.expected_output,
                    timeout_ms=timeout_ms,
                    echo_input=self.echo_input,
                ),
                timeout=timeout_ms / 1000,
            )
        )
        cancelled = asyncio.ensure_future(run.token.wait())
        try:
            await asyncio.wait({submission, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (submission, cancelled):
                if not task.done():
                    task.cancel()

        if run.token.cancelled:
            if submission.done() and not submission.cancelled():
                submission.exception()  # retrieved so it is not reported as unhandled
            logger.debug("Discarding in-flight result for case %d", run.current)
            return None
        return submission.result()

    def _evaluate(
        self, case: TestCase, response: SandboxResponse, body_line_offset: int, timeout_ms: int
    ) -> TestResult:
        status = interpret_status(response.status_code)
        result = TestResult(
            input=case.input,
            expected_output=case.expected_output,
            passed=False,
            execution_time_ms=response.time_ms,
            hidden=case.hidden,
        )

        if status == SandboxStatus.SUCCESS:
            result.actual_output = response.stdout
            result.passed = response.stdout.strip() == case.expected_output.strip()
        elif status == SandboxStatus.TIMEOUT:
            result.error_kind = ErrorKind.SANDBOX_TIMEOUT
            result.error = f"Test execution timeout ({timeout_ms / 1000:g} seconds)"
        elif status == SandboxStatus.RUNTIME_ERROR:
            result.actual_output = response.stdout
            result.error_kind = ErrorKind.SANDBOX_RUNTIME_ERROR
            result.error = clean_error(
                response.stderr or response.description,
                body_line_offset + response.prelude_lines,
            )
        else:
            result.error_kind = ErrorKind.SANDBOX_INFRASTRUCTURE_ERROR
            result.error = response.stderr.strip() or response.description or "Sandbox error"
        return result

    def _emit(self, run: BatchRun, result: TestResult, on_result: ResultCallback | None) -> None:
        run.results.append(result)
        logger.debug(
            "Case %d/%d: %s", len(run.results), run.total, "passed" if result.passed else "failed"
        )
        if on_result is not None:
            on_result(result)
