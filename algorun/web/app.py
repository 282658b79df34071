"""Flask web API for interactive sessions and batch grading."""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import queue
import threading
import time
import uuid

from flask import Flask, Response, jsonify, request, stream_with_context

from algorun.aggregator import aggregate, record_attempt
from algorun.config import Config
from algorun.errors import SessionStateError
from algorun.harness import BatchTestHarness
from algorun.interpreter import get_interpreter
from algorun.interpreter_base import EmbeddedInterpreter
from algorun.models import BatchRun, ProgressRecord, TestCase, TestResult
from algorun.sandbox_base import ExecutionSandbox
from algorun.sandbox_factory import create_sandbox
from algorun.session import InteractiveSession

logger = logging.getLogger(__name__)

STREAM_TIMEOUT = 300  # seconds without an event before the stream gives up


class _LoopThread:
    """An asyncio event loop running in a daemon thread.

    Sessions and harnesses live on this loop; request handlers hand work to
    it and block on the result.
    """

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, name="algorun-loop", daemon=True)
        self._thread.start()

    def submit(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call(self, coro, timeout: float | None = None):
        future = self.submit(coro)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def call_soon(self, callback, *args) -> None:
        self.loop.call_soon_threadsafe(callback, *args)


class _Runtime:
    def __init__(
        self,
        config: Config,
        interpreter: EmbeddedInterpreter,
        sandbox: ExecutionSandbox,
    ) -> None:
        self.config = config
        self.interpreter = interpreter
        self.sandbox = sandbox
        self.worker = _LoopThread()
        self.lock = threading.Lock()
        self.clock = time.monotonic
        self.sessions: dict[str, InteractiveSession] = {}
        self.touched: dict[str, float] = {}
        self.harnesses: dict[str, BatchTestHarness] = {}
        self.runs: dict[str, BatchRun] = {}
        # loading plus one retry, then one replay
        self.call_timeout = config.interactive_timeout * 3 + 5

    def add_session(self, session: InteractiveSession) -> None:
        self.sweep()
        with self.lock:
            self.sessions[session.session_id] = session
            self.touched[session.session_id] = self.clock()

    def get_session(self, session_id: str) -> InteractiveSession | None:
        with self.lock:
            session = self.sessions.get(session_id)
            if session is not None:
                self.touched[session_id] = self.clock()
            return session

    def remove_session(self, session_id: str) -> InteractiveSession | None:
        with self.lock:
            self.touched.pop(session_id, None)
            return self.sessions.pop(session_id, None)

    def sweep(self) -> list[str]:
        """Drop sessions idle for longer than ``session_idle_timeout``."""
        cutoff = self.clock() - self.config.session_idle_timeout
        with self.lock:
            expired = [sid for sid, seen in self.touched.items() if seen < cutoff]
            evicted = [self.sessions.pop(sid) for sid in expired if sid in self.sessions]
            for sid in expired:
                del self.touched[sid]
        for session in evicted:
            self.worker.call_soon(session.reset)
        if expired:
            logger.info("Evicted %d idle session(s)", len(expired))
        return expired

    def call(self, session: InteractiveSession, coro):
        """Run *coro* on the loop for *session*; a call that overruns resets it."""
        try:
            return self.worker.call(coro, timeout=self.call_timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Session %s: no response within %.0f s, resetting", session.session_id, self.call_timeout)
            self.worker.call_soon(session.reset)
            raise

    def release_harness(self, client_id: str, harness: BatchTestHarness) -> None:
        with self.lock:
            if self.harnesses.get(client_id) is harness and harness.active_run is None:
                del self.harnesses[client_id]

    def harness_for(self, client_id: str) -> BatchTestHarness:
        with self.lock:
            harness = self.harnesses.get(client_id)
            if harness is None:
                harness = BatchTestHarness(
                    self.sandbox,
                    timeout_ms=self.config.test_timeout_ms,
                    echo_input=self.config.echo_input,
                )
                self.harnesses[client_id] = harness
            return harness


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_test_cases(raw: list) -> list[TestCase]:
    return [
        TestCase(
            input=str(tc.get("input", "")),
            expected_output=str(tc["expected_output"]),
            hidden=bool(tc.get("hidden", False)),
            description=tc.get("description", ""),
        )
        for tc in raw
    ]


def _public_result(index: int, result: TestResult) -> dict:
    """Result as shown to the learner; hidden cases reveal only pass/fail."""
    if result.hidden:
        return {"index": index, "passed": result.passed, "hidden": True}
    return {"index": index, **result.to_dict()}


async def _start_session(session: InteractiveSession, header: str, body: str, footer: str) -> dict:
    await session.run(header, body, footer)
    return session.snapshot()


async def _send_input(session: InteractiveSession, text: str) -> dict:
    await session.supply_input(text)
    return session.snapshot()


async def _reset_session(session: InteractiveSession) -> dict:
    session.reset()
    return session.snapshot()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    config: Config | None = None,
    interpreter: EmbeddedInterpreter | None = None,
    sandbox: ExecutionSandbox | None = None,
) -> Flask:
    config = config or Config.from_env()
    runtime = _Runtime(
        config,
        interpreter or get_interpreter(config),
        sandbox or create_sandbox(config),
    )

    app = Flask(__name__)
    app.extensions["algorun"] = runtime

    def _session_or_404(session_id: str) -> InteractiveSession | None:
        return runtime.get_session(session_id)

    @app.errorhandler(concurrent.futures.TimeoutError)
    def interpreter_timeout(e):
        return jsonify({"error": "The interpreter did not respond in time; the session was reset"}), 504

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "ok",
            "interpreter_ready": runtime.interpreter.is_ready(),
            "sandbox": config.sandbox_type,
            "sessions": len(runtime.sessions),
            "active_runs": len(runtime.runs),
        })

    # -----------------------------------------------------------------------
    # Interactive sessions
    # -----------------------------------------------------------------------

    @app.route("/api/sessions", methods=["POST"])
    def create_session():
        data = request.get_json(silent=True) or {}
        body = data.get("source", data.get("body", ""))
        if not isinstance(body, str) or not body.strip():
            return jsonify({"error": "No code provided"}), 400

        session = InteractiveSession(runtime.interpreter)
        runtime.add_session(session)
        snapshot = runtime.call(
            session, _start_session(session, data.get("header", ""), body, data.get("footer", ""))
        )
        return jsonify(snapshot), 201

    @app.route("/api/sessions/<session_id>")
    def get_session(session_id: str):
        session = _session_or_404(session_id)
        if session is None:
            return jsonify({"error": "Session not found"}), 404
        return jsonify(session.snapshot())

    @app.route("/api/sessions/<session_id>/input", methods=["POST"])
    def session_input(session_id: str):
        session = _session_or_404(session_id)
        if session is None:
            return jsonify({"error": "Session not found"}), 404
        data = request.get_json(silent=True) or {}
        text = data.get("input")
        if not isinstance(text, str):
            return jsonify({"error": "No input provided"}), 400
        try:
            snapshot = runtime.call(session, _send_input(session, text))
        except SessionStateError as e:
            return jsonify({"error": str(e)}), 409
        return jsonify(snapshot)

    @app.route("/api/sessions/<session_id>/reset", methods=["POST"])
    def reset_session(session_id: str):
        session = _session_or_404(session_id)
        if session is None:
            return jsonify({"error": "Session not found"}), 404
        return jsonify(runtime.call(session, _reset_session(session)))

    @app.route("/api/sessions/<session_id>", methods=["DELETE"])
    def delete_session(session_id: str):
        session = runtime.remove_session(session_id)
        if session is None:
            return jsonify({"error": "Session not found"}), 404
        runtime.call(session, _reset_session(session))
        return jsonify({"deleted": session_id})

    # -----------------------------------------------------------------------
    # Batch grading
    # -----------------------------------------------------------------------

    @app.route("/api/tests/run", methods=["POST"])
    def run_tests():
        data = request.get_json(silent=True) or {}
        source = data.get("source", "")
        if not isinstance(source, str) or not source.strip():
            return jsonify({"error": "No code provided"}), 400
        try:
            test_cases = _parse_test_cases(data.get("test_cases") or [])
        except (KeyError, TypeError, AttributeError):
            return jsonify({"error": "Each test case needs an expected_output"}), 400
        if not test_cases:
            return jsonify({"error": "No test cases provided"}), 400
        timeout_ms = data.get("timeout_ms")
        if timeout_ms is not None and (not isinstance(timeout_ms, int) or timeout_ms <= 0):
            return jsonify({"error": "timeout_ms must be a positive integer"}), 400
        prior = data.get("progress")
        try:
            if prior is not None and not isinstance(prior, dict):
                raise TypeError(prior)
            previous = ProgressRecord.from_dict(prior)
        except (TypeError, ValueError):
            return jsonify({"error": "progress must be an object with attempts, completed and bestScore"}), 400

        client_id = str(data.get("client_id", "default"))
        harness = runtime.harness_for(client_id)
        run_id = uuid.uuid4().hex
        run = BatchRun(total=len(test_cases))
        with runtime.lock:
            runtime.runs[run_id] = run

        event_queue: queue.Queue = queue.Queue()
        event_queue.put({"type": "started", "run_id": run_id, "total": run.total})

        def on_progress(current: int, total: int) -> None:
            event_queue.put({"type": "progress", "current": current, "total": total})

        def on_result(result: TestResult) -> None:
            event_queue.put({"type": "result", "result": _public_result(len(run.results) - 1, result)})

        def finished(future) -> None:
            with runtime.lock:
                runtime.runs.pop(run_id, None)
            runtime.release_harness(client_id, harness)
            try:
                finished_run = future.result()
            except Exception as e:
                logger.exception("Batch run %s crashed", run_id)
                event_queue.put({"type": "error", "message": f"{type(e).__name__}: {e}"})
                return
            summary = aggregate(finished_run.results)
            first_failure = None
            if summary.first_failure is not None:
                first_failure = finished_run.results.index(summary.first_failure)
            # None when the run was cancelled: stored progress stays as it was
            progress = record_attempt(previous, finished_run)
            event_queue.put({
                "type": "done",
                "run_id": run_id,
                **finished_run.summary(),
                "first_failure": first_failure,
                "progress": progress.to_dict() if progress is not None else None,
            })

        future = runtime.worker.submit(
            harness.run_tests(
                source,
                test_cases,
                on_progress=on_progress,
                on_result=on_result,
                header=data.get("header", ""),
                footer=data.get("footer", ""),
                timeout_ms=timeout_ms,
                run=run,
            )
        )
        future.add_done_callback(finished)

        def generate():
            while True:
                try:
                    msg = event_queue.get(timeout=STREAM_TIMEOUT)
                except queue.Empty:
                    yield f"data: {json.dumps({'type': 'error', 'message': 'Test run timed out'})}\n\n"
                    break
                yield f"data: {json.dumps(msg)}\n\n"
                if msg["type"] in ("done", "error"):
                    break

        return Response(
            stream_with_context(generate()),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.route("/api/tests/<run_id>/cancel", methods=["POST"])
    def cancel_tests(run_id: str):
        with runtime.lock:
            run = runtime.runs.get(run_id)
        if run is None:
            return jsonify({"error": "Run not found"}), 404
        runtime.worker.call_soon(run.token.cancel)
        return jsonify({"run_id": run_id, "cancelled": True})

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
