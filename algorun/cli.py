"""CLI interface for algorun."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from algorun.aggregator import aggregate, record_attempt
from algorun.config import Config
from algorun.harness import BatchTestHarness
from algorun.interpreter import get_interpreter
from algorun.log import configure_logging
from algorun.models import FragmentKind, OutputFragment, ProgressRecord, SessionState, TestCase, TestResult
from algorun.sandbox_factory import create_sandbox
from algorun.session import InteractiveSession


def _read(path: str | None) -> str:
    if not path:
        return ""
    with open(path, encoding="utf-8") as f:
        return f.read()


def load_exercise(path: str) -> dict:
    """Load an exercise from a JSON file.

    Accepts ``source`` (or ``starter_code``), ``header`` / ``prepend``,
    ``footer`` / ``postpend`` and a ``test_cases`` list.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    test_cases = [
        TestCase(
            input=tc.get("input", ""),
            expected_output=tc["expected_output"],
            hidden=bool(tc.get("hidden", False)),
            description=tc.get("description", ""),
        )
        for tc in data.get("test_cases", [])
    ]
    return {
        "title": data.get("title", os.path.basename(path)),
        "source": data.get("source", data.get("starter_code", "")),
        "header": data.get("header", data.get("prepend", "")),
        "footer": data.get("footer", data.get("postpend", "")),
        "test_cases": test_cases,
    }


def _log(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


def _print_fragment(fragment: OutputFragment) -> None:
    if fragment.kind is FragmentKind.INPUT_PROMPT:
        print(fragment.text, end="", flush=True)
    elif fragment.kind is FragmentKind.INPUT_ECHO:
        pass  # the terminal already shows what was typed
    elif fragment.kind is FragmentKind.SYSTEM_MESSAGE:
        _log(f"[{fragment.text}]")
    else:
        print(fragment.text, flush=True)


async def _run_interactive(config: Config, header: str, body: str, footer: str) -> SessionState:
    session = InteractiveSession(get_interpreter(config))
    session.on_output(_print_fragment)
    loop = asyncio.get_running_loop()

    state = await session.run(header, body, footer)
    while state is SessionState.WAITING_FOR_INPUT:
        try:
            text = await loop.run_in_executor(None, input)
        except EOFError:
            session.reset()
            _log("[Input closed, program stopped.]")
            return SessionState.ABORTED
        state = await session.supply_input(text)
    return state


def _describe(index: int, result: TestResult) -> str:
    label = f"Test {index}{' (hidden)' if result.hidden else ''}"
    if result.passed:
        return f"{label}: PASS"
    lines = [f"{label}: FAIL"]
    if not result.hidden:
        lines.append(f"  input:    {result.input!r}")
        lines.append(f"  expected: {result.expected_output!r}")
        if result.actual_output is not None:
            lines.append(f"  actual:   {result.actual_output!r}")
    if result.error:
        lines.append(f"  error:    {result.error}")
    return "\n".join(lines)


async def _run_tests(config: Config, exercise: dict) -> tuple:
    harness = BatchTestHarness(
        create_sandbox(config),
        timeout_ms=config.test_timeout_ms,
        echo_input=config.echo_input,
    )

    seen: list[TestResult] = []

    def on_progress(current: int, total: int) -> None:
        _log(f"Running test {current}/{total}...")

    def on_result(result: TestResult) -> None:
        seen.append(result)
        _log(_describe(len(seen), result))

    run = await harness.run_tests(
        exercise["source"],
        exercise["test_cases"],
        on_progress=on_progress,
        on_result=on_result,
        header=exercise["header"],
        footer=exercise["footer"],
    )
    return run, aggregate(run.results)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="algorun",
        description="algorun: run and grade Python exercises",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default: ALGORUN_LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run a script interactively")
    run_parser.add_argument("script", help="Path to the learner's Python file")
    run_parser.add_argument("--header", type=str, default=None, help="File prepended to the script")
    run_parser.add_argument("--footer", type=str, default=None, help="File appended to the script")

    test_parser = subparsers.add_parser("test", help="Grade an exercise against its test cases")
    test_parser.add_argument("exercise", help="Path to exercise JSON file")
    test_parser.add_argument("--source", type=str, default=None, help="Grade this file instead of the exercise's source")
    test_parser.add_argument("--sandbox", choices=["local", "judge0"], default=None, help="Execution backend")
    test_parser.add_argument("--judge0-url", type=str, default=None, help="Judge0 API base URL")
    test_parser.add_argument("--judge0-api-key", type=str, default=None, help="Judge0 API key")
    test_parser.add_argument("--timeout-ms", type=int, default=None, help="Per-test timeout in milliseconds")
    test_parser.add_argument("--echo-input", action="store_true", default=False, help="Echo consumed input in the output")
    test_parser.add_argument("--json", action="store_true", default=False, help="Print results as JSON")
    test_parser.add_argument(
        "--progress",
        type=str,
        default=None,
        help="Prior progress as JSON (attempts, completed, bestScore) to fold this run into",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the web API")
    serve_parser.add_argument("--host", type=str, default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=5001)

    args = parser.parse_args(argv)

    if args.command not in ("run", "test", "serve"):
        parser.print_help()
        sys.exit(1)

    # Build config from env + CLI overrides
    overrides: dict = {"log_level": args.log_level}
    if args.command == "run" and args.log_level is None and not os.environ.get("ALGORUN_LOG_LEVEL"):
        overrides["log_level"] = "WARNING"  # keep the terminal for the program's own output
    if args.command == "test":
        overrides["sandbox_type"] = args.sandbox
        overrides["judge0_url"] = args.judge0_url
        overrides["judge0_api_key"] = args.judge0_api_key
        overrides["test_timeout_ms"] = args.timeout_ms
        if args.echo_input:
            overrides["echo_input"] = True

    try:
        config = Config.from_env(**overrides)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.log_level)

    if args.command == "serve":
        from algorun.web.app import create_app

        create_app(config).run(host=args.host, port=args.port, threaded=True)
        return

    if args.command == "run":
        try:
            body = _read(args.script)
            header = _read(args.header)
            footer = _read(args.footer)
        except OSError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        state = asyncio.run(_run_interactive(config, header, body, footer))
        sys.exit(0 if state is SessionState.COMPLETED else 1)

    try:
        exercise = load_exercise(args.exercise)
        if args.source:
            exercise["source"] = _read(args.source)
    except (OSError, ValueError, KeyError) as e:
        print(f"Error: could not load exercise: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        previous = ProgressRecord.from_dict(json.loads(args.progress)) if args.progress else None
    except (ValueError, TypeError, AttributeError) as e:
        print(f"Error: --progress must be a JSON object: {e}", file=sys.stderr)
        sys.exit(1)

    if not exercise["test_cases"]:
        print(f"Error: '{exercise['title']}' has no test cases", file=sys.stderr)
        sys.exit(1)

    _log(f"Grading: {exercise['title']} ({len(exercise['test_cases'])} tests, {config.sandbox_type} sandbox)")
    run, summary = asyncio.run(_run_tests(config, exercise))
    progress = record_attempt(previous, run)

    if args.json:
        print(json.dumps({
            **run.summary(),
            "progress": progress.to_dict() if progress is not None else None,
            "results": [r.to_dict() for r in run.results],
        }, indent=2))
    else:
        print(f"{run.passed_count}/{run.total} passed (score {run.score}%)")
        if run.stopped_early:
            print(f"Stopped early: {run.results[-1].error}", file=sys.stderr)
        elif summary.first_failure is not None and not summary.first_failure.hidden:
            print(f"First failing input: {summary.first_failure.input!r}", file=sys.stderr)
        if progress is not None:
            _log(f"Progress: {progress.attempts} attempt(s), best score {progress.best_score}%")

    sys.exit(0 if run.completed else 1)
