"""Tests for the command-line interface."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from algorun.cli import load_exercise, main
from algorun.models import SandboxResponse


class EchoSandbox:
    async def submit(self, source, stdin="", expected_output=None, timeout_ms=15000, echo_input=False):
        return SandboxResponse(status_code=3, stdout=stdin)


def _write_exercise(tmp_path, cases, **extra):
    path = tmp_path / "exercise.json"
    path.write_text(json.dumps({"title": "Echo", "source": "print(input())", "test_cases": cases, **extra}))
    return str(path)


def test_load_exercise_aliases(tmp_path):
    path = _write_exercise(
        tmp_path,
        [{"input": "1", "expected_output": "1", "hidden": True}],
        prepend="import sys",
        postpend="print('done')",
    )
    exercise = load_exercise(path)
    assert exercise["title"] == "Echo"
    assert exercise["header"] == "import sys"
    assert exercise["footer"] == "print('done')"
    assert exercise["test_cases"][0].hidden


class TestMain:
    def test_no_command(self):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1

    @patch("algorun.cli.configure_logging")
    @patch("algorun.cli.create_sandbox", return_value=EchoSandbox())
    def test_all_passing(self, mock_sandbox, mock_logging, tmp_path, capsys):
        path = _write_exercise(tmp_path, [{"input": "a", "expected_output": "a"}, {"input": "b", "expected_output": "b"}])
        with pytest.raises(SystemExit) as exc:
            main(["test", path])
        assert exc.value.code == 0
        captured = capsys.readouterr()
        assert "2/2 passed (score 100%)" in captured.out
        assert "Running test 2/2..." in captured.err
        assert "Progress: 1 attempt(s), best score 100%" in captured.err

    @patch("algorun.cli.configure_logging")
    @patch("algorun.cli.create_sandbox", return_value=EchoSandbox())
    def test_failure_exit_code_and_json(self, mock_sandbox, mock_logging, tmp_path, capsys):
        path = _write_exercise(tmp_path, [{"input": "a", "expected_output": "a"}, {"input": "b", "expected_output": "c"}])
        with pytest.raises(SystemExit) as exc:
            main(["test", path, "--json"])
        assert exc.value.code == 1
        data = json.loads(capsys.readouterr().out)
        assert data["passed"] == 1
        assert data["total"] == 2
        assert data["results"][1]["actual_output"] == "b"
        assert data["progress"] == {"attempts": 1, "completed": False, "bestScore": 50}

    @patch("algorun.cli.configure_logging")
    @patch("algorun.cli.create_sandbox", return_value=EchoSandbox())
    def test_prior_progress_is_folded(self, mock_sandbox, mock_logging, tmp_path, capsys):
        path = _write_exercise(tmp_path, [{"input": "a", "expected_output": "a"}])
        prior = json.dumps({"attempts": 2, "completed": False, "bestScore": 40})
        with pytest.raises(SystemExit) as exc:
            main(["test", path, "--json", "--progress", prior])
        assert exc.value.code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["progress"] == {"attempts": 3, "completed": True, "bestScore": 100}

    @patch("algorun.cli.configure_logging")
    def test_bad_progress(self, mock_logging, tmp_path, capsys):
        path = _write_exercise(tmp_path, [{"input": "a", "expected_output": "a"}])
        with pytest.raises(SystemExit) as exc:
            main(["test", path, "--progress", "[1, 2]"])
        assert exc.value.code == 1
        assert "--progress must be a JSON object" in capsys.readouterr().err

    def test_bad_config(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("ALGORUN_TEST_TIMEOUT_MS", "soon")
        path = _write_exercise(tmp_path, [{"input": "a", "expected_output": "a"}])
        with pytest.raises(SystemExit) as exc:
            main(["test", path])
        assert exc.value.code == 1
        assert capsys.readouterr().err.startswith("Error: ALGORUN_TEST_TIMEOUT_MS must be int")

    @patch("algorun.cli.configure_logging")
    def test_missing_exercise(self, mock_logging, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["test", str(tmp_path / "missing.json")])
        assert exc.value.code == 1
        assert "could not load exercise" in capsys.readouterr().err
