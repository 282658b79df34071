"""Tests for the local subprocess sandbox and status interpretation."""

from __future__ import annotations

import asyncio

from algorun.config import Config
from algorun.models import SandboxStatus
from algorun.sandbox import LocalSandbox
from algorun.sandbox_base import interpret_status, status_message, with_echo_prelude
from algorun.sandbox_factory import create_sandbox
from algorun.sandbox_judge0 import Judge0Sandbox


def _submit(source: str, sandbox: LocalSandbox | None = None, **kwargs):
    return asyncio.run((sandbox or LocalSandbox()).submit(source, **kwargs))


class TestLocalSandbox:
    def test_simple_execution(self):
        response = _submit("print('hello')")
        assert response.status_code == 3
        assert response.stdout.strip() == "hello"
        assert response.time_ms is not None

    def test_stdin(self):
        response = _submit("x = input(); print(f'got {x}')", stdin="hello\n")
        assert response.stdout.strip() == "got hello"

    def test_crash(self):
        response = _submit("x = 1\nraise ValueError('boom')")
        assert response.status_code == 11
        assert 'File "<string>", line 2' in response.stderr
        assert "ValueError: boom" in response.stderr

    def test_syntax_error_is_runtime_error(self):
        response = _submit("def :")
        assert interpret_status(response.status_code) is SandboxStatus.RUNTIME_ERROR
        assert "SyntaxError" in response.stderr

    def test_timeout(self):
        response = _submit("while True:\n    pass", timeout_ms=500)
        assert response.status_code == 5

    def test_echo_input(self):
        response = _submit("x = input()\nprint(x * 2)", stdin="ab\n", echo_input=True)
        assert response.stdout.split() == ["ab", "abab"]
        assert response.prelude_lines == 1

    def test_output_limit(self):
        sandbox = LocalSandbox(max_output_bytes=4096)
        response = _submit("while True:\n    print('spam')", sandbox, timeout_ms=10000)
        assert response.status_code == 8
        assert interpret_status(response.status_code) is SandboxStatus.RUNTIME_ERROR
        assert len(response.stdout) <= 4096
        assert response.stderr.endswith("Output limit exceeded (4096 bytes)")

    def test_missing_python(self):
        response = _submit("print(1)", LocalSandbox(python_executable="/nonexistent/python3"))
        assert response.status_code == 13
        assert interpret_status(response.status_code) is SandboxStatus.INFRA_ERROR


class TestInterpretStatus:
    def test_success(self):
        assert interpret_status(3) is SandboxStatus.SUCCESS
        # output comparison happens in the harness
        assert interpret_status(4) is SandboxStatus.SUCCESS

    def test_timeout(self):
        assert interpret_status(5) is SandboxStatus.TIMEOUT

    def test_runtime_errors(self):
        for code in range(6, 13):
            assert interpret_status(code) is SandboxStatus.RUNTIME_ERROR

    def test_infrastructure(self):
        for code in (0, 1, 2, 13, 14, 99):
            assert interpret_status(code) is SandboxStatus.INFRA_ERROR

    def test_messages(self):
        assert status_message(11) == "Runtime Error (NZEC)"
        assert status_message(42) == "Unknown Status"


def test_with_echo_prelude():
    assert with_echo_prelude("print(1)", False) == ("print(1)", 0)
    source, lines = with_echo_prelude("print(1)", True)
    assert lines == 1
    assert source.split("\n")[1] == "print(1)"


def test_factory_default_is_local():
    assert isinstance(create_sandbox(Config()), LocalSandbox)


def test_factory_passes_output_limit():
    sandbox = create_sandbox(Config(max_output_kb=2))
    assert sandbox._max_output_bytes == 2048


def test_factory_judge0():
    sandbox = create_sandbox(Config(sandbox_type="judge0", judge0_url="http://judge0:2358"))
    assert isinstance(sandbox, Judge0Sandbox)
