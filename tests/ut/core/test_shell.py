"""shell.py 命令执行单元测试"""

from __future__ import annotations

import sys

import pytest

from upsource.core.exceptions import ExecutionError
from upsource.utils.shell import EXIT_NOT_FOUND, CommandResult, LocalExecutor, run_git


class RecordingExecutor:
    def __init__(self, result: CommandResult) -> None:
        self.result = result
        self.calls: list[tuple[list[str], str | None]] = []

    def execute(self, cmd, *, cwd=None, env=None, timeout=None) -> CommandResult:
        self.calls.append((cmd, cwd))
        return self.result


class TestLocalExecutor:
    def test_success(self, tmp_path) -> None:
        r = LocalExecutor().execute([sys.executable, "-c", "print('hello')"], cwd=str(tmp_path))
        assert r.success
        assert "hello" in r.stdout

    def test_failure_returns_code(self, tmp_path) -> None:
        r = LocalExecutor().execute([sys.executable, "-c", "import sys; sys.exit(3)"])
        assert r.returncode == 3
        assert not r.success

    def test_undecodable_output_replaced(self) -> None:
        r = LocalExecutor().execute(
            [sys.executable, "-c", "import sys; sys.stdout.buffer.write(b\"refs/tags/v1\\xff\\n\")"],
        )
        assert r.success
        assert r.stdout.startswith("refs/tags/v1")
        assert "\ufffd" in r.stdout

    def test_missing_binary(self) -> None:
        r = LocalExecutor().execute(["definitely-not-a-real-binary-xyz"])
        assert r.returncode == EXIT_NOT_FOUND


class TestRunGit:
    def test_prefixes_git(self) -> None:
        ex = RecordingExecutor(CommandResult(0, "ok", ""))
        r = run_git(ex, ["status"], cwd="/tmp")
        assert r.stdout == "ok"
        assert ex.calls == [(["git", "status"], "/tmp")]

    def test_failure_raises_with_stderr(self) -> None:
        ex = RecordingExecutor(CommandResult(128, "", "fatal: repository not found"))
        with pytest.raises(ExecutionError, match="repository not found"):
            run_git(ex, ["clone", "x"])
