"""外部命令执行 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行（git clone / sparse-checkout / ls-remote），
测试时注入 fake 实现即可，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

from upsource.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)

# 与 shell 惯例一致的退出码
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议

    实现此协议即可替换底层执行方式；测试时注入记录调用的 fake。
    """

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """执行命令并返回结果，非零退出码不抛异常"""
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）

    超时与可执行文件缺失都折算为退出码，调用方只需检查 returncode。
    """

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        try:
            r = subprocess.run(
                cmd, capture_output=True, text=True, encoding="utf-8", errors="replace",
                cwd=cwd, env=env, check=False, timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(EXIT_TIMEOUT, "", f"超时（{timeout}秒）: {' '.join(cmd)}")
        except FileNotFoundError as e:
            return CommandResult(EXIT_NOT_FOUND, "", f"命令不存在: {e}")
        return CommandResult(returncode=r.returncode, stdout=r.stdout, stderr=r.stderr)


def run_git(
    executor: CommandExecutor,
    args: list[str],
    *,
    cwd: str | None = None,
    timeout: int | None = None,
) -> CommandResult:
    """执行 git 子命令，失败抛 ExecutionError（附带 stderr 摘要）"""
    cmd = ["git", *args]
    logger.debug("  git: %s", " ".join(args))
    r = executor.execute(cmd, cwd=cwd, timeout=timeout)
    if not r.success:
        details = r.stderr.strip()[:500]
        suffix = f": {details}" if details else ""
        raise ExecutionError(f"git {' '.join(args)} 失败 (rc={r.returncode}){suffix}")
    return r
