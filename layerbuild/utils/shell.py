"""子进程执行工具

通过 CommandExecutor 协议抽象子进程调用：构建命令、检查阶段、git 拉取、
pkg-config 探测都经由执行器运行，测试时注入假执行器即可，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from layerbuild.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)

# 超时或无法启动的进程统一使用的返回码（与 shell 的 127 / 126 / 2、timeout 的 124 一致）
RC_NOT_FOUND = 127
RC_NOT_EXECUTABLE = 126
RC_TIMEOUT = 124
RC_BAD_COMMAND = 2


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """合并后的原始输出，用于失败诊断"""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandExecutor(Protocol):
    """命令执行器协议"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """执行命令并返回结果，阻塞直到子进程退出"""
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        try:
            args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        except ValueError as e:
            return CommandResult(
                returncode=RC_BAD_COMMAND, stdout="",
                stderr=f"命令无法解析 ({e}): {cmd}",
            )
        try:
            r = subprocess.run(
                args, capture_output=True, text=True,
                cwd=cwd, env=env, check=False, timeout=timeout,
            )
        except FileNotFoundError as e:
            return CommandResult(returncode=RC_NOT_FOUND, stdout="", stderr=str(e))
        except OSError as e:
            # 权限不足、不是可执行格式、cwd 不可进入等
            return CommandResult(returncode=RC_NOT_EXECUTABLE, stdout="", stderr=str(e))
        except subprocess.TimeoutExpired as e:
            out = e.stdout if isinstance(e.stdout, str) else ""
            return CommandResult(
                returncode=RC_TIMEOUT, stdout=out,
                stderr=f"命令超时 ({timeout}s): {cmd}",
            )
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )


def run_cmd(
    cmd: str | list[str],
    *,
    executor: CommandExecutor | None = None,
    cwd: str = ".",
    env: dict[str, str] | None = None,
    timeout: int | None = None,
    label: str = "cmd",
) -> CommandResult:
    """执行命令，非零退出抛 ExecutionError

    Args:
        cmd: 命令字符串或参数列表
        executor: 执行器，不传则使用 LocalExecutor
        cwd: 工作目录
        env: 完整环境变量（不传则继承当前进程）
        timeout: 超时秒数
        label: 日志与错误信息中的标签
    """
    logger.info("  %s: %s (cwd=%s)", label, cmd, cwd)
    r = (executor or LocalExecutor()).execute(cmd, cwd=cwd, env=env, timeout=timeout)
    if not r.success:
        raise ExecutionError(
            f"{label}失败 (rc={r.returncode}): {r.stderr[:500]}",
            returncode=r.returncode, output=r.output,
        )
    return r
