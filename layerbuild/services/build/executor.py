"""构建执行器

职责:
- 把已校验源码复制为可写的构建目录
- 执行构建命令
- 收集产物到输出目录（检查失败时产物同样保留，便于排查）
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from layerbuild.core.exceptions import ExecutionError
from layerbuild.core.models import PackageDescriptor
from layerbuild.core.source.verifier import VerifiedSource
from layerbuild.services.env_service import BuildEnvironment
from layerbuild.utils.shell import CommandExecutor, LocalExecutor, run_cmd

logger = logging.getLogger(__name__)


@dataclass
class BuildStepResult:
    """构建命令执行结果"""

    source_dir: Path
    duration: float = 0.0
    output: str = ""


class BuildExecutor:
    """构建执行器"""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        timeout: int | None = None,
    ) -> None:
        self.executor = executor or LocalExecutor()
        self.timeout = timeout

    def prepare(self, source: VerifiedSource, work_dir: Path) -> Path:
        """复制已校验源码到工作目录，返回构建根目录"""
        src_dir = source.materialize(work_dir / "source")
        logger.info("构建目录就绪: %s", src_dir)
        return src_dir

    def run(
        self,
        descriptor: PackageDescriptor,
        source_dir: Path,
        env: BuildEnvironment,
    ) -> BuildStepResult:
        """执行构建命令；未定义 build_command 时视为无需构建

        异常:
            ExecutionError: 构建命令非零退出或超时
        """
        result = BuildStepResult(source_dir=source_dir)
        if not descriptor.build_command:
            logger.info("包 %s 未定义构建命令，跳过构建", descriptor.name)
            return result
        start = time.monotonic()
        r = run_cmd(
            descriptor.build_command,
            executor=self.executor,
            cwd=str(source_dir),
            env=env.as_env(),
            timeout=self.timeout,
            label="build",
        )
        result.duration = time.monotonic() - start
        result.output = r.output
        logger.info(
            "构建完成: %s@%s (%.1fs)",
            descriptor.name, descriptor.version, result.duration,
        )
        return result

    @staticmethod
    def collect(
        descriptor: PackageDescriptor, source_dir: Path, out_dir: Path,
    ) -> Path | None:
        """复制产物到输出目录；未声明 artifact 时返回 None

        异常:
            ExecutionError: 声明的产物在构建后不存在
        """
        if not descriptor.artifact:
            return None
        produced = source_dir / descriptor.artifact
        if not produced.exists():
            raise ExecutionError(f"构建产物不存在: {descriptor.artifact}")
        out_dir.mkdir(parents=True, exist_ok=True)
        dest = out_dir / produced.name
        if dest.exists():
            if dest.is_dir():
                shutil.rmtree(dest)
            else:
                dest.unlink()
        if produced.is_dir():
            shutil.copytree(produced, dest, symlinks=True)
        else:
            shutil.copy2(produced, dest)
        logger.info("产物已输出: %s", dest)
        return dest
