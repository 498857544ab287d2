"""检查流水线（fail-fast）

按声明顺序在当前线程逐个执行检查阶段（格式检查 → lint → 测试），
任一阶段失败立即终止，其余阶段标记为 skipped 且不会被启动。
不做自动重试：网络、磁盘等瞬时故障原样上报。

状态机:
    流水线: pending → running → passed | failed
    阶段:   pending → running → passed | failed；未执行的阶段为 skipped

支持通过 subscribe() 注册观察者钩子，在每个阶段结束后收到通知
（报告写入、进度输出等），钩子异常只记录日志，不影响流水线。

用法:
    pipeline = CheckPipeline(descriptor.check_phases)
    report = pipeline.run(work_dir, env=build_env.as_env())
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence

from layerbuild.core.exceptions import ExecutionError
from layerbuild.core.models import (
    CheckPhase,
    PhaseResult,
    PhaseStatus,
    PipelineReport,
    PipelineStatus,
)
from layerbuild.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)


class PipelineHook(ABC):
    """流水线观察者钩子"""

    @abstractmethod
    def on_phase(self, result: PhaseResult, report: PipelineReport) -> None:
        """阶段结束（passed / failed）后调用"""


class CheckPipeline:
    """检查流水线执行器"""

    def __init__(
        self,
        phases: Sequence[CheckPhase],
        executor: CommandExecutor | None = None,
        timeout: int | None = None,
    ) -> None:
        self.phases = tuple(phases)
        self.executor = executor or LocalExecutor()
        self.timeout = timeout
        self._hooks: list[PipelineHook] = []

    def subscribe(self, hook: PipelineHook) -> None:
        self._hooks.append(hook)

    def run(
        self, work_dir: str, env: dict[str, str] | None = None,
    ) -> PipelineReport:
        """执行全部检查阶段，返回报告（失败不抛异常）"""
        report = PipelineReport(
            phases=[PhaseResult(name=p.name, command=p.command) for p in self.phases],
        )
        report.status = PipelineStatus.RUNNING

        for phase, result in zip(self.phases, report.phases):
            self._run_phase(phase, result, work_dir, env)
            self._notify(result, report)
            if result.status == PhaseStatus.FAILED:
                for rest in report.phases:
                    if rest.status == PhaseStatus.PENDING:
                        rest.status = PhaseStatus.SKIPPED
                report.status = PipelineStatus.FAILED
                logger.error(
                    "检查阶段失败，流水线终止: %s (rc=%s)",
                    phase.name, result.returncode,
                    extra={"phase": phase.name},
                )
                return report

        report.status = PipelineStatus.PASSED
        logger.info("检查流水线通过: %d 个阶段", len(report.phases))
        return report

    def _run_phase(
        self, phase: CheckPhase, result: PhaseResult,
        work_dir: str, env: dict[str, str] | None,
    ) -> None:
        result.status = PhaseStatus.RUNNING
        logger.info("  [%s] %s", phase.name, phase.command, extra={"phase": phase.name})
        start = time.monotonic()
        try:
            r = self.executor.execute(
                phase.command, cwd=work_dir, env=env, timeout=self.timeout,
            )
        except (ExecutionError, OSError, ValueError) as e:
            result.duration = time.monotonic() - start
            result.status = PhaseStatus.FAILED
            result.returncode = getattr(e, "returncode", 1)
            result.output = str(e)
            return
        result.duration = time.monotonic() - start
        result.returncode = r.returncode
        result.output = r.output
        result.status = PhaseStatus.PASSED if r.success else PhaseStatus.FAILED

    def _notify(self, result: PhaseResult, report: PipelineReport) -> None:
        for hook in self._hooks:
            try:
                hook.on_phase(result, report)
            except (ValueError, RuntimeError, OSError, TypeError):
                logger.exception("流水线钩子执行失败: %s", type(hook).__name__)
