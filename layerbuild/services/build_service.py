"""构建服务 — 单次构建调用的线性编排

步骤顺序（严格串行、单线程）:
1. compose       组合基础描述与叠加层
2. verify_source 拉取并校验源码固定（不匹配则终止，不进入后续任何步骤）
3. resolve_deps  解析目标平台依赖（必需依赖缺失则终止）
4. build         在隔离环境中执行构建命令并输出产物
5. check         按需执行检查流水线（失败保留产物）
6. report        写出结构化报告；环境与工作目录在 finally 中清理

退出码:
    0        成功或未启用检查
    1..99    首个失败检查阶段的返回码（超出范围记为 99）
    101      源码哈希不匹配
    102      必需依赖缺失
    103      描述 / 配置错误
    104      构建命令失败、产物缺失或构建目录 / 输出目录 I/O 错误
    105      源码拉取失败
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from layerbuild.core.config import Config
from layerbuild.core.dep import DependencyProbe, DependencyResolver, ResolvedDependency, default_probe
from layerbuild.core.exceptions import (
    ConfigError,
    DescriptorError,
    ExecutionError,
    FetchError,
    LayerBuildError,
    MissingDependency,
    SourcePinMismatch,
    ValidationError,
)
from layerbuild.core.models import PackageDescriptor, PipelineReport
from layerbuild.core.overlay import OverlayAuditEntry
from layerbuild.core.pipeline import CheckPipeline, PipelineHook
from layerbuild.core.platforms import Platform
from layerbuild.core.source import SourceFetcher, SourcePin, SourcePinVerifier, VerifiedSource
from layerbuild.services.build import BuildExecutor
from layerbuild.services.descriptor_service import DescriptorService
from layerbuild.services.env_service import EnvService
from layerbuild.utils.shell import CommandExecutor, LocalExecutor
from layerbuild.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PHASE_MAX = 99
EXIT_PIN_MISMATCH = 101
EXIT_MISSING_DEPENDENCY = 102
EXIT_DESCRIPTOR = 103
EXIT_BUILD_FAILED = 104
EXIT_FETCH_FAILED = 105

REPORT_FILE = "report.json"
CHECK_FLAG = "do_check"


def phase_exit_code(returncode: int | None) -> int:
    """检查阶段返回码映射到 1..99，与解析期退出码区分"""
    if returncode is None or returncode < 1 or returncode > EXIT_PHASE_MAX:
        return EXIT_PHASE_MAX
    return returncode


def resolution_exit_code(error: LayerBuildError) -> int:
    if isinstance(error, SourcePinMismatch):
        return EXIT_PIN_MISMATCH
    if isinstance(error, MissingDependency):
        return EXIT_MISSING_DEPENDENCY
    if isinstance(error, FetchError):
        return EXIT_FETCH_FAILED
    if isinstance(error, ExecutionError):
        return EXIT_BUILD_FAILED
    return EXIT_DESCRIPTOR


@dataclass
class BuildRequest:
    """构建调用参数"""

    package: str
    platform: Platform | None = None      # None 则使用配置或宿主平台
    enable_checks: bool | None = None     # None 则取描述中的 do_check 标志
    output_path: str = ""                 # 覆盖产物输出目录
    overlays: list[str] = field(default_factory=list)


@dataclass
class BuildOutcome:
    """构建调用结果"""

    request: BuildRequest
    platform: Platform
    descriptor: PackageDescriptor | None = None
    audit: tuple[OverlayAuditEntry, ...] = ()
    source_digest: str = ""
    dependencies: list[ResolvedDependency] = field(default_factory=list)
    artifact_path: str = ""
    output_dir: str = ""
    checks_enabled: bool = False
    pipeline: PipelineReport | None = None
    error: LayerBuildError | None = None
    exit_code: int = EXIT_OK
    steps: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == EXIT_OK

    def to_report(self) -> dict[str, Any]:
        d = self.descriptor
        if self.pipeline is not None:
            checks: dict[str, Any] = self.pipeline.to_dict()
        else:
            checks = {"status": "disabled" if not self.checks_enabled else "not-run"}
        return {
            "package": d.name if d else self.request.package,
            "version": d.version if d else "",
            "platform": self.platform.system,
            "source": {
                "ref": d.source_ref if d else "",
                "digest": self.source_digest,
            },
            "dependencies": [r.to_dict() for r in self.dependencies],
            "artifact": self.artifact_path,
            "checks": checks,
            "exit_code": self.exit_code,
            "error": {"code": self.error.code, "message": str(self.error)}
            if self.error else None,
            "steps": self.steps,
        }


class BuildService:
    """构建编排服务"""

    def __init__(
        self,
        descriptors: DescriptorService | None = None,
        *,
        config: Config | None = None,
        executor: CommandExecutor | None = None,
        probe: DependencyProbe | None = None,
        fetcher: SourceFetcher | None = None,
        env_service: EnvService | None = None,
        hooks: list[PipelineHook] | None = None,
    ) -> None:
        if config is None:
            from layerbuild.core.config import get_config
            config = get_config()
        self.config = config
        self.descriptors = descriptors or DescriptorService(config.registry_file)
        self.executor = executor or LocalExecutor()
        self.resolver = DependencyResolver(probe or default_probe(self.executor))
        self.verifier = SourcePinVerifier(
            store_root=Path(config.cache_dir) / "store",
            fetcher=fetcher, executor=self.executor,
        )
        self.env_service = env_service or EnvService(
            cache_dir=config.cache_dir, home_env=config.home_env,
            keep=config.keep_work_dir,
        )
        self.build_executor = BuildExecutor(self.executor, timeout=config.phase_timeout)
        self.hooks = list(hooks or [])

    def target_platform(self, request: BuildRequest) -> Platform:
        if request.platform is not None:
            return request.platform
        if self.config.default_platform:
            return Platform.parse(self.config.default_platform)
        return Platform.host()

    def output_dir(self, request: BuildRequest, descriptor: PackageDescriptor, platform: Platform) -> Path:
        if request.output_path:
            return Path(request.output_path)
        return Path(self.config.output_root) / (
            f"{descriptor.name}-{descriptor.version}-{platform.system}"
        )

    # ---- 编排 ----

    def build(self, request: BuildRequest) -> BuildOutcome:
        """执行一次构建调用；所有失败都以 BuildOutcome 返回，不向外抛业务异常"""
        try:
            platform = self.target_platform(request)
        except ValidationError as e:
            outcome = BuildOutcome(request=request, platform=Platform("unknown", "unknown"))
            return self._fail(outcome, e, "compose")
        outcome = BuildOutcome(request=request, platform=platform)

        try:
            descriptor = self._compose(request, outcome)
            pin = SourcePin(descriptor.source_ref, descriptor.source_hash, descriptor.version)
        except (DescriptorError, ValidationError, ConfigError) as e:
            return self._fail(outcome, e, "compose")

        try:
            with self.verifier.acquire(pin) as source:
                outcome.source_digest = source.digest
                outcome.steps.append({"step": "verify_source", "status": "done", "digest": source.digest})
                logger.info("[Step 2] 源码校验通过: %s", source.digest)

                try:
                    outcome.dependencies = self.resolver.resolve(descriptor.dependency_specs, platform)
                except MissingDependency as e:
                    return self._fail(outcome, e, "resolve_deps")
                outcome.steps.append({
                    "step": "resolve_deps", "status": "done",
                    "resolved": [r.name for r in outcome.dependencies if r.status == "resolved"],
                    "skipped": [r.name for r in outcome.dependencies if r.status == "skipped"],
                })
                logger.info("[Step 3] 依赖解析完成: %d 条", len(outcome.dependencies))

                self._build_and_check(request, outcome, descriptor, source)
        except (SourcePinMismatch, FetchError, ValidationError) as e:
            return self._fail(outcome, e, "verify_source")

        return outcome

    def _compose(self, request: BuildRequest, outcome: BuildOutcome) -> PackageDescriptor:
        composition = self.descriptors.compose(request.package, request.overlays)
        descriptor = composition.descriptor()
        outcome.descriptor = descriptor
        outcome.audit = composition.audit
        outcome.steps.append({
            "step": "compose", "status": "done",
            "overlays": sorted({e.overlay for e in composition.audit}),
            "writes": len(composition.audit),
        })
        logger.info("[Step 1] 描述组合完成: %s@%s", descriptor.name, descriptor.version)
        return descriptor

    def _build_and_check(
        self, request: BuildRequest, outcome: BuildOutcome,
        descriptor: PackageDescriptor, source: VerifiedSource,
    ) -> None:
        outcome.checks_enabled = (
            request.enable_checks if request.enable_checks is not None
            else descriptor.flag(CHECK_FLAG)
        )
        out_dir = self.output_dir(request, descriptor, outcome.platform)
        work_root = Path(self.config.work_root)
        try:
            work_root.mkdir(parents=True, exist_ok=True)
            work_dir = Path(tempfile.mkdtemp(prefix=f"{descriptor.name}-", dir=str(work_root)))
        except OSError as e:
            self._fail(outcome, ExecutionError(f"无法创建工作目录 {work_root}: {e}"), "build")
            return

        try:
            with self.env_service.scoped(descriptor, outcome.platform) as env:
                try:
                    src_dir = self.build_executor.prepare(source, work_dir)
                    step = self.build_executor.run(descriptor, src_dir, env)
                    artifact = self.build_executor.collect(descriptor, src_dir, out_dir)
                except ExecutionError as e:
                    self._fail(outcome, e, "build")
                    return
                except OSError as e:
                    self._fail(outcome, ExecutionError(f"构建目录或产物处理失败: {e}"), "build")
                    return
                outcome.artifact_path = str(artifact) if artifact else ""
                outcome.output_dir = str(out_dir)
                outcome.steps.append({
                    "step": "build", "status": "done",
                    "duration": round(step.duration, 3), "artifact": outcome.artifact_path,
                })
                logger.info("[Step 4] 构建完成: %s", outcome.artifact_path or "(无产物)")

                if outcome.checks_enabled:
                    self._check(descriptor, src_dir, env.as_env(), outcome)
                else:
                    outcome.steps.append({"step": "check", "status": "skipped"})
        except OSError as e:
            self._fail(outcome, ExecutionError(f"构建环境准备或清理失败: {e}"), "build")
        finally:
            if not self.config.keep_work_dir:
                shutil.rmtree(work_dir, ignore_errors=True)
            if outcome.output_dir:
                self._write_report(outcome, Path(outcome.output_dir))

    def _check(
        self, descriptor: PackageDescriptor, src_dir: Path,
        env: dict[str, str], outcome: BuildOutcome,
    ) -> None:
        pipeline = CheckPipeline(
            descriptor.check_phases, executor=self.executor,
            timeout=self.config.phase_timeout,
        )
        for hook in self.hooks:
            pipeline.subscribe(hook)
        report = pipeline.run(str(src_dir), env=env)
        outcome.pipeline = report
        failed = report.failed_phase
        if failed is not None:
            outcome.exit_code = phase_exit_code(failed.returncode)
        outcome.steps.append({
            "step": "check", "status": report.status.value,
            "failed_phase": failed.name if failed else None,
        })
        logger.info("[Step 5] 检查流水线: %s", report.status.value)

    def _write_report(self, outcome: BuildOutcome, out_dir: Path) -> None:
        path = out_dir / REPORT_FILE
        try:
            atomic_write(path, json.dumps(outcome.to_report(), indent=2, ensure_ascii=False))
        except OSError as e:
            if outcome.exit_code == EXIT_OK:
                self._fail(outcome, ExecutionError(f"报告写出失败 {path}: {e}"), "report")
            else:
                logger.error("报告写出失败 %s: %s", path, e)
            return
        logger.info("[Step 6] 报告已写出: %s", path)

    @staticmethod
    def _fail(outcome: BuildOutcome, error: LayerBuildError, step: str) -> BuildOutcome:
        outcome.error = error
        outcome.exit_code = resolution_exit_code(error)
        outcome.steps.append({"step": step, "status": "failed", "error": error.code})
        logger.error("构建终止于 %s: %s", step, error)
        return outcome
