"""核心数据模型

包描述、检查阶段、流水线报告集中定义，
组合器、流水线、构建服务统一从此处导入。
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from layerbuild.core.dep.models import DependencySpec
from layerbuild.core.exceptions import CheckPhaseFailure, ValidationError

# =========================================================================
# 检查阶段
# =========================================================================


@dataclass(frozen=True)
class CheckPhase:
    """检查阶段定义（格式检查、lint、测试）"""

    name: str
    command: str
    halts_pipeline_on_failure: bool = True

    def __post_init__(self) -> None:
        if not self.name or not self.command:
            raise ValidationError(f"检查阶段需要 name 和 command: {self!r}")
        if not self.halts_pipeline_on_failure:
            raise ValidationError(
                f"检查阶段 '{self.name}' 不支持失败后继续执行"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckPhase:
        if not isinstance(data, dict):
            raise ValidationError(f"检查阶段条目必须是映射: {data!r}")
        return cls(
            name=str(data.get("name", "")),
            command=str(data.get("command", "")),
            halts_pipeline_on_failure=bool(data.get("halts_pipeline_on_failure", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "command": self.command}


class PhaseStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


@dataclass
class PhaseResult:
    """单个检查阶段的执行结果"""

    name: str
    command: str
    status: PhaseStatus = PhaseStatus.PENDING
    returncode: int | None = None
    output: str = ""
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "command": self.command,
            "status": self.status.value,
            "returncode": self.returncode,
            "duration": round(self.duration, 3),
            "output": self.output,
        }


@dataclass
class PipelineReport:
    """检查流水线报告"""

    status: PipelineStatus = PipelineStatus.PENDING
    phases: list[PhaseResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == PipelineStatus.PASSED

    @property
    def failed_phase(self) -> PhaseResult | None:
        for p in self.phases:
            if p.status == PhaseStatus.FAILED:
                return p
        return None

    @property
    def executed(self) -> int:
        """实际启动过的阶段数"""
        return sum(
            1 for p in self.phases
            if p.status in (PhaseStatus.PASSED, PhaseStatus.FAILED)
        )

    def raise_for_status(self) -> None:
        failed = self.failed_phase
        if failed is not None:
            raise CheckPhaseFailure(
                failed.name, failed.returncode or 1, failed.output,
            )

    def to_dict(self) -> dict[str, Any]:
        failed = self.failed_phase
        return {
            "status": self.status.value,
            "failed_phase": failed.name if failed else None,
            "phases": [p.to_dict() for p in self.phases],
        }


# =========================================================================
# 包描述
# =========================================================================

# 组合结果中映射到 PackageDescriptor 显式字段的键，其余进入 attrs
DESCRIPTOR_FIELDS = (
    "name", "version", "source_ref", "source_hash",
    "dependency_specs", "check_phases", "optional_flags",
    "build_command", "artifact", "toolchain", "meta",
)


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class PackageDescriptor:
    """组合完成的包描述，交给检查流水线后只读"""

    name: str
    version: str
    source_ref: str
    source_hash: str
    dependency_specs: tuple[DependencySpec, ...] = ()
    check_phases: tuple[CheckPhase, ...] = ()
    optional_flags: Mapping[str, bool] = field(default_factory=dict)
    build_command: str = ""
    artifact: str = ""
    toolchain: Mapping[str, str] = field(default_factory=dict)
    meta: Mapping[str, str] = field(default_factory=dict)
    attrs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        errors = []
        if not self.name:
            errors.append("name 为必填")
        if not self.version:
            errors.append("version 为必填")
        if not self.source_ref:
            errors.append("source_ref 为必填")
        if not self.source_hash:
            errors.append("source_hash 不能为空")
        if errors:
            raise ValidationError(f"包描述无效: {self.name or '?'}", details=errors)
        object.__setattr__(self, "dependency_specs", tuple(self.dependency_specs))
        object.__setattr__(self, "check_phases", tuple(self.check_phases))
        for key in ("optional_flags", "toolchain", "meta", "attrs"):
            object.__setattr__(self, key, _freeze(getattr(self, key)))

    @classmethod
    def from_fields(cls, values: Mapping[str, Any]) -> PackageDescriptor:
        """从组合器产出的字段映射构造描述"""
        deps = tuple(
            d if isinstance(d, DependencySpec) else DependencySpec.from_dict(d)
            for d in values.get("dependency_specs") or ()
        )
        checks = tuple(
            c if isinstance(c, CheckPhase) else CheckPhase.from_dict(c)
            for c in values.get("check_phases") or ()
        )
        flags = {k: bool(v) for k, v in (values.get("optional_flags") or {}).items()}
        return cls(
            name=str(values.get("name", "")),
            version=str(values.get("version", "")),
            source_ref=str(values.get("source_ref", "")),
            source_hash=str(values.get("source_hash", "")),
            dependency_specs=deps,
            check_phases=checks,
            optional_flags=flags,
            build_command=str(values.get("build_command", "")),
            artifact=str(values.get("artifact", "")),
            toolchain={k: str(v) for k, v in (values.get("toolchain") or {}).items()},
            meta=dict(values.get("meta") or {}),
            attrs={k: v for k, v in values.items() if k not in DESCRIPTOR_FIELDS},
        )

    def flag(self, name: str, default: bool = False) -> bool:
        return bool(self.optional_flags.get(name, default))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "source_ref": self.source_ref,
            "source_hash": self.source_hash,
            "dependency_specs": [d.to_dict() for d in self.dependency_specs],
            "check_phases": [c.to_dict() for c in self.check_phases],
            "optional_flags": dict(self.optional_flags),
            "build_command": self.build_command,
            "artifact": self.artifact,
            "toolchain": dict(self.toolchain),
            "meta": dict(self.meta),
            "attrs": dict(self.attrs),
        }

    def to_json(self) -> str:
        """规范化 JSON：相同输入组合出的描述逐字节一致"""
        return json.dumps(
            self.to_dict(), sort_keys=True, ensure_ascii=False,
            separators=(",", ":"), default=str,
        )
