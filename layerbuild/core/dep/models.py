"""依赖项数据模型

数据类:
- DependencySpec: 描述中声明的一条依赖（定义时创建，之后不可变）
- ResolvedDependency: 针对某个目标平台的解析结果
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from layerbuild.core.exceptions import ValidationError
from layerbuild.core.platforms import Predicate, always, parse_platforms


class DependencyKind(str, Enum):
    """依赖类别"""

    NATIVE_BUILD = "native-build"   # 构建机上运行的工具（pkg-config、cargo）
    RUNTIME = "runtime"             # 链接/运行所需的库（libusb1、systemd）
    CHECK_ONLY = "check-only"       # 仅检查阶段使用（clippy、rustfmt）

    @classmethod
    def parse(cls, value: str) -> DependencyKind:
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"未知依赖类别 '{value}'，可用: {[k.value for k in cls]}"
            ) from None


@dataclass(frozen=True)
class DependencySpec:
    """单条依赖声明"""

    name: str
    kind: DependencyKind = DependencyKind.NATIVE_BUILD
    platform_predicate: Predicate = field(default_factory=always)
    optional: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("依赖 name 为必填")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> DependencySpec:
        """从 YAML 条目构造；纯字符串视为全平台必需的 native-build 依赖"""
        if isinstance(data, str):
            return cls(name=data)
        if not isinstance(data, dict) or "name" not in data:
            raise ValidationError(f"依赖条目缺少 name: {data!r}")
        return cls(
            name=str(data["name"]),
            kind=DependencyKind.parse(data.get("kind", DependencyKind.NATIVE_BUILD.value)),
            platform_predicate=parse_platforms(data.get("platforms")),
            optional=bool(data.get("optional", False)),
        )

    @property
    def predicate_label(self) -> str:
        return self.platform_predicate.label

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "platforms": self.predicate_label,
            "optional": self.optional,
        }


@dataclass(frozen=True)
class ResolvedDependency:
    """依赖解析结果"""

    spec: DependencySpec
    status: str = "resolved"   # resolved | skipped
    location: str = ""         # 探测到的位置（可执行文件路径、pkg-config 模块名）
    reason: str = ""           # skipped 时记录原因

    @property
    def name(self) -> str:
        return self.spec.name

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.spec.to_dict(),
            "status": self.status,
            "location": self.location,
            "reason": self.reason,
        }
