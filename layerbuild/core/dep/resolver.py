"""依赖集合解析器

职责:
- 按目标平台过滤依赖声明（保持声明顺序）
- 按逻辑名去重，保留首次出现的条目（含 kind 与 optional）
- 逐条探测可用性：可选依赖找不到则跳过，必需依赖找不到抛 MissingDependency
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from layerbuild.core.dep.models import DependencySpec, ResolvedDependency
from layerbuild.core.dep.probe import DependencyProbe
from layerbuild.core.exceptions import MissingDependency
from layerbuild.core.platforms import Platform

logger = logging.getLogger(__name__)


def filter_for_platform(
    specs: Iterable[DependencySpec], platform: Platform,
) -> list[DependencySpec]:
    """保留谓词为真的依赖并按名称去重，不做任何探测"""
    seen: dict[str, DependencySpec] = {}
    for spec in specs:
        if not spec.platform_predicate(platform):
            continue
        first = seen.get(spec.name)
        if first is not None:
            if first.kind != spec.kind:
                logger.debug(
                    "依赖 %s 重复声明，保留首次的 kind=%s（忽略 %s）",
                    spec.name, first.kind.value, spec.kind.value,
                )
            continue
        seen[spec.name] = spec
    return list(seen.values())


class DependencyResolver:
    """依赖集合解析器"""

    def __init__(self, probe: DependencyProbe) -> None:
        self.probe = probe

    def resolve(
        self, specs: Iterable[DependencySpec], platform: Platform,
    ) -> list[ResolvedDependency]:
        """解析目标平台上的具体依赖集合

        异常:
            MissingDependency: 必需依赖无法找到
        """
        resolved: list[ResolvedDependency] = []
        for spec in filter_for_platform(specs, platform):
            try:
                location = self.probe.locate(spec)
            except OSError as e:
                location = None
                reason = f"探测失败: {e}"
            else:
                reason = "" if location else "未找到"

            if location:
                resolved.append(ResolvedDependency(spec=spec, location=location))
                continue
            if spec.optional:
                logger.warning(
                    "可选依赖不可用，已跳过: %s (%s, %s)",
                    spec.name, platform, reason,
                )
                resolved.append(
                    ResolvedDependency(spec=spec, status="skipped", reason=reason),
                )
                continue
            raise MissingDependency(spec.name, platform=str(platform), reason=reason)

        logger.info(
            "依赖解析完成 (%s): %d 条, 跳过 %d 条",
            platform, len(resolved),
            sum(1 for r in resolved if r.status == "skipped"),
        )
        return resolved
