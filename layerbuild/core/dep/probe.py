"""依赖可用性探测

探测器只回答“这个依赖在本机能否找到、在哪里”，不做安装。
解析器根据探测结果决定跳过（可选依赖）或报错（必需依赖）。

内置探测器:
- StaticProbe: 固定可用集合（测试、离线场景）
- ExecutableProbe: 在 PATH 中查找可执行文件
- PkgConfigProbe: 通过 pkg-config --exists 查找系统库
- ChainProbe: 依次尝试多个探测器，任一命中即可用
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable, Mapping
from typing import Protocol

from layerbuild.core.dep.models import DependencySpec
from layerbuild.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

# 描述中的逻辑依赖名 → pkg-config 模块名
DEFAULT_PKG_CONFIG_MODULES = {
    "libusb1": "libusb-1.0",
    "libftdi1": "libftdi1",
    "systemd": "libudev",
    "openssl": "openssl",
}


class DependencyProbe(Protocol):
    """依赖探测器协议"""

    def locate(self, spec: DependencySpec) -> str | None:
        """返回依赖的位置描述，找不到返回 None"""
        ...


class StaticProbe:
    """固定可用集合"""

    def __init__(self, available: Mapping[str, str] | Iterable[str]) -> None:
        if isinstance(available, Mapping):
            self._available = dict(available)
        else:
            self._available = {name: name for name in available}

    def locate(self, spec: DependencySpec) -> str | None:
        return self._available.get(spec.name)


class ExecutableProbe:
    """在 PATH 中查找可执行文件"""

    def __init__(
        self,
        aliases: Mapping[str, str] | None = None,
        search_path: str | None = None,
    ) -> None:
        self.aliases = dict(aliases or {})
        self.search_path = search_path

    def locate(self, spec: DependencySpec) -> str | None:
        binary = self.aliases.get(spec.name, spec.name)
        return shutil.which(binary, path=self.search_path)


class PkgConfigProbe:
    """通过 pkg-config 查找系统库"""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        modules: Mapping[str, str] | None = None,
    ) -> None:
        self.executor = executor or LocalExecutor()
        self.modules = {**DEFAULT_PKG_CONFIG_MODULES, **(modules or {})}

    def locate(self, spec: DependencySpec) -> str | None:
        module = self.modules.get(spec.name, spec.name)
        r = self.executor.execute(["pkg-config", "--exists", module])
        if not r.success:
            logger.debug("pkg-config 未找到模块: %s (rc=%d)", module, r.returncode)
            return None
        return f"pkg-config:{module}"


class ChainProbe:
    """依次尝试多个探测器"""

    def __init__(self, *probes: DependencyProbe) -> None:
        self.probes = probes

    def locate(self, spec: DependencySpec) -> str | None:
        for probe in self.probes:
            location = probe.locate(spec)
            if location:
                return location
        return None


def default_probe(executor: CommandExecutor | None = None) -> DependencyProbe:
    """宿主机默认探测链：先找可执行文件，再问 pkg-config"""
    return ChainProbe(ExecutableProbe(), PkgConfigProbe(executor=executor))
