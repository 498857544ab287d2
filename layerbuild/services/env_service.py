"""构建环境服务 — 每次构建调用独占的环境对象

BuildEnvironment 显式携带工具路径、环境变量覆盖与隔离的 home/缓存目录，
作为参数传给构建与检查步骤，而不是修改 os.environ：
同一进程内、或矩阵中并行的多个平台构建互不干扰。

目录布局（每次调用唯一）:
    <cache_dir>/<包名>-<system>-<随机后缀>/
        home/          HOME
        tool-home/     ${home_env}（默认 CARGO_HOME），其 bin/ 前置到 PATH
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from layerbuild.core.models import PackageDescriptor
from layerbuild.core.platforms import Platform

logger = logging.getLogger(__name__)


class EnvStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    RELEASED = "released"


@dataclass
class BuildEnvironment:
    """单次构建调用的环境"""

    package: str
    platform: Platform
    root: Path
    home: Path
    tool_home: Path
    tool_paths: dict[str, str] = field(default_factory=dict)
    overrides: dict[str, str] = field(default_factory=dict)
    status: EnvStatus = EnvStatus.PENDING

    def bin_dirs(self) -> list[str]:
        """需要前置到 PATH 的目录，按工具链声明顺序去重"""
        dirs = [str(self.tool_home / "bin")]
        for path in self.tool_paths.values():
            if os.path.isabs(path):
                parent = os.path.dirname(path)
                if parent not in dirs:
                    dirs.append(parent)
        return dirs

    def as_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """子进程使用的完整环境变量（不修改当前进程）"""
        env = dict(os.environ if base is None else base)
        env.update(self.overrides)
        parts = self.bin_dirs()
        if env.get("PATH"):
            parts.append(env["PATH"])
        env["PATH"] = os.pathsep.join(parts)
        return env


def resolve_tool(binary: str) -> str:
    """解析工具路径；找不到时原样返回，交由子进程按 PATH 查找"""
    if os.path.isabs(binary):
        return binary
    found = shutil.which(binary)
    if found is None:
        logger.warning("工具链未在 PATH 中找到: %s", binary)
        return binary
    return found


class EnvService:
    """构建环境的申请与释放"""

    def __init__(
        self,
        cache_dir: str = "",
        home_env: str = "",
        keep: bool = False,
    ) -> None:
        if not cache_dir or not home_env:
            from layerbuild.core.config import get_config
            cfg = get_config()
            cache_dir = cache_dir or cfg.cache_dir
            home_env = home_env or cfg.home_env
        self.cache_dir = Path(cache_dir)
        self.home_env = home_env
        self.keep = keep

    def apply(
        self, descriptor: PackageDescriptor, platform: Platform,
    ) -> BuildEnvironment:
        """创建隔离目录并解析工具链"""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(
            prefix=f"{descriptor.name}-{platform.system}-", dir=str(self.cache_dir),
        ))
        home = root / "home"
        tool_home = root / "tool-home"
        (tool_home / "bin").mkdir(parents=True)
        home.mkdir()

        overrides = {
            str(k): str(v) for k, v in (descriptor.attrs.get("env") or {}).items()
        }
        overrides["HOME"] = str(home)
        overrides[self.home_env] = str(tool_home)

        env = BuildEnvironment(
            package=descriptor.name,
            platform=platform,
            root=root,
            home=home,
            tool_home=tool_home,
            tool_paths={k: resolve_tool(v) for k, v in descriptor.toolchain.items()},
            overrides=overrides,
            status=EnvStatus.APPLIED,
        )
        logger.info(
            "构建环境已创建: %s (%s) -> %s", descriptor.name, platform, root,
            extra={"package": descriptor.name, "platform": platform.system},
        )
        return env

    def release(self, env: BuildEnvironment) -> BuildEnvironment:
        """删除隔离目录（keep=True 时保留供排查）"""
        if env.status != EnvStatus.APPLIED:
            return env
        if self.keep:
            logger.info("保留构建环境目录: %s", env.root)
        else:
            shutil.rmtree(env.root, ignore_errors=True)
        env.status = EnvStatus.RELEASED
        return env

    @contextmanager
    def scoped(
        self, descriptor: PackageDescriptor, platform: Platform,
    ) -> Iterator[BuildEnvironment]:
        env = self.apply(descriptor, platform)
        try:
            yield env
        finally:
            self.release(env)
