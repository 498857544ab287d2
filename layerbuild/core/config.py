"""集中配置管理

支持从 YAML 文件加载 + 编程式覆盖。未识别的键放入 extra。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from layerbuild.core.exceptions import ConfigError
from layerbuild.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """全局配置"""

    # 目录
    registry_file: str = "data/packages.yml"
    cache_dir: str = ".layerbuild/cache"
    output_root: str = ".layerbuild/out"
    work_root: str = ".layerbuild/work"

    # 构建
    default_platform: str = ""     # 空则使用宿主平台
    phase_timeout: int = 3600      # 单个构建/检查命令超时（秒）
    home_env: str = "CARGO_HOME"   # 指向隔离 home 目录的环境变量名
    keep_work_dir: bool = False    # 构建结束后保留工作目录

    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "configs/layerbuild.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件 {path} 无效: {e}") from e
        if not isinstance(cfg.phase_timeout, int) or cfg.phase_timeout <= 0:
            raise ConfigError(f"phase_timeout 必须为正整数: {cfg.phase_timeout!r}")
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局配置，由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "configs/layerbuild.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
