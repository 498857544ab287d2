"""YAML 读写工具

包描述注册表与配置文件经由此处读写；构建报告复用 atomic_write。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 注册表 / 配置文件上限 4MB，超出视为误配置
MAX_YAML_SIZE = 4 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """同目录临时文件 + os.replace；矩阵中并行的构建不会读到半截文件"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取顶层为映射的 YAML 文件；文件不存在或为空时返回 {}

    异常:
        ValueError: 超过 MAX_YAML_SIZE，或顶层不是映射
        yaml.YAMLError: 语法错误
    """
    p = Path(path)
    if not p.is_file():
        return {}
    size = p.stat().st_size
    if size > MAX_YAML_SIZE:
        raise ValueError(f"YAML 文件过大: {p} ({size} 字节，上限 {MAX_YAML_SIZE})")

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError:
        logger.error("YAML 语法错误: %s", p)
        raise

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{p} 顶层必须是映射，实际为 {type(data).__name__}")
    return data


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML（保持键顺序，不转义中文）"""
    text = yaml.safe_dump(data, allow_unicode=True, sort_keys=False, default_flow_style=False)
    atomic_write(Path(path), text)
