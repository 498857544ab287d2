"""YAML 注册表基类

包描述与具名叠加层都保存在同一个 YAML 文件的不同 section 中，
共享加载、保存、增删改查逻辑。子类指定 section_key 即可。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from layerbuild.core.exceptions import ConfigError
from layerbuild.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)


class YamlRegistry:
    """YAML 文件注册表基类

    子类用法:
        class PackageRegistry(YamlRegistry):
            section_key = "packages"
    """

    section_key: str = "entries"

    def __init__(self, registry_file: str | Path) -> None:
        self.registry_file = Path(registry_file)
        try:
            self._data: dict[str, Any] = load_yaml(self.registry_file)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"注册表文件无效 {self.registry_file}: {e}") from e

    def _section(self, key: str | None = None) -> dict[str, Any]:
        """获取 section 字典（自动创建）"""
        result: dict[str, Any] = self._data.setdefault(key or self.section_key, {})
        if not isinstance(result, dict):
            raise ConfigError(
                f"{self.registry_file} 中 '{key or self.section_key}' 必须是映射"
            )
        return result

    def _save(self) -> None:
        save_yaml(self.registry_file, self._data)

    def _get_raw(self, name: str) -> dict[str, Any] | None:
        return self._section().get(name)

    def _list_raw(self) -> list[dict[str, Any]]:
        """列出所有条目（带 name 字段）"""
        return [{"name": k, **(v or {})} for k, v in self._section().items()]

    def _remove(self, name: str) -> bool:
        section = self._section()
        if name not in section:
            return False
        del section[name]
        self._save()
        logger.info("已从 %s 移除: %s", self.section_key, name)
        return True
