"""包描述服务 — 注册表加载 + 叠加层组合

注册表文件格式:

    packages:
      humility:
        version: 0.8.0
        source: {ref: "git+https://...?rev=<commit>", hash: "sha256-..."}
        build_command: cargo build --release --locked
        artifact: target/release/humility
        toolchain: {cargo: cargo, rustc: rustc}
        dependencies:
          - {name: pkg-config, kind: native-build}
          - {name: systemd, kind: runtime, platforms: [linux]}
        checks:
          - {name: format, command: cargo fmt --all --check}
        flags: {do_check: false}
        overlays: [pinned-rust]          # 默认叠加层，按顺序应用

    overlays:
      pinned-rust:
        set: {toolchain: {cargo: /opt/rust/bin/cargo}}
        extend: {dependencies: [{name: rustfmt, kind: check-only}]}

YAML 中的 dependencies / checks / flags / source 与描述字段
dependency_specs / check_phases / optional_flags / source_ref+source_hash 对应。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from layerbuild.core.dep.models import DependencySpec
from layerbuild.core.exceptions import DescriptorError, ValidationError
from layerbuild.core.models import CheckPhase, PackageDescriptor
from layerbuild.core.overlay import Composition, DescriptorBuilder, Overlay, compose, data_overlay
from layerbuild.core.registry import YamlRegistry

logger = logging.getLogger(__name__)

FIELD_ALIASES = {
    "dependencies": "dependency_specs",
    "checks": "check_phases",
    "flags": "optional_flags",
}

_RESERVED_KEYS = frozenset(("overlays",))


def normalize_fields(entry: dict[str, Any]) -> dict[str, Any]:
    """把 YAML 键名转换为描述字段名（source 展开为 source_ref / source_hash）"""
    fields: dict[str, Any] = {}
    for key, value in entry.items():
        if key in _RESERVED_KEYS:
            continue
        if key == "source":
            if not isinstance(value, dict):
                raise ValidationError(f"source 必须是 {{ref, hash}} 映射: {value!r}")
            if "ref" in value:
                fields["source_ref"] = value["ref"]
            if "hash" in value:
                fields["source_hash"] = value["hash"]
            continue
        fields[FIELD_ALIASES.get(key, key)] = value
    return fields


class PackageRegistry(YamlRegistry):
    """包描述注册表（packages section）+ 具名叠加层（overlays section）"""

    section_key = "packages"
    overlay_key = "overlays"

    def names(self) -> list[str]:
        return list(self._section())

    def get_entry(self, name: str) -> dict[str, Any]:
        entry = self._get_raw(name)
        if entry is None:
            raise DescriptorError(
                f"包 '{name}' 不在注册表中。可用: {self.names()}"
            )
        if not isinstance(entry, dict):
            raise DescriptorError(f"包 '{name}' 的定义必须是映射")
        return entry

    def base_builder(self, name: str) -> DescriptorBuilder:
        """解析基础描述为构建器；依赖与检查阶段在此处完成校验"""
        fields = normalize_fields(self.get_entry(name))
        fields["name"] = fields.get("name", name)
        fields["dependency_specs"] = [
            DependencySpec.from_dict(d) for d in fields.get("dependency_specs") or []
        ]
        fields["check_phases"] = [
            CheckPhase.from_dict(c) for c in fields.get("check_phases") or []
        ]
        return DescriptorBuilder(fields)

    def default_overlays(self, name: str) -> list[str]:
        names = self.get_entry(name).get("overlays") or []
        if not isinstance(names, list):
            raise DescriptorError(f"包 '{name}' 的 overlays 必须是列表")
        return [str(n) for n in names]

    def overlay(self, name: str) -> Overlay:
        """构造具名叠加层"""
        section = self._section(self.overlay_key)
        spec = section.get(name)
        if spec is None:
            raise DescriptorError(
                f"叠加层 '{name}' 未定义。可用: {list(section)}"
            )
        if not isinstance(spec, dict):
            raise DescriptorError(f"叠加层 '{name}' 的定义必须是映射")
        unknown = set(spec) - {"set", "extend"}
        if unknown:
            raise DescriptorError(
                f"叠加层 '{name}' 含未知键 {sorted(unknown)}，仅支持 set / extend"
            )
        return data_overlay(
            name,
            set_fields=normalize_fields(spec.get("set") or {}),
            extend_fields=normalize_fields(spec.get("extend") or {}),
        )

    def register(self, name: str, entry: dict[str, Any]) -> dict[str, Any]:
        """注册包描述（写入前校验能否组合出合法描述）"""
        if not name:
            raise ValidationError("包 name 为必填")
        if not isinstance(entry, dict):
            raise ValidationError(f"包 '{name}' 的描述必须是映射")
        section = self._section()
        previous = section.get(name)
        section[name] = entry
        try:
            self.base_builder(name)
        except (ValidationError, DescriptorError):
            if previous is None:
                del section[name]
            else:
                section[name] = previous
            raise
        self._save()
        logger.info("包描述已注册: %s", name)
        return entry

    def remove(self, name: str) -> bool:
        return self._remove(name)

    def list_all(self) -> list[dict[str, Any]]:
        return self._list_raw()


class DescriptorService:
    """把注册表中的包描述与叠加层组合为最终 PackageDescriptor"""

    def __init__(self, registry_file: str = "", strict: bool = False) -> None:
        if not registry_file:
            from layerbuild.core.config import get_config
            registry_file = get_config().registry_file
        self.registry = PackageRegistry(registry_file)
        self.strict = strict

    def compose(
        self, name: str, extra_overlays: Sequence[str] = (),
    ) -> Composition:
        """基础描述 + 默认叠加层 + 额外叠加层（按此顺序）"""
        base = self.registry.base_builder(name)
        overlay_names = [*self.registry.default_overlays(name), *extra_overlays]
        overlays = [self.registry.overlay(n) for n in overlay_names]
        composition = compose(base, overlays, strict=self.strict)
        logger.info(
            "包描述已组合: %s (叠加层: %s)",
            name, ", ".join(overlay_names) or "无",
        )
        return composition

    def describe(
        self, name: str, extra_overlays: Sequence[str] = (),
    ) -> PackageDescriptor:
        return self.compose(name, extra_overlays).descriptor()

    def list_packages(self) -> list[dict[str, str]]:
        """格式化包列表用于展示"""
        results = []
        for entry in self.registry.list_all():
            source = entry.get("source") or {}
            results.append({
                "name": entry["name"],
                "version": str(entry.get("version", "")),
                "source": str(source.get("ref", "")) if isinstance(source, dict) else "",
                "description": str((entry.get("meta") or {}).get("description", "")),
            })
        return results
