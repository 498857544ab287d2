"""包描述服务测试"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from layerbuild.core.exceptions import (
    DescriptorError,
    OverlayConflictError,
    ValidationError,
)
from layerbuild.core.platforms import Platform
from layerbuild.core.dep import filter_for_platform
from layerbuild.services.descriptor_service import DescriptorService, normalize_fields

HASH = "sha256-" + "A" * 43


def _write_registry(path: Path, packages: dict, overlays: dict | None = None) -> Path:
    data = {"packages": packages, "overlays": overlays or {}}
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


def _humility(**extra) -> dict:
    entry = {
        "version": "0.8.0",
        "source": {"ref": "/src/humility", "hash": HASH},
        "build_command": "cargo build --release",
        "artifact": "target/release/humility",
        "toolchain": {"cargo": "cargo"},
        "dependencies": [
            "pkg-config",
            {"name": "systemd", "kind": "runtime", "platforms": ["linux"]},
            {"name": "AppKit", "kind": "runtime", "platforms": ["darwin"]},
        ],
        "checks": [
            {"name": "format", "command": "cargo fmt --all --check"},
            {"name": "test", "command": "cargo test"},
        ],
        "flags": {"do_check": False},
        "meta": {"description": "Debugger for Hubris"},
    }
    entry.update(extra)
    return entry


OVERLAYS = {
    "pinned-rust": {
        "set": {
            "toolchain": {"cargo": "/opt/rust/bin/cargo"},
            "build_command": "${final.toolchain.cargo} build --release",
        },
        "extend": {"dependencies": [{"name": "rustfmt", "kind": "check-only"}]},
    },
    "other-rust": {"set": {"toolchain": {"cargo": "/usr/local/bin/cargo"}}},
    "with-checks": {"extend": {"flags": {"do_check": True}}},
}


class TestNormalizeFields:
    def test_aliases_and_source(self):
        fields = normalize_fields({
            "source": {"ref": "r", "hash": "h"},
            "dependencies": [], "checks": [], "flags": {}, "overlays": ["x"],
        })
        assert fields == {
            "source_ref": "r", "source_hash": "h",
            "dependency_specs": [], "check_phases": [], "optional_flags": {},
        }

    def test_source_must_be_mapping(self):
        with pytest.raises(ValidationError):
            normalize_fields({"source": "git+https://x"})


class TestDescriptorService:
    @pytest.fixture()
    def registry(self, tmp_path: Path) -> Path:
        return _write_registry(
            tmp_path / "packages.yml", {"humility": _humility()}, OVERLAYS,
        )

    def test_describe_base(self, registry: Path):
        d = DescriptorService(str(registry)).describe("humility")
        assert d.name == "humility"
        assert d.source_ref == "/src/humility"
        assert [c.name for c in d.check_phases] == ["format", "test"]
        assert d.flag("do_check") is False

    def test_platform_variants(self, registry: Path):
        d = DescriptorService(str(registry)).describe("humility")
        linux = [s.name for s in filter_for_platform(d.dependency_specs, Platform("linux", "x86_64"))]
        darwin = [s.name for s in filter_for_platform(d.dependency_specs, Platform("darwin", "aarch64"))]
        assert "systemd" in linux and "AppKit" not in linux
        assert "AppKit" in darwin and "systemd" not in darwin

    def test_extra_overlay(self, registry: Path):
        d = DescriptorService(str(registry)).describe("humility", ["pinned-rust"])
        assert d.toolchain["cargo"] == "/opt/rust/bin/cargo"
        assert d.build_command == "/opt/rust/bin/cargo build --release"
        assert d.dependency_specs[-1].name == "rustfmt"

    def test_later_overlay_changes_earlier_lazy_reference(self, registry: Path):
        d = DescriptorService(str(registry)).describe("humility", ["pinned-rust", "other-rust"])
        assert d.build_command == "/usr/local/bin/cargo build --release"

    def test_default_overlays_apply_first(self, tmp_path: Path):
        registry = _write_registry(
            tmp_path / "p.yml",
            {"humility": _humility(overlays=["with-checks"])}, OVERLAYS,
        )
        composition = DescriptorService(str(registry)).compose("humility")
        assert composition.descriptor().flag("do_check") is True
        assert composition.writer_of("optional_flags") == "with-checks"

    def test_strict_conflict(self, registry: Path):
        svc = DescriptorService(str(registry), strict=True)
        with pytest.raises(OverlayConflictError):
            svc.describe("humility", ["pinned-rust", "other-rust"])

    def test_unknown_package(self, registry: Path):
        with pytest.raises(DescriptorError, match="不在注册表中"):
            DescriptorService(str(registry)).describe("openocd")

    def test_unknown_overlay(self, registry: Path):
        with pytest.raises(DescriptorError, match="未定义"):
            DescriptorService(str(registry)).describe("humility", ["nope"])

    def test_overlay_unknown_key(self, tmp_path: Path):
        registry = _write_registry(
            tmp_path / "p.yml", {"humility": _humility()},
            {"bad": {"replace": {"version": "1"}}},
        )
        with pytest.raises(DescriptorError, match="未知键"):
            DescriptorService(str(registry)).describe("humility", ["bad"])

    def test_empty_hash_rejected(self, tmp_path: Path):
        registry = _write_registry(
            tmp_path / "p.yml",
            {"humility": _humility(source={"ref": "/src/humility", "hash": ""})},
        )
        with pytest.raises(ValidationError):
            DescriptorService(str(registry)).describe("humility")

    def test_list_packages(self, registry: Path):
        packages = DescriptorService(str(registry)).list_packages()
        assert packages == [{
            "name": "humility", "version": "0.8.0",
            "source": "/src/humility", "description": "Debugger for Hubris",
        }]


class TestPackageRegistry:
    def test_register_and_remove(self, tmp_path: Path):
        svc = DescriptorService(str(tmp_path / "p.yml"))
        svc.registry.register("humility", _humility())
        assert DescriptorService(str(tmp_path / "p.yml")).registry.names() == ["humility"]
        assert svc.registry.remove("humility") is True
        assert svc.registry.names() == []

    def test_register_invalid_rolls_back(self, tmp_path: Path):
        svc = DescriptorService(str(tmp_path / "p.yml"))
        bad = _humility(dependencies=[{"name": "x", "kind": "bogus"}])
        with pytest.raises(ValidationError):
            svc.registry.register("humility", bad)
        assert svc.registry.names() == []
        assert not (tmp_path / "p.yml").exists()

    def test_register_invalid_keeps_previous_entry(self, tmp_path: Path):
        svc = DescriptorService(str(tmp_path / "p.yml"))
        svc.registry.register("humility", _humility())
        with pytest.raises(ValidationError):
            svc.registry.register("humility", _humility(version="0.9.0", dependencies=[{"kind": "runtime"}]))
        assert svc.registry.get_entry("humility")["version"] == "0.8.0"
        reloaded = DescriptorService(str(tmp_path / "p.yml")).registry
        assert reloaded.get_entry("humility")["version"] == "0.8.0"
