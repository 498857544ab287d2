"""命令行接口测试"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from layerbuild.cli import main
from layerbuild.core import config as config_mod
from layerbuild.core.source import digest_path, format_sri
from layerbuild.utils.logger import reset_logging

QUIET = {"LAYERBUILD_LOG_LEVEL": "CRITICAL"}


@pytest.fixture(autouse=True)
def _cleanup():
    yield
    reset_logging()
    config_mod._current = None


@pytest.fixture()
def workspace(tmp_path: Path) -> dict[str, Path]:
    src = tmp_path / "upstream" / "humility"
    src.mkdir(parents=True)
    (src / "Cargo.toml").write_text('[package]\nname = "humility"\n', encoding="utf-8")

    cfg = tmp_path / "layerbuild.yml"
    cfg.write_text(yaml.safe_dump({
        "registry_file": str(tmp_path / "packages.yml"),
        "cache_dir": str(tmp_path / "cache"),
        "output_root": str(tmp_path / "out"),
        "work_root": str(tmp_path / "work"),
    }), encoding="utf-8")
    return {"root": tmp_path, "src": src, "config": cfg, "registry": tmp_path / "packages.yml"}


def _write_registry(ws: dict[str, Path], checks: list[dict], source_hash: str = "") -> None:
    data = {
        "packages": {
            "humility": {
                "version": "0.8.0",
                "source": {
                    "ref": str(ws["src"]),
                    "hash": source_hash or format_sri(digest_path(ws["src"])),
                },
                "dependencies": [
                    {"name": "AppKit", "kind": "runtime", "platforms": ["darwin"]},
                    {"name": "systemd", "kind": "runtime", "platforms": ["linux"]},
                ],
                "checks": checks,
                "meta": {"description": "Debugger for Hubris"},
            },
        },
        "overlays": {
            "pinned-rust": {"set": {"toolchain": {"cargo": "/opt/rust/bin/cargo"}}},
        },
    }
    ws["registry"].write_text(yaml.safe_dump(data), encoding="utf-8")


def _py(code: str) -> str:
    return f'"{sys.executable}" -c "{code}"'


def _invoke(ws: dict[str, Path], *args: str):
    return CliRunner().invoke(main, ["--config", str(ws["config"]), *args], env=QUIET)


class TestBuildCommand:
    def test_failing_check_exit_code(self, workspace):
        _write_registry(workspace, [
            {"name": "lint", "command": _py("import sys; sys.exit(3)")},
            {"name": "test", "command": _py("pass")},
        ])
        result = _invoke(workspace, "build", "humility", "--platform", "x86_64-windows", "--checks", "--json")
        assert result.exit_code == 3
        report = json.loads(result.output)
        assert report["checks"]["failed_phase"] == "lint"
        assert report["checks"]["phases"][1]["status"] == "skipped"

    def test_checks_disabled_by_default(self, workspace):
        _write_registry(workspace, [{"name": "lint", "command": _py("import sys; sys.exit(3)")}])
        result = _invoke(workspace, "build", "humility", "--platform", "x86_64-windows", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output)["checks"] == {"status": "disabled"}

    def test_pin_mismatch_exit_code(self, workspace):
        _write_registry(workspace, [], source_hash="sha256:" + "0" * 64)
        result = _invoke(workspace, "build", "humility", "--platform", "x86_64-windows")
        assert result.exit_code == 101

    def test_unknown_package_exit_code(self, workspace):
        _write_registry(workspace, [])
        result = _invoke(workspace, "build", "openocd", "--platform", "x86_64-linux")
        assert result.exit_code == 103

    def test_bad_platform(self, workspace):
        _write_registry(workspace, [])
        result = _invoke(workspace, "build", "humility", "--platform", "linux")
        assert result.exit_code == 2


class TestShowAndDeps:
    def test_show_is_canonical_json(self, workspace):
        _write_registry(workspace, [])
        first = _invoke(workspace, "show", "humility")
        second = _invoke(workspace, "show", "humility")
        assert first.exit_code == 0
        assert first.output == second.output
        assert json.loads(first.output)["name"] == "humility"

    def test_show_with_overlay_audit(self, workspace):
        _write_registry(workspace, [])
        result = _invoke(workspace, "show", "humility", "--overlay", "pinned-rust", "--audit")
        data = json.loads(result.output)
        assert data["descriptor"]["toolchain"] == {"cargo": "/opt/rust/bin/cargo"}
        assert data["audit"] == [{
            "field": "toolchain", "overlay": "pinned-rust", "index": 0, "shadowed": None,
        }]

    def test_deps_without_probe(self, workspace):
        _write_registry(workspace, [])
        result = _invoke(workspace, "deps", "humility", "--platform", "aarch64-darwin", "--no-probe")
        assert result.exit_code == 0
        assert "AppKit" in result.output
        assert "systemd" not in result.output


class TestPackageCommands:
    def test_list_and_remove(self, workspace):
        _write_registry(workspace, [])
        listed = _invoke(workspace, "package", "list")
        assert "humility" in listed.output

        removed = _invoke(workspace, "package", "remove", "humility")
        assert "已移除" in removed.output
        assert "没有已注册的包" in _invoke(workspace, "package", "list").output

    def test_add_from_file(self, workspace):
        _write_registry(workspace, [])
        entry = workspace["root"] / "openocd.yml"
        entry.write_text(yaml.safe_dump({
            "version": "0.12.0",
            "source": {"ref": str(workspace["src"]), "hash": format_sri(digest_path(workspace["src"]))},
            "dependencies": [{"name": "libftdi1", "kind": "runtime", "optional": True}],
        }), encoding="utf-8")

        result = _invoke(workspace, "package", "add", "openocd", "--from-file", str(entry))
        assert result.exit_code == 0, result.output
        assert "已注册" in result.output
        shown = _invoke(workspace, "show", "openocd")
        assert json.loads(shown.output)["version"] == "0.12.0"

        again = _invoke(workspace, "package", "add", "openocd", "--from-file", str(entry))
        assert again.exit_code == 1
        assert "--force" in again.output

    def test_add_invalid_entry_not_saved(self, workspace):
        _write_registry(workspace, [])
        entry = workspace["root"] / "bad.yml"
        entry.write_text(yaml.safe_dump({
            "version": "1.0",
            "source": {"ref": "/src", "hash": "sha256:" + "0" * 64},
            "dependencies": [{"name": "x", "kind": "bogus"}],
        }), encoding="utf-8")

        result = _invoke(workspace, "package", "add", "bad", "--from-file", str(entry))
        assert result.exit_code == 1
        assert "VALIDATION_ERROR" in result.output
        assert "bad" not in yaml.safe_load(workspace["registry"].read_text(encoding="utf-8"))["packages"]
