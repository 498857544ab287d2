"""构建环境服务测试"""

from __future__ import annotations

import os
from pathlib import Path

from layerbuild.core.models import PackageDescriptor
from layerbuild.core.platforms import Platform
from layerbuild.services.env_service import EnvService, EnvStatus

LINUX = Platform("linux", "x86_64")
DARWIN = Platform("darwin", "aarch64")


def _descriptor(**extra) -> PackageDescriptor:
    values = {
        "name": "humility",
        "version": "0.8.0",
        "source_ref": "/src/humility",
        "source_hash": "sha256-" + "A" * 43,
        "toolchain": {"cargo": "/opt/rust/bin/cargo"},
        "env": {"CARGO_INCREMENTAL": 0},
    }
    values.update(extra)
    return PackageDescriptor.from_fields(values)


class TestEnvService:
    def test_apply_creates_isolated_dirs(self, tmp_path: Path):
        svc = EnvService(cache_dir=str(tmp_path), home_env="CARGO_HOME")
        env = svc.apply(_descriptor(), LINUX)
        assert env.status == EnvStatus.APPLIED
        assert env.root.parent == tmp_path
        assert env.root.name.startswith("humility-x86_64-linux-")
        assert env.home.is_dir()
        assert (env.tool_home / "bin").is_dir()
        assert env.overrides["HOME"] == str(env.home)
        assert env.overrides["CARGO_HOME"] == str(env.tool_home)
        assert env.overrides["CARGO_INCREMENTAL"] == "0"

    def test_concurrent_invocations_do_not_collide(self, tmp_path: Path):
        svc = EnvService(cache_dir=str(tmp_path), home_env="CARGO_HOME")
        a = svc.apply(_descriptor(), LINUX)
        b = svc.apply(_descriptor(), LINUX)
        c = svc.apply(_descriptor(), DARWIN)
        assert len({a.root, b.root, c.root}) == 3

    def test_as_env_does_not_touch_process_env(self, tmp_path: Path):
        svc = EnvService(cache_dir=str(tmp_path), home_env="CARGO_HOME")
        before = dict(os.environ)
        env = svc.apply(_descriptor(), LINUX)
        child = env.as_env({"PATH": "/usr/bin"})
        assert dict(os.environ) == before
        parts = child["PATH"].split(os.pathsep)
        assert parts[0] == str(env.tool_home / "bin")
        assert "/opt/rust/bin" in parts
        assert parts[-1] == "/usr/bin"
        assert child["CARGO_HOME"] == str(env.tool_home)

    def test_as_env_without_base_path(self, tmp_path: Path):
        svc = EnvService(cache_dir=str(tmp_path), home_env="CARGO_HOME")
        env = svc.apply(_descriptor(toolchain={}), LINUX)
        assert env.as_env({})["PATH"] == str(env.tool_home / "bin")

    def test_scoped_releases(self, tmp_path: Path):
        svc = EnvService(cache_dir=str(tmp_path), home_env="CARGO_HOME")
        with svc.scoped(_descriptor(), LINUX) as env:
            root = env.root
            assert root.exists()
        assert not root.exists()
        assert env.status == EnvStatus.RELEASED

    def test_keep_leaves_dirs(self, tmp_path: Path):
        svc = EnvService(cache_dir=str(tmp_path), home_env="CARGO_HOME", keep=True)
        with svc.scoped(_descriptor(), LINUX) as env:
            pass
        assert env.root.exists()

    def test_custom_home_env(self, tmp_path: Path):
        svc = EnvService(cache_dir=str(tmp_path), home_env="GOPATH")
        env = svc.apply(_descriptor(), LINUX)
        assert env.overrides["GOPATH"] == str(env.tool_home)
        assert "CARGO_HOME" not in env.overrides
