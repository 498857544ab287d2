"""叠加层组合器测试"""

from __future__ import annotations

import pytest

from layerbuild.core.exceptions import DescriptorError, OverlayConflictError
from layerbuild.core.overlay import (
    BASE_LAYER,
    DescriptorBuilder,
    Overlay,
    compose,
    data_overlay,
    lazy,
)

HASH = "sha256-" + "A" * 43


def _base(**extra) -> DescriptorBuilder:
    values = {
        "name": "humility",
        "version": "0.8.0",
        "source_ref": "/src/humility",
        "source_hash": HASH,
        "toolchain": {"cargo": "cargo"},
        "build_command": lazy(lambda final: f"{final.toolchain['cargo']} build --release"),
    }
    values.update(extra)
    return DescriptorBuilder(values)


def _toolchain(name: str, cargo: str) -> Overlay:
    return Overlay(name, lambda final, prev: {"toolchain": {"cargo": cargo}})


class TestComposeOrdering:
    def test_no_overlays_returns_base(self):
        composition = compose(_base(), [])
        d = composition.descriptor()
        assert d.toolchain == {"cargo": "cargo"}
        assert d.build_command == "cargo build --release"
        assert composition.audit == ()

    def test_last_writer_wins(self):
        o1 = _toolchain("O1", "/a/cargo")
        o2 = _toolchain("O2", "/b/cargo")
        assert compose(_base(), [o1, o2]).descriptor().toolchain["cargo"] == "/b/cargo"
        assert compose(_base(), [o2, o1]).descriptor().toolchain["cargo"] == "/a/cargo"

    def test_final_sees_later_overlay(self):
        # build_command 在 base 中声明，引用的是最终工具链
        d = compose(_base(), [_toolchain("pinned", "/opt/rust/bin/cargo")]).descriptor()
        assert d.build_command == "/opt/rust/bin/cargo build --release"

    def test_overlay_referencing_final_of_later_overlay(self):
        pkg = Overlay("pkg", lambda final, prev: {
            "artifact": lazy(lambda f: f"{f.toolchain['cargo']}.out"),
        })
        tool = _toolchain("tool", "/x/cargo")
        d = compose(_base(), [pkg, tool]).descriptor()
        assert d.artifact == "/x/cargo.out"

    def test_prev_is_state_before_overlay(self):
        seen = {}

        def grab(final, prev):
            seen["cargo"] = prev.toolchain["cargo"]
            return {}

        compose(_base(), [_toolchain("O1", "/a/cargo"), Overlay("probe", grab)])
        assert seen["cargo"] == "/a/cargo"

    def test_base_is_not_mutated(self):
        base = _base()
        compose(base, [_toolchain("O1", "/a/cargo")])
        assert base.values["toolchain"] == {"cargo": "cargo"}

    def test_determinism(self):
        overlays = [_toolchain("O1", "/a/cargo"), _toolchain("O2", "/b/cargo")]
        first = compose(_base(), overlays).descriptor().to_json()
        second = compose(_base(), overlays).descriptor().to_json()
        assert first == second


class TestAudit:
    def test_audit_records_writer_and_shadowed(self):
        composition = compose(
            _base(), [_toolchain("O1", "/a/cargo"), _toolchain("O2", "/b/cargo")],
        )
        entries = [e for e in composition.audit if e.field == "toolchain"]
        assert [(e.overlay, e.shadowed) for e in entries] == [
            ("O1", BASE_LAYER), ("O2", "O1"),
        ]
        assert composition.writer_of("toolchain") == "O2"
        assert composition.writer_of("version") == BASE_LAYER

    def test_new_field_has_no_shadowed(self):
        extra = Overlay("extra", lambda final, prev: {"meta": {"license": "MPL-2.0"}})
        composition = compose(_base(), [extra])
        assert composition.audit[0].shadowed is None
        assert composition.descriptor().meta["license"] == "MPL-2.0"

    def test_strict_mode_rejects_overlay_conflict(self):
        with pytest.raises(OverlayConflictError) as exc:
            compose(
                _base(), [_toolchain("O1", "/a"), _toolchain("O2", "/b")], strict=True,
            )
        assert exc.value.field_name == "toolchain"
        assert exc.value.shadowed == "O1"

    def test_strict_mode_allows_overriding_base(self):
        d = compose(_base(), [_toolchain("O1", "/a")], strict=True).descriptor()
        assert d.toolchain["cargo"] == "/a"


class TestComposeErrors:
    def test_reading_final_eagerly_fails(self):
        eager = Overlay("eager", lambda final, prev: {"artifact": final.toolchain})
        with pytest.raises(DescriptorError, match="lazy"):
            compose(_base(), [eager])

    def test_lazy_cycle_detected(self):
        base = _base(
            meta=lazy(lambda f: f.artifact),
            artifact=lazy(lambda f: f.meta),
        )
        with pytest.raises(DescriptorError, match="成环"):
            compose(base, [])

    def test_non_mapping_result(self):
        bad = Overlay("bad", lambda final, prev: ["toolchain"])
        with pytest.raises(DescriptorError, match="必须返回映射"):
            compose(_base(), [bad])

    def test_overlay_exception_wrapped(self):
        bad = Overlay("bad", lambda final, prev: {"x": prev.missing_field})
        with pytest.raises(DescriptorError, match="bad"):
            compose(_base(), [bad])

    def test_views_are_read_only(self):
        def mutate(final, prev):
            prev.toolchain = {}
            return {}

        with pytest.raises(DescriptorError, match="只读"):
            compose(_base(), [Overlay("m", mutate)])


class TestDataOverlay:
    def test_set_and_extend(self):
        base = _base(
            dependency_specs=[{"name": "pkg-config"}],
            optional_flags={"do_check": False},
        )
        overlay = data_overlay(
            "pinned",
            set_fields={"toolchain": {"cargo": "/opt/rust/bin/cargo"}},
            extend_fields={
                "dependency_specs": [{"name": "rustfmt", "kind": "check-only"}],
                "optional_flags": {"do_check": True},
            },
        )
        d = compose(base, [overlay]).descriptor()
        assert d.toolchain["cargo"] == "/opt/rust/bin/cargo"
        assert [s.name for s in d.dependency_specs] == ["pkg-config", "rustfmt"]
        assert d.flag("do_check") is True

    def test_final_template_is_lazy(self):
        pkg = data_overlay(
            "pkg", set_fields={"build_command": "${final.toolchain.cargo} build"},
        )
        tool = _toolchain("tool", "/opt/cargo")
        d = compose(_base(), [pkg, tool]).descriptor()
        assert d.build_command == "/opt/cargo build"

    def test_prev_template_is_eager(self):
        pkg = data_overlay(
            "pkg", set_fields={"artifact": "target/${prev.version}/humility"},
        )
        tool = Overlay("bump", lambda final, prev: {"version": "0.9.0"})
        d = compose(_base(), [pkg, tool]).descriptor()
        assert d.artifact == "target/0.8.0/humility"
        assert d.version == "0.9.0"

    def test_whole_prev_template_keeps_type(self):
        copy = data_overlay("copy", set_fields={"meta": "${prev.toolchain}"})
        d = compose(_base(), [copy]).descriptor()
        assert d.meta == {"cargo": "cargo"}

    def test_extend_type_mismatch(self):
        overlay = data_overlay("bad", extend_fields={"version": ["x"]})
        with pytest.raises(DescriptorError):
            compose(_base(), [overlay])
