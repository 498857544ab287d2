"""叠加层组合器

把基础描述与一组有序叠加层折叠成最终描述：

    composition = compose(base, [toolchain_overlay, package_overlay])
    descriptor = composition.descriptor()

叠加层是纯函数 fn(final, prev) -> {字段: 新值}：
  - prev 是此前所有叠加层组合后的只读视图，可立即读取；
  - final 是最终结果视图，只能在 lazy(...) 中引用，所有叠加层应用完毕后
    才以最终值求值，因此可以引用后续叠加层替换后的字段（例如包的构建输入
    引用被替换过的工具链）。

冲突按“后写者胜”逐字段解决。每次覆盖都会产生一条审计记录，
仅凭声明顺序即可追溯最终值来自哪个叠加层；strict=True 时覆盖其他叠加层
写入的字段会抛 OverlayConflictError。
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable

from layerbuild.core.exceptions import DescriptorError, OverlayConflictError
from layerbuild.core.models import PackageDescriptor

logger = logging.getLogger(__name__)

BASE_LAYER = "base"


class Lazy:
    """以 final 视图求值的延迟字段值"""

    __slots__ = ("fn", "label")

    def __init__(self, fn: Callable[[FinalView], Any], label: str = "") -> None:
        self.fn = fn
        self.label = label

    def map(self, transform: Callable[[Any], Any]) -> Lazy:
        """在延迟值之上派生新的延迟值（用于扩展前一层的 lazy 字段）"""
        return Lazy(lambda final: transform(_force(self, final)), label=self.label)

    def __repr__(self) -> str:
        return f"Lazy({self.label or '?'})"


def lazy(fn: Callable[[FinalView], Any], label: str = "") -> Lazy:
    return Lazy(fn, label=label)


def _force(value: Any, final: FinalView) -> Any:
    """递归求值 value 中的所有 Lazy"""
    while isinstance(value, Lazy):
        value = value.fn(final)
    if isinstance(value, Mapping):
        return {k: _force(v, final) for k, v in value.items()}
    if isinstance(value, list):
        return [_force(v, final) for v in value]
    if isinstance(value, tuple):
        return tuple(_force(v, final) for v in value)
    return value


# =========================================================================
# 构建器与视图
# =========================================================================


@dataclass(frozen=True)
class DescriptorBuilder:
    """不可变的字段映射，组合过程中作为累加器显式传递"""

    values: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def with_overrides(self, overrides: Mapping[str, Any]) -> DescriptorBuilder:
        return DescriptorBuilder({**self.values, **overrides})

    def __contains__(self, name: object) -> bool:
        return name in self.values


class LayerView:
    """prev 视图：某一层组合状态的只读访问，Lazy 值原样返回"""

    def __init__(self, builder: DescriptorBuilder) -> None:
        object.__setattr__(self, "_builder", builder)

    def __getattr__(self, name: str) -> Any:
        values = object.__getattribute__(self, "_builder").values
        if name.startswith("_") or name not in values:
            raise AttributeError(f"字段 '{name}' 在前一层中不存在")
        return values[name]

    def __getitem__(self, name: str) -> Any:
        return self._builder.values[name]

    def __contains__(self, name: object) -> bool:
        return name in self._builder.values

    def __setattr__(self, name: str, value: Any) -> None:
        raise DescriptorError("叠加层视图只读")

    def get(self, name: str, default: Any = None) -> Any:
        return self._builder.values.get(name, default)

    def keys(self) -> list[str]:
        return list(self._builder.values)


class FinalView:
    """final 视图：组合完成后按需求值，带记忆化与环检测"""

    def __init__(self) -> None:
        object.__setattr__(self, "_builder", None)
        object.__setattr__(self, "_cache", {})
        object.__setattr__(self, "_evaluating", [])

    def _seal(self, builder: DescriptorBuilder) -> None:
        object.__setattr__(self, "_builder", builder)

    def _lookup(self, name: str) -> Any:
        builder = object.__getattribute__(self, "_builder")
        if builder is None:
            raise DescriptorError(
                f"组合尚未完成，不能立即读取 final.{name}；请放在 lazy(...) 中引用"
            )
        cache = object.__getattribute__(self, "_cache")
        if name in cache:
            return cache[name]
        if name not in builder.values:
            raise AttributeError(f"字段 '{name}' 在最终描述中不存在")
        evaluating = object.__getattribute__(self, "_evaluating")
        if name in evaluating:
            chain = " -> ".join([*evaluating, name])
            raise DescriptorError(f"惰性字段引用成环: {chain}")
        evaluating.append(name)
        try:
            value = _force(builder.values[name], self)
        finally:
            evaluating.pop()
        cache[name] = value
        return value

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._lookup(name)

    def __getitem__(self, name: str) -> Any:
        return self._lookup(name)

    def __setattr__(self, name: str, value: Any) -> None:
        raise DescriptorError("叠加层视图只读")

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self._lookup(name)
        except AttributeError:
            return default


OverlayFn = Callable[[FinalView, LayerView], Mapping[str, Any]]


@dataclass(frozen=True)
class Overlay:
    """具名叠加层"""

    name: str
    fn: OverlayFn


@dataclass(frozen=True)
class OverlayAuditEntry:
    """一次字段写入的审计记录"""

    field: str
    overlay: str
    index: int
    shadowed: str | None = None   # 被覆盖的上一写入者；None 表示新增字段

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field, "overlay": self.overlay,
            "index": self.index, "shadowed": self.shadowed,
        }


@dataclass(frozen=True)
class Composition:
    """组合结果：求值完毕的构建器 + 审计记录"""

    builder: DescriptorBuilder
    audit: tuple[OverlayAuditEntry, ...] = ()

    def descriptor(self) -> PackageDescriptor:
        return PackageDescriptor.from_fields(self.builder.values)

    def writer_of(self, field_name: str) -> str:
        """最终值的写入者（叠加层名或 base）"""
        for entry in reversed(self.audit):
            if entry.field == field_name:
                return entry.overlay
        return BASE_LAYER


# =========================================================================
# 组合
# =========================================================================


def compose(
    base: DescriptorBuilder | Mapping[str, Any],
    overlays: Sequence[Overlay],
    *,
    strict: bool = False,
) -> Composition:
    """按声明顺序将叠加层折叠到基础描述上

    异常:
        DescriptorError: 叠加层返回非映射、执行异常、惰性引用成环
        OverlayConflictError: strict=True 且叠加层之间覆盖同一字段
    """
    acc = base if isinstance(base, DescriptorBuilder) else DescriptorBuilder(base)
    writers = {name: BASE_LAYER for name in acc.values}
    final = FinalView()
    audit: list[OverlayAuditEntry] = []

    for index, overlay in enumerate(overlays):
        try:
            overrides = overlay.fn(final, LayerView(acc))
        except DescriptorError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise DescriptorError(f"叠加层 '{overlay.name}' 执行失败: {e}") from e
        if not isinstance(overrides, Mapping):
            raise DescriptorError(
                f"叠加层 '{overlay.name}' 必须返回映射，实际为 {type(overrides).__name__}"
            )

        for field_name in overrides:
            shadowed = writers.get(field_name)
            if shadowed is not None and shadowed != BASE_LAYER:
                if strict:
                    raise OverlayConflictError(field_name, overlay.name, shadowed)
                logger.info(
                    "叠加层覆盖: %s 由 '%s' 改写（原写入者 '%s'）",
                    field_name, overlay.name, shadowed,
                )
            audit.append(OverlayAuditEntry(
                field=field_name, overlay=overlay.name,
                index=index, shadowed=shadowed,
            ))
            writers[field_name] = overlay.name
        acc = acc.with_overrides(overrides)

    final._seal(acc)
    try:
        forced = DescriptorBuilder({name: final[name] for name in acc.values})
    except DescriptorError:
        raise
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise DescriptorError(f"惰性字段求值失败: {e}") from e
    logger.debug(
        "组合完成: %d 个叠加层, %d 次字段写入", len(overlays), len(audit),
    )
    return Composition(builder=forced, audit=tuple(audit))


# =========================================================================
# 声明式（YAML）叠加层
# =========================================================================

_TEMPLATE = re.compile(r"\$\{(final|prev)\.([A-Za-z_][\w.]*)\}")


def _lookup_path(root: Any, path: str) -> Any:
    head, *rest = path.split(".")
    value = root[head]
    for part in rest:
        value = value[part]
    return value


def _render(value: Any, prev: LayerView) -> Any:
    """展开 ${prev.x} 模板；${final.x} 模板转为 Lazy"""
    if isinstance(value, list):
        return [_render(v, prev) for v in value]
    if isinstance(value, dict):
        return {k: _render(v, prev) for k, v in value.items()}
    if not isinstance(value, str) or "${" not in value:
        return value

    whole = _TEMPLATE.fullmatch(value)
    if whole:
        scope, path = whole.groups()
        if scope == "prev":
            return _lookup_path(prev, path)
        return Lazy(lambda final: _lookup_path(final, path), label=value)

    rendered = _substitute(value, prev, "prev")
    if "${final." not in rendered:
        return rendered
    return Lazy(lambda final: _substitute(rendered, final, "final"), label=value)


def _substitute(text: str, root: Any, scope: str) -> str:
    def repl(m: re.Match[str]) -> str:
        if m.group(1) != scope:
            return m.group(0)
        return str(_lookup_path(root, m.group(2)))
    return _TEMPLATE.sub(repl, text)


def _extend(current: Any, addition: Any) -> Any:
    if isinstance(current, Lazy):
        return current.map(lambda v: _extend(v, addition))
    if isinstance(addition, Lazy):
        return addition.map(lambda v: _extend(current, v))
    if current is None:
        return addition
    if isinstance(current, (list, tuple)) and isinstance(addition, list):
        return [*current, *addition]
    if isinstance(current, Mapping) and isinstance(addition, Mapping):
        return {**current, **addition}
    raise TypeError(
        f"无法扩展 {type(current).__name__} 与 {type(addition).__name__}"
    )


def data_overlay(
    name: str,
    *,
    set_fields: Mapping[str, Any] | None = None,
    extend_fields: Mapping[str, Any] | None = None,
) -> Overlay:
    """由 YAML 数据构造叠加层

    set_fields: 直接替换字段
    extend_fields: 列表追加 / 映射合并到前一层的同名字段
    """
    set_fields = dict(set_fields or {})
    extend_fields = dict(extend_fields or {})

    def apply(final: FinalView, prev: LayerView) -> dict[str, Any]:
        overrides = {k: _render(v, prev) for k, v in set_fields.items()}
        for k, v in extend_fields.items():
            current = overrides.get(k, prev.get(k))
            overrides[k] = _extend(current, _render(v, prev))
        return overrides

    return Overlay(name=name, fn=apply)
