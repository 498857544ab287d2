"""目标平台与平台谓词

平台以 Nix 风格的 system 字符串表示（x86_64-linux、aarch64-darwin），
依赖项上的平台条件是一等的谓词值，而不是散落在描述里的布尔判断：

    Predicate("linux", ...)(Platform("linux", "x86_64"))  -> True

YAML 中的 platforms 列表由 parse_platforms() 转换为谓词:
    - linux / darwin / windows        按操作系统
    - x86_64-linux                    按完整 system
    - arch:aarch64                    按架构
    - !windows                        排除
正向条目之间为“或”，排除条目对结果再做“与非”；空列表表示所有平台。
"""

from __future__ import annotations

import platform as _host
from dataclasses import dataclass
from typing import Callable

from layerbuild.core.exceptions import ValidationError

_OS_ALIASES = {
    "macos": "darwin",
    "osx": "darwin",
    "win32": "windows",
}

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
}

KNOWN_OS = frozenset(("linux", "darwin", "windows", "freebsd"))


def _norm_os(name: str) -> str:
    n = name.strip().lower()
    return _OS_ALIASES.get(n, n)


def _norm_arch(name: str) -> str:
    n = name.strip().lower()
    return _ARCH_ALIASES.get(n, n)


@dataclass(frozen=True)
class Platform:
    """构建目标平台 (操作系统, 架构)"""

    os: str
    arch: str

    @property
    def system(self) -> str:
        return f"{self.arch}-{self.os}"

    @property
    def is_linux(self) -> bool:
        return self.os == "linux"

    @property
    def is_darwin(self) -> bool:
        return self.os == "darwin"

    def __str__(self) -> str:
        return self.system

    @classmethod
    def parse(cls, text: str) -> Platform:
        """解析 "x86_64-linux" 或 "linux/x86_64" 形式的平台标识"""
        raw = text.strip()
        if "/" in raw:
            os_name, _, arch = raw.partition("/")
        elif "-" in raw:
            arch, _, os_name = raw.partition("-")
        else:
            raise ValidationError(f"无法解析平台标识: {text!r}")
        os_name, arch = _norm_os(os_name), _norm_arch(arch)
        if not os_name or not arch:
            raise ValidationError(f"无法解析平台标识: {text!r}")
        return cls(os=os_name, arch=arch)

    @classmethod
    def host(cls) -> Platform:
        """当前宿主平台"""
        return cls(os=_norm_os(_host.system()), arch=_norm_arch(_host.machine()))


@dataclass(frozen=True)
class Predicate:
    """带标签的平台谓词，标签用于确定性序列化与日志"""

    label: str
    fn: Callable[[Platform], bool]

    def __call__(self, target: Platform) -> bool:
        return bool(self.fn(target))

    def __str__(self) -> str:
        return self.label


def always() -> Predicate:
    return Predicate("*", lambda _p: True)


def on_os(*names: str) -> Predicate:
    wanted = frozenset(_norm_os(n) for n in names)
    return Predicate("|".join(sorted(wanted)), lambda p: p.os in wanted)


def on_arch(*names: str) -> Predicate:
    wanted = frozenset(_norm_arch(n) for n in names)
    label = "|".join(f"arch:{a}" for a in sorted(wanted))
    return Predicate(label, lambda p: p.arch in wanted)


def on_system(*systems: str) -> Predicate:
    wanted = frozenset(Platform.parse(s).system for s in systems)
    return Predicate("|".join(sorted(wanted)), lambda p: p.system in wanted)


def negate(pred: Predicate) -> Predicate:
    return Predicate(f"!{pred.label}", lambda p: not pred(p))


def any_of(*preds: Predicate) -> Predicate:
    if len(preds) == 1:
        return preds[0]
    label = "|".join(p.label for p in preds)
    return Predicate(label, lambda p: any(pr(p) for pr in preds))


def _parse_entry(entry: str) -> Predicate:
    text = entry.strip()
    if not text:
        raise ValidationError("平台条件不能为空字符串")
    if text.startswith("arch:"):
        return on_arch(text[len("arch:"):])
    if "-" in text or "/" in text:
        return on_system(text)
    os_name = _norm_os(text)
    if os_name not in KNOWN_OS:
        raise ValidationError(
            f"未知操作系统 '{text}'，可用: {sorted(KNOWN_OS)}"
        )
    return on_os(os_name)


def parse_platforms(entries: list[str] | str | None) -> Predicate:
    """将 YAML platforms 字段转换为谓词"""
    if not entries:
        return always()
    if isinstance(entries, str):
        entries = [entries]

    include: list[Predicate] = []
    exclude: list[Predicate] = []
    for entry in entries:
        if not isinstance(entry, str):
            raise ValidationError(f"平台条件必须是字符串: {entry!r}")
        if entry.startswith("!"):
            exclude.append(_parse_entry(entry[1:]))
        else:
            include.append(_parse_entry(entry))

    base = any_of(*include) if include else always()
    if not exclude:
        return base
    blocked = any_of(*exclude)
    label = f"!{blocked.label}"
    if include:
        label = f"{base.label},{label}"
    return Predicate(label, lambda p: base(p) and not blocked(p))
