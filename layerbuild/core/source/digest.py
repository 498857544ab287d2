"""源码内容摘要

哈希写法（比较时统一按原始摘要字节）:
  - SRI:   sha256-<base64>     （Nix cargoSha256 写法，允许省略 '=' 填充）
  - 前缀:  sha256:<hex>
  - 裸值:  64 位十六进制

目录摘要按相对路径排序遍历，覆盖路径、可执行位、符号链接目标与文件内容，
忽略 .git 目录，因此同一源码树在不同机器、不同检出方式下摘要一致。
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import re
import stat
from pathlib import Path

from layerbuild.core.exceptions import ValidationError

_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_IGNORED_DIRS = frozenset((".git",))
_CHUNK = 64 * 1024
DIGEST_SIZE = 32


def parse_hash(text: str) -> bytes:
    """解析固定哈希为 32 字节摘要

    异常:
        ValidationError: 格式无法识别或长度不对
    """
    value = (text or "").strip()
    if not value:
        raise ValidationError("source_hash 不能为空")
    try:
        if value.startswith("sha256-"):
            b64 = value[len("sha256-"):]
            raw = base64.b64decode(b64 + "=" * (-len(b64) % 4), validate=True)
        elif value.startswith("sha256:"):
            raw = bytes.fromhex(value[len("sha256:"):])
        elif _HEX_RE.match(value):
            raw = bytes.fromhex(value)
        else:
            raise ValidationError(
                f"不支持的哈希格式: {value!r}（需 sha256-<base64> / sha256:<hex> / 64 位 hex）"
            )
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"哈希值无法解码: {value!r}: {e}") from e
    if len(raw) != DIGEST_SIZE:
        raise ValidationError(f"sha256 摘要长度应为 32 字节，实际 {len(raw)}: {value!r}")
    return raw


def format_sri(raw: bytes) -> str:
    return "sha256-" + base64.b64encode(raw).decode("ascii")


def _hash_file(h: hashlib._Hash, path: Path) -> None:
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)


def digest_path(path: Path) -> bytes:
    """计算文件或目录的内容摘要"""
    if path.is_file() and not path.is_symlink():
        h = hashlib.sha256()
        _hash_file(h, path)
        return h.digest()
    if not path.is_dir():
        raise FileNotFoundError(f"源码路径不存在: {path}")

    h = hashlib.sha256()
    for root, dirs, files in os.walk(path):
        dirs[:] = sorted(d for d in dirs if d not in _IGNORED_DIRS)
        root_path = Path(root)
        for name in sorted([*dirs, *files]):
            entry = root_path / name
            rel = entry.relative_to(path).as_posix().encode("utf-8")
            st = entry.lstat()
            if stat.S_ISLNK(st.st_mode):
                h.update(b"l\0" + rel + b"\0" + os.readlink(entry).encode("utf-8") + b"\0")
            elif stat.S_ISDIR(st.st_mode):
                h.update(b"d\0" + rel + b"\0")
            else:
                kind = b"x" if st.st_mode & stat.S_IXUSR else b"f"
                h.update(kind + b"\0" + rel + b"\0" + str(st.st_size).encode() + b"\0")
                _hash_file(h, entry)
    return h.digest()
