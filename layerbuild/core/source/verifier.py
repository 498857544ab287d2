"""源码固定校验

持有 (source_ref, source_hash, version) 三元组，拉取后计算摘要并比对。
不匹配时在任何依赖解析、构建步骤之前抛 SourcePinMismatch；
匹配后源码在构建期间保持只读，构建在其可写副本中进行：

    verifier = SourcePinVerifier(store_root=".layerbuild/cache/store")
    with verifier.acquire(pin) as src:
        work = src.materialize(work_dir / "source")
        ...
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from layerbuild.core.exceptions import FetchError, SourcePinMismatch, ValidationError
from layerbuild.core.source.digest import digest_path, format_sri, parse_hash
from layerbuild.core.source.fetcher import SourceFetcher, select_fetcher
from layerbuild.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

_WRITE_BITS = stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH


def _set_writable(path: Path, writable: bool) -> None:
    """递归增删写权限位（跳过符号链接）"""
    def apply(p: Path) -> None:
        if p.is_symlink():
            return
        mode = p.stat().st_mode
        new_mode = (mode | stat.S_IWUSR) if writable else (mode & ~_WRITE_BITS)
        if new_mode != mode:
            os.chmod(p, new_mode)

    if not path.exists():
        return
    targets = [path]
    if path.is_dir() and not path.is_symlink():
        targets.extend(path.rglob("*"))
    for p in targets:
        apply(p)


@dataclass(frozen=True)
class SourcePin:
    """源码固定：定位符 + 内容哈希 + 版本"""

    source_ref: str
    source_hash: str
    version: str = ""

    def __post_init__(self) -> None:
        if not self.source_ref:
            raise ValidationError("source_ref 为必填")
        parse_hash(self.source_hash)

    @property
    def expected_digest(self) -> bytes:
        return parse_hash(self.source_hash)


@dataclass(frozen=True)
class VerifiedSource:
    """校验通过的只读源码"""

    pin: SourcePin
    path: Path
    digest: str
    store_dir: Path   # verify() 创建的本次调用专属目录，release 时只删除它

    def materialize(self, dest: Path) -> Path:
        """复制为可写的构建目录；tar 归档解包，单一顶层目录时返回该目录"""
        dest.mkdir(parents=True, exist_ok=True)
        if self.path.is_dir():
            target = dest / self.path.name
            shutil.copytree(self.path, target, symlinks=True)
            _set_writable(target, True)
            return target
        if tarfile.is_tarfile(self.path):
            with tarfile.open(self.path) as tf:
                tf.extractall(path=str(dest), filter="data")  # noqa: S202
            _set_writable(dest, True)
            children = [p for p in dest.iterdir() if not p.name.startswith(".")]
            if len(children) == 1 and children[0].is_dir():
                return children[0]
            return dest
        target = dest / self.path.name
        shutil.copy2(self.path, target)
        _set_writable(target, True)
        return dest


class SourcePinVerifier:
    """源码固定校验器"""

    def __init__(
        self,
        store_root: str | Path,
        fetcher: SourceFetcher | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.store_root = Path(store_root)
        self.fetcher = fetcher
        self.executor = executor

    def verify(self, pin: SourcePin) -> VerifiedSource:
        """拉取并校验，返回只读的 VerifiedSource

        异常:
            SourcePinMismatch: 摘要不一致（拉取内容已清理）
            FetchError: 拉取失败
        """
        self.store_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix="src-", dir=str(self.store_root)))
        fetcher = self.fetcher or select_fetcher(pin.source_ref, executor=self.executor)
        try:
            content = Path(fetcher.fetch(pin.source_ref, scratch))
            if not content.resolve().is_relative_to(scratch.resolve()):
                raise FetchError(f"拉取结果不在拉取目录内: {content} (应位于 {scratch})")
            actual = digest_path(content)
        except OSError as e:
            shutil.rmtree(scratch, ignore_errors=True)
            raise FetchError(f"源码拉取失败 {pin.source_ref}: {e}") from e
        except Exception:
            shutil.rmtree(scratch, ignore_errors=True)
            raise

        if actual != pin.expected_digest:
            shutil.rmtree(scratch, ignore_errors=True)
            raise SourcePinMismatch(pin.source_ref, pin.source_hash, format_sri(actual))

        _set_writable(content, False)
        logger.info("源码校验通过: %s (%s)", pin.source_ref, format_sri(actual))
        return VerifiedSource(
            pin=pin, path=content, digest=format_sri(actual), store_dir=scratch,
        )

    def release(self, source: VerifiedSource) -> None:
        """恢复写权限并删除本次调用的拉取目录"""
        _set_writable(source.store_dir, True)
        shutil.rmtree(source.store_dir, ignore_errors=True)

    @contextmanager
    def acquire(self, pin: SourcePin) -> Iterator[VerifiedSource]:
        """作用域内只读持有已校验源码"""
        source = self.verify(pin)
        try:
            yield source
        finally:
            self.release(source)
