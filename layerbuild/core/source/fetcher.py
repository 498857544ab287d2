"""源码拉取器

拉取本身属于外部协作者，这里只负责把 source_ref 指向的内容放到给定目录，
摘要比对由 SourcePinVerifier 完成。

source_ref 形式:
  - /abs/path 或 ./rel/path 或 file:///abs/path   本地文件/目录
  - git+https://host/repo?rev=<commit>            Git 仓库指定提交
  - https://host/pkg-1.0.tar.gz                   远程归档（摘要针对归档文件本身）
"""

from __future__ import annotations

import logging
import re
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Protocol
from urllib.parse import parse_qs, unquote, urlparse

from layerbuild.core.exceptions import ExecutionError, FetchError, ValidationError
from layerbuild.utils.shell import CommandExecutor, LocalExecutor, run_cmd

logger = logging.getLogger(__name__)

_SAFE_REV_RE = re.compile(r"^[a-zA-Z0-9_./@\-]+$")
_ALLOWED_ARCHIVE_SCHEMES = frozenset(("http", "https"))


class SourceFetcher(Protocol):
    """源码拉取器协议"""

    def fetch(self, source_ref: str, dest: Path) -> Path:
        """将 source_ref 的内容放入 dest 目录，返回内容路径（文件或目录）"""
        ...


class LocalFetcher:
    """本地路径来源"""

    def fetch(self, source_ref: str, dest: Path) -> Path:
        if source_ref.startswith("file://"):
            src = Path(unquote(urlparse(source_ref).path))
        else:
            src = Path(source_ref)
        if not src.exists():
            raise FetchError(f"本地源码不存在: {src}")
        dest.mkdir(parents=True, exist_ok=True)
        target = dest / (src.name or "src")
        if src.is_dir():
            shutil.copytree(
                src, target, symlinks=True,
                ignore=shutil.ignore_patterns(".git"),
            )
        else:
            shutil.copy2(src, target)
        logger.info("本地源码已复制: %s -> %s", src, target)
        return target


class GitFetcher:
    """Git 仓库来源，必须指定 rev"""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self.executor = executor or LocalExecutor()

    @staticmethod
    def parse_ref(source_ref: str) -> tuple[str, str]:
        """拆分 git+<url>?rev=<rev> 为 (url, rev)"""
        raw = source_ref[len("git+"):] if source_ref.startswith("git+") else source_ref
        parsed = urlparse(raw)
        revs = parse_qs(parsed.query).get("rev", [])
        if not revs or not revs[0]:
            raise ValidationError(f"Git 源码需要 ?rev=<commit>: {source_ref}")
        rev = revs[0]
        if not _SAFE_REV_RE.match(rev):
            raise ValidationError(f"rev 包含非法字符: {rev}")
        url = parsed._replace(query="", fragment="").geturl()
        return url, rev

    def fetch(self, source_ref: str, dest: Path) -> Path:
        url, rev = self.parse_ref(source_ref)
        dest.mkdir(parents=True, exist_ok=True)
        target = dest / "src"
        try:
            run_cmd(
                ["git", "clone", "--quiet", url, str(target)],
                executor=self.executor, label="git clone",
            )
            run_cmd(
                ["git", "checkout", "--quiet", rev],
                executor=self.executor, cwd=str(target), label="git checkout",
            )
        except ExecutionError as e:
            raise FetchError(f"Git 拉取失败 {url}@{rev}: {e}") from e
        logger.info("Git 源码就绪: %s@%s -> %s", url, rev, target)
        return target


class ArchiveFetcher:
    """远程归档来源"""

    def fetch(self, source_ref: str, dest: Path) -> Path:
        parsed = urlparse(source_ref)
        if parsed.scheme not in _ALLOWED_ARCHIVE_SCHEMES:
            raise ValidationError(
                f"不允许的 URL 协议 '{parsed.scheme}'，仅支持 http/https: {source_ref}"
            )
        filename = parsed.path.rstrip("/").split("/")[-1]
        if not filename:
            raise ValidationError(f"无法从 URL 解析文件名: {source_ref}")
        dest.mkdir(parents=True, exist_ok=True)
        target = dest / filename
        logger.info("下载源码归档: %s", source_ref)
        try:
            urllib.request.urlretrieve(source_ref, str(target))  # nosec B310
        except (urllib.error.URLError, OSError) as e:
            target.unlink(missing_ok=True)
            raise FetchError(f"下载失败: {source_ref} - {e}") from e
        return target


def select_fetcher(
    source_ref: str, executor: CommandExecutor | None = None,
) -> SourceFetcher:
    """按 source_ref 形式选择拉取器"""
    if source_ref.startswith("git+"):
        return GitFetcher(executor=executor)
    scheme = urlparse(source_ref).scheme
    if scheme in _ALLOWED_ARCHIVE_SCHEMES:
        return ArchiveFetcher()
    return LocalFetcher()
