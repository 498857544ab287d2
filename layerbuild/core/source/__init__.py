"""源码固定校验

- digest.py: 哈希解析与内容摘要
- fetcher.py: 本地 / Git / 归档拉取器
- verifier.py: 拉取、比对、只读持有
"""

from layerbuild.core.source.digest import digest_path, format_sri, parse_hash
from layerbuild.core.source.fetcher import (
    ArchiveFetcher,
    GitFetcher,
    LocalFetcher,
    SourceFetcher,
    select_fetcher,
)
from layerbuild.core.source.verifier import SourcePin, SourcePinVerifier, VerifiedSource

__all__ = [
    "digest_path",
    "format_sri",
    "parse_hash",
    "SourceFetcher",
    "LocalFetcher",
    "GitFetcher",
    "ArchiveFetcher",
    "select_fetcher",
    "SourcePin",
    "SourcePinVerifier",
    "VerifiedSource",
]
