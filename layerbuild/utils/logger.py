"""layerbuild 日志配置

两种输出：终端可读文本，以及 CI 矩阵构建用的单行 JSON。
构建上下文（包名、目标平台、检查阶段）通过 extra= 附加到记录上，
JSON 输出中作为独立字段出现，便于按平台 / 阶段过滤日志。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"

_CONTEXT_FIELDS = ("package", "platform", "phase")


class JSONFormatter(logging.Formatter):
    """单行 JSON 格式器

    示例输出:
        {"ts": "2024-01-01T12:00:00+00:00", "level": "ERROR",
         "logger": "layerbuild.core.pipeline", "msg": "检查阶段失败...",
         "where": "pipeline:87", "phase": "lint"}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "ts": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(
            (key, getattr(record, key)) for key in _CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def reset_logging() -> None:
    """移除并关闭根日志器上的全部 handler"""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器，输出到 stderr（stdout 留给命令结果与 --json 报告）

    重复调用是安全的：每次都会先 reset_logging()。
    """
    reset_logging()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
