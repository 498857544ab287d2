"""layerbuild 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os

import click

from layerbuild import __version__
from layerbuild.core.config import init_config
from layerbuild.core.exceptions import ConfigError
from layerbuild.utils.logger import setup_logging


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_path", default="configs/layerbuild.yml",
    help="配置文件路径（不存在则使用默认配置）",
)
def main(config_path: str) -> None:
    """layerbuild - 声明式包构建与依赖组合引擎"""
    setup_logging(
        level=os.getenv("LAYERBUILD_LOG_LEVEL", "INFO"),
        json_output=os.getenv("LAYERBUILD_LOG_JSON", "") == "1",
    )
    try:
        init_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


# 注册各领域子命令
from layerbuild.cli.cmd_build import register as _reg_build  # noqa: E402
from layerbuild.cli.cmd_deps import register as _reg_deps  # noqa: E402
from layerbuild.cli.cmd_packages import register as _reg_packages  # noqa: E402

_reg_build(main)
_reg_deps(main)
_reg_packages(main)
