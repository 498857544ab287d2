"""CLI — 构建命令"""

from __future__ import annotations

import json

import click

from layerbuild.core.exceptions import ValidationError
from layerbuild.core.platforms import Platform


def parse_platform(value: str | None) -> Platform | None:
    if not value:
        return None
    try:
        return Platform.parse(value)
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="--platform") from e


def register(group: click.Group) -> None:
    group.add_command(build)


@click.command()
@click.argument("name")
@click.option("--platform", "-p", "platform_text", default=None, help="目标平台，如 x86_64-linux")
@click.option("--checks/--no-checks", default=None, help="启用/禁用检查流水线（默认取描述的 do_check）")
@click.option("--out-link", "-o", default="", help="产物输出目录")
@click.option("--registry", default="", help="包描述注册表路径（默认取配置）")
@click.option("--overlay", multiple=True, help="额外叠加层（可多次指定，按顺序应用）")
@click.option("--strict", is_flag=True, help="叠加层覆盖其他叠加层写入的字段时报错")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出构建报告")
@click.pass_context
def build(
    ctx: click.Context, name: str, platform_text: str | None,
    checks: bool | None, out_link: str, registry: str,
    overlay: tuple[str, ...], strict: bool, as_json: bool,
) -> None:
    """构建包 NAME 并按需执行检查流水线"""
    from layerbuild.services.build_service import BuildRequest, BuildService
    from layerbuild.services.descriptor_service import DescriptorService

    service = BuildService(DescriptorService(registry, strict=strict))
    outcome = service.build(BuildRequest(
        package=name,
        platform=parse_platform(platform_text),
        enable_checks=checks,
        output_path=out_link,
        overlays=list(overlay),
    ))

    if as_json:
        click.echo(json.dumps(outcome.to_report(), indent=2, ensure_ascii=False))
    elif outcome.error is not None:
        click.echo(f"错误 [{outcome.error.code}]: {outcome.error}", err=True)
    else:
        click.echo(f"构建完成: {name} ({outcome.platform})")
        if outcome.artifact_path:
            click.echo(f"  产物: {outcome.artifact_path}")
        if outcome.pipeline is not None:
            for p in outcome.pipeline.phases:
                click.echo(f"  [{p.status.value:7s}] {p.name}")
            failed = outcome.pipeline.failed_phase
            if failed is not None:
                click.echo(f"检查阶段失败: {failed.name} (rc={failed.returncode})", err=True)
                if failed.output:
                    click.echo(failed.output, err=True)
    ctx.exit(outcome.exit_code)
