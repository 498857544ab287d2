"""CLI — 依赖解析命令"""

from __future__ import annotations

import click

from layerbuild.cli.cmd_build import parse_platform


def register(group: click.Group) -> None:
    group.add_command(deps)


@click.command()
@click.argument("name")
@click.option("--platform", "-p", "platform_text", default=None, help="目标平台，如 aarch64-darwin")
@click.option("--registry", default="", help="包描述注册表路径（默认取配置）")
@click.option("--overlay", multiple=True, help="额外叠加层（可多次指定）")
@click.option("--probe/--no-probe", default=True, help="是否探测本机可用性（--no-probe 只做平台过滤）")
@click.pass_context
def deps(
    ctx: click.Context, name: str, platform_text: str | None,
    registry: str, overlay: tuple[str, ...], probe: bool,
) -> None:
    """列出包 NAME 在目标平台上的依赖集合"""
    from layerbuild.core.dep import DependencyResolver, default_probe, filter_for_platform
    from layerbuild.core.exceptions import LayerBuildError, MissingDependency
    from layerbuild.core.platforms import Platform
    from layerbuild.services.build_service import EXIT_DESCRIPTOR, EXIT_MISSING_DEPENDENCY
    from layerbuild.services.descriptor_service import DescriptorService

    target = parse_platform(platform_text) or Platform.host()
    try:
        descriptor = DescriptorService(registry).describe(name, list(overlay))
    except LayerBuildError as e:
        click.echo(f"错误 [{e.code}]: {e}", err=True)
        ctx.exit(EXIT_DESCRIPTOR)
        return

    if not probe:
        specs = filter_for_platform(descriptor.dependency_specs, target)
        if not specs:
            click.echo(f"{name} 在 {target} 上没有依赖。")
        for spec in specs:
            opt = " (可选)" if spec.optional else ""
            click.echo(f"  {spec.name:20s} {spec.kind.value:13s}{opt}")
        return

    try:
        resolved = DependencyResolver(default_probe()).resolve(descriptor.dependency_specs, target)
    except MissingDependency as e:
        click.echo(f"错误 [{e.code}]: {e}", err=True)
        ctx.exit(EXIT_MISSING_DEPENDENCY)
        return
    for r in resolved:
        where = r.location or r.reason
        click.echo(f"  {r.name:20s} {r.spec.kind.value:13s} [{r.status:8s}] {where}")
