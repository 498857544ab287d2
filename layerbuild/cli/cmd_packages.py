"""CLI — 包描述查看与注册表管理命令"""

from __future__ import annotations

import json

import click
import yaml

from layerbuild.core.exceptions import LayerBuildError


def register(group: click.Group) -> None:
    group.add_command(show)
    group.add_command(package)


@click.command()
@click.argument("name")
@click.option("--registry", default="", help="包描述注册表路径（默认取配置）")
@click.option("--overlay", multiple=True, help="额外叠加层（可多次指定）")
@click.option("--strict", is_flag=True, help="叠加层冲突时报错")
@click.option("--audit", is_flag=True, help="同时输出叠加层写入记录")
def show(
    name: str, registry: str, overlay: tuple[str, ...],
    strict: bool, audit: bool,
) -> None:
    """输出组合后的包描述（规范化 JSON）"""
    from layerbuild.services.descriptor_service import DescriptorService

    try:
        composition = DescriptorService(registry, strict=strict).compose(name, list(overlay))
        descriptor = composition.descriptor()
    except LayerBuildError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e

    if not audit:
        click.echo(descriptor.to_json())
        return
    click.echo(json.dumps({
        "descriptor": descriptor.to_dict(),
        "audit": [entry.to_dict() for entry in composition.audit],
    }, indent=2, ensure_ascii=False, default=str))


@click.group()
def package() -> None:
    """包描述注册表管理"""


@package.command(name="list")
@click.option("--registry", default="", help="包描述注册表路径（默认取配置）")
def list_packages(registry: str) -> None:
    """列出注册表中的包"""
    from layerbuild.services.descriptor_service import DescriptorService

    packages = DescriptorService(registry).list_packages()
    if not packages:
        click.echo("没有已注册的包。")
        return
    for p in packages:
        click.echo(f"  {p['name']:20s} {p['version']:12s} {p['source']}  {p['description']}")


@package.command(name="add")
@click.argument("name")
@click.option("--from-file", "entry_file", required=True,
              type=click.Path(exists=True, dir_okay=False), help="包描述 YAML 文件")
@click.option("--registry", default="", help="包描述注册表路径（默认取配置）")
@click.option("--force", is_flag=True, help="覆盖已存在的同名包")
def add_package(name: str, entry_file: str, registry: str, force: bool) -> None:
    """从 YAML 文件注册包描述（写入前校验）"""
    from layerbuild.services.descriptor_service import DescriptorService
    from layerbuild.utils.yaml_io import load_yaml

    try:
        entry = load_yaml(entry_file)
    except (ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"包描述文件无效 {entry_file}: {e}") from e
    if not entry:
        raise click.ClickException(f"包描述文件为空: {entry_file}")

    try:
        reg = DescriptorService(registry).registry
        if name in reg.names() and not force:
            raise click.ClickException(f"包已存在: {name}（使用 --force 覆盖）")
        reg.register(name, entry)
    except LayerBuildError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e
    click.echo(f"已注册: {name}")


@package.command(name="remove")
@click.argument("name")
@click.option("--registry", default="", help="包描述注册表路径（默认取配置）")
def remove_package(name: str, registry: str) -> None:
    """从注册表移除包"""
    from layerbuild.services.descriptor_service import DescriptorService

    if DescriptorService(registry).registry.remove(name):
        click.echo(f"已移除: {name}")
    else:
        click.echo(f"包不存在: {name}")


package.add_command(show)
