"""CLI — 缓存查看与清理命令"""

from __future__ import annotations

import click

from upsource.cli import _svc, handle_errors
from upsource.core.prune import KeepRules
from upsource.core.status import cache_status


def register(group: click.Group) -> None:
    group.add_command(status)
    group.add_command(prune)
    group.add_command(list_cached)
    group.add_command(get_cached)


@click.command()
@handle_errors
def status() -> None:
    """对照项目依赖显示缓存状态"""
    container = _svc()
    entries = cache_status(container.store, container.manifest)
    if not entries:
        click.echo("项目没有声明依赖。")
        return
    for e in entries:
        marker = "缺失" if e.is_missing else "就绪"
        target = e.target_version or "-"
        cached = ", ".join(e.cached_versions) or "-"
        click.echo(
            f"  [{marker}] {e.package_name:30s} {e.declared_range:12s} "
            f"目标 {target} ({e.target_version_source})  已缓存: {cached}"
        )
    missing = sum(1 for e in entries if e.is_missing)
    click.echo(f"共 {len(entries)} 个依赖，缺失 {missing} 个。缓存目录: {container.store.root}")


@click.command()
@click.option("--keep-latest", type=click.IntRange(min=0), default=1, show_default=True,
              help="每个包保留最新的 N 个版本（0 表示关闭）")
@click.option("--keep-project-dependencies/--no-keep-project-dependencies", default=True,
              help="保留项目依赖的目标版本")
@click.option("--keep", "keep", multiple=True, help="显式保留 name@version（可多次指定）")
@click.option("--dry-run", is_flag=True, help="只报告不删除")
@handle_errors
def prune(keep_latest: int, keep_project_dependencies: bool, keep: tuple[str, ...], dry_run: bool) -> None:
    """按保留规则清理缓存"""
    rules = KeepRules(
        keep_latest=keep_latest,
        keep_project_dependencies=keep_project_dependencies,
        keep=list(keep),
        dry_run=dry_run,
    )
    result = _svc().prune.prune(rules)
    for warning in result.warnings:
        click.echo(f"警告: {warning}", err=True)
    verb = "将删除" if result.dry_run else "已删除"
    for r in result.removed:
        click.echo(f"  {verb} {r.package_name}@{r.version}  ({r.reason})")
    click.echo(
        f"{verb} {len(result.removed)} 个，保留 {result.kept} 个 "
        f"({result.total_before} -> {result.total_after})"
    )


@click.command(name="list")
@handle_errors
def list_cached() -> None:
    """列出全部已缓存的源码"""
    entries = _svc().store.list_entries()
    if not entries:
        click.echo("缓存为空。")
        return
    for e in entries:
        click.echo(f"  {e.package_name}@{e.version}  {e.path}")


@click.command(name="get")
@click.argument("name")
@click.option("--version", "version", default=None, help="指定版本")
@handle_errors
def get_cached(name: str, version: str | None) -> None:
    """输出某个包已缓存版本的路径"""
    for e in _svc().store.get(name, version):
        click.echo(f"{e.package_name}@{e.version}  {e.path}")
