"""CLI — 源码拉取命令"""

from __future__ import annotations

import click

from upsource.cli import _svc, handle_errors
from upsource.core.models import (
    AcquisitionOutcome,
    OutcomeKind,
    ProgressEvent,
    ProgressStatus,
    SyncResult,
)
from upsource.services.progress import ProgressBoard
from upsource.services.pull_service import PullService


def register(group: click.Group) -> None:
    group.add_command(pull)
    group.add_command(sync)
    group.add_command(source)


_KIND_LABELS = {
    OutcomeKind.CACHED: "缓存",
    OutcomeKind.ACQUIRED: "完成",
    OutcomeKind.SKIPPED: "跳过",
    OutcomeKind.FAILED: "失败",
}


def _render_event(event: ProgressEvent) -> None:
    if event.status in (ProgressStatus.PENDING, ProgressStatus.COMPLETE):
        return
    label = f"{event.package_name}@{event.version}" if event.version else event.package_name
    click.echo(f"  [{event.status.value}] {label}", err=True)


def _describe(outcome: AcquisitionOutcome) -> str:
    label = f"{outcome.package_name}@{outcome.version}" if outcome.version else outcome.package_name
    line = f"  {_KIND_LABELS[outcome.kind]}  {label}"
    if outcome.kind == OutcomeKind.SKIPPED:
        return f"{line}  ({outcome.reason})"
    if outcome.kind == OutcomeKind.FAILED:
        return f"{line}  {outcome.error}"
    suffix = "  (默认分支)" if outcome.from_fallback else ""
    return f"{line} -> {outcome.path}{suffix}"


def _report(result: SyncResult) -> None:
    for outcome in result.outcomes:
        click.echo(_describe(outcome))
    click.echo(
        f"共 {len(result.outcomes)} 个包: "
        f"缓存 {result.count(OutcomeKind.CACHED)}, "
        f"新获取 {result.count(OutcomeKind.ACQUIRED)}, "
        f"跳过 {result.count(OutcomeKind.SKIPPED)}, "
        f"失败 {result.count(OutcomeKind.FAILED)}"
    )
    click.echo(f"缓存目录: {result.store_dir}")
    if result.count(OutcomeKind.FAILED):
        click.get_current_context().exit(1)


def _pull_service() -> PullService:
    svc = _svc().pull
    svc.listener = ProgressBoard(on_update=_render_event)
    return svc


@click.command()
@click.argument("names", nargs=-1, required=True)
@handle_errors
def pull(names: tuple[str, ...]) -> None:
    """拉取指定包的上游源码（版本取自 node_modules 中的已安装版本）"""
    _report(_pull_service().pull(list(names)))


@click.command()
@handle_errors
def sync() -> None:
    """拉取项目 package.json 中声明的全部依赖"""
    _report(_pull_service().sync())


@click.command()
@click.argument("name")
@handle_errors
def source(name: str) -> None:
    """确保已安装包的源码可用，输出源码路径"""
    result = _svc().pull.ensure_source(name)
    click.echo(f"{result.package_name}@{result.version}")
    click.echo(f"  仓库: {result.repository_path}")
    click.echo(f"  包目录: {result.package_path}")
    if result.from_cache:
        click.echo("  (来自缓存)")
