"""upsource 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
全局选项 --cwd / --global 决定项目目录与缓存根目录，构造出的服务容器放在 click 上下文中。
"""

from __future__ import annotations

import functools
import os
from pathlib import Path
from typing import Any, Callable

import click

from upsource import __version__
from upsource.core.config import Config
from upsource.core.exceptions import UpsourceError
from upsource.services.container import ServiceContainer
from upsource.utils.logger import setup_logging


def _svc() -> ServiceContainer:
    """当前命令的服务容器"""
    return click.get_current_context().find_object(ServiceContainer)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """把业务异常转换为 ClickException（退出码 1，消息输出到 stderr）"""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except UpsourceError as e:
            raise click.ClickException(f"[{e.code}] {e}") from e

    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--cwd", "cwd", default=".", type=click.Path(file_okay=False, path_type=Path),
    help="项目目录（默认当前目录）",
)
@click.option("--global", "use_global", is_flag=True, default=None, help="使用用户全局缓存目录")
@click.pass_context
def main(ctx: click.Context, cwd: Path, use_global: bool | None) -> None:
    """upsource - 拉取并缓存依赖包的上游源码"""
    setup_logging(
        level=os.getenv("UPSOURCE_LOG_LEVEL", "INFO"),
        json_output=os.getenv("UPSOURCE_LOG_JSON", "") == "1",
    )
    try:
        config = Config.discover(cwd, use_global_store=use_global or None)
    except UpsourceError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e
    ctx.obj = ServiceContainer(config, cwd)


# 注册各领域子命令
from upsource.cli.cmd_pull import register as _reg_pull  # noqa: E402
from upsource.cli.cmd_cache import register as _reg_cache  # noqa: E402

_reg_pull(main)
_reg_cache(main)
