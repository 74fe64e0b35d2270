"""源码获取策略编排

下载策略（按顺序）:
  1. 仓库带 subdirectory（monorepo）: 稀疏 Git 检出，可固定到解析出的 tag
  2. 有 tag: 下载 tag 源码包；仅 404 视为"换下一个策略"，其他失败直接抛出
  3. 默认分支源码包: main → master，第一个成功即返回

全部失败时抛 StrategyExhaustedError，列出每个尝试过的地址。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from upsource.core.exceptions import (
    CacheError,
    DownloadError,
    StrategyExhaustedError,
    UpsourceError,
)
from upsource.core.models import CacheKey, RepositoryDescriptor
from upsource.services.source.locator import default_branch_archive_urls, tag_archive_url
from upsource.services.source.sources import SparseGitSource, TarballSource

logger = logging.getLogger(__name__)


@dataclass
class AcquiredSource:
    """一次成功获取的结果"""

    path: Path
    from_fallback: bool
    source: str  # 实际使用的地址或 "git:<slug>/<subdir>"


class SourceAcquirer:
    """按策略链获取源码并写入缓存"""

    def __init__(self, tarball: TarballSource, sparse: SparseGitSource) -> None:
        self._tarball = tarball
        self._sparse = sparse

    def download(
        self, repo: RepositoryDescriptor, key: CacheKey, tag: str | None,
    ) -> AcquiredSource:
        try:
            if repo.subdirectory:
                path = self._sparse.download(repo, key, repo.subdirectory, tag)
                return AcquiredSource(
                    path=path, from_fallback=tag is None,
                    source=f"git:{repo.slug}/{repo.subdirectory}",
                )
            return self._download_tarball(repo, key, tag)
        except UpsourceError:
            raise
        except OSError as e:
            raise CacheError(f"{key} 写入缓存失败: {e}") from e

    def _download_tarball(
        self, repo: RepositoryDescriptor, key: CacheKey, tag: str | None,
    ) -> AcquiredSource:
        attempted: list[str] = []

        if tag:
            url = tag_archive_url(repo, tag)
            attempted.append(url)
            try:
                return AcquiredSource(
                    path=self._tarball.download(url, key), from_fallback=False, source=url,
                )
            except DownloadError as e:
                if not e.not_found:
                    raise
                logger.info("tag 源码包不存在 (404)，回退默认分支: %s", url)

        last_error: Exception | None = None
        for url in default_branch_archive_urls(repo):
            attempted.append(url)
            try:
                path = self._tarball.download(url, key)
            except (UpsourceError, OSError) as e:
                logger.info("默认分支源码包获取失败: %s - %s", url, e)
                last_error = e
                continue
            logger.info("使用默认分支源码: %s -> %s", key, url)
            return AcquiredSource(path=path, from_fallback=True, source=url)

        detail = str(last_error) if last_error else f"{key} 源码下载失败"
        status = last_error.status if isinstance(last_error, DownloadError) else None
        raise StrategyExhaustedError(
            f"{detail} (尝试过: {', '.join(attempted)})", attempted=attempted, status=status,
        )
