"""服务容器 — 统一依赖注入，消除各组件的裸构造

所有组件通过容器获取，同一容器内的实例共享（同一个缓存、同一个 HTTP 抓取器）。
配置与项目目录在构造时显式传入，组件不自行查找全局缓存根目录。

依赖关系图（→ 表示依赖）:
  pull     → store, manifest, locator, tags, acquirer
  locator  → registry → fetcher
  acquirer → fetcher, store, executor
  prune    → store, manifest

用法:
    cfg = Config.discover(cwd)
    container = ServiceContainer(cfg, cwd)
    result = container.pull.sync()        # 懒加载
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from upsource.core.config import Config

if TYPE_CHECKING:
    from upsource.core.manifest import ProjectManifest
    from upsource.core.prune import PruneEngine
    from upsource.core.store import CacheStore
    from upsource.services.progress import ProgressListener
    from upsource.services.pull_service import PullService
    from upsource.services.source.acquirer import SourceAcquirer
    from upsource.services.source.locator import RepositoryLocator
    from upsource.services.source.registry import RegistryClient
    from upsource.services.source.tags import TagResolver
    from upsource.utils.net import RetryingFetcher
    from upsource.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器 — 每个实例绑定一份配置和一个项目目录"""

    def __init__(
        self,
        config: Config | None = None,
        cwd: str | Path = ".",
        *,
        executor: CommandExecutor | None = None,
        listener: ProgressListener | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        self._config = config or Config()
        self._cwd = Path(cwd).resolve()
        self._executor = executor
        self._listener = listener

    @property
    def config(self) -> Config:
        return self._config

    @property
    def cwd(self) -> Path:
        return self._cwd

    @property
    def store_dir(self) -> Path:
        return self._config.resolve_store_dir(self._cwd).resolve()

    # ---- 核心 ----

    @property
    def store(self) -> CacheStore:
        if "store" not in self._instances:
            from upsource.core.store import CacheStore
            self._instances["store"] = CacheStore(self.store_dir)
        return self._instances["store"]  # type: ignore[return-value]

    @property
    def manifest(self) -> ProjectManifest:
        if "manifest" not in self._instances:
            from upsource.core.manifest import ProjectManifest
            self._instances["manifest"] = ProjectManifest(self._cwd)
        return self._instances["manifest"]  # type: ignore[return-value]

    @property
    def prune(self) -> PruneEngine:
        if "prune" not in self._instances:
            from upsource.core.prune import PruneEngine
            self._instances["prune"] = PruneEngine(self.store, self.manifest)
        return self._instances["prune"]  # type: ignore[return-value]

    # ---- 获取流水线 ----

    @property
    def fetcher(self) -> RetryingFetcher:
        if "fetcher" not in self._instances:
            from upsource.utils.net import RetryingFetcher
            self._instances["fetcher"] = RetryingFetcher(
                max_attempts=self._config.http_max_attempts,
                backoff_base=self._config.http_backoff_base,
                timeout=self._config.http_timeout,
            )
        return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def registry(self) -> RegistryClient:
        if "registry" not in self._instances:
            from upsource.services.source.registry import RegistryClient, find_registry_url
            url = self._config.registry_url or find_registry_url(self._cwd)
            logger.debug("注册表: %s", url)
            self._instances["registry"] = RegistryClient(self.fetcher, url)
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def locator(self) -> RepositoryLocator:
        if "locator" not in self._instances:
            from upsource.services.source.locator import RepositoryLocator
            self._instances["locator"] = RepositoryLocator(self.registry)
        return self._instances["locator"]  # type: ignore[return-value]

    @property
    def tags(self) -> TagResolver:
        if "tags" not in self._instances:
            from upsource.services.source.tags import TagResolver
            self._instances["tags"] = TagResolver(self._executor, timeout=self._config.git_timeout)
        return self._instances["tags"]  # type: ignore[return-value]

    @property
    def acquirer(self) -> SourceAcquirer:
        if "acquirer" not in self._instances:
            from upsource.services.source.acquirer import SourceAcquirer
            from upsource.services.source.sources import SparseGitSource, TarballSource
            self._instances["acquirer"] = SourceAcquirer(
                TarballSource(self.fetcher, self.store),
                SparseGitSource(self.store, self._executor, timeout=self._config.git_timeout),
            )
        return self._instances["acquirer"]  # type: ignore[return-value]

    @property
    def pull(self) -> PullService:
        if "pull" not in self._instances:
            from upsource.services.pull_service import PullService
            self._instances["pull"] = PullService(
                self.store, self.manifest, self.locator, self.tags, self.acquirer,
                project_dir=self._cwd,
                max_workers=self._config.max_workers,
                listener=self._listener,
            )
        return self._instances["pull"]  # type: ignore[return-value]
