"""拉取服务 — 缓存检查 → 仓库定位 → tag 解析 → 下载 → 项目链接

单包流程:
  1. 声明为 workspace: 的依赖直接跳过 (workspace)
  2. 从 node_modules 解析已安装版本
  3. 缓存命中: 只补项目链接，不发起任何网络/子进程调用
  4. 本地链接的源码包跳过 (workspace)
  5. 已安装包的 repository 字段优先，其次查询注册表；都没有则跳过 (private)
  6. 解析 tag（@types/* 共享仓库除外），按策略链下载并原子写入缓存

批量拉取每个包一个任务并行执行，单包失败记录为 Failed，不影响其他包。
同一进程内对同一缓存键的获取通过 KeyedLocks 串行化，拿到锁后重新检查缓存。
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from upsource.core.exceptions import ManifestError, RepositoryNotFoundError, UpsourceError
from upsource.core.manifest import (
    InstalledPackage,
    ProjectManifest,
    find_local_repository_root,
    is_workspace_specifier,
)
from upsource.core.models import (
    SKIP_PRIVATE,
    SKIP_WORKSPACE,
    AcquisitionOutcome,
    CacheKey,
    ProgressEvent,
    ProgressStatus,
    RepositoryDescriptor,
    SourceResult,
    SyncResult,
)
from upsource.core.store import CacheStore
from upsource.services.progress import ProgressListener, null_listener
from upsource.services.source.acquirer import SourceAcquirer
from upsource.services.source.locator import RepositoryLocator, parse_repository
from upsource.services.source.tags import TagResolver, TagResult, should_skip_tag_lookup

logger = logging.getLogger(__name__)


class KeyedLocks:
    """缓存键 → 互斥锁，只在当前进程内生效"""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[CacheKey, threading.Lock] = {}

    @contextmanager
    def hold(self, key: CacheKey) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


def resolve_local_source(package_dir: Path) -> tuple[Path, str | None]:
    """本地源码包所在仓库根目录，以及包在仓库内的相对路径"""
    root = find_local_repository_root(package_dir)
    if root is None:
        return package_dir, None
    relative = package_dir.resolve().relative_to(root).as_posix()
    return root, (relative if relative not in ("", ".") else None)


def _join_subdirectory(repository_path: Path, subdirectory: str | None) -> Path:
    return repository_path / subdirectory if subdirectory else repository_path


class PullService:
    """包源码拉取服务"""

    def __init__(
        self,
        store: CacheStore,
        manifest: ProjectManifest,
        locator: RepositoryLocator,
        tag_resolver: TagResolver,
        acquirer: SourceAcquirer,
        *,
        project_dir: str | Path | None = None,
        max_workers: int = 8,
        listener: ProgressListener | None = None,
    ) -> None:
        self.store = store
        self.manifest = manifest
        self.locator = locator
        self.tag_resolver = tag_resolver
        self.acquirer = acquirer
        self.project_dir = Path(project_dir) if project_dir is not None else manifest.project_dir
        self.max_workers = max(1, max_workers)
        self.listener = listener or null_listener
        self._locks = KeyedLocks()

    # ---- 批量入口 ----

    def sync(self) -> SyncResult:
        """拉取项目声明的全部依赖"""
        dependencies = self.manifest.dependencies()
        items = [(d.name, d.version_specifier) for d in dependencies]
        return self._run_all(items)

    def pull(self, package_names: list[str]) -> SyncResult:
        """拉取指定的包；项目中有声明时沿用其版本范围做 workspace 判断"""
        try:
            declared = {d.name: d.version_specifier for d in self.manifest.dependencies()}
        except ManifestError as e:
            logger.debug("未读取到项目依赖声明: %s", e)
            declared = {}
        names = list(dict.fromkeys(package_names))
        return self._run_all([(n, declared.get(n)) for n in names])

    def _run_all(self, items: list[tuple[str, str | None]]) -> SyncResult:
        for name, _ in items:
            self._emit(name, ProgressStatus.PENDING)

        if self.max_workers == 1 or len(items) <= 1:
            outcomes = [self.pull_one(name, spec) for name, spec in items]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(self.pull_one, name, spec) for name, spec in items]
                outcomes = [f.result() for f in futures]

        result = SyncResult(
            store_dir=self.store.root,
            packages=[name for name, _ in items],
            outcomes=outcomes,
        )
        failed = [o for o in outcomes if o.status == ProgressStatus.ERROR]
        if failed:
            logger.warning(
                "%d/%d 个包拉取失败: %s",
                len(failed), len(outcomes), ", ".join(o.package_name for o in failed),
            )
        return result

    # ---- 单包 ----

    def pull_one(self, package_name: str, declared_specifier: str | None = None) -> AcquisitionOutcome:
        """拉取项目中已安装的一个包，任何失败都折算为 Failed"""
        if declared_specifier and is_workspace_specifier(declared_specifier):
            logger.info("跳过 workspace 依赖: %s (%s)", package_name, declared_specifier)
            self._emit(package_name, ProgressStatus.SKIPPED, skip_reason=SKIP_WORKSPACE)
            return AcquisitionOutcome.skipped(package_name, SKIP_WORKSPACE)

        self._emit(package_name, ProgressStatus.FETCHING)
        try:
            installed = self.manifest.installed(package_name)
        except (UpsourceError, OSError) as e:
            return self._failed(package_name, None, e)
        return self.acquire(
            package_name, installed.version, installed.repository,
            local_source=installed.is_local_source,
        )

    def acquire(
        self,
        package_name: str,
        version: str,
        known_repository: Any = None,
        *,
        local_source: bool = False,
    ) -> AcquisitionOutcome:
        """获取指定版本的源码；已缓存时不做任何网络/子进程调用"""
        key = CacheKey(package_name, version)
        try:
            with self._locks.hold(key):
                return self._acquire_locked(key, known_repository, local_source)
        except (UpsourceError, OSError) as e:
            return self._failed(package_name, version, e)

    def _acquire_locked(
        self, key: CacheKey, known_repository: Any, local_source: bool,
    ) -> AcquisitionOutcome:
        name, version = key.package_name, key.version

        if self.store.exists(key):
            path = self._link(key)
            logger.info("缓存命中: %s", key, extra={"package": name})
            self._emit(name, ProgressStatus.COMPLETE, version=version, from_cache=True)
            return AcquisitionOutcome.cached(name, version, path)

        if local_source:
            logger.info("跳过本地链接的包: %s", key)
            self._emit(name, ProgressStatus.SKIPPED, version=version, skip_reason=SKIP_WORKSPACE)
            return AcquisitionOutcome.skipped(name, SKIP_WORKSPACE, version)

        repo = self.locator.locate(name, version, known_repository)
        if repo is None:
            logger.info("找不到仓库信息，可能是私有包: %s", key)
            self._emit(name, ProgressStatus.SKIPPED, version=version, skip_reason=SKIP_PRIVATE)
            return AcquisitionOutcome.skipped(name, SKIP_PRIVATE, version)

        acquired = self._download(key, repo, emit=True)
        path = self._link(key)
        self._emit(name, ProgressStatus.COMPLETE, version=version)
        return AcquisitionOutcome.acquired(name, version, path, from_fallback=acquired)

    def _download(self, key: CacheKey, repo: RepositoryDescriptor, *, emit: bool) -> bool:
        """解析 tag 并下载，返回是否使用了默认分支"""
        name, version = key.package_name, key.version
        if should_skip_tag_lookup(name, repo):
            tag = TagResult.fallback()
        else:
            if emit:
                self._emit(name, ProgressStatus.FINDING_TAG, version=version)
            tag = self.tag_resolver.resolve(repo, version, name)

        if emit:
            self._emit(name, ProgressStatus.DOWNLOADING, version=version)
        acquired = self.acquirer.download(repo, key, tag.tag)
        logger.info("已获取: %s <- %s", key, acquired.source, extra={"package": name})
        return acquired.from_fallback

    # ---- 源码位置 ----

    def ensure_source(self, package_name: str) -> SourceResult:
        """确保已安装包的源码可用并返回其位置

        本地链接的包直接指向本地仓库，不写缓存；找不到仓库信息时抛 RepositoryNotFoundError。
        """
        installed = self.manifest.installed(package_name)
        key = CacheKey(package_name, installed.version)
        with self._locks.hold(key):
            return self._ensure_source_locked(key, installed)

    def _ensure_source_locked(self, key: CacheKey, installed: InstalledPackage) -> SourceResult:
        local = resolve_local_source(installed.real_package_dir) if installed.is_local_source else None

        if self.store.exists(key):
            if local is not None:
                subdirectory = local[1]
            else:
                known = parse_repository(installed.repository)
                subdirectory = known.subdirectory if known else None
            repository_path = self._link(key)
            return SourceResult(
                package_name=key.package_name,
                version=key.version,
                repository_path=repository_path,
                package_path=_join_subdirectory(repository_path, subdirectory),
                package_subdirectory=subdirectory,
                from_cache=True,
            )

        if local is not None:
            root, subdirectory = local
            return SourceResult(
                package_name=key.package_name,
                version=key.version,
                repository_path=root,
                package_path=_join_subdirectory(root, subdirectory),
                package_subdirectory=subdirectory,
                from_cache=False,
            )

        repo = self.locator.locate(key.package_name, key.version, installed.repository)
        if repo is None:
            raise RepositoryNotFoundError(
                f"找不到 {key} 的仓库信息，可能是私有包"
            )

        self._download(key, repo, emit=False)
        repository_path = self._link(key)
        return SourceResult(
            package_name=key.package_name,
            version=key.version,
            repository_path=repository_path,
            package_path=_join_subdirectory(repository_path, repo.subdirectory),
            package_subdirectory=repo.subdirectory,
            from_cache=False,
        )

    # ---- 内部 ----

    def _link(self, key: CacheKey) -> Path:
        return self.store.ensure_project_link(self.project_dir, key)

    def _failed(self, package_name: str, version: str | None, error: Exception) -> AcquisitionOutcome:
        label = f"{package_name}@{version}" if version else package_name
        logger.error("拉取失败 %s: %s", label, error, extra={"package": package_name})
        self._emit(package_name, ProgressStatus.ERROR, version=version, error=str(error))
        return AcquisitionOutcome.failed(package_name, str(error), version)

    def _emit(self, package_name: str, status: ProgressStatus, **fields: Any) -> None:
        self.listener(ProgressEvent(package_name=package_name, status=status, **fields))
