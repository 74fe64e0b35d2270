"""源码来源适配器 - 源码包 / 稀疏 Git 检出

职责：
- TarballSource: 下载 .tar.gz 源码包，去掉顶层目录后解压，原子写入缓存
- SparseGitSource: monorepo 子目录的浅克隆 + cone 模式稀疏检出

两种来源都在缓存根目录下的私有临时目录中准备内容，最后一步才 rename 到最终位置，
任何失败都不会在最终路径留下半成品。
"""

from __future__ import annotations

import http.client
import io
import logging
import re
import shutil
import tarfile
import zlib
from pathlib import Path

from upsource.core.exceptions import DownloadError, ExecutionError, ValidationError
from upsource.core.models import CacheKey, RepositoryDescriptor
from upsource.core.store import CacheStore
from upsource.services.source.locator import to_clone_url
from upsource.utils.net import RetryingFetcher
from upsource.utils.shell import CommandExecutor, LocalExecutor, run_git

logger = logging.getLogger(__name__)

_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9_./@+\-]+$")


def _strip_first_segment(name: str) -> str:
    parts = name.removeprefix("./").split("/", 1)
    return parts[1] if len(parts) == 2 else ""


def strip_top_level(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo | None:
    """tar 解压过滤器: 去掉顶层目录，其余按 data 过滤规则校验"""
    stripped = _strip_first_segment(member.name).strip("/")
    if not stripped:
        return None
    changes: dict[str, str] = {"name": stripped}
    if member.islnk():
        # 硬链接目标同样相对于归档根目录
        changes["linkname"] = _strip_first_segment(member.linkname)
    return tarfile.data_filter(member.replace(**changes, deep=False), dest_path)


class TarballSource:
    """源码包来源"""

    def __init__(self, fetcher: RetryingFetcher, store: CacheStore) -> None:
        self._fetcher = fetcher
        self._store = store

    def download(self, url: str, key: CacheKey) -> Path:
        """下载并解压到缓存，返回条目路径

        Raises:
            DownloadError: 传输失败、响应非 2xx（携带 status）或归档损坏
        """
        logger.info("下载源码包: %s -> %s", url, key)
        try:
            response = self._fetcher.fetch(url)
        except (OSError, http.client.HTTPException) as e:
            raise DownloadError(f"下载失败: {e!r}", url=url) from e
        if not response.ok:
            raise DownloadError(
                f"下载失败: {response.status} {response.reason}".rstrip(),
                url=url, status=response.status,
            )

        with self._store.staging() as staging:
            output = staging / "out"
            output.mkdir()
            self.extract(response.body, output, url=url)
            return self._store.install(output, key)

    @staticmethod
    def extract(data: bytes, output: Path, *, url: str = "") -> None:
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tf:
                tf.extractall(path=str(output), filter=strip_top_level)  # noqa: S202
        except (tarfile.TarError, EOFError, zlib.error) as e:
            raise DownloadError(f"解压失败: {e}", url=url) from e


class SparseGitSource:
    """monorepo 子目录来源: 只取指定子目录，不下载其余文件内容"""

    def __init__(
        self,
        store: CacheStore,
        executor: CommandExecutor | None = None,
        timeout: int | None = 600,
    ) -> None:
        self._store = store
        self._executor = executor or LocalExecutor()
        self._timeout = timeout

    def download(
        self,
        repo: RepositoryDescriptor,
        key: CacheKey,
        subdirectory: str,
        ref: str | None = None,
    ) -> Path:
        """克隆 + 稀疏检出，整个仓库骨架连同子目录写入缓存

        任一步骤失败都抛 ExecutionError（携带该步骤的 stderr）。
        """
        if ref and not _SAFE_REF_RE.match(ref):
            raise ValidationError(f"ref 包含非法字符: {ref}")

        with self._store.staging() as staging:
            clone_dir = staging / "repo"
            clone_args = ["clone", "--filter=blob:none", "--depth", "1", "--no-checkout"]
            if ref:
                clone_args += ["--branch", ref]
            clone_args += [to_clone_url(repo), str(clone_dir)]

            logger.info("稀疏检出: %s/%s (%s) -> %s", repo.slug, subdirectory, ref or "默认分支", key)
            self._git(clone_args)
            self._git(["-C", str(clone_dir), "sparse-checkout", "init", "--cone"])
            self._git(["-C", str(clone_dir), "sparse-checkout", "set", subdirectory])
            self._git(["-C", str(clone_dir), "checkout"])

            sparse_root = clone_dir / subdirectory
            if not sparse_root.is_dir() or not any(sparse_root.iterdir()):
                raise ExecutionError(f"稀疏检出结果为空: {subdirectory}")

            shutil.rmtree(clone_dir / ".git", ignore_errors=True)
            return self._store.install(clone_dir, key)

    def _git(self, args: list[str]) -> None:
        run_git(self._executor, args, timeout=self._timeout)
