"""源码缓存目录管理

目录布局:
    <store_root>/<name>@<version>/...            普通包
    <store_root>/@<scope>/<name>@<version>/...   带 scope 的包
    <store_root>/.tmp-XXXX/                      下载中的私有临时目录

职责:
- 由 (包名, 版本) 计算唯一的条目路径，并能从目录名反解回缓存键
- 枚举已缓存条目（单个条目不可读时跳过，不影响整体列表）
- 临时目录 + rename 的原子安装/替换
- 在项目目录下建立指向共享缓存的符号链接
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from upsource.core.config import project_store_dir
from upsource.core.exceptions import CacheError, ValidationError
from upsource.core.models import CacheEntry, CacheKey, version_sort_key

logger = logging.getLogger(__name__)

TMP_PREFIX = ".tmp-"


def parse_entry_relpath(relative_path: str) -> CacheKey | None:
    """从相对路径反解缓存键，版本分隔符取末段中最后一个 '@'

    "@scope/name@1.0.0" -> ("@scope/name", "1.0.0")
    "name@1.0.0"        -> ("name", "1.0.0")
    """
    segments = [s for s in relative_path.replace("\\", "/").split("/") if s]
    if not segments:
        return None
    leaf = segments[-1]
    sep = leaf.rfind("@")
    if sep <= 0 or sep == len(leaf) - 1:
        return None
    package_name = "/".join([*segments[:-1], leaf[:sep]])
    return CacheKey(package_name, leaf[sep + 1:])


def entry_relpath(key: CacheKey) -> str:
    """缓存键对应的相对路径，非法键抛 ValidationError"""
    name, version = key.package_name, key.version
    if not name or not version:
        raise ValidationError(f"缓存键不完整: {key}")
    if "/" in version or "@" in version or "\\" in version:
        raise ValidationError(f"版本号包含非法字符: {version}")

    segments = name.split("/")
    if len(segments) > 2 or (len(segments) == 2 and not segments[0].startswith("@")):
        raise ValidationError(f"包名格式无效: {name}")
    for seg in segments:
        if seg in ("", ".", "..") or seg.startswith(".") or "\\" in seg:
            raise ValidationError(f"包名格式无效: {name}")
    if segments[-1].startswith("@"):
        raise ValidationError(f"包名格式无效: {name}")
    return f"{name}@{version}"


class CacheStore:
    """源码缓存，条目路径是缓存键的确定性函数"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    # ------------------------------------------------------------------
    # 路径与查询
    # ------------------------------------------------------------------

    def entry_path(self, key: CacheKey) -> Path:
        return self.root / entry_relpath(key)

    def exists(self, key: CacheKey) -> bool:
        return self.entry_path(key).is_dir()

    def list_entries(self) -> list[CacheEntry]:
        """枚举全部缓存条目，按包名、版本（数字感知）升序"""
        entries: list[CacheEntry] = []
        for child in self._iter_dirs(self.root):
            if child.name.startswith("@") and "@" not in child.name[1:]:
                # scope 目录，下一层才是条目
                for leaf in self._iter_dirs(child):
                    self._collect(leaf, f"{child.name}/{leaf.name}", entries)
            else:
                self._collect(child, child.name, entries)

        entries.sort(key=lambda e: (e.package_name, version_sort_key(e.version)))
        return entries

    def get(self, package_name: str, version: str | None = None) -> list[CacheEntry]:
        """查询某个包的缓存条目，无匹配时抛 CacheError"""
        matched = [
            e for e in self.list_entries()
            if e.package_name == package_name and (not version or e.version == version)
        ]
        if not matched:
            label = f"{package_name}@{version}" if version else package_name
            raise CacheError(f"缓存中没有 {label}: {self.root}")
        return matched

    @staticmethod
    def _iter_dirs(parent: Path) -> Iterator[Path]:
        try:
            children = sorted(parent.iterdir())
        except OSError:
            return
        for child in children:
            if child.name.startswith("."):
                continue
            try:
                if child.is_dir():
                    yield child
            except OSError:
                continue

    @staticmethod
    def _collect(path: Path, relative: str, output: list[CacheEntry]) -> None:
        key = parse_entry_relpath(relative)
        if key is None:
            return
        output.append(CacheEntry(key=key, path=path))

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------

    def make_temp_dir(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=TMP_PREFIX, dir=str(self.root)))

    @contextmanager
    def staging(self) -> Iterator[Path]:
        """提供私有临时目录，退出时无论成败都删除"""
        tmp = self.make_temp_dir()
        try:
            yield tmp
        finally:
            shutil.rmtree(tmp, ignore_errors=True)

    def install(self, staged: Path, key: CacheKey) -> Path:
        """把已准备好的目录 rename 到最终位置；已有条目先移入临时目录再删除"""
        final = self.entry_path(key)
        final.parent.mkdir(parents=True, exist_ok=True)

        trash_root: Path | None = None
        try:
            if final.exists() or final.is_symlink():
                trash_root = self.make_temp_dir()
                os.replace(final, trash_root / "old")
                logger.info("替换已有缓存条目: %s", key)
            os.replace(staged, final)
        finally:
            if trash_root is not None:
                shutil.rmtree(trash_root, ignore_errors=True)

        logger.info("已写入缓存: %s -> %s", key, final)
        return final

    def remove(self, entry: CacheEntry) -> None:
        """删除条目；指向其他缓存的项目链接只删除链接本身"""
        if entry.path.is_symlink():
            entry.path.unlink()
        else:
            shutil.rmtree(entry.path)
        parent = entry.path.parent
        if parent != self.root:
            try:
                parent.rmdir()
            except OSError:
                pass  # scope 目录下还有其他包

    # ------------------------------------------------------------------
    # 项目链接
    # ------------------------------------------------------------------

    def ensure_project_link(self, project_dir: str | Path, key: CacheKey) -> Path:
        """在 <project>/.upsource/packages 下建立指向缓存条目的符号链接

        已指向正确目标的链接保持不动，错误或冲突的链接会被替换。
        缓存本身就在项目目录下时直接返回条目路径。
        """
        target = self.entry_path(key)
        if not target.is_dir():
            raise CacheError(f"缓存条目不存在，无法建立链接: {key} ({target})")

        link = project_store_dir(project_dir) / entry_relpath(key)
        if link == target or (link.exists() and link.resolve() == target.resolve()):
            return link

        if link.is_symlink() or link.is_file():
            link.unlink()
        elif link.is_dir():
            shutil.rmtree(link)
        link.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(target, link, target_is_directory=True)
        logger.info("项目链接: %s -> %s", link, target)
        return link
