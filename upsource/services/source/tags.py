"""Tag 解析 — 根据版本号在远端 tag 列表中猜测发布 tag

匹配优先级:
  1. v<version>
  2. <version>
  3. <packageName>@<version>
  4. <unscopedName>@<version>（仅 @scope/ 包）
  5. 第一个包含 <version> 子串的 tag（点号按字面匹配）

远端列表获取失败、为空或无匹配时返回"回退默认分支"，不视为错误。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from upsource.core.exceptions import ExecutionError
from upsource.core.models import Host, RepositoryDescriptor
from upsource.services.source.locator import to_clone_url
from upsource.utils.shell import CommandExecutor, LocalExecutor, run_git

logger = logging.getLogger(__name__)

_TAG_REF_RE = re.compile(r"refs/tags/(.+)$")

# 这些类型包共用一个 monorepo，tag 与包版本无关
_TYPES_PREFIX = "@types/"
_TYPES_MONOREPO = ("definitelytyped", "definitelytyped")


@dataclass(frozen=True)
class TagResult:
    tag: str | None
    used_fallback: bool

    @classmethod
    def fallback(cls) -> TagResult:
        return cls(tag=None, used_fallback=True)


def parse_ls_remote(output: str) -> list[str]:
    """解析 git ls-remote --tags 输出，忽略 ^{} 解引用行"""
    tags: list[str] = []
    seen: set[str] = set()
    for line in output.strip().splitlines():
        m = _TAG_REF_RE.search(line.strip())
        if not m:
            continue
        tag = m.group(1)
        if tag.endswith("^{}") or tag in seen:
            continue
        seen.add(tag)
        tags.append(tag)
    return tags


def pick_tag(tags: list[str], version: str, package_name: str) -> str | None:
    """按优先级选出 tag，无匹配返回 None"""
    available = set(tags)
    candidates = [f"v{version}", version, f"{package_name}@{version}"]
    if package_name.startswith("@") and "/" in package_name:
        candidates.append(f"{package_name.split('/', 1)[1]}@{version}")

    for candidate in candidates:
        if candidate in available:
            return candidate

    return next((t for t in tags if version in t), None)


def should_skip_tag_lookup(package_name: str, repo: RepositoryDescriptor) -> bool:
    """@types/* 包托管在共享 monorepo 中，直接走默认分支"""
    return (
        package_name.startswith(_TYPES_PREFIX)
        and repo.host == Host.GITHUB
        and (repo.owner.lower(), repo.repo.lower()) == _TYPES_MONOREPO
    )


class TagResolver:
    """通过 git ls-remote 列出远端 tag 并匹配版本"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: int | None = 120) -> None:
        self._executor = executor or LocalExecutor()
        self._timeout = timeout

    def list_tags(self, repo: RepositoryDescriptor) -> list[str]:
        r = run_git(
            self._executor, ["ls-remote", "--tags", to_clone_url(repo)],
            timeout=self._timeout,
        )
        return parse_ls_remote(r.stdout)

    def resolve(self, repo: RepositoryDescriptor, version: str, package_name: str) -> TagResult:
        try:
            tags = self.list_tags(repo)
        except ExecutionError as e:
            logger.info("列出 tag 失败，回退默认分支: %s - %s", repo.slug, e)
            return TagResult.fallback()

        if not tags:
            logger.info("仓库没有 tag，回退默认分支: %s", repo.slug)
            return TagResult.fallback()

        tag = pick_tag(tags, version, package_name)
        if tag is None:
            logger.info("未找到匹配 %s 的 tag，回退默认分支: %s", version, repo.slug)
            return TagResult.fallback()

        logger.info("匹配到 tag: %s@%s -> %s", package_name, version, tag)
        return TagResult(tag=tag, used_fallback=False)
