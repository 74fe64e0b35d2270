"""仓库定位 — 把包声明的 repository 字段解析为规范化的仓库坐标

支持的写法:
  - 完整 URL:  https://github.com/o/r.git, git+https://..., git://..., ssh://git@github.com/o/r
  - SCP 风格:  git@github.com:o/r.git, ssh://git@gitlab.com:o/r
  - 简写:      github:o/r, gitlab:o/r, bitbucket:o/r
  - 裸写法:    o/r（默认 GitHub）
  - 无协议:    github.com/o/r, www.gitlab.com/o/r

解析器由一组按顺序尝试的匹配函数组成，每个函数返回描述符或 None；
输入格式不合法时返回 None，从不抛异常。
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable
from urllib.parse import quote, urlparse

from upsource.core.exceptions import UpsourceError
from upsource.core.models import Host, RepositoryDescriptor

logger = logging.getLogger(__name__)

DEFAULT_BRANCHES = ("main", "master")

_HOST_ALIASES: dict[str, Host] = {}
for _host in Host:
    for _suffix in ("", ".com", ".org"):
        _HOST_ALIASES[f"{_host.value}{_suffix}"] = _host

_HOST_BASE_URLS = {
    Host.GITHUB: "https://github.com",
    Host.GITLAB: "https://gitlab.com",
    Host.BITBUCKET: "https://bitbucket.org",
}

_SHORTHAND_RE = re.compile(r"^(github|gitlab|bitbucket):([^/]+)/([^/]+)/*$", re.IGNORECASE)
_BARE_RE = re.compile(r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)$")
_SCP_RE = re.compile(r"^(?:ssh://)?[\w.-]+@([\w.-]+):([^/]+)/([^/]+)/*$")
_SCHEMELESS_RE = re.compile(r"^([\w.-]+\.[a-z]+)/([^/]+)/([^/]+)", re.IGNORECASE)

Matcher = Callable[[str], tuple[Host, str, str] | None]


def infer_host(hostname: str) -> Host | None:
    """github / github.com / github.org（可带 www.）等，大小写不敏感"""
    normalized = hostname.strip().lower()
    if normalized.startswith("www."):
        normalized = normalized[4:]
    return _HOST_ALIASES.get(normalized)


def clean_repo_name(repo: str) -> str:
    repo = repo.rstrip("/")
    if repo.lower().endswith(".git"):
        repo = repo[:-4]
    return repo.rstrip("/")


def normalize_subdirectory(directory: Any) -> str | None:
    if not isinstance(directory, str):
        return None
    cleaned = directory.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    cleaned = cleaned.strip("/")
    return cleaned or None


def _match_shorthand(url: str) -> tuple[Host, str, str] | None:
    m = _SHORTHAND_RE.match(url)
    if not m:
        return None
    return Host(m.group(1).lower()), m.group(2), m.group(3)


def _match_bare(url: str) -> tuple[Host, str, str] | None:
    m = _BARE_RE.match(url)
    if not m:
        return None
    return Host.GITHUB, m.group(1), m.group(2)


def _match_scp(url: str) -> tuple[Host, str, str] | None:
    m = _SCP_RE.match(url)
    if not m:
        return None
    host = infer_host(m.group(1))
    if host is None:
        return None
    return host, m.group(2), m.group(3)


def _match_url(url: str) -> tuple[Host, str, str] | None:
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not hostname:
        return None
    host = infer_host(hostname)
    if host is None:
        return None
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        return None
    return host, parts[0], parts[1]


def _match_schemeless(url: str) -> tuple[Host, str, str] | None:
    m = _SCHEMELESS_RE.match(url)
    if not m:
        return None
    host = infer_host(m.group(1))
    if host is None:
        return None
    return host, m.group(2), m.group(3)


# 顺序有意义: 简写先于裸写法，SCP 先于 URL（ssh://git@host:o/r 不是合法 URL）
_MATCHERS: tuple[Matcher, ...] = (
    _match_shorthand,
    _match_bare,
    _match_scp,
    _match_url,
    _match_schemeless,
)


def _normalize_url(url: str) -> str:
    url = url.strip()
    if url.startswith("git+"):
        url = url[4:]
    return url.split("#", 1)[0]


def parse_repository(
    repository: Any, subdirectory: str | None = None,
) -> RepositoryDescriptor | None:
    """解析 repository 字段（字符串或 {type, url, directory} 对象）

    subdirectory 参数优先于对象中的 directory。无法识别时返回 None。
    """
    if isinstance(repository, dict):
        url = repository.get("url")
        directory = subdirectory or repository.get("directory")
    else:
        url = repository
        directory = subdirectory

    if not isinstance(url, str) or not url.strip():
        return None

    normalized = _normalize_url(url)
    for matcher in _MATCHERS:
        matched = matcher(normalized)
        if matched is None:
            continue
        host, owner, repo = matched
        repo = clean_repo_name(repo)
        if not owner or not repo:
            return None
        return RepositoryDescriptor(
            host=host, owner=owner, repo=repo,
            subdirectory=normalize_subdirectory(directory),
        )

    logger.debug("无法识别的仓库地址: %s", url)
    return None


def renormalize(descriptor: RepositoryDescriptor) -> RepositoryDescriptor:
    """渲染为 HTTPS 地址后重新解析，保证各种写法得到同一个描述符"""
    reparsed = parse_repository(to_https_url(descriptor), descriptor.subdirectory)
    return reparsed or descriptor


# =========================================================================
# URL 生成
# =========================================================================


def to_https_url(repo: RepositoryDescriptor) -> str:
    return f"{_HOST_BASE_URLS[repo.host]}/{repo.owner}/{repo.repo}"


def to_clone_url(repo: RepositoryDescriptor) -> str:
    return f"{to_https_url(repo)}.git"


def _archive_url(repo: RepositoryDescriptor, ref: str, *, is_tag: bool) -> str:
    base = to_https_url(repo)
    ref = quote(ref, safe="/@+")
    if repo.host == Host.GITHUB:
        kind = "tags" if is_tag else "heads"
        return f"{base}/archive/refs/{kind}/{ref}.tar.gz"
    if repo.host == Host.GITLAB:
        filename_ref = ref.replace("/", "-")
        return f"{base}/-/archive/{ref}/{repo.repo}-{filename_ref}.tar.gz"
    return f"{base}/get/{ref}.tar.gz"


def tag_archive_url(repo: RepositoryDescriptor, tag: str) -> str:
    """指定 tag 的源码包地址"""
    return _archive_url(repo, tag, is_tag=True)


def default_branch_archive_urls(repo: RepositoryDescriptor) -> list[str]:
    """默认分支源码包地址，main 在 master 之前"""
    return [_archive_url(repo, branch, is_tag=False) for branch in DEFAULT_BRANCHES]


class RepositoryLocator:
    """仓库定位器 — 已知元信息优先，缺失时查询注册表"""

    def __init__(self, registry: Any = None) -> None:
        # registry 需提供 fetch_repository(name, version) -> repository 字段
        self._registry = registry

    def locate(
        self,
        package_name: str,
        version: str,
        known_repository: Any = None,
    ) -> RepositoryDescriptor | None:
        descriptor = parse_repository(known_repository)
        if descriptor is None and self._registry is not None:
            try:
                repository = self._registry.fetch_repository(package_name, version)
            except (UpsourceError, OSError) as e:
                logger.warning("注册表查询失败，视为无仓库信息: %s@%s - %s", package_name, version, e)
                return None
            descriptor = parse_repository(repository)

        if descriptor is None:
            logger.info("没有可用的仓库信息: %s@%s", package_name, version)
            return None
        return renormalize(descriptor)
