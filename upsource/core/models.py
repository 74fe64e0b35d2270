"""核心数据模型

仓库描述符、缓存键/条目、拉取结果、进度事件、清理结果等领域实体集中定义，
其他模块统一从此处导入。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

# =========================================================================
# 仓库定位
# =========================================================================


class Host(str, Enum):
    """支持的代码托管平台"""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


@dataclass(frozen=True)
class RepositoryDescriptor:
    """规范化后的仓库坐标，subdirectory 为 monorepo 内的包目录"""

    host: Host
    owner: str
    repo: str
    subdirectory: str | None = None

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"


# =========================================================================
# 缓存
# =========================================================================


@dataclass(frozen=True)
class CacheKey:
    """缓存键 (包名, 版本)，包名可带 @scope/ 前缀"""

    package_name: str
    version: str

    def __str__(self) -> str:
        return f"{self.package_name}@{self.version}"


@dataclass(frozen=True)
class CacheEntry:
    """缓存目录中的一个有效条目"""

    key: CacheKey
    path: Path

    @property
    def package_name(self) -> str:
        return self.key.package_name

    @property
    def version(self) -> str:
        return self.key.version


_VERSION_CHUNK_RE = re.compile(r"(\d+)")


def version_sort_key(version: str) -> tuple[tuple[int, int, str], ...]:
    """数字感知的版本排序键: "1.10.0" 排在 "1.9.0" 之后"""
    key: list[tuple[int, int, str]] = []
    for chunk in _VERSION_CHUNK_RE.split(version):
        if not chunk:
            continue
        if chunk.isdigit():
            key.append((0, int(chunk), ""))
        else:
            key.append((1, 0, chunk.lower()))
    return tuple(key)


# =========================================================================
# 项目依赖（外部输入）
# =========================================================================


@dataclass(frozen=True)
class DeclaredDependency:
    """项目清单中声明的一个依赖"""

    name: str
    version_specifier: str
    declaration_group: str  # dependencies / devDependencies / ...


# =========================================================================
# 拉取流程
# =========================================================================


class ProgressStatus(str, Enum):
    """单个包的拉取进度，按声明顺序单调推进"""

    PENDING = "pending"
    FETCHING = "fetching"
    FINDING_TAG = "finding-tag"
    DOWNLOADING = "downloading"
    COMPLETE = "complete"
    SKIPPED = "skipped"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (ProgressStatus.COMPLETE, ProgressStatus.SKIPPED, ProgressStatus.ERROR)


SKIP_WORKSPACE = "workspace"
SKIP_PRIVATE = "private"


@dataclass(frozen=True)
class ProgressEvent:
    """进度通知；同一个包内有序，不同包之间无顺序保证"""

    package_name: str
    status: ProgressStatus
    version: str | None = None
    error: str = ""
    from_cache: bool = False
    skip_reason: str = ""


class OutcomeKind(str, Enum):
    CACHED = "cached"
    ACQUIRED = "acquired"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class AcquisitionOutcome:
    """一次拉取的结果: Cached / Acquired / Skipped / Failed"""

    package_name: str
    kind: OutcomeKind
    version: str | None = None
    path: Path | None = None
    from_fallback: bool = False
    reason: str = ""
    error: str = ""

    @classmethod
    def cached(cls, package_name: str, version: str, path: Path) -> AcquisitionOutcome:
        return cls(package_name, OutcomeKind.CACHED, version=version, path=path)

    @classmethod
    def acquired(
        cls, package_name: str, version: str, path: Path, *, from_fallback: bool,
    ) -> AcquisitionOutcome:
        return cls(
            package_name, OutcomeKind.ACQUIRED, version=version, path=path,
            from_fallback=from_fallback,
        )

    @classmethod
    def skipped(
        cls, package_name: str, reason: str, version: str | None = None,
    ) -> AcquisitionOutcome:
        return cls(package_name, OutcomeKind.SKIPPED, version=version, reason=reason)

    @classmethod
    def failed(
        cls, package_name: str, error: str, version: str | None = None,
    ) -> AcquisitionOutcome:
        return cls(package_name, OutcomeKind.FAILED, version=version, error=error)

    @property
    def from_cache(self) -> bool:
        return self.kind == OutcomeKind.CACHED

    @property
    def status(self) -> ProgressStatus:
        if self.kind == OutcomeKind.SKIPPED:
            return ProgressStatus.SKIPPED
        if self.kind == OutcomeKind.FAILED:
            return ProgressStatus.ERROR
        return ProgressStatus.COMPLETE


@dataclass
class SourceResult:
    """已就绪的包源码位置"""

    package_name: str
    version: str
    repository_path: Path
    package_path: Path
    package_subdirectory: str | None
    from_cache: bool


@dataclass
class SyncResult:
    """整个依赖集合的批量拉取结果"""

    store_dir: Path
    packages: list[str]
    outcomes: list[AcquisitionOutcome]

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for o in self.outcomes if o.kind == kind)


# =========================================================================
# 缓存清理 / 状态
# =========================================================================


@dataclass
class KeepDecision:
    """条目的保留原因集合，为空表示可删除"""

    entry: CacheEntry
    reasons: list[str] = field(default_factory=list)

    @property
    def keep(self) -> bool:
        return bool(self.reasons)


@dataclass
class PruneRemoved:
    package_name: str
    version: str
    path: Path
    reason: str


@dataclass
class PruneResult:
    store_dir: Path
    total_before: int
    total_after: int
    removed: list[PruneRemoved]
    kept: int
    dry_run: bool
    warnings: list[str] = field(default_factory=list)


@dataclass
class CacheStatusEntry:
    """单个依赖的缓存状态"""

    package_name: str
    declared_range: str
    declaration_group: str
    installed_version: str | None
    target_version: str | None
    target_version_source: str  # installed / declared-range / workspace / unknown
    cached_versions: list[str]
    is_target_cached: bool
    is_missing: bool
