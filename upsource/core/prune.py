"""缓存清理 — 按保留规则计算需要删除的版本

保留规则按顺序累积原因，任一原因存在即保留:
  1. keep_latest: 每个包保留最新的 N 个版本（N=0 关闭此规则）
  2. keep_project_dependencies: 保留项目依赖当前的目标版本
  3. keep: 显式指定的 name@version 列表

无保留原因的条目直接删除（dry_run 时只报告）。
规则 2 中单个依赖解析失败只记警告，不影响其余依赖和整体清理。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from upsource.core.exceptions import CacheError, UpsourceError, ValidationError
from upsource.core.manifest import ProjectManifest
from upsource.core.models import (
    CacheEntry,
    CacheKey,
    KeepDecision,
    PruneRemoved,
    PruneResult,
    version_sort_key,
)
from upsource.core.store import CacheStore

logger = logging.getLogger(__name__)

REASON_PROJECT_TARGET = "project-target-version"
REASON_EXPLICIT = "explicit-keep"
REMOVAL_REASON = "not matched by keep rules"


@dataclass
class KeepRules:
    """保留规则输入"""

    keep_latest: int = 1
    keep_project_dependencies: bool = True
    keep: list[str] = field(default_factory=list)
    dry_run: bool = False

    def __post_init__(self) -> None:
        if self.keep_latest < 0:
            raise ValidationError(f"keep_latest 必须为非负整数: {self.keep_latest}")


def parse_keep_reference(reference: str) -> CacheKey | None:
    """按最后一个 '@' 拆分 name@version，任一半为空时返回 None"""
    sep = reference.rfind("@")
    if sep <= 0 or sep >= len(reference) - 1:
        return None
    return CacheKey(reference[:sep], reference[sep + 1:])


def group_by_package(entries: list[CacheEntry]) -> dict[str, list[CacheEntry]]:
    """按包名分组，组内按版本从新到旧排序"""
    groups: dict[str, list[CacheEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.package_name, []).append(entry)
    for group in groups.values():
        group.sort(key=lambda e: version_sort_key(e.version), reverse=True)
    return groups


class PruneEngine:
    """缓存清理引擎，只依赖缓存枚举和项目清单"""

    def __init__(self, store: CacheStore, manifest: ProjectManifest | None = None) -> None:
        self.store = store
        self.manifest = manifest

    def plan(self, rules: KeepRules) -> tuple[list[KeepDecision], list[str]]:
        """计算每个条目的保留原因，返回 (决策列表, 警告列表)"""
        entries = self.store.list_entries()
        warnings: list[str] = []
        reasons: dict[CacheKey, list[str]] = {}

        def add(key: CacheKey, reason: str) -> None:
            reasons.setdefault(key, []).append(reason)

        if rules.keep_latest > 0:
            for group in group_by_package(entries).values():
                for entry in group[: rules.keep_latest]:
                    add(entry.key, f"keepLatest({rules.keep_latest})")

        if rules.keep_project_dependencies:
            for key in self._project_targets(warnings):
                add(key, REASON_PROJECT_TARGET)

        for reference in rules.keep:
            key = parse_keep_reference(reference)
            if key is None:
                warnings.append(f'无效的保留引用 "{reference}"（应为 package@version）')
                continue
            add(key, REASON_EXPLICIT)

        decisions = [KeepDecision(entry=e, reasons=reasons.get(e.key, [])) for e in entries]
        return decisions, warnings

    def _project_targets(self, warnings: list[str]) -> list[CacheKey]:
        if self.manifest is None:
            return []
        try:
            dependencies = self.manifest.dependencies()
        except (UpsourceError, OSError) as e:
            warnings.append(f"无法解析项目依赖目标版本: {e}")
            return []

        targets: list[CacheKey] = []
        for dependency in dependencies:
            try:
                version = self.manifest.target_version(dependency)
            except (UpsourceError, OSError) as e:
                warnings.append(f"无法解析依赖 {dependency.name} 的目标版本: {e}")
                continue
            if version:
                targets.append(CacheKey(dependency.name, version))
        return targets

    def prune(self, rules: KeepRules) -> PruneResult:
        """按规则清理缓存；dry_run 只报告不删除"""
        decisions, warnings = self.plan(rules)
        for warning in warnings:
            logger.warning("%s", warning)

        removed: list[PruneRemoved] = []
        kept = 0
        for decision in decisions:
            if decision.keep:
                kept += 1
                continue
            entry = decision.entry
            if not rules.dry_run:
                try:
                    self.store.remove(entry)
                except OSError as e:
                    raise CacheError(f"删除缓存条目失败: {entry.key} ({entry.path}) - {e}") from e
                logger.info("已删除缓存: %s (%s)", entry.key, entry.path)
            removed.append(PruneRemoved(
                package_name=entry.package_name,
                version=entry.version,
                path=entry.path,
                reason=REMOVAL_REASON,
            ))

        total = len(decisions)
        return PruneResult(
            store_dir=self.store.root,
            total_before=total,
            total_after=total if rules.dry_run else total - len(removed),
            removed=removed,
            kept=kept,
            dry_run=rules.dry_run,
            warnings=warnings,
        )
