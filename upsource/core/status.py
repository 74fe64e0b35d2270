"""缓存状态 — 项目依赖的已安装版本、目标版本与已缓存版本对照"""

from __future__ import annotations

from upsource.core.exceptions import ManifestError
from upsource.core.manifest import (
    ProjectManifest,
    is_workspace_specifier,
    normalize_version_from_specifier,
)
from upsource.core.models import CacheStatusEntry, DeclaredDependency
from upsource.core.prune import group_by_package
from upsource.core.store import CacheStore


def cache_status(store: CacheStore, manifest: ProjectManifest) -> list[CacheStatusEntry]:
    """逐个依赖给出缓存状态，已缓存版本从新到旧"""
    cached = {
        name: [e.version for e in group]
        for name, group in group_by_package(store.list_entries()).items()
    }
    return [_status_for(dep, manifest, cached.get(dep.name, [])) for dep in manifest.dependencies()]


def _status_for(
    dependency: DeclaredDependency,
    manifest: ProjectManifest,
    cached_versions: list[str],
) -> CacheStatusEntry:
    if is_workspace_specifier(dependency.version_specifier):
        return CacheStatusEntry(
            package_name=dependency.name,
            declared_range=dependency.version_specifier,
            declaration_group=dependency.declaration_group,
            installed_version=None,
            target_version=None,
            target_version_source="workspace",
            cached_versions=cached_versions,
            is_target_cached=True,
            is_missing=False,
        )

    try:
        installed: str | None = manifest.installed(dependency.name).version
    except ManifestError:
        installed = None

    target = installed or normalize_version_from_specifier(dependency.version_specifier)
    if installed:
        source = "installed"
    elif target:
        source = "declared-range"
    else:
        source = "unknown"

    is_target_cached = target in cached_versions if target else False
    return CacheStatusEntry(
        package_name=dependency.name,
        declared_range=dependency.version_specifier,
        declaration_group=dependency.declaration_group,
        installed_version=installed,
        target_version=target,
        target_version_source=source,
        cached_versions=cached_versions,
        is_target_cached=is_target_cached,
        is_missing=not is_target_cached if target else not cached_versions,
    )
