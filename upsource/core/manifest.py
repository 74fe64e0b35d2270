"""项目清单读取 — package.json 与 node_modules 中的已安装版本

职责:
- 读取项目声明的依赖（四个依赖分组合并，后出现的分组覆盖同名依赖）
- 从项目目录向上查找 node_modules 中实际安装的版本
- 从声明的版本范围中提取确定版本（"^1.2.3" -> "1.2.3"）
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from upsource.core.exceptions import ManifestError
from upsource.core.models import DeclaredDependency

logger = logging.getLogger(__name__)

MANIFEST_FILE = "package.json"

DEPENDENCY_GROUPS = (
    "dependencies",
    "devDependencies",
    "optionalDependencies",
    "peerDependencies",
)

_RANGE_PREFIX_RE = re.compile(r"^[\^~>=<\s]+")
_VERSION_STOP_RE = re.compile(r"[^\dA-Za-z.+-]")
_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+([-.+][0-9A-Za-z.-]+)?$")
_WORKSPACE_RE = re.compile(r"^\s*workspace:", re.IGNORECASE)

# 本地仓库根目录的标志文件
_REPOSITORY_ROOT_MARKERS = (".git", "pnpm-workspace.yaml")


def normalize_version_from_specifier(specifier: str) -> str | None:
    """从版本范围中提取确定版本，无法确定时返回 None"""
    version = _RANGE_PREFIX_RE.sub("", specifier)
    parsed = _VERSION_STOP_RE.split(version)[0] or version
    if _SEMVER_RE.match(parsed):
        return parsed
    return None


def is_workspace_specifier(specifier: str) -> bool:
    return bool(_WORKSPACE_RE.match(specifier))


@dataclass
class InstalledPackage:
    """node_modules 中解析到的已安装包"""

    name: str
    version: str
    repository: Any
    package_dir: Path
    real_package_dir: Path

    @property
    def is_local_source(self) -> bool:
        """符号链接到 node_modules 之外（workspace / link: 依赖）"""
        return "node_modules" not in self.real_package_dir.parts


def _read_json(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} 顶层不是对象")
    return data


def find_local_repository_root(start_dir: str | Path) -> Path | None:
    """向上查找包含 .git 或 pnpm-workspace.yaml 的目录"""
    current = Path(start_dir).resolve()
    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in _REPOSITORY_ROOT_MARKERS):
            return candidate
    return None


class ProjectManifest:
    """项目清单读取器，绑定一个项目目录"""

    def __init__(self, project_dir: str | Path) -> None:
        self.project_dir = Path(project_dir).resolve()

    def read(self) -> dict[str, Any]:
        path = self.project_dir / MANIFEST_FILE
        try:
            return _read_json(path)
        except (OSError, ValueError) as e:
            raise ManifestError(f"读取 {MANIFEST_FILE} 失败: {e}") from e

    def dependencies(self) -> list[DeclaredDependency]:
        """项目声明的全部依赖，按包名排序"""
        data = self.read()
        by_name: dict[str, DeclaredDependency] = {}
        for group in DEPENDENCY_GROUPS:
            section = data.get(group)
            if not isinstance(section, dict):
                continue
            for name, spec in section.items():
                by_name[name] = DeclaredDependency(
                    name=name, version_specifier=str(spec), declaration_group=group,
                )
        return sorted(by_name.values(), key=lambda d: d.name)

    def installed(self, package_name: str) -> InstalledPackage:
        """解析已安装的包，找不到时抛 ManifestError"""
        segments = [s for s in package_name.split("/") if s]
        for base in (self.project_dir, *self.project_dir.parents):
            candidate = base.joinpath("node_modules", *segments, MANIFEST_FILE)
            try:
                data = _read_json(candidate)
            except (OSError, ValueError):
                continue
            if data.get("name") != package_name:
                continue
            return self._to_installed(package_name, candidate, data)

        raise ManifestError(
            f'无法从 "{self.project_dir}" 解析已安装的包 "{package_name}"，请先安装依赖'
        )

    @staticmethod
    def _to_installed(package_name: str, path: Path, data: dict[str, Any]) -> InstalledPackage:
        version = data.get("version")
        if not isinstance(version, str) or not version:
            raise ManifestError(f'已安装的包 "{package_name}" 缺少版本号: {path}')
        return InstalledPackage(
            name=data.get("name") or package_name,
            version=version,
            repository=data.get("repository"),
            package_dir=path.parent,
            real_package_dir=path.resolve().parent,
        )

    def target_version(self, dependency: DeclaredDependency) -> str | None:
        """目标版本: 已安装版本优先，其次取声明范围中的确定版本"""
        try:
            return self.installed(dependency.name).version
        except ManifestError:
            return normalize_version_from_specifier(dependency.version_specifier)
