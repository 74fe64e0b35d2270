"""注册表元信息查询

GET <registry>/<urlEncodedName> 返回的 JSON 中，versions[<version>].repository
即为该版本声明的仓库字段。

注册表地址:
  1. 显式配置 (Config.registry_url)
  2. 项目目录 .npmrc 中的 registry = <url>
  3. 用户主目录 .npmrc
  4. 公共 npm 注册表
"""

from __future__ import annotations

import http.client
import logging
import re
from pathlib import Path
from typing import Any

from upsource.core.exceptions import RegistryError
from upsource.utils.net import RetryingFetcher

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "https://registry.npmjs.org"
NPMRC_FILE = ".npmrc"

_REGISTRY_LINE_RE = re.compile(r"^registry\s*=\s*(.+)$")


def find_registry_url(project_dir: str | Path, home_dir: str | Path | None = None) -> str:
    """从 .npmrc 读取 registry 配置，项目文件优先"""
    home = Path(home_dir) if home_dir is not None else Path.home()
    for npmrc in (Path(project_dir) / NPMRC_FILE, home / NPMRC_FILE):
        try:
            lines = npmrc.read_text(encoding="utf-8").splitlines()
        except OSError:
            continue
        for line in lines:
            m = _REGISTRY_LINE_RE.match(line.strip())
            if m:
                url = m.group(1).strip().rstrip("/")
                logger.debug("使用 %s 中的注册表: %s", npmrc, url)
                return url
    return DEFAULT_REGISTRY


def encode_package_name(package_name: str) -> str:
    return package_name.replace("/", "%2f")


class RegistryClient:
    """注册表客户端"""

    def __init__(self, fetcher: RetryingFetcher, registry_url: str = DEFAULT_REGISTRY) -> None:
        self._fetcher = fetcher
        self.registry_url = registry_url.rstrip("/")

    def fetch_metadata(self, package_name: str) -> dict[str, Any]:
        url = f"{self.registry_url}/{encode_package_name(package_name)}"
        try:
            response = self._fetcher.fetch(url)
        except (OSError, http.client.HTTPException) as e:
            raise RegistryError(f"获取包元信息失败: {e!r} ({url})") from e
        if not response.ok:
            raise RegistryError(
                f"获取包元信息失败: {response.status} {response.reason} ({url})"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise RegistryError(f"包元信息不是合法 JSON: {url} - {e}") from e
        if not isinstance(data, dict):
            raise RegistryError(f"包元信息格式无效: {url}")
        return data

    def fetch_repository(self, package_name: str, version: str) -> Any:
        """返回指定版本声明的 repository 字段（可能为 None）"""
        versions = self.fetch_metadata(package_name).get("versions") or {}
        version_data = versions.get(version) if isinstance(versions, dict) else None
        if not isinstance(version_data, dict):
            raise RegistryError(f"包 {package_name} 不存在版本 {version}")
        return version_data.get("repository")
