"""集中配置管理

提供统一的配置入口，支持从 YAML 文件加载 + 编程式覆盖。
配置对象由入口（CLI / ServiceContainer）显式传递给各组件，不做全局单例。

查找顺序（后者覆盖前者）:
  1. 用户全局配置 ~/.upsource/config.yml
  2. 项目配置 <cwd>/.upsource.yml
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from upsource.core.exceptions import ConfigError
from upsource.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

HOME_DIR_NAME = ".upsource"
STORE_SUBDIR = "packages"
PROJECT_CONFIG_FILE = ".upsource.yml"
GLOBAL_CONFIG_FILE = "config.yml"


def user_home() -> Path:
    return Path.home()


def _load_config_file(path: str | Path) -> dict[str, Any]:
    try:
        return load_yaml(path)
    except (yaml.YAMLError, ValueError, OSError) as e:
        raise ConfigError(f"读取配置文件失败: {path} - {e}") from e


@dataclass
class Config:
    """全局配置"""

    # 缓存根目录；为空时按 use_global_store 推导
    store_dir: str = ""
    use_global_store: bool = False

    # 注册表地址；为空时读取 .npmrc，再退回公共 npm 注册表
    registry_url: str = ""

    # 并行度
    max_workers: int = 8

    # 网络 / 子进程
    http_timeout: float = 60.0
    http_max_attempts: int = 3
    http_backoff_base: float = 0.15
    git_timeout: int = 600

    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigError(f"max_workers 必须 >= 1: {self.max_workers}")
        if self.http_max_attempts < 1:
            raise ConfigError(f"http_max_attempts 必须 >= 1: {self.http_max_attempts}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        known = {f.name for f in fields(cls)} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置项无效: {e}") from e
        cfg.extra = extra
        return cfg

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = _load_config_file(path)
        if not data:
            return cls()
        return cls.from_dict(data)

    @classmethod
    def discover(cls, cwd: str | Path, **overrides: Any) -> Config:
        """合并全局配置与项目配置，关键字参数优先级最高"""
        merged: dict[str, Any] = {}
        for candidate in (
            user_home() / HOME_DIR_NAME / GLOBAL_CONFIG_FILE,
            Path(cwd) / PROJECT_CONFIG_FILE,
        ):
            data = _load_config_file(candidate)
            if data:
                logger.debug("配置已加载: %s", candidate)
                merged.update(data)
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(merged)

    def resolve_store_dir(self, cwd: str | Path) -> Path:
        """缓存根目录: 显式 store_dir > 用户全局目录 > 项目本地目录"""
        if self.store_dir:
            return Path(self.store_dir).expanduser()
        if self.use_global_store:
            return global_store_dir()
        return project_store_dir(cwd)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def global_store_dir() -> Path:
    return user_home() / HOME_DIR_NAME / STORE_SUBDIR


def project_store_dir(cwd: str | Path) -> Path:
    return Path(cwd) / HOME_DIR_NAME / STORE_SUBDIR
