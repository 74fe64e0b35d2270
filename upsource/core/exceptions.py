"""统一异常体系

所有业务异常继承 UpsourceError，替代散落的 ValueError / RuntimeError。
CLI 层可据此输出友好提示，批量拉取据此把单包失败记录为 Failed 而不中断其他包。
"""

from __future__ import annotations


class UpsourceError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(UpsourceError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(UpsourceError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ManifestError(UpsourceError):
    """项目清单 (package.json) 读取失败或已安装包无法解析"""

    code = "MANIFEST_ERROR"


class RepositoryNotFoundError(UpsourceError):
    """找不到任何可用的仓库元信息（通常是私有包）"""

    code = "REPOSITORY_NOT_FOUND"


class RegistryError(UpsourceError):
    """注册表元信息查询失败"""

    code = "REGISTRY_ERROR"


class DownloadError(UpsourceError):
    """单次下载失败，status 为 HTTP 状态码（传输层失败时为 None）"""

    code = "DOWNLOAD_ERROR"

    def __init__(self, message: str, *, url: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status == 404


class StrategyExhaustedError(DownloadError):
    """所有下载策略均失败，attempted 列出全部尝试过的地址"""

    code = "STRATEGY_EXHAUSTED"

    def __init__(self, message: str, attempted: list[str], status: int | None = None) -> None:
        super().__init__(message, status=status)
        self.attempted = attempted


class ExecutionError(UpsourceError):
    """外部命令执行失败"""

    code = "EXECUTION_ERROR"


class CacheError(UpsourceError):
    """缓存目录状态不符合预期"""

    code = "CACHE_ERROR"
