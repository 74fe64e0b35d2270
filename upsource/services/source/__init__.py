"""源码获取模块

拆分说明：
- locator.py: repository 字段解析与 URL 生成
- registry.py: 注册表元信息查询
- tags.py: 远端 tag 匹配
- sources.py: 来源适配器 源码包/稀疏 Git
- acquirer.py: 下载策略链（tag → 默认分支）
"""

from upsource.services.source.acquirer import AcquiredSource, SourceAcquirer
from upsource.services.source.locator import RepositoryLocator, parse_repository
from upsource.services.source.registry import RegistryClient, find_registry_url
from upsource.services.source.sources import SparseGitSource, TarballSource
from upsource.services.source.tags import TagResolver, TagResult

__all__ = [
    "AcquiredSource",
    "SourceAcquirer",
    "RepositoryLocator",
    "parse_repository",
    "RegistryClient",
    "find_registry_url",
    "SparseGitSource",
    "TarballSource",
    "TagResolver",
    "TagResult",
]
