"""upsource - 按包版本拉取并缓存上游源码仓库"""

__version__ = "0.1.0"
