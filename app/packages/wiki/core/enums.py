"""枚举定义：约束文档状态与搜索索引状态的可选值。"""

from enum import Enum


class DocumentStatusEnum(str, Enum):
    """文档在仓储中的生命周期状态。"""

    ACTIVE = "active"
    DELETED = "deleted"


class SearchIndexStateEnum(str, Enum):
    """搜索索引对外暴露的健康状态。"""

    READY = "ready"
    UNINITIALIZED = "uninitialized"
    UNAVAILABLE = "unavailable"
    DISABLED = "disabled"


class SearchBackendEnum(str, Enum):
    """搜索索引适配器的实现类型。"""

    DATABASE = "database"
    MEMORY = "memory"
    DISABLED = "disabled"


class IndexActionEnum(str, Enum):
    """单文档同步实际执行的动作。"""

    UPSERTED = "upserted"
    DELETED = "deleted"
    SKIPPED = "skipped"
