"""模型包初始化，便于统一导入 ORM 实体并触发模型注册。"""

from app.packages.wiki.models.directory import Directory
from app.packages.wiki.models.document import Document

__all__ = [
    "Directory",
    "Document",
]
