"""文档模型：外部文档仓储的表结构。

目录树与搜索同步只依赖其中与索引相关的字段，文档内容的增删改由仓储自身负责。
"""

from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.packages.wiki.core.enums import DocumentStatusEnum
from app.packages.wiki.models.base import Base, TimestampMixin


class Document(TimestampMixin, Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    # 为空表示未归档文档
    directory_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("directories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DocumentStatusEnum.ACTIVE.value, index=True
    )

    @property
    def is_active(self) -> bool:
        return self.status == DocumentStatusEnum.ACTIVE.value
