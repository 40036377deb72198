"""目录模型：以邻接表 + 物化路径描述文档目录树。

存储规则：
- parent_id：为空表示根目录；
- name：同一父目录下唯一（区分大小写），根目录之间同样唯一；
- order_index：同级排序，稀疏递增，默认步长 1000；
- path：祖先 ID 链，形如 "/3/17/42/"，以自身 ID 结尾，用于 O(深度) 的祖先判断。
"""

from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from app.packages.wiki.models.base import Base, TimestampMixin


class Directory(TimestampMixin, Base):
    __tablename__ = "directories"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("directories.id", ondelete="CASCADE"), nullable=True, index=True
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, default="/", index=True)

    __table_args__ = (
        # 非根目录：同一父节点下名称唯一
        UniqueConstraint("parent_id", "name", name="uq_directories_parent_name"),
        # 根目录：parent_id 为 NULL 时唯一约束不生效，需单独的部分索引
        Index(
            "uq_directories_root_name",
            "name",
            unique=True,
            postgresql_where=text("parent_id IS NULL"),
            sqlite_where=text("parent_id IS NULL"),
        ),
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="no_self_parent"),
    )

    @property
    def ancestor_ids(self) -> list[int]:
        """按从根到父的顺序返回祖先 ID（不含自身）。"""
        tokens = [int(token) for token in (self.path or "").split("/") if token]
        return tokens[:-1]

    @property
    def depth(self) -> int:
        return len(self.ancestor_ids) + 1
