"""文档仓储 CRUD：目录树与搜索同步对外部文档仓储的读写约定。

除级联删除时标记文档为已删除外，本服务只读取文档。
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.packages.wiki.core.enums import DocumentStatusEnum
from app.packages.wiki.crud.base import CRUDBase
from app.packages.wiki.models.document import Document

_ACTIVE = DocumentStatusEnum.ACTIVE.value


class CRUDDocument(CRUDBase[Document]):
    def list_active_page(self, db: Session, *, after_id: int = 0, limit: int = 500) -> list[Document]:
        """按 ID 游标分页读取有效文档，供全量重建索引使用。"""
        return (
            self.query(db)
            .filter(Document.status == _ACTIVE)
            .filter(Document.id > after_id)
            .order_by(Document.id.asc())
            .limit(limit)
            .all()
        )

    def count_active(self, db: Session, *, directory_id: Optional[int] = None, unfiled: bool = False) -> int:
        query = db.query(func.count(Document.id)).filter(Document.status == _ACTIVE)
        if directory_id is not None:
            query = query.filter(Document.directory_id == directory_id)
        elif unfiled:
            query = query.filter(Document.directory_id.is_(None))
        return int(query.scalar() or 0)

    def count_active_in(self, db: Session, directory_ids: Iterable[int]) -> int:
        tokens = {int(i) for i in directory_ids}
        if not tokens:
            return 0
        return int(
            db.query(func.count(Document.id))
            .filter(Document.status == _ACTIVE)
            .filter(Document.directory_id.in_(tokens))
            .scalar()
            or 0
        )

    def list_ids_in(self, db: Session, directory_ids: Iterable[int], *, active_only: bool = True) -> list[int]:
        tokens = {int(i) for i in directory_ids}
        if not tokens:
            return []
        query = db.query(Document.id).filter(Document.directory_id.in_(tokens))
        if active_only:
            query = query.filter(Document.status == _ACTIVE)
        return [row[0] for row in query.order_by(Document.id.asc()).all()]

    def mark_deleted_in(self, db: Session, directory_ids: Iterable[int]) -> list[int]:
        """将指定目录中的有效文档标记为已删除，返回受影响的文档 ID（不提交事务）。"""
        affected = self.list_ids_in(db, directory_ids, active_only=True)
        if affected:
            db.execute(
                update(Document)
                .where(Document.id.in_(affected))
                .values(status=DocumentStatusEnum.DELETED.value, update_time=func.now())
                .execution_options(synchronize_session=False)
            )
        return affected


document_crud = CRUDDocument(Document)
