"""目录 CRUD：封装目录树相关的查询、加锁与批量更新。"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import String, delete, func, literal, text, update
from sqlalchemy.orm import Session

from app.packages.wiki.crud.base import CRUDBase
from app.packages.wiki.models.directory import Directory

# 根目录同级集合没有父行可锁，PostgreSQL 下改用事务级咨询锁串行化
_ROOT_SCOPE_ADVISORY_KEY = 7_340_021


class CRUDDirectory(CRUDBase[Directory]):
    """提供目录实体的便捷查询方法。"""

    def list_children(self, db: Session, parent_id: Optional[int], *, for_update: bool = False) -> list[Directory]:
        """返回指定父目录下的子目录，按 `order_index, id` 排序。"""
        query = self.query(db)
        if parent_id is None:
            query = query.filter(Directory.parent_id.is_(None))
        else:
            query = query.filter(Directory.parent_id == parent_id)
        query = query.order_by(Directory.order_index.asc(), Directory.id.asc())
        if for_update:
            query = query.with_for_update()
        return query.all()

    def list_subtree(self, db: Session, root: Directory, *, include_root: bool = True) -> list[Directory]:
        """返回以 `root` 为根的整棵子树，按路径排序保证祖先在前。"""
        query = self.query(db).filter(Directory.path.startswith(root.path))
        if not include_root:
            query = query.filter(Directory.id != root.id)
        return query.order_by(func.length(Directory.path).asc(), Directory.id.asc()).all()

    def lock_subtree(self, db: Session, root: Directory) -> list[int]:
        """按固定顺序（路径、ID）对子树加锁，返回后代 ID（不含根）。"""
        rows = (
            db.query(Directory.id)
            .filter(Directory.path.startswith(root.path))
            .filter(Directory.id != root.id)
            .order_by(Directory.path.asc(), Directory.id.asc())
            .with_for_update()
            .all()
        )
        return [row[0] for row in rows]

    def lock_many(self, db: Session, ids: Iterable[int]) -> dict[int, Directory]:
        """一次性锁定多个目录，按路径排序使祖先总是先于后代加锁。"""
        tokens = sorted({int(i) for i in ids if i is not None})
        if not tokens:
            return {}
        rows = (
            self.query(db)
            .filter(Directory.id.in_(tokens))
            .order_by(Directory.path.asc(), Directory.id.asc())
            .with_for_update()
            .all()
        )
        return {row.id: row for row in rows}

    def lock_root_scope(self, db: Session) -> None:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": _ROOT_SCOPE_ADVISORY_KEY})

    def get_sibling_by_name(
        self,
        db: Session,
        *,
        parent_id: Optional[int],
        name: str,
        exclude_id: Optional[int] = None,
    ) -> Optional[Directory]:
        query = self.query(db).filter(Directory.name == name)
        if parent_id is None:
            query = query.filter(Directory.parent_id.is_(None))
        else:
            query = query.filter(Directory.parent_id == parent_id)
        if exclude_id is not None:
            query = query.filter(Directory.id != exclude_id)
        return query.first()

    def list_by_ids(self, db: Session, ids: Iterable[int]) -> list[Directory]:
        tokens = {int(i) for i in ids if i is not None}
        if not tokens:
            return []
        return self.query(db).filter(Directory.id.in_(tokens)).all()

    def list_all(self, db: Session) -> list[Directory]:
        return self.query(db).order_by(Directory.order_index.asc(), Directory.id.asc()).all()

    def count_children(self, db: Session, parent_id: Optional[int]) -> int:
        query = db.query(func.count(Directory.id))
        if parent_id is None:
            query = query.filter(Directory.parent_id.is_(None))
        else:
            query = query.filter(Directory.parent_id == parent_id)
        return int(query.scalar() or 0)

    def list_paths(self, db: Session) -> list[str]:
        return [row[0] for row in db.query(Directory.path).all()]

    def rewrite_subtree_paths(self, db: Session, *, old_prefix: str, new_prefix: str) -> None:
        """单条 UPDATE 语句重写整棵子树的物化路径（含根自身）。"""
        suffix_start = len(old_prefix) + 1
        db.execute(
            update(Directory)
            .where(Directory.path.startswith(old_prefix))
            .values(
                path=literal(new_prefix, String) + func.substr(Directory.path, suffix_start, type_=String),
                update_time=func.now(),
            )
            .execution_options(synchronize_session=False)
        )

    def delete_many(self, db: Session, ids: Iterable[int]) -> int:
        tokens = [int(i) for i in ids]
        if not tokens:
            return 0
        result = db.execute(
            delete(Directory).where(Directory.id.in_(tokens)).execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)


directory_crud = CRUDDirectory(Directory)
