"""CRUD 基类：为各实体提供通用的数据访问方法。

目录树的结构性修改都在服务层的事务里完成，因此写方法默认只 flush，
由调用方决定何时提交。
"""

from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Query, Session

from app.packages.wiki.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    def query(self, db: Session) -> Query:
        return db.query(self.model)

    def get(self, db: Session, id: Any) -> Optional[ModelType]:
        return self.query(db).filter(self.model.id == id).first()

    def get_for_update(self, db: Session, id: Any) -> Optional[ModelType]:
        """读取并加行锁（SQLite 不支持 FOR UPDATE，退化为普通查询）。"""
        return self.query(db).filter(self.model.id == id).with_for_update().first()

    def create(self, db: Session, obj_in: Dict[str, Any], *, auto_commit: bool = False) -> ModelType:
        return self.save(db, self.model(**obj_in), auto_commit=auto_commit)

    def save(self, db: Session, db_obj: ModelType, *, auto_commit: bool = False) -> ModelType:
        db.add(db_obj)
        self._persist(db, db_obj, auto_commit)
        return db_obj

    def hard_delete(self, db: Session, db_obj: ModelType, *, auto_commit: bool = False) -> None:
        db.delete(db_obj)
        self._persist(db, None, auto_commit)

    @staticmethod
    def _persist(db: Session, db_obj: Optional[ModelType], auto_commit: bool) -> None:
        if not auto_commit:
            db.flush()
            return
        db.commit()
        if db_obj is not None:
            db.refresh(db_obj)
