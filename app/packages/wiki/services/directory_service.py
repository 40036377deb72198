"""目录树业务逻辑：创建、重命名、移动、删除、排序与统计。

所有结构性修改都在单个事务内完成，并按“路径、ID”的固定顺序加行锁，
保证并发移动不会产生环，读者也不会看到被改写了一半的路径。
根目录同级集合没有父行可锁，PostgreSQL 下由事务级咨询锁串行化。
"""

from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.packages.wiki.core.config import get_settings
from app.packages.wiki.core.constants import HTTP_STATUS_OK, ROOT_BREADCRUMB_ID, ROOT_BREADCRUMB_NAME
from app.packages.wiki.core.exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from app.packages.wiki.core.logger import logger
from app.packages.wiki.core.responses import create_response
from app.packages.wiki.core.timezone import format_datetime
from app.packages.wiki.crud.directory import directory_crud
from app.packages.wiki.crud.document import document_crud
from app.packages.wiki.models.directory import Directory
from app.packages.wiki.utils.ordering import allocate_order_index, renumbered, validate_position
from app.packages.wiki.utils.path_utils import build_path, contains_node, parse_ids

_DUPLICATE_NAME_MESSAGE = "同级目录下已存在同名目录"
_CYCLE_MESSAGE = "移动会导致目录成环"
_NAME_CONSTRAINTS = ("uq_directories_parent_name", "uq_directories_root_name")


def _is_duplicate_name(exc: IntegrityError) -> bool:
    """只有同级名称唯一约束被触发时才视为同名冲突。"""
    message = str(exc.orig)
    if any(name in message for name in _NAME_CONSTRAINTS):
        return True
    # SQLite 报错只给出列名，例如 "UNIQUE constraint failed: directories.parent_id, directories.name"
    return "UNIQUE constraint failed" in message and "directories.name" in message


@contextmanager
def _transaction(db: Session) -> Iterator[Session]:
    """提交或整体回滚。

    同级名称唯一约束冲突转换为 ConflictError；其余数据库错误记录日志后
    转换为 InternalError，业务异常原样抛出。
    """
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if _is_duplicate_name(exc):
            logger.info("Directory write rejected by unique constraint: %s", exc.orig)
            raise ConflictError(_DUPLICATE_NAME_MESSAGE) from exc
        logger.error("Directory write violated an integrity constraint: %s", exc.orig, exc_info=True)
        raise InternalError() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Directory write failed: %s", exc, exc_info=True)
        raise InternalError() from exc
    except Exception:
        db.rollback()
        raise


class DirectoryService:
    """封装目录树的查询与结构性修改。"""

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def list_directories(
        self,
        db: Session,
        *,
        parent_id: Optional[int] = None,
        recursive: bool = False,
    ) -> Dict[str, Any]:
        """返回 `parent_id` 的子目录（省略时为根目录），`recursive` 时返回嵌套的整棵子树。

        父目录不存在时返回空列表。
        """
        if not recursive:
            children = directory_crud.list_children(db, parent_id)
            return create_response("获取目录列表成功", [self._serialize(item) for item in children], HTTP_STATUS_OK)

        if parent_id is None:
            nodes = directory_crud.list_all(db)
        else:
            parent = directory_crud.get(db, parent_id)
            if parent is None:
                return create_response("获取目录列表成功", [], HTTP_STATUS_OK)
            nodes = directory_crud.list_subtree(db, parent, include_root=False)

        children_map: Dict[Optional[int], List[Directory]] = defaultdict(list)
        for node in nodes:
            children_map[node.parent_id].append(node)
        for siblings in children_map.values():
            siblings.sort(key=lambda n: (n.order_index, n.id))

        def build(node: Directory) -> Dict[str, Any]:
            payload = self._serialize(node)
            payload["children"] = [build(child) for child in children_map.get(node.id, [])]
            return payload

        tree = [build(node) for node in children_map.get(parent_id, [])]
        return create_response("获取目录列表成功", tree, HTTP_STATUS_OK)

    def get_directory(self, db: Session, directory_id: int) -> Dict[str, Any]:
        """返回目录详情与面包屑（首项为虚拟根节点）。"""
        node = self._get_or_404(db, directory_id)
        ancestors = {item.id: item for item in directory_crud.list_by_ids(db, node.ancestor_ids)}

        breadcrumb = [{"id": ROOT_BREADCRUMB_ID, "name": ROOT_BREADCRUMB_NAME}]
        for ancestor_id in node.ancestor_ids:
            ancestor = ancestors.get(ancestor_id)
            if ancestor is not None:
                breadcrumb.append({"id": ancestor.id, "name": ancestor.name})
        breadcrumb.append({"id": node.id, "name": node.name})

        payload = self._serialize(node)
        payload["children_count"] = directory_crud.count_children(db, node.id)
        payload["breadcrumb"] = breadcrumb
        return create_response("获取目录详情成功", payload, HTTP_STATUS_OK)

    def get_directory_stats(self, db: Session, directory_id: Optional[int] = None) -> Dict[str, Any]:
        """统计直接与递归的子目录数、文档数；省略 `directory_id` 时返回全局统计。"""
        if directory_id is None:
            paths = directory_crud.list_paths(db)
            root_count = directory_crud.count_children(db, None)
            unfiled = document_crud.count_active(db, unfiled=True)
            payload = {
                "directory_id": None,
                "direct_child_count": root_count,
                "direct_document_count": unfiled,
                "total_directory_count": len(paths),
                "total_document_count": document_crud.count_active(db),
                "root_directory_count": root_count,
                "max_depth": max((len(parse_ids(path)) for path in paths), default=0),
            }
            return create_response("获取目录统计成功", payload, HTTP_STATUS_OK)

        node = self._get_or_404(db, directory_id)
        subtree_ids = self._subtree_ids(db, node)
        payload = {
            "directory_id": node.id,
            "direct_child_count": directory_crud.count_children(db, node.id),
            "direct_document_count": document_crud.count_active(db, directory_id=node.id),
            "total_directory_count": len(subtree_ids) - 1,
            "total_document_count": document_crud.count_active_in(db, subtree_ids),
        }
        return create_response("获取目录统计成功", payload, HTTP_STATUS_OK)

    def check_delete_status(self, db: Session, directory_id: int) -> Dict[str, Any]:
        """删除前检查：是否可直接删除，以及级联删除会影响的内容。"""
        node = self._get_or_404(db, directory_id)
        children_count = directory_crud.count_children(db, node.id)
        document_count = document_crud.count_active(db, directory_id=node.id)
        total_document_count = document_crud.count_active_in(db, self._subtree_ids(db, node))

        warnings: List[str] = []
        if children_count:
            warnings.append(f"该目录包含 {children_count} 个子目录")
        if document_count:
            warnings.append(f"该目录包含 {document_count} 个文档")
        if total_document_count > document_count:
            warnings.append(f"级联删除将同时删除子目录中的 {total_document_count - document_count} 个文档")

        payload = {
            "directory_id": node.id,
            "can_delete": children_count == 0 and document_count == 0,
            "has_children": children_count > 0,
            "has_documents": document_count > 0,
            "children_count": children_count,
            "document_count": document_count,
            "total_document_count": total_document_count,
            "warnings": warnings,
        }
        return create_response("获取删除检查结果成功", payload, HTTP_STATUS_OK)

    def subtree_ids(self, db: Session, directory_id: int) -> List[int]:
        """返回目录自身及全部后代的 ID，目录不存在时返回空列表。"""
        node = directory_crud.get(db, directory_id)
        if node is None:
            return []
        return self._subtree_ids(db, node)

    # ------------------------------------------------------------------
    # 结构性修改
    # ------------------------------------------------------------------

    def create_directory(self, db: Session, *, name: str, parent_id: Optional[int] = None) -> Dict[str, Any]:
        """在父目录（省略时为根）末尾创建目录，排序号 = 同级最大排序号 + 步长。"""
        normalized_name = self._normalize_name(name)
        gap = get_settings().directory_order_gap

        with _transaction(db):
            parent = self._lock_sibling_scope(db, parent_id)
            self._ensure_unique_name(db, parent_id=parent_id, name=normalized_name)

            siblings = directory_crud.list_children(db, parent_id)
            order_index = allocate_order_index([item.order_index for item in siblings], None, gap)
            node = directory_crud.create(
                db,
                {
                    "name": normalized_name,
                    "parent_id": parent_id,
                    "order_index": order_index,
                },
                auto_commit=False,
            )
            # 路径依赖自增 ID，flush 之后才能确定
            node.path = build_path(parent.path if parent is not None else None, node.id)
            db.flush()

        logger.info("Directory %s created under %s", node.id, parent_id)
        return create_response("创建目录成功", self._serialize(node), HTTP_STATUS_OK)

    def update_directory(self, db: Session, directory_id: int, *, name: str) -> Dict[str, Any]:
        """仅修改名称，不触碰父目录、排序号与路径。"""
        normalized_name = self._normalize_name(name)

        with _transaction(db):
            node = directory_crud.get_for_update(db, directory_id)
            if node is None:
                raise NotFoundError("目录不存在")
            if node.name != normalized_name:
                self._ensure_unique_name(db, parent_id=node.parent_id, name=normalized_name, exclude_id=node.id)
                node.name = normalized_name
                directory_crud.save(db, node, auto_commit=False)

        return create_response("更新目录成功", self._serialize(node), HTTP_STATUS_OK)

    def delete_directory(self, db: Session, directory_id: int, *, cascade: bool = False) -> Dict[str, Any]:
        """删除目录。

        - 非级联：存在子目录或有效文档时拒绝，否则只删除这一行；
        - 级联：同一事务内删除整棵子树，并将其中的有效文档标记为已删除。
        """
        with _transaction(db):
            node = directory_crud.get_for_update(db, directory_id)
            if node is None:
                raise NotFoundError("目录不存在")

            if not cascade:
                children_count = directory_crud.count_children(db, node.id)
                document_count = document_crud.count_active(db, directory_id=node.id)
                if children_count or document_count:
                    logger.info(
                        "Refused to delete non-empty directory %s (children=%s, documents=%s)",
                        node.id,
                        children_count,
                        document_count,
                    )
                    raise ConflictError(
                        "目录非空，无法删除",
                        {"children_count": children_count, "document_count": document_count},
                    )
                directory_crud.hard_delete(db, node, auto_commit=False)
                deleted_directory_ids = [directory_id]
                deleted_document_ids: List[int] = []
            else:
                descendant_ids = directory_crud.lock_subtree(db, node)
                deleted_directory_ids = [node.id, *descendant_ids]
                deleted_document_ids = document_crud.mark_deleted_in(db, deleted_directory_ids)
                directory_crud.delete_many(db, deleted_directory_ids)
                db.expunge(node)

        logger.info(
            "Deleted directories %s (cascade=%s), documents marked deleted: %s",
            deleted_directory_ids,
            cascade,
            len(deleted_document_ids),
        )
        payload = {
            "cascade": cascade,
            "deleted_directory_ids": deleted_directory_ids,
            "deleted_document_ids": deleted_document_ids,
        }
        return create_response("删除目录成功", payload, HTTP_STATUS_OK)

    def move_directory(
        self,
        db: Session,
        directory_id: int,
        *,
        new_parent_id: Optional[int] = None,
        position: Optional[int] = None,
    ) -> Dict[str, Any]:
        """移动目录到新的父目录（省略时为根）的 `position` 处（从 0 开始，省略时追加到末尾）。

        返回目录本身与路径发生变化的后代 ID 列表。
        """
        if new_parent_id is not None and new_parent_id == directory_id:
            raise ConflictError(_CYCLE_MESSAGE)

        gap = get_settings().directory_order_gap
        with _transaction(db):
            current = directory_crud.get(db, directory_id)
            if current is None:
                raise NotFoundError("目录不存在")
            if current.parent_id is None or new_parent_id is None:
                directory_crud.lock_root_scope(db)

            locked = directory_crud.lock_many(db, [directory_id, current.parent_id, new_parent_id])
            node = locked.get(directory_id)
            if node is None:
                raise NotFoundError("目录不存在")
            target: Optional[Directory] = None
            if new_parent_id is not None:
                target = locked.get(new_parent_id)
                if target is None:
                    raise NotFoundError("目标父目录不存在")
                if contains_node(target.path, node.id):
                    logger.info("Refused to move directory %s under its descendant %s", node.id, target.id)
                    raise ConflictError(_CYCLE_MESSAGE)

            self._ensure_unique_name(db, parent_id=new_parent_id, name=node.name, exclude_id=node.id)

            siblings = [
                item
                for item in directory_crud.list_children(db, new_parent_id, for_update=True)
                if item.id != node.id
            ]
            position = validate_position(position, len(siblings))
            order_index = allocate_order_index([item.order_index for item in siblings], position, gap)
            if order_index is None:
                self._renumber(siblings, node, position, gap)
            else:
                node.order_index = order_index

            old_prefix = node.path
            new_prefix = build_path(target.path if target is not None else None, node.id)
            changed_ids: List[int] = []
            if new_prefix != old_prefix:
                changed_ids = directory_crud.lock_subtree(db, node)
                node.parent_id = new_parent_id
                db.flush()
                directory_crud.rewrite_subtree_paths(db, old_prefix=old_prefix, new_prefix=new_prefix)
            else:
                db.flush()

        db.refresh(node)
        logger.info("Directory %s moved under %s, %s descendants rewritten", node.id, new_parent_id, len(changed_ids))
        payload = {"directory": self._serialize(node), "changed_descendant_ids": changed_ids}
        return create_response("移动目录成功", payload, HTTP_STATUS_OK)

    def reorder_directories(
        self,
        db: Session,
        *,
        ordered_ids: Sequence[int],
        parent_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """按 `ordered_ids` 的顺序重新分配排序号，列表必须恰好是当前子目录的一个排列。"""
        gap = get_settings().directory_order_gap
        requested = [int(item) for item in ordered_ids]

        with _transaction(db):
            self._lock_sibling_scope(db, parent_id)
            children = directory_crud.list_children(db, parent_id, for_update=True)
            by_id = {child.id: child for child in children}

            duplicates = sorted({item for item in requested if requested.count(item) > 1})
            missing = sorted(set(by_id) - set(requested))
            unexpected = sorted(set(requested) - set(by_id))
            if duplicates or missing or unexpected:
                raise ValidationError(
                    "排序列表必须与当前子目录一一对应",
                    {"duplicate_ids": duplicates, "missing_ids": missing, "unexpected_ids": unexpected},
                )

            for directory_id, order_index in zip(requested, renumbered(len(requested), gap)):
                by_id[directory_id].order_index = order_index
            db.flush()

        ordered = [by_id[directory_id] for directory_id in requested]
        return create_response("调整目录顺序成功", [self._serialize(item) for item in ordered], HTTP_STATUS_OK)

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    def _lock_sibling_scope(self, db: Session, parent_id: Optional[int]) -> Optional[Directory]:
        """锁定同级集合：非根时锁父目录行，根目录时取咨询锁。"""
        if parent_id is None:
            directory_crud.lock_root_scope(db)
            return None
        parent = directory_crud.get_for_update(db, parent_id)
        if parent is None:
            raise NotFoundError("父目录不存在")
        return parent

    def _ensure_unique_name(
        self,
        db: Session,
        *,
        parent_id: Optional[int],
        name: str,
        exclude_id: Optional[int] = None,
    ) -> None:
        existing = directory_crud.get_sibling_by_name(db, parent_id=parent_id, name=name, exclude_id=exclude_id)
        if existing is not None:
            logger.info("Duplicate directory name %r under %s", name, parent_id)
            raise ConflictError(_DUPLICATE_NAME_MESSAGE, {"name": name, "parent_id": parent_id})

    def _renumber(
        self,
        siblings: List[Directory],
        node: Directory,
        position: Optional[int],
        gap: int,
    ) -> None:
        """排序号没有整数空隙时，把整组同级目录按步长重新编号。"""
        ordered = list(siblings)
        ordered.insert(len(ordered) if position is None else position, node)
        for item, order_index in zip(ordered, renumbered(len(ordered), gap)):
            item.order_index = order_index
        logger.info("Renumbered %s siblings under %s", len(ordered), node.parent_id)

    def _subtree_ids(self, db: Session, node: Directory) -> List[int]:
        return [item.id for item in directory_crud.list_subtree(db, node)]

    def _get_or_404(self, db: Session, directory_id: int) -> Directory:
        node = directory_crud.get(db, directory_id)
        if node is None:
            raise NotFoundError("目录不存在")
        return node

    def _normalize_name(self, name: Optional[str]) -> str:
        value = (name or "").strip()
        if not value:
            raise ValidationError("目录名称不能为空")
        max_length = get_settings().directory_name_max_length
        if len(value) > max_length:
            raise ValidationError(f"目录名称长度不能超过 {max_length} 个字符")
        return value

    def _serialize(self, node: Directory) -> Dict[str, Any]:
        return {
            "id": node.id,
            "name": node.name,
            "parent_id": node.parent_id,
            "order_index": node.order_index,
            "path": node.path,
            "depth": node.depth,
            "create_time": format_datetime(node.create_time),
            "update_time": format_datetime(node.update_time),
        }


directory_service = DirectoryService()
