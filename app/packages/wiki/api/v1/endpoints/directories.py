"""目录树路由定义。

结构性修改成功后，路由层负责尽力同步搜索索引：索引不可用时不回滚目录修改，
只在响应的 `meta.search_sync` 中标记为 degraded，由调用方稍后重试或全量重建。
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.packages.wiki.api.v1.schemas.directories import (
    DirectoryCreateRequest,
    DirectoryDeleteCheckResponse,
    DirectoryDeletionResponse,
    DirectoryDetailResponse,
    DirectoryListResponse,
    DirectoryMoveRequest,
    DirectoryMoveResponse,
    DirectoryMutationResponse,
    DirectoryReorderRequest,
    DirectoryReorderResponse,
    DirectoryStatsResponse,
    DirectoryUpdateRequest,
)
from app.packages.wiki.core.constants import SEARCH_SYNC_DEGRADED, SEARCH_SYNC_OK
from app.packages.wiki.core.dependencies import Caller, get_current_caller, get_db, get_search_service
from app.packages.wiki.core.exceptions import DependencyUnavailableError
from app.packages.wiki.core.logger import logger
from app.packages.wiki.services.directory_service import directory_service
from app.packages.wiki.services.search_sync_service import SearchSyncService

router = APIRouter(prefix="/directories", tags=["directories"])


def _with_search_sync(response: Dict[str, Any], action: Callable[[], Any], description: str) -> Dict[str, Any]:
    """执行索引同步并把结果写入响应的 meta 字段。"""
    try:
        action()
        outcome = SEARCH_SYNC_OK
    except DependencyUnavailableError as exc:
        logger.warning("Search sync after %s degraded: %s", description, exc.msg)
        outcome = SEARCH_SYNC_DEGRADED
    response["meta"] = {"search_sync": outcome}
    return response


@router.get("", response_model=DirectoryListResponse)
def list_directories(
    parent_id: Optional[int] = Query(None, description="父目录 ID，省略时返回根目录"),
    recursive: bool = Query(False, description="是否返回嵌套的整棵子树"),
    db: Session = Depends(get_db),
) -> DirectoryListResponse:
    """按 order_index 返回子目录列表。"""
    return directory_service.list_directories(db, parent_id=parent_id, recursive=recursive)


@router.post("", response_model=DirectoryMutationResponse)
def create_directory(
    payload: DirectoryCreateRequest,
    db: Session = Depends(get_db),
    _: Caller = Depends(get_current_caller),
) -> DirectoryMutationResponse:
    """在父目录末尾创建目录。"""
    return directory_service.create_directory(db, name=payload.name, parent_id=payload.parent_id)


@router.get("/stats", response_model=DirectoryStatsResponse)
def get_directory_stats(
    id: Optional[int] = Query(None, description="目录 ID，省略时返回全局统计"),
    db: Session = Depends(get_db),
) -> DirectoryStatsResponse:
    return directory_service.get_directory_stats(db, id)


@router.post("/move", response_model=DirectoryMoveResponse)
def move_directory(
    payload: DirectoryMoveRequest,
    db: Session = Depends(get_db),
    search: SearchSyncService = Depends(get_search_service),
    _: Caller = Depends(get_current_caller),
) -> DirectoryMoveResponse:
    """移动目录，并重新同步子树中文档的目录路径。"""
    response = directory_service.move_directory(
        db,
        payload.id,
        new_parent_id=payload.new_parent_id,
        position=payload.position,
    )
    changed = [payload.id, *response["data"]["changed_descendant_ids"]]
    return _with_search_sync(response, lambda: search.sync_directories(db, changed), "directory move")


@router.post("/reorder", response_model=DirectoryReorderResponse)
def reorder_directories(
    payload: DirectoryReorderRequest,
    db: Session = Depends(get_db),
    _: Caller = Depends(get_current_caller),
) -> DirectoryReorderResponse:
    """按给定顺序重排同级目录，列表必须是当前子目录的一个排列。"""
    return directory_service.reorder_directories(db, parent_id=payload.parent_id, ordered_ids=payload.ordered_ids)


@router.get("/{directory_id}", response_model=DirectoryDetailResponse)
def get_directory(directory_id: int, db: Session = Depends(get_db)) -> DirectoryDetailResponse:
    """返回目录详情与面包屑。"""
    return directory_service.get_directory(db, directory_id)


@router.get("/{directory_id}/delete-check", response_model=DirectoryDeleteCheckResponse)
def check_delete_status(directory_id: int, db: Session = Depends(get_db)) -> DirectoryDeleteCheckResponse:
    return directory_service.check_delete_status(db, directory_id)


@router.put("/{directory_id}", response_model=DirectoryMutationResponse)
def update_directory(
    directory_id: int,
    payload: DirectoryUpdateRequest,
    db: Session = Depends(get_db),
    search: SearchSyncService = Depends(get_search_service),
    _: Caller = Depends(get_current_caller),
) -> DirectoryMutationResponse:
    """重命名目录，子树中文档的目录路径随之变化。"""
    response = directory_service.update_directory(db, directory_id, name=payload.name)
    return _with_search_sync(
        response,
        lambda: search.sync_directories(db, directory_service.subtree_ids(db, directory_id)),
        "directory rename",
    )


@router.delete("/{directory_id}", response_model=DirectoryDeletionResponse)
def delete_directory(
    directory_id: int,
    cascade: bool = Query(False, description="是否级联删除子目录与文档"),
    db: Session = Depends(get_db),
    search: SearchSyncService = Depends(get_search_service),
    _: Caller = Depends(get_current_caller),
) -> DirectoryDeletionResponse:
    """删除目录；级联删除时同时清理被删除文档的索引。"""
    response = directory_service.delete_directory(db, directory_id, cascade=cascade)
    document_ids = response["data"]["deleted_document_ids"]
    return _with_search_sync(response, lambda: search.remove_documents(document_ids), "directory delete")
