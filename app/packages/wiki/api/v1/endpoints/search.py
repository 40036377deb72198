"""搜索同步与联想查询路由定义。"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from app.packages.wiki.api.v1.schemas.search import (
    IndexActionResponse,
    ReindexRequest,
    ReindexResponse,
    SearchStatusResponse,
    SuggestionResponse,
)
from app.packages.wiki.core.constants import HTTP_STATUS_OK, SEARCH_UNAVAILABLE_MESSAGE
from app.packages.wiki.core.dependencies import Caller, get_current_caller, get_db, get_search_service
from app.packages.wiki.core.responses import create_response
from app.packages.wiki.services.search_sync_service import SearchSyncService

router = APIRouter(prefix="/search", tags=["search"])


@router.get("/suggestions", response_model=SuggestionResponse)
def get_suggestions(
    prefix: str = Query(..., min_length=1, description="查询前缀或关键词"),
    limit: Optional[int] = Query(None, ge=1, description="返回条数上限"),
    offset: int = Query(0, ge=0, description="跳过的条数，用于翻页"),
    directory_id: Optional[int] = Query(None, description="只在该目录及其子目录中查找"),
    db: Session = Depends(get_db),
    search: SearchSyncService = Depends(get_search_service),
) -> SuggestionResponse:
    """索引不可用时返回空列表，并通过 `available` 标识降级状态。"""
    scope = search.resolve_directory_scope(db, directory_id) if directory_id is not None else None
    payload = search.get_suggestions(prefix, limit, offset=offset, directory_path=scope)
    message = "获取搜索建议成功" if payload["available"] else SEARCH_UNAVAILABLE_MESSAGE
    return create_response(message, payload, HTTP_STATUS_OK)


@router.get("/status", response_model=SearchStatusResponse)
def get_search_status(search: SearchSyncService = Depends(get_search_service)) -> SearchStatusResponse:
    return create_response("获取搜索状态成功", search.get_status(), HTTP_STATUS_OK)


@router.post("/initialize", response_model=SearchStatusResponse)
def initialize_search_index(
    search: SearchSyncService = Depends(get_search_service),
    _: Caller = Depends(get_current_caller),
) -> SearchStatusResponse:
    """创建索引结构；失败时返回降级状态而不是错误。"""
    status = search.initialize()
    message = "搜索索引初始化成功" if status["available"] else SEARCH_UNAVAILABLE_MESSAGE
    return create_response(message, status, HTTP_STATUS_OK)


@router.post("/reindex", response_model=ReindexResponse)
def reindex_all(
    payload: Optional[ReindexRequest] = Body(None),
    db: Session = Depends(get_db),
    search: SearchSyncService = Depends(get_search_service),
    _: Caller = Depends(get_current_caller),
) -> ReindexResponse:
    """全量重建索引，同一时刻只允许一个重建任务。"""
    timeout = payload.timeout_seconds if payload is not None else None
    result = search.reindex_all(db, timeout=timeout)
    return create_response("重建索引成功", result, HTTP_STATUS_OK)


@router.post("/documents/{document_id}/index", response_model=IndexActionResponse)
def index_document(
    document_id: int,
    db: Session = Depends(get_db),
    search: SearchSyncService = Depends(get_search_service),
    _: Caller = Depends(get_current_caller),
) -> IndexActionResponse:
    """按文档当前状态同步索引，已删除或目录链断裂的文档会被移出索引。"""
    return create_response("同步文档索引成功", search.index_document(db, document_id), HTTP_STATUS_OK)


@router.delete("/documents/{document_id}/index", response_model=IndexActionResponse)
def delete_document_index(
    document_id: int,
    search: SearchSyncService = Depends(get_search_service),
    _: Caller = Depends(get_current_caller),
) -> IndexActionResponse:
    return create_response("删除文档索引成功", search.delete_document_index(document_id), HTTP_STATUS_OK)
