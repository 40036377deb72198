"""搜索同步相关的请求与响应模型。"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from app.packages.wiki.api.v1.schemas.common import ResponseEnvelope


class SuggestionItem(BaseModel):
    document_id: int
    title: str
    directory_path: str
    snippet: str
    updated_at: Optional[str]


class SuggestionPayload(BaseModel):
    prefix: str
    offset: int
    items: List[SuggestionItem]
    status: str
    available: bool


class SearchStatusPayload(BaseModel):
    backend: str
    status: str
    initialized: bool
    available: bool
    document_count: int
    live_generation: Optional[int]
    rebuilding: bool
    last_reindex_at: Optional[str]
    last_error: Optional[str]


class ReindexRequest(BaseModel):
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="超时时间（秒），为空时使用配置值")


class ReindexPayload(BaseModel):
    generation: int
    indexed_count: int
    duration_ms: int
    last_reindex_at: Optional[str]


class IndexActionPayload(BaseModel):
    document_id: int
    action: str
    version: int


SuggestionResponse = ResponseEnvelope[SuggestionPayload]
SearchStatusResponse = ResponseEnvelope[SearchStatusPayload]
ReindexResponse = ResponseEnvelope[ReindexPayload]
IndexActionResponse = ResponseEnvelope[IndexActionPayload]
