"""目录树相关的请求与响应模型。"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from app.packages.wiki.api.v1.schemas.common import ResponseEnvelope


class DirectoryItem(BaseModel):
    """目录节点。"""

    id: int
    name: str
    parent_id: Optional[int]
    order_index: int
    path: str
    depth: int
    create_time: Optional[str]
    update_time: Optional[str]


class DirectoryTreeNode(DirectoryItem):
    """递归查询时返回的嵌套节点，非递归查询时 children 为空。"""

    children: List["DirectoryTreeNode"] = Field(default_factory=list)


class BreadcrumbItem(BaseModel):
    id: int
    name: str


class DirectoryDetail(DirectoryItem):
    children_count: int
    breadcrumb: List[BreadcrumbItem]


class DirectoryCreateRequest(BaseModel):
    """新建目录的请求体，名称的非空与长度校验由业务层完成。"""

    name: str = Field(..., description="目录名称，同级唯一，区分大小写")
    parent_id: Optional[int] = Field(default=None, description="父目录 ID，为空表示根目录")


class DirectoryUpdateRequest(BaseModel):
    name: str = Field(..., description="新的目录名称")


class DirectoryMoveRequest(BaseModel):
    id: int = Field(..., description="待移动的目录 ID")
    new_parent_id: Optional[int] = Field(default=None, description="目标父目录 ID，为空表示移动到根")
    position: Optional[int] = Field(default=None, description="在目标同级中的位置（从 0 开始），为空表示末尾")


class DirectoryReorderRequest(BaseModel):
    parent_id: Optional[int] = Field(default=None, description="父目录 ID，为空表示根目录")
    ordered_ids: List[int] = Field(..., description="当前全部子目录 ID 的新顺序")


class DirectoryMovePayload(BaseModel):
    directory: DirectoryItem
    changed_descendant_ids: List[int]


class DirectoryDeletionPayload(BaseModel):
    cascade: bool
    deleted_directory_ids: List[int]
    deleted_document_ids: List[int]


class DirectoryStatsPayload(BaseModel):
    directory_id: Optional[int]
    direct_child_count: int
    direct_document_count: int
    total_directory_count: int
    total_document_count: int
    root_directory_count: Optional[int] = None
    max_depth: Optional[int] = None


class DirectoryDeleteCheckPayload(BaseModel):
    directory_id: int
    can_delete: bool
    has_children: bool
    has_documents: bool
    children_count: int
    document_count: int
    total_document_count: int
    warnings: List[str]


DirectoryListResponse = ResponseEnvelope[List[DirectoryTreeNode]]
DirectoryDetailResponse = ResponseEnvelope[DirectoryDetail]
DirectoryMutationResponse = ResponseEnvelope[DirectoryItem]
DirectoryMoveResponse = ResponseEnvelope[DirectoryMovePayload]
DirectoryReorderResponse = ResponseEnvelope[List[DirectoryItem]]
DirectoryDeletionResponse = ResponseEnvelope[DirectoryDeletionPayload]
DirectoryStatsResponse = ResponseEnvelope[DirectoryStatsPayload]
DirectoryDeleteCheckResponse = ResponseEnvelope[DirectoryDeleteCheckPayload]
