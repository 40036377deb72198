"""异常处理模块：定义统一的业务异常与响应格式。

业务异常分为五类，分别对应固定的 HTTP 状态码：

- ValidationError：输入格式不合法、排序列表不是当前子目录的排列等；
- ConflictError：同级重名、移动成环、非空删除、重建索引已在进行中；
- NotFoundError：目录或文档不存在；
- DependencyUnavailableError：搜索适配器不可达，仅影响搜索相关接口；
- InternalError：存储层出现非预期错误。
"""

from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.packages.wiki.core.constants import (
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_CONFLICT,
    HTTP_STATUS_INTERNAL_SERVER_ERROR,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_SERVICE_UNAVAILABLE,
)
from app.packages.wiki.core.logger import logger


class AppException(HTTPException):
    """携带统一响应结构的业务异常，方便在全局处理中转换响应体。"""

    def __init__(self, msg: str, code: int = status.HTTP_400_BAD_REQUEST, data=None) -> None:
        super().__init__(status_code=code, detail=msg)
        self.data = data

    @property
    def msg(self) -> str:
        return str(self.detail)


class ValidationError(AppException):
    def __init__(self, msg: str, data: Optional[Any] = None) -> None:
        super().__init__(msg, HTTP_STATUS_BAD_REQUEST, data)


class ConflictError(AppException):
    def __init__(self, msg: str, data: Optional[Any] = None) -> None:
        super().__init__(msg, HTTP_STATUS_CONFLICT, data)


class NotFoundError(AppException):
    def __init__(self, msg: str, data: Optional[Any] = None) -> None:
        super().__init__(msg, HTTP_STATUS_NOT_FOUND, data)


class DependencyUnavailableError(AppException):
    """外部依赖（搜索适配器）不可用，调用方可按自身策略重试。"""

    def __init__(self, msg: str, data: Optional[Any] = None) -> None:
        super().__init__(msg, HTTP_STATUS_SERVICE_UNAVAILABLE, data)


class InternalError(AppException):
    def __init__(self, msg: str = "服务器内部错误", data: Optional[Any] = None) -> None:
        super().__init__(msg, HTTP_STATUS_INTERNAL_SERVER_ERROR, data)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - framework glue
    """将 FastAPI 的 ``HTTPException`` 转换为统一响应格式。"""
    payload = {"msg": exc.detail, "data": getattr(exc, "data", None), "code": exc.status_code}
    return JSONResponse(status_code=exc.status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # pragma: no cover - framework glue
    """兜底处理：将未捕获异常转换为标准的 500 响应结构。"""
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    payload = {
        "msg": "服务器内部错误",
        "data": None,
        "code": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)
