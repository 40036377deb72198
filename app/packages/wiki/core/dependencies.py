"""依赖注入模块：封装 FastAPI 中复用度高的依赖函数。"""

from collections.abc import Generator
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.packages.wiki.core.constants import ACCESS_TOKEN_TYPE
from app.packages.wiki.core.security import subject_of, verify_access_token
from app.packages.wiki.db.session import SessionLocal
from app.packages.wiki.services.search_sync_service import SearchSyncService, get_search_sync_service

security_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """通过令牌校验的调用方。"""

    subject: str
    claims: Dict[str, Any] = field(default_factory=dict)


def get_db() -> Generator[Session, None, None]:
    """生成一个数据库会话，并在请求结束后自动关闭。"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> Caller:
    """校验 ``Authorization: Bearer`` 头部，缺失或非法时抛出 401。"""
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="缺少认证信息")

    if credentials.scheme.lower() != ACCESS_TOKEN_TYPE:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="认证类型无效")

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token 无效或已过期")

    subject = subject_of(payload)
    if subject is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token 无效")
    return Caller(subject=subject, claims=payload)


def get_search_service() -> SearchSyncService:
    return get_search_sync_service()
