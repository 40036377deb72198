"""令牌校验：只在 HTTP 边界确认调用方身份，用户体系由上游服务负责。

令牌由上游签发，本服务只需要与其共享 ``JWT_SECRET_KEY``；
``issue_access_token`` 供本地调试与测试使用。
"""

from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from .config import get_settings
from .logger import logger
from .timezone import utc_now

# 兼容上游两种写法：标准的 sub 与历史遗留的 user_id
SUBJECT_CLAIMS = ("sub", "user_id")


def issue_access_token(subject: str, *, expires_in: Optional[timedelta] = None, **claims: Any) -> str:
    settings = get_settings()
    lifetime = expires_in or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {**claims, "sub": str(subject), "exp": utc_now() + lifetime}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
    """校验签名与过期时间，失败时返回 ``None``。"""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.info("Rejected access token: %s", exc)
        return None


def subject_of(claims: Dict[str, Any]) -> Optional[str]:
    for key in SUBJECT_CLAIMS:
        value = claims.get(key)
        if value not in (None, ""):
            return str(value)
    return None
