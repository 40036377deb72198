"""时间工具：统一存储为 UTC，对外输出时转换为配置时区。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from app.packages.wiki.core.config import get_settings

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """格式化为配置时区下的 ``YYYY-MM-DD HH:MM:SS``。

    SQLite 读回的时间不带时区，``CURRENT_TIMESTAMP`` 与索引写入的时间都是 UTC，
    因此无时区的值按 UTC 解释。
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(get_settings().timezone_info).strftime(DISPLAY_FORMAT)
