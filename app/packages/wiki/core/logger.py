"""日志配置：控制台彩色输出、按天滚动的文件日志，以及贯穿请求的 request_id。

搜索降级只记 WARNING，不会中断请求；定位问题时可按 request_id 把
目录修改与随后的索引同步日志串起来。
"""

import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

from .config import get_settings

LOGGER_NAME = "wiki"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class _LocalTimeFormatter(logging.Formatter):
    """以配置时区渲染时间戳。"""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        moment = datetime.fromtimestamp(record.created, get_settings().timezone_info)
        if datefmt:
            return moment.strftime(datefmt)
        return moment.isoformat(sep=" ", timespec="milliseconds")


class ColorFormatter(_LocalTimeFormatter):
    RESET = "\033[0m"
    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: Optional[bool] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_colors = sys.stderr.isatty() if use_colors is None else use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.COLORS.get(record.levelno) if self.use_colors else None
        return f"{color}{message}{self.RESET}" if color else message


class JsonFormatter(_LocalTimeFormatter):
    """每行一个 JSON 对象，便于日志平台检索。"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "module": record.module,
            "line": record.lineno,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get()
        return True


def _build_config() -> Dict[str, Any]:
    settings = get_settings()
    level = settings.log_level
    file_formatter = "json" if settings.log_json else "plain"
    handler_names = ["console", "file"]

    def logger_entry(logger_level: str = level) -> Dict[str, Any]:
        return {"handlers": handler_names, "level": logger_level, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_id": {"()": f"{__name__}.RequestIdFilter"}},
        "formatters": {
            "color": {"()": f"{__name__}.ColorFormatter", "fmt": LOG_FORMAT},
            "plain": {"()": f"{__name__}._LocalTimeFormatter", "fmt": LOG_FORMAT},
            "json": {"()": f"{__name__}.JsonFormatter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "json" if settings.log_json else "color",
                "filters": ["request_id"],
            },
            "file": {
                "class": "logging.handlers.TimedRotatingFileHandler",
                "level": level,
                "formatter": file_formatter,
                "filename": str(settings.log_file_path),
                "when": "midnight",
                "backupCount": settings.log_backup_count,
                "encoding": "utf-8",
                "delay": True,
                "filters": ["request_id"],
            },
        },
        "loggers": {
            LOGGER_NAME: logger_entry(),
            "uvicorn": logger_entry(),
            "uvicorn.error": logger_entry(),
            "uvicorn.access": logger_entry(),
            # SQL 回显由 DATABASE_ECHO 控制，这里只保留告警
            "sqlalchemy.engine": logger_entry("WARNING"),
        },
        "root": {"handlers": handler_names, "level": level},
    }


def setup_logging() -> None:
    get_settings().log_directory.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(_build_config())


logger = logging.getLogger(LOGGER_NAME)


def set_request_id(request_id: Optional[str]) -> None:
    _request_id_ctx.set(request_id)