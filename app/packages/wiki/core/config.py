"""配置模块：从环境变量与 .env 文件加载设置，并缓存为单例。

加载顺序（后者覆盖前者）：``.env`` → ``.env.<ENVIRONMENT>``；
设置了 ``ENV_FILE`` 时只加载该文件。``.env`` 不会覆盖进程中已有的环境变量。
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _detect_base_dir() -> Path:
    """向上查找包含 `app` 目录的项目根路径。"""
    here = Path(__file__).resolve()
    return next((parent for parent in here.parents if (parent / "app").is_dir()), here.parent)


BASE_DIR = _detect_base_dir()


def _env_files() -> List[Tuple[Path, bool]]:
    """返回待加载的 (文件, 是否覆盖已有变量)。"""
    override = os.getenv("ENV_FILE")
    if override:
        return [(BASE_DIR / override, True)]

    files = [(BASE_DIR / ".env", False)]
    environment = os.getenv("ENVIRONMENT")
    if environment is None and os.getenv("DEBUG", "").strip().lower() in {"1", "true", "yes", "on"}:
        environment = "development"
    if environment:
        name = environment if environment.startswith(".env") else f".env.{environment}"
        files.append((BASE_DIR / name, True))
    return files


for _path, _override in _env_files():
    if _path.exists():
        load_dotenv(_path, override=_override, encoding="utf-8")


class Settings(BaseSettings):
    """所有字段都可以通过同名（alias）环境变量覆盖。"""

    project_name: str = Field(default="Wiki Directory API", alias="PROJECT_NAME")
    api_v1_str: str = Field(default="/api/v1", alias="API_V1_STR")
    debug: bool = Field(default=False, alias="DEBUG")

    database_host: str = Field(default="localhost", alias="DATABASE_HOST")
    database_port: int = Field(default=5432, alias="DATABASE_PORT")
    database_user: str = Field(default="postgres", alias="DATABASE_USER")
    database_password: str = Field(default="postgres", alias="DATABASE_PASSWORD")
    database_name: str = Field(default="wiki", alias="DATABASE_NAME")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    database_url_raw: str = Field(default="", alias="DATABASE_URL")

    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    rebuild_lock_backend: str = Field(default="redis", alias="REBUILD_LOCK_BACKEND")
    rebuild_lock_ttl_seconds: int = Field(default=900, alias="REBUILD_LOCK_TTL_SECONDS")

    jwt_secret_key: str = Field(default="changeme", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="log", alias="LOG_DIR")
    log_file_name: str = Field(default="app.log", alias="LOG_FILE_NAME")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    log_backup_count: int = Field(default=14, alias="LOG_BACKUP_COUNT")
    app_port: int = Field(default=8000, alias="APP_PORT")
    timezone: str = Field(default="Asia/Shanghai", alias="TIMEZONE")

    # 目录树
    directory_order_gap: int = Field(default=1000, alias="DIRECTORY_ORDER_GAP")
    directory_name_max_length: int = Field(default=255, alias="DIRECTORY_NAME_MAX_LENGTH")

    # 搜索索引同步
    search_backend: str = Field(default="database", alias="SEARCH_BACKEND")
    search_database_url_raw: str = Field(default="", alias="SEARCH_DATABASE_URL")
    search_reindex_page_size: int = Field(default=500, alias="SEARCH_REINDEX_PAGE_SIZE")
    search_reindex_timeout_seconds: float = Field(default=300.0, alias="SEARCH_REINDEX_TIMEOUT_SECONDS")
    search_statement_timeout_ms: int = Field(default=5000, alias="SEARCH_STATEMENT_TIMEOUT_MS")
    search_connect_timeout_seconds: int = Field(default=3, alias="SEARCH_CONNECT_TIMEOUT_SECONDS")
    search_suggestion_limit: int = Field(default=10, alias="SEARCH_SUGGESTION_LIMIT")
    search_suggestion_max_limit: int = Field(default=50, alias="SEARCH_SUGGESTION_MAX_LIMIT")

    model_config = SettingsConfigDict(extra="ignore")

    @property
    def sql_database_url(self) -> str:
        """优先使用 DATABASE_URL，否则根据当前设置拼接 PostgreSQL 连接串。"""
        raw = (self.database_url_raw or "").strip()
        if raw:
            return raw
        return (
            f"postgresql+psycopg2://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def search_database_url(self) -> str:
        """搜索索引所在库的连接串，未单独配置时与业务库共用。"""
        raw = (self.search_database_url_raw or "").strip()
        return raw or self.sql_database_url

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def log_directory(self) -> Path:
        """相对路径按项目根目录解析。"""
        path = Path(self.log_dir)
        return path if path.is_absolute() else BASE_DIR / path

    @property
    def log_file_path(self) -> Path:
        return self.log_directory / self.log_file_name

    @property
    def timezone_info(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError:
            return ZoneInfo("UTC")


@lru_cache
def get_settings() -> Settings:
    return Settings()
