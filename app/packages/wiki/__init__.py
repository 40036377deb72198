"""Wiki 业务包：文档目录树管理与搜索索引同步。"""

from app.packages.types import AppPackage

from .api.v1 import api_router
from .core.config import get_settings
from .core.exceptions import generic_exception_handler, http_exception_handler
from .core.logger import logger, setup_logging
from .core.responses import create_response
from .db.init_db import init_db
from .services.search_sync_service import get_search_sync_service

package = AppPackage(
    name="wiki",
    api_router=api_router,
    get_settings=get_settings,
    setup_logging=setup_logging,
    logger=logger,
    init_db=init_db,
    create_response=create_response,
    http_exception_handler=http_exception_handler,
    generic_exception_handler=generic_exception_handler,
    initialize_search=lambda: get_search_sync_service().initialize(),
)

__all__ = ["package", "api_router", "get_settings"]
