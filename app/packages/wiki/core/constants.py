"""常量定义：集中维护 HTTP 状态码与目录树、搜索相关的固定取值。"""

HTTP_STATUS_OK = 200
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_UNAUTHORIZED = 401
HTTP_STATUS_FORBIDDEN = 403
HTTP_STATUS_NOT_FOUND = 404
HTTP_STATUS_CONFLICT = 409
HTTP_STATUS_UNPROCESSABLE_ENTITY = 422
HTTP_STATUS_INTERNAL_SERVER_ERROR = 500
HTTP_STATUS_SERVICE_UNAVAILABLE = 503

ACCESS_TOKEN_TYPE = "bearer"

# 面包屑导航中的虚拟根节点
ROOT_BREADCRUMB_ID = 0
ROOT_BREADCRUMB_NAME = "根目录"

# 物化路径分隔符：根目录下的节点形如 "/12/"，子节点追加自身 ID
PATH_SEPARATOR = "/"

# 搜索同步结果标识，供接口层回报“内容已保存但搜索暂不可用”
SEARCH_SYNC_OK = "ok"
SEARCH_SYNC_DEGRADED = "degraded"
SEARCH_UNAVAILABLE_MESSAGE = "搜索服务暂时不可用"

REBUILD_LOCK_KEY = "search:reindex:lock"
