"""搜索同步服务：让搜索索引与文档仓储保持最终一致，并提供联想查询。

约定：
- 单文档同步与删除按 version 幂等，新版本永远不会被旧版本覆盖；
- 全量重建写入新的索引代；单文档写入按索引中登记的 building 代同时落到
  live 代与新代，切换前后再把 live 代中重建开始后变更的记录按 version 合并
  到新代，多进程部署下同样成立；
- 索引不可用时查询降级为空结果，写操作抛出 DependencyUnavailableError，
  不影响目录与文档本身的修改。
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional

from sqlalchemy.orm import Session

from app.packages.wiki.core.config import get_settings
from app.packages.wiki.core.constants import REBUILD_LOCK_KEY, SEARCH_UNAVAILABLE_MESSAGE
from app.packages.wiki.core.enums import IndexActionEnum, SearchIndexStateEnum
from app.packages.wiki.core.exceptions import ConflictError, DependencyUnavailableError, NotFoundError
from app.packages.wiki.core.locks import LockBackend, get_lock_backend
from app.packages.wiki.core.logger import logger
from app.packages.wiki.core.timezone import format_datetime
from app.packages.wiki.crud.directory import directory_crud
from app.packages.wiki.crud.document import document_crud
from app.packages.wiki.models.directory import Directory
from app.packages.wiki.models.document import Document
from app.packages.wiki.services.search_index_adapter import (
    IndexRecord,
    SearchAdapterError,
    SearchIndexAdapter,
    build_search_adapter,
    tombstone,
)
from app.packages.wiki.utils.path_utils import parse_ids

_SNIPPET_LENGTH = 120


class RebuildAborted(Exception):
    """全量重建因超时或取消而中止。"""


class SearchSyncService:
    """编排索引的初始化、单文档同步、全量重建与查询。"""

    def __init__(self, adapter: Optional[SearchIndexAdapter], *, lock_backend: Optional[LockBackend] = None):
        self._adapter = adapter
        self._lock_backend = lock_backend
        self._state = SearchIndexStateEnum.DISABLED if adapter is None else SearchIndexStateEnum.UNINITIALIZED
        self._last_error: Optional[str] = None

        self._clock_lock = threading.Lock()
        self._last_version = 0


    @property
    def adapter(self) -> Optional[SearchIndexAdapter]:
        return self._adapter

    @property
    def state(self) -> SearchIndexStateEnum:
        return self._state

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    def initialize(self) -> Dict[str, Any]:
        """创建索引结构（已存在则跳过）。失败时只记录降级状态，不抛出异常，也不在此重试。"""
        if self._adapter is None:
            logger.info("Search backend disabled, skipping index initialization")
            return self.get_status()
        try:
            self._adapter.ping()
            self._adapter.ensure_schema()
        except SearchAdapterError as exc:
            self._mark_unavailable(exc)
            logger.warning("Search index initialization failed, search degraded: %s", exc)
            return self.get_status()

        self._state = SearchIndexStateEnum.READY
        self._last_error = None
        logger.info("Search index ready (backend=%s)", self._adapter.name)
        return self.get_status()

    def get_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "backend": self._adapter.name if self._adapter is not None else SearchIndexStateEnum.DISABLED.value,
            "status": self._state.value,
            "initialized": False,
            "available": False,
            "document_count": 0,
            "live_generation": None,
            "rebuilding": False,
            "last_reindex_at": None,
            "last_error": self._last_error,
        }
        if self._adapter is None or self._state != SearchIndexStateEnum.READY:
            return status
        try:
            live = self._adapter.live_generation()
            status.update(
                {
                    "document_count": self._adapter.count(live),
                    "live_generation": live,
                    "last_reindex_at": format_datetime(self._adapter.last_reindex_at()),
                    "rebuilding": self._adapter.building_generation() is not None,
                }
            )
        except SearchAdapterError as exc:
            self._mark_unavailable(exc)
            status.update({"status": self._state.value, "last_error": self._last_error})
            return status
        status.update({"initialized": True, "available": True})
        return status

    # ------------------------------------------------------------------
    # 单文档同步
    # ------------------------------------------------------------------

    def next_version(self) -> int:
        """分配单调递增的版本号：纳秒时间戳，与上一次分配值比较取较大者 + 1。"""
        with self._clock_lock:
            self._last_version = max(self._last_version + 1, time.time_ns())
            return self._last_version

    def index_document(self, db: Session, document_id: int, *, version: Optional[int] = None) -> Dict[str, Any]:
        """按文档当前状态同步索引：有效且目录链完整时写入，否则写入删除墓碑。"""
        # 先分配版本再读取文档，保证更高的版本读到的内容不会更旧
        version = version if version is not None else self.next_version()
        adapter = self._ensure_ready()

        document = document_crud.get(db, document_id)
        if document is None:
            raise NotFoundError("文档不存在")

        directory_path = self._resolve_directory_path(db, document) if document.is_active else None
        with self._adapter_call("document sync"):
            if directory_path is None:
                self._write(adapter, tombstone(document_id, version))
                action = IndexActionEnum.DELETED
            else:
                applied = self._write(adapter, self._build_record(document, directory_path, version))
                action = IndexActionEnum.UPSERTED if applied else IndexActionEnum.SKIPPED

        return {"document_id": document_id, "action": action.value, "version": version}

    def delete_document_index(self, document_id: int, *, version: Optional[int] = None) -> Dict[str, Any]:
        """删除文档的索引记录；记录不存在时同样视为成功。"""
        version = version if version is not None else self.next_version()
        adapter = self._ensure_ready()
        with self._adapter_call("document delete"):
            applied = self._write(adapter, tombstone(document_id, version))
        action = IndexActionEnum.DELETED if applied else IndexActionEnum.SKIPPED
        return {"document_id": document_id, "action": action.value, "version": version}

    def sync_directories(self, db: Session, directory_ids: Iterable[int]) -> Dict[str, Any]:
        """目录重命名或移动后，重新推导其中所有有效文档的目录路径。"""
        document_ids = document_crud.list_ids_in(db, directory_ids, active_only=True)
        for document_id in document_ids:
            self.index_document(db, document_id)
        return {"document_ids": document_ids, "synced_count": len(document_ids)}

    def remove_documents(self, document_ids: Iterable[int]) -> Dict[str, Any]:
        """级联删除目录后，清理被标记删除的文档索引。"""
        removed = [int(document_id) for document_id in document_ids]
        for document_id in removed:
            self.delete_document_index(document_id)
        return {"document_ids": removed, "removed_count": len(removed)}

    # ------------------------------------------------------------------
    # 全量重建
    # ------------------------------------------------------------------

    def reindex_all(
        self,
        db: Session,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """分页读取全部有效文档写入新的索引代，完成后原子切换 live 代并回收旧代。

        同一时刻只允许一个重建任务；超时或取消时丢弃新代，旧代继续提供查询。
        """
        settings = get_settings()
        adapter = self._ensure_ready()
        lock = self._lock_backend or get_lock_backend()
        if not lock.acquire(REBUILD_LOCK_KEY, settings.rebuild_lock_ttl_seconds):
            raise ConflictError("重建索引任务正在进行中")

        started = time.monotonic()
        deadline = started + (timeout if timeout is not None else settings.search_reindex_timeout_seconds)
        try:
            with self._adapter_call("reindex"):
                stale = adapter.building_generation()
                if stale is not None:
                    logger.warning("Dropping unfinished index generation %s", stale)
                    adapter.drop_generation(stale)

                # 重建开始后分配的版本号都不低于该值
                start_version = self.next_version()
                generation = adapter.begin_generation()
                try:
                    indexed = self._load_generation(db, adapter, generation, deadline, cancel_event)
                    self._check_abort(deadline, cancel_event)
                    self._merge_forward(adapter, adapter.live_generation(), generation, start_version)
                    previous = adapter.swap_live(generation)
                except Exception:
                    self._discard_generation(adapter, generation)
                    raise

                if previous is not None and previous != generation:
                    # 合并之后、切换之前仍只落在旧代上的写入
                    self._merge_forward(adapter, previous, generation, start_version)
                    adapter.drop_generation(previous)
        except RebuildAborted as exc:
            logger.warning("Search reindex aborted: %s", exc)
            raise DependencyUnavailableError(f"重建索引已中止：{exc}") from exc
        finally:
            lock.release(REBUILD_LOCK_KEY)

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info("Search reindex finished: generation=%s documents=%s in %sms", generation, indexed, duration_ms)
        return {
            "generation": generation,
            "indexed_count": indexed,
            "duration_ms": duration_ms,
            "last_reindex_at": format_datetime(adapter.last_reindex_at()),
        }

    def _load_generation(
        self,
        db: Session,
        adapter: SearchIndexAdapter,
        generation: int,
        deadline: float,
        cancel_event: Optional[threading.Event],
    ) -> int:
        page_size = max(get_settings().search_reindex_page_size, 1)
        chain_cache: Dict[int, Optional[str]] = {}
        after_id = 0
        indexed = 0
        while True:
            self._check_abort(deadline, cancel_event)
            version = self.next_version()
            page = document_crud.list_active_page(db, after_id=after_id, limit=page_size)
            if not page:
                return indexed
            records = []
            for document in page:
                directory_path = self._resolve_directory_path(db, document, chain_cache)
                if directory_path is not None:
                    records.append(self._build_record(document, directory_path, version))
            adapter.upsert_many(generation, records)
            indexed += len(records)
            after_id = page[-1].id

    def _merge_forward(self, adapter: SearchIndexAdapter, source: int, target: int, min_version: int) -> int:
        """把 `source` 代中 version 不低于 `min_version` 的记录按 version 守卫写入 `target` 代。"""
        changed = adapter.list_changed(source, min_version)
        if not changed:
            return 0
        merged = adapter.upsert_many(target, changed)
        logger.info("Merged %s changed index records from generation %s into %s", merged, source, target)
        return merged

    def _discard_generation(self, adapter: SearchIndexAdapter, generation: int) -> None:
        try:
            adapter.drop_generation(generation)
        except SearchAdapterError as exc:
            logger.warning("Failed to drop aborted index generation %s: %s", generation, exc)

    def _check_abort(self, deadline: float, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RebuildAborted("cancelled")
        if time.monotonic() > deadline:
            raise RebuildAborted("timed out")

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def get_suggestions(
        self,
        prefix: str,
        limit: Optional[int] = None,
        *,
        offset: int = 0,
        directory_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """在 live 代上做前缀/关键词匹配；索引未就绪或不可达时返回空结果与状态标识。

        `directory_path` 为目录名称链，只返回该目录及其子目录中的文档；
        `offset` 与 `limit` 组合用于翻页。
        """
        settings = get_settings()
        size = settings.search_suggestion_limit if limit is None else limit
        size = max(1, min(int(size), settings.search_suggestion_max_limit))
        offset = max(int(offset or 0), 0)
        needle = (prefix or "").strip()

        payload: Dict[str, Any] = {
            "prefix": needle,
            "offset": offset,
            "items": [],
            "status": self._state.value,
            "available": False,
        }
        if self._adapter is None or self._state != SearchIndexStateEnum.READY:
            return payload
        payload["available"] = True
        if not needle:
            return payload

        try:
            records = self._adapter.query_prefix(
                self._adapter.live_generation(),
                needle,
                size,
                offset=offset,
                path_scope=directory_path,
            )
        except SearchAdapterError as exc:
            self._mark_unavailable(exc)
            logger.warning("Suggestion query degraded: %s", exc)
            payload.update({"status": self._state.value, "available": False})
            return payload

        payload["items"] = [
            {
                "document_id": record.document_id,
                "title": record.title,
                "directory_path": record.directory_path,
                "snippet": (record.content or "")[:_SNIPPET_LENGTH],
                "updated_at": format_datetime(record.updated_at),
            }
            for record in records
        ]
        return payload

    def resolve_directory_scope(self, db: Session, directory_id: int) -> str:
        """把目录 id 转换为索引中使用的名称链，用于限定联想范围。"""
        directory = directory_crud.get(db, directory_id)
        if directory is None:
            raise NotFoundError("目录不存在")
        chain = self._directory_name_chain(db, directory)
        if chain is None:
            raise NotFoundError("目录链不完整")
        return chain

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    def _ensure_ready(self) -> SearchIndexAdapter:
        """写操作前确认索引可用；降级状态下会尝试一次建表以自动恢复。"""
        if self._adapter is None:
            raise DependencyUnavailableError(SEARCH_UNAVAILABLE_MESSAGE, {"status": self._state.value})
        if self._state != SearchIndexStateEnum.READY:
            try:
                self._adapter.ensure_schema()
            except SearchAdapterError as exc:
                self._mark_unavailable(exc)
                raise DependencyUnavailableError(SEARCH_UNAVAILABLE_MESSAGE, {"status": self._state.value}) from exc
            self._state = SearchIndexStateEnum.READY
            self._last_error = None
        return self._adapter

    @contextmanager
    def _adapter_call(self, action: str) -> Iterator[None]:
        try:
            yield
        except SearchAdapterError as exc:
            self._mark_unavailable(exc)
            logger.warning("Search %s failed, index degraded: %s", action, exc)
            raise DependencyUnavailableError(SEARCH_UNAVAILABLE_MESSAGE, {"status": self._state.value}) from exc

    def _mark_unavailable(self, exc: Exception) -> None:
        self._state = SearchIndexStateEnum.UNAVAILABLE
        self._last_error = str(exc)

    def _write(self, adapter: SearchIndexAdapter, record: IndexRecord) -> bool:
        """写入 live 代；索引登记了 building 代时同时写入新代。

        写完后再确认一次 live 代，若期间发生了切换则补写到新的 live 代。
        """
        live = adapter.live_generation()
        applied = adapter.upsert(live, record)
        building = adapter.building_generation()
        if building is not None and building != live:
            adapter.upsert(building, record)
        current = adapter.live_generation()
        if current not in (live, building):
            adapter.upsert(current, record)
        return applied

    def _resolve_directory_path(
        self,
        db: Session,
        document: Document,
        cache: Optional[Dict[int, Optional[str]]] = None,
    ) -> Optional[str]:
        """返回文档所在目录的名称链（如 "Docs/API"），未归档文档为空串；目录链断裂时返回 None。"""
        if document.directory_id is None:
            return ""
        if cache is not None and document.directory_id in cache:
            return cache[document.directory_id]

        directory = directory_crud.get(db, document.directory_id)
        resolved = self._directory_name_chain(db, directory) if directory is not None else None

        if cache is not None:
            cache[document.directory_id] = resolved
        return resolved

    def _directory_name_chain(self, db: Session, directory: Directory) -> Optional[str]:
        chain_ids = parse_ids(directory.path)
        names = {item.id: item.name for item in directory_crud.list_by_ids(db, chain_ids)}
        if chain_ids and all(chain_id in names for chain_id in chain_ids):
            return "/".join(names[chain_id] for chain_id in chain_ids)
        return None

    def _build_record(self, document: Document, directory_path: str, version: int) -> IndexRecord:
        return IndexRecord(
            document_id=document.id,
            title=document.title or "",
            content=document.content or "",
            directory_path=directory_path,
            updated_at=document.update_time,
            version=version,
        )


_service: Optional[SearchSyncService] = None
_service_guard = threading.Lock()


def get_search_sync_service() -> SearchSyncService:
    global _service
    with _service_guard:
        if _service is None:
            _service = SearchSyncService(build_search_adapter(get_settings()))
        return _service
