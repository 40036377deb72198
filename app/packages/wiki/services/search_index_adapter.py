"""搜索索引适配器：统一封装索引存储的窄接口。

索引按“代”（generation）组织：查询只读取 live 代，全量重建写入新的 building 代，
完成后原子切换 live 指针并回收旧代。每条记录携带单调递增的 version，
写入时只有 version 不小于已存储版本的记录才会生效；删除写入同样带版本的墓碑，
迟到的旧版本写入因此无法让已删除的记录“复活”。
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    case,
    create_engine,
    delete,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.packages.wiki.core.config import Settings
from app.packages.wiki.core.enums import SearchBackendEnum
from app.packages.wiki.core.exceptions import ValidationError
from app.packages.wiki.core.logger import logger
from app.packages.wiki.core.timezone import utc_now

_STATE_ROW_ID = 1
_LIKE_ESCAPE = "\\"


# ------------------------------------------
# 公共数据结构
# ------------------------------------------

@dataclass
class IndexRecord:
    document_id: int
    title: str = ""
    content: str = ""
    directory_path: str = ""
    updated_at: Optional[datetime] = None
    version: int = 0
    deleted: bool = False


class SearchAdapterError(Exception):
    """索引存储不可达或语句执行失败。"""


def tombstone(document_id: int, version: int) -> IndexRecord:
    return IndexRecord(document_id=document_id, version=version, deleted=True)


def match_rank(record: IndexRecord, prefix: str) -> Optional[int]:
    """匹配等级：标题前缀 0，标题中某个词的前缀 1，正文包含 2，不匹配返回 None。

    词以空格分隔，与数据库实现的 LIKE "% 前缀%" 保持一致。
    """
    needle = prefix.lower()
    title = (record.title or "").lower()
    if title.startswith(needle):
        return 0
    if f" {needle}" in title:
        return 1
    if needle in (record.content or "").lower():
        return 2
    return None


def in_scope(record: IndexRecord, path_scope: Optional[str]) -> bool:
    """`path_scope` 为目录名称链，匹配该目录自身及其子目录中的记录。"""
    if not path_scope:
        return True
    path = record.directory_path or ""
    return path == path_scope or path.startswith(f"{path_scope}/")


def _sort_key_time(value: Optional[datetime]) -> float:
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


class SearchIndexAdapter:
    """索引适配器接口。"""

    name = "abstract"

    def ping(self) -> None:
        raise NotImplementedError

    def ensure_schema(self) -> None:
        """幂等地创建索引结构，并在首次创建时建立第 1 代作为 live 代。"""
        raise NotImplementedError

    def live_generation(self) -> int:
        raise NotImplementedError

    def building_generation(self) -> Optional[int]:
        raise NotImplementedError

    def last_reindex_at(self) -> Optional[datetime]:
        raise NotImplementedError

    def begin_generation(self) -> int:
        """分配一个新的代号并登记为 building。"""
        raise NotImplementedError

    def upsert(self, generation: int, record: IndexRecord) -> bool:
        """按 version 守卫写入单条记录，返回是否生效。"""
        raise NotImplementedError

    def upsert_many(self, generation: int, records: List[IndexRecord]) -> int:
        return sum(1 for record in records if self.upsert(generation, record))

    def delete(self, generation: int, document_id: int, version: int) -> bool:
        return self.upsert(generation, tombstone(document_id, version))

    def get(self, generation: int, document_id: int) -> Optional[IndexRecord]:
        """读取原始记录（包含墓碑）。"""
        raise NotImplementedError

    def query_prefix(
        self,
        generation: int,
        prefix: str,
        limit: int,
        *,
        offset: int = 0,
        path_scope: Optional[str] = None,
    ) -> List[IndexRecord]:
        """按匹配等级、更新时间倒序、文档 id 排序；`path_scope` 限定到某目录子树。"""
        raise NotImplementedError

    def list_changed(self, generation: int, min_version: int) -> List[IndexRecord]:
        """返回 version 不低于 `min_version` 的记录（包含墓碑），用于重建时前向合并。"""
        raise NotImplementedError

    def count(self, generation: int) -> int:
        """有效记录数，不含墓碑。"""
        raise NotImplementedError

    def list_document_ids(self, generation: int) -> List[int]:
        raise NotImplementedError

    def swap_live(self, generation: int) -> Optional[int]:
        """把 live 指针切换到 `generation`，返回被替换下来的旧代号。"""
        raise NotImplementedError

    def drop_generation(self, generation: int) -> None:
        raise NotImplementedError


# ------------------------------------------
# 数据库实现
# ------------------------------------------

class IndexBase(DeclarativeBase):
    """索引表使用独立的元数据，由 ensure_schema 在索引库上创建。"""


class SearchIndexRecordRow(IndexBase):
    __tablename__ = "search_index_records"

    generation: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    directory_path: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("ix_search_index_records_generation_deleted", "generation", "deleted"),)


class SearchIndexStateRow(IndexBase):
    __tablename__ = "search_index_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    live_generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    building_generation: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_reindex_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


_RECORD_FIELDS = ("title", "content", "directory_path", "updated_at", "version", "deleted")


def _escape_like(value: str) -> str:
    return re.sub(r"([\\%_])", r"\\\1", value)


class DatabaseSearchIndexAdapter(SearchIndexAdapter):
    """基于关系库的索引实现，使用独立的引擎与连接池。"""

    name = SearchBackendEnum.DATABASE.value

    def __init__(self, url: str, *, statement_timeout_ms: int = 5000, connect_timeout_seconds: int = 3, echo: bool = False):
        connect_args: dict = {}
        if url.startswith("postgresql"):
            connect_args = {
                "connect_timeout": connect_timeout_seconds,
                "options": f"-c statement_timeout={int(statement_timeout_ms)}",
            }
        elif url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": connect_timeout_seconds}
        self._engine = create_engine(url, pool_pre_ping=True, echo=echo, connect_args=connect_args)

    @property
    def engine(self):
        return self._engine

    def _fail(self, action: str, exc: SQLAlchemyError) -> SearchAdapterError:
        logger.warning("Search index %s failed: %s", action, exc)
        return SearchAdapterError(f"search index {action} failed: {exc.__class__.__name__}")

    def ping(self) -> None:
        try:
            with self._engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError as exc:
            raise self._fail("ping", exc) from exc

    def ensure_schema(self) -> None:
        try:
            IndexBase.metadata.create_all(bind=self._engine)
            with self._engine.begin() as conn:
                exists = conn.execute(
                    select(SearchIndexStateRow.id).where(SearchIndexStateRow.id == _STATE_ROW_ID)
                ).first()
                if exists is None:
                    conn.execute(
                        SearchIndexStateRow.__table__.insert().values(
                            id=_STATE_ROW_ID, live_generation=1, building_generation=None
                        )
                    )
        except SQLAlchemyError as exc:
            raise self._fail("schema creation", exc) from exc

    def _state(self, conn, *, for_update: bool = False):
        stmt = select(SearchIndexStateRow.__table__).where(SearchIndexStateRow.id == _STATE_ROW_ID)
        if for_update:
            stmt = stmt.with_for_update()
        row = conn.execute(stmt).mappings().first()
        if row is None:
            raise SearchAdapterError("search index schema is not initialized")
        return row

    def live_generation(self) -> int:
        try:
            with self._engine.connect() as conn:
                return int(self._state(conn)["live_generation"])
        except SQLAlchemyError as exc:
            raise self._fail("state read", exc) from exc

    def building_generation(self) -> Optional[int]:
        try:
            with self._engine.connect() as conn:
                return self._state(conn)["building_generation"]
        except SQLAlchemyError as exc:
            raise self._fail("state read", exc) from exc

    def last_reindex_at(self) -> Optional[datetime]:
        try:
            with self._engine.connect() as conn:
                return self._state(conn)["last_reindex_at"]
        except SQLAlchemyError as exc:
            raise self._fail("state read", exc) from exc

    def begin_generation(self) -> int:
        try:
            with self._engine.begin() as conn:
                state = self._state(conn, for_update=True)
                highest = conn.execute(select(func.max(SearchIndexRecordRow.generation))).scalar() or 0
                generation = max(int(state["live_generation"]), int(state["building_generation"] or 0), int(highest)) + 1
                conn.execute(
                    update(SearchIndexStateRow)
                    .where(SearchIndexStateRow.id == _STATE_ROW_ID)
                    .values(building_generation=generation)
                )
                return generation
        except SQLAlchemyError as exc:
            raise self._fail("generation allocation", exc) from exc

    def _row(self, generation: int, record: IndexRecord) -> dict:
        return {
            "generation": generation,
            "document_id": record.document_id,
            "title": record.title or "",
            "content": record.content or "",
            "directory_path": record.directory_path or "",
            "updated_at": record.updated_at,
            "version": int(record.version),
            "deleted": bool(record.deleted),
        }

    def _guarded_upsert(self, conn, rows: List[dict]) -> int:
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            return sum(self._select_then_write(conn, row) for row in rows)

        stmt = insert(SearchIndexRecordRow.__table__).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["generation", "document_id"],
            set_={field: stmt.excluded[field] for field in _RECORD_FIELDS},
            where=SearchIndexRecordRow.__table__.c.version <= stmt.excluded.version,
        )
        result = conn.execute(stmt)
        return max(int(result.rowcount or 0), 0)

    def _select_then_write(self, conn, row: dict) -> int:
        table = SearchIndexRecordRow.__table__
        stored = conn.execute(
            select(table.c.version)
            .where(table.c.generation == row["generation"], table.c.document_id == row["document_id"])
            .with_for_update()
        ).first()
        if stored is None:
            conn.execute(table.insert().values(**row))
            return 1
        if int(stored[0]) > row["version"]:
            return 0
        conn.execute(
            table.update()
            .where(table.c.generation == row["generation"], table.c.document_id == row["document_id"])
            .values(**{field: row[field] for field in _RECORD_FIELDS})
        )
        return 1

    def upsert(self, generation: int, record: IndexRecord) -> bool:
        try:
            with self._engine.begin() as conn:
                return self._guarded_upsert(conn, [self._row(generation, record)]) > 0
        except SQLAlchemyError as exc:
            raise self._fail("upsert", exc) from exc

    def upsert_many(self, generation: int, records: List[IndexRecord]) -> int:
        if not records:
            return 0
        # 同一批次中同一文档只保留最高版本，避免 ON CONFLICT 在单条语句内重复命中
        latest: Dict[int, IndexRecord] = {}
        for record in records:
            current = latest.get(record.document_id)
            if current is None or record.version >= current.version:
                latest[record.document_id] = record
        try:
            with self._engine.begin() as conn:
                return self._guarded_upsert(conn, [self._row(generation, record) for record in latest.values()])
        except SQLAlchemyError as exc:
            raise self._fail("bulk upsert", exc) from exc

    def _to_record(self, row) -> IndexRecord:
        return IndexRecord(
            document_id=row["document_id"],
            title=row["title"],
            content=row["content"],
            directory_path=row["directory_path"],
            updated_at=row["updated_at"],
            version=int(row["version"]),
            deleted=bool(row["deleted"]),
        )

    def get(self, generation: int, document_id: int) -> Optional[IndexRecord]:
        table = SearchIndexRecordRow.__table__
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(table).where(table.c.generation == generation, table.c.document_id == document_id)
                ).mappings().first()
        except SQLAlchemyError as exc:
            raise self._fail("read", exc) from exc
        return self._to_record(row) if row is not None else None

    def query_prefix(
        self,
        generation: int,
        prefix: str,
        limit: int,
        *,
        offset: int = 0,
        path_scope: Optional[str] = None,
    ) -> List[IndexRecord]:
        table = SearchIndexRecordRow.__table__
        needle = _escape_like(prefix.lower())
        title = func.lower(table.c.title)
        content = func.lower(table.c.content)
        title_prefix = title.like(f"{needle}%", escape=_LIKE_ESCAPE)
        word_prefix = title.like(f"% {needle}%", escape=_LIKE_ESCAPE)
        content_match = content.like(f"%{needle}%", escape=_LIKE_ESCAPE)
        rank = case((title_prefix, 0), (word_prefix, 1), else_=2)
        stmt = (
            select(table)
            .where(table.c.generation == generation, table.c.deleted.is_(False))
            .where(or_(title_prefix, word_prefix, content_match))
        )
        if path_scope:
            # 按字符比较前缀，SQLite 的 LIKE 默认不区分大小写而目录名区分
            child_prefix = f"{path_scope}/"
            stmt = stmt.where(
                or_(
                    table.c.directory_path == path_scope,
                    func.substr(table.c.directory_path, 1, len(child_prefix)) == child_prefix,
                )
            )
        stmt = (
            stmt.order_by(rank.asc(), table.c.updated_at.desc(), table.c.document_id.asc())
            .offset(offset)
            .limit(limit)
        )
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise self._fail("query", exc) from exc
        return [self._to_record(row) for row in rows]

    def list_changed(self, generation: int, min_version: int) -> List[IndexRecord]:
        table = SearchIndexRecordRow.__table__
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    select(table)
                    .where(table.c.generation == generation, table.c.version >= min_version)
                    .order_by(table.c.document_id.asc())
                ).mappings().all()
        except SQLAlchemyError as exc:
            raise self._fail("read", exc) from exc
        return [self._to_record(row) for row in rows]

    def count(self, generation: int) -> int:
        table = SearchIndexRecordRow.__table__
        try:
            with self._engine.connect() as conn:
                return int(
                    conn.execute(
                        select(func.count())
                        .select_from(table)
                        .where(table.c.generation == generation, table.c.deleted.is_(False))
                    ).scalar()
                    or 0
                )
        except SQLAlchemyError as exc:
            raise self._fail("count", exc) from exc

    def list_document_ids(self, generation: int) -> List[int]:
        table = SearchIndexRecordRow.__table__
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    select(table.c.document_id)
                    .where(table.c.generation == generation, table.c.deleted.is_(False))
                    .order_by(table.c.document_id.asc())
                ).all()
        except SQLAlchemyError as exc:
            raise self._fail("read", exc) from exc
        return [row[0] for row in rows]

    def swap_live(self, generation: int) -> Optional[int]:
        try:
            with self._engine.begin() as conn:
                state = self._state(conn, for_update=True)
                previous = int(state["live_generation"])
                conn.execute(
                    update(SearchIndexStateRow)
                    .where(SearchIndexStateRow.id == _STATE_ROW_ID)
                    .values(
                        live_generation=generation,
                        building_generation=None,
                        last_reindex_at=utc_now(),
                    )
                )
                return previous
        except SQLAlchemyError as exc:
            raise self._fail("generation swap", exc) from exc

    def drop_generation(self, generation: int) -> None:
        table = SearchIndexRecordRow.__table__
        try:
            with self._engine.begin() as conn:
                conn.execute(delete(table).where(table.c.generation == generation))
                conn.execute(
                    update(SearchIndexStateRow)
                    .where(
                        SearchIndexStateRow.id == _STATE_ROW_ID,
                        SearchIndexStateRow.building_generation == generation,
                    )
                    .values(building_generation=None)
                )
        except SQLAlchemyError as exc:
            raise self._fail("generation drop", exc) from exc

    def dispose(self) -> None:
        self._engine.dispose()


# ------------------------------------------
# 内存实现
# ------------------------------------------

class InMemorySearchIndexAdapter(SearchIndexAdapter):
    """进程内索引实现，语义与数据库实现一致；`available` 置为 False 可模拟索引不可达。"""

    name = SearchBackendEnum.MEMORY.value

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generations: Dict[int, Dict[int, IndexRecord]] = {}
        self._live: Optional[int] = None
        self._building: Optional[int] = None
        self._last_reindex_at: Optional[datetime] = None
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise SearchAdapterError("search index is unavailable")

    def _require_schema(self) -> int:
        self._check()
        if self._live is None:
            raise SearchAdapterError("search index schema is not initialized")
        return self._live

    def ping(self) -> None:
        self._check()

    def ensure_schema(self) -> None:
        with self._lock:
            self._check()
            if self._live is None:
                self._live = 1
                self._generations.setdefault(1, {})

    def live_generation(self) -> int:
        with self._lock:
            return self._require_schema()

    def building_generation(self) -> Optional[int]:
        with self._lock:
            self._require_schema()
            return self._building

    def last_reindex_at(self) -> Optional[datetime]:
        with self._lock:
            self._require_schema()
            return self._last_reindex_at

    def begin_generation(self) -> int:
        with self._lock:
            live = self._require_schema()
            generation = max([live, self._building or 0, *self._generations.keys()]) + 1
            self._generations[generation] = {}
            self._building = generation
            return generation

    def upsert(self, generation: int, record: IndexRecord) -> bool:
        with self._lock:
            self._require_schema()
            bucket = self._generations.setdefault(generation, {})
            stored = bucket.get(record.document_id)
            if stored is not None and stored.version > record.version:
                return False
            bucket[record.document_id] = replace(record)
            return True

    def get(self, generation: int, document_id: int) -> Optional[IndexRecord]:
        with self._lock:
            self._require_schema()
            stored = self._generations.get(generation, {}).get(document_id)
            return replace(stored) if stored is not None else None

    def _live_records(self, generation: int) -> Iterable[IndexRecord]:
        return (record for record in self._generations.get(generation, {}).values() if not record.deleted)

    def query_prefix(
        self,
        generation: int,
        prefix: str,
        limit: int,
        *,
        offset: int = 0,
        path_scope: Optional[str] = None,
    ) -> List[IndexRecord]:
        with self._lock:
            self._require_schema()
            ranked = []
            for record in self._live_records(generation):
                if not in_scope(record, path_scope):
                    continue
                rank = match_rank(record, prefix)
                if rank is not None:
                    ranked.append((rank, -_sort_key_time(record.updated_at), record.document_id, record))
        ranked.sort(key=lambda item: item[:3])
        return [replace(item[3]) for item in ranked[offset : offset + limit]]

    def list_changed(self, generation: int, min_version: int) -> List[IndexRecord]:
        with self._lock:
            self._require_schema()
            bucket = self._generations.get(generation, {})
            return [replace(bucket[key]) for key in sorted(bucket) if bucket[key].version >= min_version]

    def count(self, generation: int) -> int:
        with self._lock:
            self._require_schema()
            return sum(1 for _ in self._live_records(generation))

    def list_document_ids(self, generation: int) -> List[int]:
        with self._lock:
            self._require_schema()
            return sorted(record.document_id for record in self._live_records(generation))

    def swap_live(self, generation: int) -> Optional[int]:
        with self._lock:
            previous = self._require_schema()
            self._live = generation
            self._building = None
            self._last_reindex_at = utc_now()
            return previous

    def drop_generation(self, generation: int) -> None:
        with self._lock:
            self._require_schema()
            self._generations.pop(generation, None)
            if self._building == generation:
                self._building = None


def build_search_adapter(settings: Settings) -> Optional[SearchIndexAdapter]:
    """根据配置创建索引适配器；配置为 disabled 时返回 None。"""
    backend = (settings.search_backend or "").strip().lower()
    if backend == SearchBackendEnum.DISABLED.value:
        return None
    if backend == SearchBackendEnum.MEMORY.value:
        return InMemorySearchIndexAdapter()
    if backend == SearchBackendEnum.DATABASE.value:
        return DatabaseSearchIndexAdapter(
            settings.search_database_url,
            statement_timeout_ms=settings.search_statement_timeout_ms,
            connect_timeout_seconds=settings.search_connect_timeout_seconds,
        )
    raise ValidationError("不支持的搜索后端类型", {"search_backend": settings.search_backend})
