"""测试夹具：为 pytest 提供数据库、搜索服务与客户端的共享配置。"""

import os
from typing import Callable, Generator, Optional

TEST_DB_PATH = os.path.join(os.path.dirname(__file__), "test.db")
TEST_DATABASE_URL = f"sqlite:///{TEST_DB_PATH}"

# 必须在导入应用之前设置，配置对象会被缓存
os.environ["APP_ACTIVE_PACKAGE"] = "wiki"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["SEARCH_BACKEND"] = "memory"
os.environ["REBUILD_LOCK_BACKEND"] = "memory"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import Session, sessionmaker

from app.main import app
from app.packages.wiki.core.dependencies import get_db, get_search_service
from app.packages.wiki.core.locks import InMemoryLockBackend
from app.packages.wiki.core.security import issue_access_token
from app.packages.wiki.db import session as db_session
from app.packages.wiki.models.base import Base
from app.packages.wiki.models.directory import Directory
from app.packages.wiki.models.document import Document
from app.packages.wiki.services.search_index_adapter import InMemorySearchIndexAdapter
from app.packages.wiki.services.search_sync_service import SearchSyncService


@pytest.fixture(scope="session", autouse=True)
def setup_test_database() -> Generator[None, None, None]:
    """创建隔离的 SQLite 测试数据库，并在会话结束后清理。"""
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)

    engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db_session.engine = engine
    db_session.SessionLocal = TestingSessionLocal

    Base.metadata.create_all(bind=engine)
    yield

    engine.dispose()
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)


@pytest.fixture(autouse=True)
def clean_tables() -> Generator[None, None, None]:
    """每个用例结束后清空业务表，保证用例之间互不影响。"""
    yield
    session = db_session.SessionLocal()
    try:
        session.execute(delete(Document))
        session.execute(delete(Directory))
        session.commit()
    finally:
        session.close()


@pytest.fixture()
def db_session_fixture() -> Generator[Session, None, None]:
    """提供给测试用例使用的数据库会话。"""
    session = db_session.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def lock_backend() -> InMemoryLockBackend:
    return InMemoryLockBackend()


@pytest.fixture()
def search_service(lock_backend) -> SearchSyncService:
    """使用内存索引的搜索同步服务，已完成初始化。"""
    service = SearchSyncService(InMemorySearchIndexAdapter(), lock_backend=lock_backend)
    service.initialize()
    return service


@pytest.fixture()
def make_document(db_session_fixture) -> Callable[..., Document]:
    """在文档仓储中写入一条文档记录。"""

    def _make(
        title: str,
        *,
        directory_id: Optional[int] = None,
        content: str = "",
        status: str = "active",
        document_id: Optional[int] = None,
    ) -> Document:
        document = Document(title=title, content=content, directory_id=directory_id, status=status)
        if document_id is not None:
            document.id = document_id
        db_session_fixture.add(document)
        db_session_fixture.commit()
        db_session_fixture.refresh(document)
        return document

    return _make


@pytest.fixture()
def auth_headers() -> dict:
    token = issue_access_token("tester")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def client(db_session_fixture, search_service):
    """构建 FastAPI TestClient，并注入测试专用的数据库与搜索服务依赖。"""
    def override_get_db() -> Generator[Session, None, None]:
        session = db_session.SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_search_service] = lambda: search_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
