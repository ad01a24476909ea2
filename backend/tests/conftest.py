"""
테스트 공통 설정 및 Fixtures
"""
import os
import sqlite3
from contextlib import asynccontextmanager

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

# 환경변수 먼저 설정 (settings import 전)
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters-long")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-that-is-at-least-32-chars")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("OLLAMA_BASE_URL", "http://localhost:11434")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "development")

from sqlbridge.db.base import Base
from sqlbridge.core.security import create_access_token
from sqlbridge.crud.user import create_user
from sqlbridge.schemas.user import UserCreate
from sqlbridge.services.background import drain_background_tasks

import sqlbridge.models.user  # noqa: F401
import sqlbridge.models.db_connection  # noqa: F401
import sqlbridge.models.query_history  # noqa: F401
import sqlbridge.models.audit_log  # noqa: F401


# ============================================================
# 메타데이터 DB Fixtures (테스트마다 새 SQLite 파일)
# ============================================================

@pytest.fixture
async def test_engine(tmp_path):
    """테스트용 SQLite 비동기 엔진"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'metadata.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """각 테스트별 DB 세션"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def side_writes(session_factory, monkeypatch):
    """감사 로그/쿼리 히스토리의 백그라운드 기록을 테스트 DB로 보냄"""
    from sqlbridge.services.audit_service import get_audit_recorder

    monkeypatch.setattr("sqlbridge.api.endpoints.query.AsyncSessionLocal", session_factory)
    monkeypatch.setattr(get_audit_recorder(), "_session_factory", session_factory)
    return session_factory


# ============================================================
# 사용자 Fixtures
# ============================================================

@pytest.fixture
def test_user_data():
    """테스트 유저 데이터"""
    return {
        "email": "owner@example.com",
        "password": "OwnerPass123",
        "name": "테스트유저",
    }


@pytest.fixture
async def test_user(db_session, test_user_data):
    return await create_user(db_session, UserCreate(**test_user_data))


@pytest.fixture
async def other_user(db_session):
    return await create_user(
        db_session,
        UserCreate(email="other@example.com", password="OtherPass123", name="다른유저"),
    )


@pytest.fixture
async def admin_user(db_session):
    return await create_user(
        db_session,
        UserCreate(email="admin@example.com", password="AdminPass123", name="관리자"),
        role="admin",
    )


# ============================================================
# FastAPI 테스트 클라이언트
# ============================================================

@asynccontextmanager
async def make_client(session_factory, user=None):
    """
    메타데이터 DB를 테스트 DB로 바꾼 클라이언트.
    user를 주면 해당 사용자의 토큰을 기본 헤더로 사용.
    """
    from httpx import AsyncClient, ASGITransport
    from sqlbridge.main import app
    from sqlbridge.db.session import get_db

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    headers = {}
    if user is not None:
        token = create_access_token(data={"sub": user.email})
        headers["Authorization"] = f"Bearer {token}"

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test", headers=headers) as client:
            yield client
        await drain_background_tasks()
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
async def async_client(session_factory, side_writes):
    """인증되지 않은 클라이언트"""
    async with make_client(session_factory) as client:
        yield client


@pytest.fixture
async def authenticated_client(session_factory, side_writes, test_user):
    """test_user로 인증된 클라이언트"""
    async with make_client(session_factory, test_user) as client:
        yield client


@pytest.fixture
async def other_client(session_factory, side_writes, other_user):
    """other_user로 인증된 클라이언트"""
    async with make_client(session_factory, other_user) as client:
        yield client


@pytest.fixture
async def admin_client(session_factory, side_writes, admin_user):
    """관리자로 인증된 클라이언트"""
    async with make_client(session_factory, admin_user) as client:
        yield client


# ============================================================
# 대상 DB (SQLite 파일)
# ============================================================

@pytest.fixture
def sample_sqlite_db(tmp_path):
    """사용자가 등록할 대상 DB로 쓰는 SQLite 파일"""
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE customers (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT UNIQUE,
            tier TEXT DEFAULT 'basic'
        );
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            customer_id INTEGER NOT NULL REFERENCES customers(id),
            amount REAL NOT NULL
        );
        INSERT INTO customers (id, name, email) VALUES
            (1, 'Kim', 'kim@example.com'),
            (2, 'Lee', 'lee@example.com'),
            (3, 'Park', NULL);
        INSERT INTO orders (customer_id, amount) VALUES (1, 10.5), (1, 20.0), (2, 7.25);
        """
    )
    conn.commit()
    conn.close()
    return str(path)


@pytest.fixture
def sqlite_connection_payload(sample_sqlite_db):
    return {"name": "shop", "type": "sqlite", "file_path": sample_sqlite_db}
