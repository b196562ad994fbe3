"""
Shared fixtures for XQuery backend integration tests.

Uses the database named by TEST_DATABASE_URL (defaults to a local SQLite file
through aiosqlite, so no server is needed). Tables are created before and
dropped after every test, so each test starts with a clean slate.

Supabase storage and the OpenAI assistant are replaced by in-memory fakes via
``app.dependency_overrides``.
"""
from __future__ import annotations

import os
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sse_starlette import sse
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///./xquery_test.db",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from app.database import Base, get_db, get_session_factory  # noqa: E402
from app.main import app  # noqa: E402
from app.models import database_models  # noqa: E402,F401
from app.services.assistant import AssistantRunError, get_assistant_service  # noqa: E402
from app.services.storage import SignedUpload, StorageError, get_storage_service  # noqa: E402


# ---------------------------------------------------------------------------
# Provider fakes
# ---------------------------------------------------------------------------

class FakeStorage:
    """In-memory stand-in for StorageService."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.removed: List[str] = []
        self.fail_remove = False
        self.fail_signing = False

    async def create_signed_upload_url(self, path: str) -> SignedUpload:
        if self.fail_signing:
            raise StorageError("Failed to create upload URL")
        return SignedUpload(url=f"https://storage.test/upload/{path}", token="tok-123", path=path)

    async def exists(self, path: str) -> bool:
        return path in self.objects

    async def download(self, path: str) -> bytes:
        if path not in self.objects:
            raise StorageError("Failed to download file from storage")
        return self.objects[path]

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        return f"https://storage.test/download/{path}?expires_in={expires_in}"

    async def remove(self, paths: List[str]) -> None:
        if self.fail_remove:
            raise StorageError("storage offline")
        for path in paths:
            self.objects.pop(path, None)
            self.removed.append(path)


class FakeAssistant:
    """In-memory stand-in for AssistantService."""

    def __init__(self) -> None:
        self.assistant_id = "asst_test"
        self.uploads: List[Tuple[str, str, int]] = []
        self.threads: List[str] = []
        self.deleted_threads: List[str] = []
        # (thread_id, content, attach_file_id)
        self.messages: List[Tuple[str, str, Optional[str]]] = []
        self.deltas: List[str] = ["The answer ", "is 42."]
        self.run_error: Optional[str] = None
        self.answer = "Polled answer."

    async def get_or_create_assistant(self) -> str:
        return self.assistant_id

    async def upload_file(self, content: bytes, filename: str, mime_type: str) -> str:
        self.uploads.append((filename, mime_type, len(content)))
        return f"file-{len(self.uploads)}"

    async def create_thread(self) -> str:
        thread_id = f"thread_{len(self.threads) + 1}"
        self.threads.append(thread_id)
        return thread_id

    async def delete_thread(self, thread_id: str) -> None:
        self.deleted_threads.append(thread_id)

    async def add_user_message(self, thread_id: str, content: str, attach_file_id: Optional[str] = None) -> None:
        self.messages.append((thread_id, content, attach_file_id))

    async def stream_run(self, thread_id: str):
        for delta in self.deltas:
            yield delta
        if self.run_error:
            raise AssistantRunError(self.run_error)

    async def ask(self, question: str, openai_file_id: str, thread_id: Optional[str] = None):
        if thread_id is None:
            thread_id = await self.create_thread()
            self.messages.append((thread_id, question, openai_file_id))
        else:
            self.messages.append((thread_id, question, None))
        return self.answer, thread_id


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    """sse-starlette caches an exit event bound to the first test's loop."""
    status = getattr(sse, "AppStatus", None)
    if status is not None and hasattr(status, "should_exit_event"):
        status.should_exit_event = None
    yield


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session for each test."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest_asyncio.fixture
async def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest_asyncio.fixture
async def fake_assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    session_factory: async_sessionmaker,
    fake_storage: FakeStorage,
    fake_assistant: FakeAssistant,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB and provider
    dependencies overridden.
    """

    async def _override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_storage_service] = lambda: fake_storage
    app.dependency_overrides[get_assistant_service] = lambda: fake_assistant

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {
    "X-User-Id": "test-user-1",
    "X-User-Email": "test1@example.com",
    "X-User-Name": "Test User 1",
}

AUTH_HEADERS_USER2 = {
    "X-User-Id": "test-user-2",
    "X-User-Email": "test2@example.com",
    "X-User-Name": "Test User 2",
}


async def upload_file(
    client: AsyncClient,
    storage: FakeStorage,
    filename: str = "report.pdf",
    content: bytes = b"%PDF-1.4 quarterly numbers",
    headers=None,
) -> str:
    """Register, 'upload' and confirm a file; return its id."""
    headers = headers or AUTH_HEADERS
    resp = await client.post(
        "/api/files/upload-url",
        json={"filename": filename, "mime_type": "application/pdf", "size": len(content)},
        headers=headers,
    )
    assert resp.status_code == 201
    data = resp.json()
    storage.objects[data["path"]] = content

    resp = await client.post(f"/api/files/{data['file_id']}/confirm", json={}, headers=headers)
    assert resp.status_code == 200
    return data["file_id"]


async def create_chat(client: AsyncClient, file_id: str, headers=None) -> dict:
    resp = await client.post("/api/chats/", json={"file_id": file_id}, headers=headers or AUTH_HEADERS)
    assert resp.status_code == 201
    return resp.json()
