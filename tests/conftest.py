"""Pytest configuration and fixtures for backend tests."""

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core import database
from app.core.config import get_settings
from app.core.database import Base
from app.core.flags import get_flags
from app.models import ChatTurn, UploadedFile, KnowledgeBase  # noqa: F401
from app.services.store import ChatStore


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings and flags are lru_cached; rebuild them for every test."""
    get_settings.cache_clear()
    get_flags.cache_clear()
    yield
    get_settings.cache_clear()
    get_flags.cache_clear()


@pytest.fixture
def make_store():
    """
    Returns a coroutine that builds a ChatStore on a fresh in-memory SQLite DB.

    Call it inside the test's event loop: aiosqlite connections cannot move
    between loops.
    """

    async def _make() -> ChatStore:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        return ChatStore(async_sessionmaker(engine, expire_on_commit=False))

    return _make


@pytest.fixture
def app_env(tmp_path, monkeypatch):
    """Point the app at a throwaway SQLite file and make every wait instant."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("VIDEO_POLL_DELAY", "0")
    monkeypatch.setenv("VIDEO_POLL_INTERVAL", "0")
    monkeypatch.setenv("VIDEO_MAX_WAIT", "2")
    monkeypatch.setenv("RAG_POLL_INTERVAL", "0")
    monkeypatch.setenv("FF_USE_HEYGEN", "false")
    monkeypatch.setenv("FF_USE_REDIS", "false")
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_session_factory", None)
    get_settings.cache_clear()
    get_flags.cache_clear()
    return tmp_path
