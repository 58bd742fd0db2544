"""
FastAPI dependencies. Injected into route handlers.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db as _get_db
from .storage import StorageBackend, get_storage as _get_storage


async def get_db() -> AsyncSession:
    """Yields an async DB session per request."""
    async for session in _get_db():
        yield session


def get_services(request: Request):
    """The chat services wired at startup (see factory.create_app)."""
    return request.app.state.services


def get_assistants(request: Request):
    return request.app.state.assistants


def get_renderer(request: Request):
    return request.app.state.services.renderer


def get_storage_dep() -> StorageBackend:
    """Returns the active storage backend."""
    return _get_storage()
