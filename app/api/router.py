"""
Main API router. Mounts all sub-routers.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Health ───────────────────────────────────────────────────────────

@router.get("/")
async def root():
    return {"message": "Avatar Chat Backend is running!"}


@router.get("/health")
async def health():
    return {"status": "ok", "service": "avatar-chat"}


@router.get("/test-db")
async def test_db(db: AsyncSession = Depends(get_db)):
    """Round-trip a trivial query to prove the database is reachable."""
    try:
        result = await db.execute(text("SELECT CURRENT_TIMESTAMP"))
        return {
            "message": "Database connection successful",
            "timestamp": str(result.scalar()),
        }
    except Exception as e:
        logger.error("Database test error: %s", e)
        raise HTTPException(status_code=500, detail="Database connection failed")


# ── API routes ───────────────────────────────────────────────────────

from .chat import chat_router
from .files import files_router
from .avatars import avatars_router

router.include_router(chat_router, prefix="/api")
router.include_router(files_router, prefix="/api")
router.include_router(avatars_router, prefix="/api")
