"""
Renderer diagnostics.

GET /api/test-heygen     — Connectivity + configured avatar check
GET /api/heygen-avatars  — Avatars available to the configured account
GET /api/heygen-voices   — Voices available to the configured account
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..core.dependencies import get_renderer
from ..services.renderer import MockRenderer, VideoRenderer

logger = logging.getLogger(__name__)

avatars_router = APIRouter(tags=["avatars"])


@avatars_router.get("/test-heygen")
async def test_heygen(renderer: VideoRenderer = Depends(get_renderer)):
    try:
        return await renderer.test_connection()
    except Exception as e:
        logger.error("Renderer connection test failed: %s", e)
        raise HTTPException(status_code=500, detail=f"HeyGen test failed: {e}")


@avatars_router.get("/heygen-avatars")
async def heygen_avatars(renderer: VideoRenderer = Depends(get_renderer)):
    try:
        avatars = await renderer.list_avatars()
    except Exception as e:
        logger.error("Error fetching avatars: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to fetch avatars: {e}")

    message = (
        "Using mock service - no real avatars available"
        if isinstance(renderer, MockRenderer) else "Available HeyGen avatars"
    )
    return {"avatars": avatars, "count": len(avatars), "message": message}


@avatars_router.get("/heygen-voices")
async def heygen_voices(renderer: VideoRenderer = Depends(get_renderer)):
    try:
        voices = await renderer.list_voices()
    except Exception as e:
        logger.error("Error fetching voices: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to fetch voices: {e}")
    return {"voices": voices}
