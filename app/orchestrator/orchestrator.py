"""
Main chat flow.

Receive message → answer → persist turn → (optionally) start video → respond.

The HTTP response never waits for rendering: the turn is written as
`generating` with its provisional video id before we return, and the
scheduler takes it from there.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..core.errors import RenderRequestError, StoreError
from ..models.chat import VideoStatus
from ..services import realtime
from ..services.renderer import VideoRenderer
from ..services.responder import ChatResponder
from ..services.scheduler import VideoJobScheduler
from ..services.store import ChatStore
from ..services.video_jobs import VideoJobOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    """Everything the chat flow needs, wired once at startup."""

    store: ChatStore
    responder: ChatResponder
    renderer: VideoRenderer
    videos: VideoJobOrchestrator
    scheduler: VideoJobScheduler


async def handle_chat(
    message: str,
    session_id: str,
    avatar_id: str,
    use_video: bool,
    services: ChatServices,
) -> dict:
    """
    Main entry point for POST /api/chat.

    Raises StoreError only if the turn itself cannot be created. A video
    that cannot be started still returns the text answer.
    """
    logger.info("Processing chat request: %r (video: %s)", message[:80], use_video)

    # 1. Answer (never raises)
    answer = await services.responder.respond(message, avatar_id, session_id)

    # 2. Persist the turn before any video work
    chat_id = await services.store.create_chat_turn(
        session_id=session_id,
        avatar_id=avatar_id,
        question=message,
        response=answer.text,
        used_rag=answer.used_rag,
        sources=answer.sources,
        video_status=(VideoStatus.GENERATING if use_video else VideoStatus.TEXT_ONLY).value,
    )

    payload = {
        "chat_id": chat_id,
        "message": answer.text,
        "session_id": session_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "used_rag": answer.used_rag,
        "sources": answer.sources,
    }

    if not use_video:
        payload["video"] = {"status": VideoStatus.TEXT_ONLY.value}
        return payload

    # 3. Start the render job and record its id
    video_id = await _start_video(chat_id, answer.text, session_id, services)
    if video_id is None:
        payload["video"] = {
            "status": VideoStatus.FAILED.value,
            "message": "Video generation failed, showing text response",
        }
        return payload

    # 4. Poll in the background, after the response is on its way
    services.scheduler.schedule(chat_id, video_id, session_id)
    await realtime.video_generating(session_id, chat_id, video_id)

    payload["video"] = {
        "id": video_id,
        "status": VideoStatus.GENERATING.value,
        "message": "Avatar video is being generated...",
    }
    return payload


async def _start_video(
    chat_id: int, text: str, session_id: str, services: ChatServices,
) -> Optional[str]:
    """Submit the render and attach its id. Returns None if the video is a loss."""
    try:
        job = await services.videos.submit(text, session_id)
    except RenderRequestError as e:
        logger.error("Video generation error for chat %s: %s", chat_id, e)
        await _mark_failed(chat_id, "submit_failed", services)
        return None

    try:
        await services.store.attach_video(chat_id, job.job_id)
    except StoreError as e:
        logger.error("Could not attach video %s to chat %s: %s", job.job_id, chat_id, e)
        await _mark_failed(chat_id, "store_error", services)
        return None

    return job.job_id


async def _mark_failed(chat_id: int, reason: str, services: ChatServices) -> None:
    try:
        await services.store.finish_video(chat_id, VideoStatus.FAILED, error=reason)
    except StoreError as e:
        logger.error("Could not mark video failed for chat %s: %s", chat_id, e)


async def get_video_status(chat_id: int, store: ChatStore) -> Optional[dict]:
    """Current video state of a turn. Pure read; None if the turn doesn't exist."""
    turn = await store.get_chat_turn(chat_id)
    if turn is None:
        return None
    return {
        "video_id": turn.video_id,
        "video_url": turn.video_url,
        "status": turn.video_status,
    }
