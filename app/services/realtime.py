"""
Realtime notifications. Thin wrapper around core.redis.
Provides typed event helpers for the video and knowledge-base pipelines.
"""

from typing import Optional

from ..core import redis as _redis


# ── Video events ─────────────────────────────────────────────────────

async def video_generating(session_id: str, chat_id: int, video_id: str):
    await _redis.notify_session(
        session_id, "video.generating", {"chat_id": chat_id, "video_id": video_id}
    )


async def video_completed(session_id: str, chat_id: int, status: str, video_url: Optional[str]):
    await _redis.notify_session(
        session_id, "video.completed",
        {"chat_id": chat_id, "status": status, "video_url": video_url},
    )


async def video_failed(session_id: str, chat_id: int, reason: str):
    await _redis.notify_session(
        session_id, "video.failed", {"chat_id": chat_id, "reason": reason}
    )


# ── Knowledge-base events ────────────────────────────────────────────

async def file_processing(avatar_id: str, file_id: int, status: str):
    await _redis.notify_avatar(
        avatar_id, "file.processing", {"file_id": file_id, "status": status}
    )
