"""
Realtime events over Redis pub/sub. Silent no-op unless FF_USE_REDIS is on.

Channels:
  session:{session_id}  video lifecycle of that chat session's turns
  avatar:{avatar_id}    knowledge-base file processing for that avatar
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

_redis_client = None


def _client():
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis

        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
    return _redis_client


async def publish(channel: str, event_type: str, data: Any = None) -> None:
    if not get_flags().use_redis:
        return

    message = json.dumps({
        "type": event_type,
        "data": data,
        "sent_at": datetime.now(timezone.utc).isoformat(),
    })
    try:
        await _client().publish(channel, message)
    except Exception as e:
        # best-effort; clients still poll /api/video-status
        logger.warning("Redis publish failed (channel=%s, type=%s): %s", channel, event_type, e)


async def notify_session(session_id: str, event_type: str, data: Any = None) -> None:
    await publish(f"session:{session_id}", event_type, data)


async def notify_avatar(avatar_id: str, event_type: str, data: Any = None) -> None:
    await publish(f"avatar:{avatar_id}", event_type, data)


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
