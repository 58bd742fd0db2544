"""
Chat turn persistence. The only place that reads or writes the chats table.

Every method opens its own short session from the factory, so request handlers
and background pollers never share a session. Writes target one row by id.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import StoreError
from ..models.base import utcnow
from ..models.chat import ChatTurn, VideoStatus
from ..models.knowledge import UploadedFile

logger = logging.getLogger(__name__)


class ChatStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Chat turns ───────────────────────────────────────────────────

    async def create_chat_turn(self, **fields: Any) -> int:
        """Insert a chat turn and return its id."""
        try:
            async with self._session_factory() as session:
                turn = ChatTurn(**fields)
                session.add(turn)
                await session.commit()
                logger.info(
                    "Chat turn created: id=%s session=%s video_status=%s",
                    turn.id, turn.session_id, turn.video_status,
                )
                return turn.id
        except SQLAlchemyError as e:
            logger.error("Failed to create chat turn: %s", e)
            raise StoreError("create_chat_turn", e) from e

    async def update_chat_turn(self, chat_id: int, **fields: Any) -> bool:
        """Partial update by id. Returns False if no such row exists."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(ChatTurn).where(ChatTurn.id == chat_id).values(**fields)
                )
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error("Failed to update chat turn %s: %s", chat_id, e)
            raise StoreError("update_chat_turn", e) from e

    async def get_chat_turn(self, chat_id: int) -> Optional[ChatTurn]:
        try:
            async with self._session_factory() as session:
                return await session.get(ChatTurn, chat_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load chat turn %s: %s", chat_id, e)
            raise StoreError("get_chat_turn", e) from e

    async def list_chat_turns(self, limit: int = 50) -> list[ChatTurn]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ChatTurn)
                    .order_by(ChatTurn.created_at.desc(), ChatTurn.id.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list chat turns: %s", e)
            raise StoreError("list_chat_turns", e) from e

    # ── Video lifecycle ──────────────────────────────────────────────

    async def attach_video(self, chat_id: int, video_id: str) -> bool:
        """Record the provisional render job id on a generating turn."""
        return await self.update_chat_turn(
            chat_id,
            video_id=video_id,
            video_status=VideoStatus.GENERATING.value,
        )

    async def finish_video(
        self,
        chat_id: int,
        status: VideoStatus,
        video_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Move a turn out of `generating` into a terminal status.

        The write only applies while the row is still generating, so status
        never regresses and a second terminal write is a no-op.
        Returns True if this call performed the transition.
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal video status")

        values: dict[str, Any] = {"video_status": status.value, "video_error": error}
        if video_url:
            values["video_url"] = video_url

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(ChatTurn)
                    .where(
                        ChatTurn.id == chat_id,
                        ChatTurn.video_status == VideoStatus.GENERATING.value,
                    )
                    .values(**values)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to finish video for chat %s: %s", chat_id, e)
            raise StoreError("finish_video", e) from e

        if result.rowcount == 0:
            logger.warning(
                "Chat %s was not generating; %s write ignored", chat_id, status.value
            )
            return False
        return True

    async def fail_stale_videos(self, older_than: timedelta) -> int:
        """Fail every turn stuck in `generating` longer than `older_than`."""
        cutoff = utcnow() - older_than
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(ChatTurn)
                    .where(
                        ChatTurn.video_status == VideoStatus.GENERATING.value,
                        ChatTurn.updated_at < cutoff,
                    )
                    .values(
                        video_status=VideoStatus.FAILED.value,
                        video_error="interrupted",
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to sweep stale videos: %s", e)
            raise StoreError("fail_stale_videos", e) from e

        if result.rowcount:
            logger.warning("Marked %d stale generating video(s) as failed", result.rowcount)
        return result.rowcount

    # ── Knowledge base ───────────────────────────────────────────────

    async def list_ingested_document_ids(self, avatar_id: str) -> list[str]:
        """OpenAI file ids of this avatar's successfully ingested files."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UploadedFile.openai_file_id)
                    .where(
                        UploadedFile.avatar_id == avatar_id,
                        UploadedFile.upload_status == "completed",
                        UploadedFile.openai_file_id.is_not(None),
                    )
                    .order_by(UploadedFile.created_at)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list documents for avatar %s: %s", avatar_id, e)
            raise StoreError("list_ingested_document_ids", e) from e
