"""
Chat turns. One row per question/answer exchange, including its video lifecycle.
"""

from enum import Enum

from sqlalchemy import String, Text, Boolean, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase


class VideoStatus(str, Enum):
    """Where a chat turn's avatar video is in its lifecycle."""
    TEXT_ONLY = "text_only"
    GENERATING = "generating"
    COMPLETED = "completed"
    COMPLETED_NO_URL = "completed_no_url"
    FAILED = "failed"
    TIMEOUT = "timeout"  # legacy rows only; timeouts are now stored as failed

    @property
    def is_terminal(self) -> bool:
        return self is not VideoStatus.GENERATING


class ChatTurn(TimestampedBase):
    __tablename__ = "chats"

    session_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    avatar_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=True)
    used_rag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sources: Mapped[list] = mapped_column(JSON, nullable=True, default=list)
    # [{"document_id": "file-abc", "quote": "..."}]

    video_id: Mapped[str] = mapped_column(String(255), nullable=True, index=True)
    video_url: Mapped[str] = mapped_column(Text, nullable=True)
    video_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=VideoStatus.TEXT_ONLY.value
    )
    video_error: Mapped[str] = mapped_column(Text, nullable=True)
    # timeout, render_failed, submit_failed, interrupted, error

    device_details: Mapped[dict] = mapped_column(JSON, nullable=True)
    # browser/device info sent by the client with POST /api/chats
