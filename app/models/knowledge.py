"""
Knowledge-base bookkeeping. Files live in the OpenAI Files API; we only track them.
No chunks, no embeddings.
"""

from sqlalchemy import String, Text, Integer, BigInteger
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase


class UploadedFile(TimestampedBase):
    __tablename__ = "uploaded_files"

    avatar_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=True)
    openai_file_id: Mapped[str] = mapped_column(String(255), nullable=True)
    upload_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="pending"
    )  # pending, processing, completed, failed


class KnowledgeBase(TimestampedBase):
    __tablename__ = "vector_stores"

    avatar_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    store_id: Mapped[str] = mapped_column(String(255), nullable=False)
    store_name: Mapped[str] = mapped_column(String(255), nullable=True)
    file_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
