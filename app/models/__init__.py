"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import TimestampedBase
from .chat import ChatTurn, VideoStatus
from .knowledge import UploadedFile, KnowledgeBase

__all__ = [
    "TimestampedBase",
    "ChatTurn", "VideoStatus",
    "UploadedFile", "KnowledgeBase",
]
