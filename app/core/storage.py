"""
File storage for uploaded knowledge-base files. Local filesystem under UPLOAD_DIR.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path

from .config import get_settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str) -> str:
    """`My Notes (v2).pdf` → `My_Notes__v2_.pdf`"""
    return _UNSAFE_CHARS.sub("_", filename)


class StorageBackend(ABC):
    @abstractmethod
    async def save(self, file_bytes: bytes, filename: str, folder: str = "") -> Path:
        """Store file. Returns the path to the stored file."""
        ...


class LocalStorage(StorageBackend):
    def __init__(self, base_path: str = "./uploads"):
        self.base_path = Path(base_path)

    async def save(self, file_bytes: bytes, filename: str, folder: str = "") -> Path:
        unique = f"{int(time.time() * 1000)}_{sanitize_filename(filename)}"

        dir_path = self.base_path / folder if folder else self.base_path
        dir_path.mkdir(parents=True, exist_ok=True)

        file_path = dir_path / unique
        file_path.write_bytes(file_bytes)

        logger.info("Saved locally: %s", file_path)
        return file_path


def get_storage() -> StorageBackend:
    """Return the active storage backend."""
    return LocalStorage(get_settings().upload_dir)
