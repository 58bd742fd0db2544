"""
Knowledge-base file API.

POST /api/upload                     — Upload a document for an avatar (ingested in background)
GET  /api/files/{avatar_id}          — Files uploaded for an avatar
GET  /api/knowledge-base/{avatar_id} — Knowledge-base summary for an avatar
"""

import logging
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.database import get_session_factory
from ..core.dependencies import get_assistants, get_db, get_storage_dep
from ..core.storage import StorageBackend
from ..models.knowledge import KnowledgeBase, UploadedFile
from ..services import knowledge_base
from ..services.assistants import AssistantsClient

logger = logging.getLogger(__name__)

files_router = APIRouter(tags=["files"])

# ── Allowed file types ────────────────────────────────────────────────

ALLOWED_MIME_TYPES = {
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/markdown",
}
ALLOWED_EXTENSIONS = {".pdf", ".txt", ".doc", ".docx", ".md"}


# ── Response models ───────────────────────────────────────────────────

class FileResponse(BaseModel):
    id: int
    avatar_id: str
    filename: str
    original_name: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    openai_file_id: Optional[str] = None
    upload_status: str
    created_at: Optional[datetime] = None


class UploadResponse(BaseModel):
    message: str
    file: FileResponse


class KnowledgeBaseInfo(BaseModel):
    store_id: str
    store_name: Optional[str] = None
    file_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class KnowledgeBaseResponse(BaseModel):
    vector_store: Optional[KnowledgeBaseInfo] = None
    files: list[FileResponse]
    total_files: int
    ready_files: int


# ── POST /api/upload ─────────────────────────────────────────────────

@files_router.post("/upload", response_model=UploadResponse)
async def upload_file(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="PDF, DOC, DOCX, TXT or MD document"),
    avatar_id: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage_dep),
    assistants: AssistantsClient = Depends(get_assistants),
):
    """
    Save a document and queue it for ingestion into the avatar's knowledge base.

    Example:
        curl -X POST http://localhost:3001/api/upload -F "file=@faq.pdf" -F "avatar_id=ava"
    """
    settings = get_settings()
    filename = file.filename or "document"
    content_type = _validate_type(filename, file.content_type)

    file_bytes = await file.read()
    max_bytes = settings.max_upload_mb * 1024 * 1024
    if len(file_bytes) > max_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File too large (max {settings.max_upload_mb}MB)",
        )
    if len(file_bytes) == 0:
        raise HTTPException(status_code=400, detail="Empty file")

    avatar = avatar_id or "default"
    path = await storage.save(file_bytes, filename)

    record = await knowledge_base.register_upload(
        db,
        avatar_id=avatar,
        filename=path.name,
        original_name=filename,
        file_path=str(path),
        file_size=len(file_bytes),
        mime_type=content_type,
    )
    await db.commit()

    background_tasks.add_task(
        knowledge_base.ingest_file, record.id, get_session_factory(), assistants,
    )

    logger.info("Uploaded %s (%d bytes) for avatar %s → file %s", filename, len(file_bytes), avatar, record.id)
    return UploadResponse(
        message="File uploaded successfully and is being processed",
        file=_file_response(record),
    )


# ── GET /api/files/{avatar_id} ───────────────────────────────────────

@files_router.get("/files/{avatar_id}", response_model=list[FileResponse])
async def list_files(avatar_id: str, db: AsyncSession = Depends(get_db)):
    """All files uploaded for this avatar, newest first."""
    files = await knowledge_base.list_files(db, avatar_id)
    return [_file_response(f) for f in files]


# ── GET /api/knowledge-base/{avatar_id} ──────────────────────────────

@files_router.get("/knowledge-base/{avatar_id}", response_model=KnowledgeBaseResponse)
async def knowledge_base_info(avatar_id: str, db: AsyncSession = Depends(get_db)):
    kb = await knowledge_base.get_knowledge_base(db, avatar_id)
    files = await knowledge_base.list_files(db, avatar_id)

    return KnowledgeBaseResponse(
        vector_store=_kb_info(kb) if kb else None,
        files=[_file_response(f) for f in files],
        total_files=len(files),
        ready_files=sum(1 for f in files if f.upload_status == "completed"),
    )


# ── Helpers ───────────────────────────────────────────────────────────

def _validate_type(filename: str, content_type: Optional[str]) -> str:
    """Accept known document mime types, or a known extension when the browser sent none."""
    ext = Path(filename).suffix.lower()
    if content_type in ALLOWED_MIME_TYPES:
        return content_type
    if ext in ALLOWED_EXTENSIONS and content_type in (None, "", "application/octet-stream"):
        return mimetypes.guess_type(filename)[0] or "text/markdown"
    raise HTTPException(
        status_code=400,
        detail="Unsupported file type. Please upload PDF, DOC, DOCX, TXT, or MD files.",
    )


def _file_response(f: UploadedFile) -> FileResponse:
    return FileResponse(
        id=f.id,
        avatar_id=f.avatar_id,
        filename=f.filename,
        original_name=f.original_name,
        file_size=f.file_size,
        mime_type=f.mime_type,
        openai_file_id=f.openai_file_id,
        upload_status=f.upload_status,
        created_at=f.created_at,
    )


def _kb_info(kb: KnowledgeBase) -> KnowledgeBaseInfo:
    return KnowledgeBaseInfo(
        store_id=kb.store_id,
        store_name=kb.store_name,
        file_count=kb.file_count,
        created_at=kb.created_at,
        updated_at=kb.updated_at,
    )
