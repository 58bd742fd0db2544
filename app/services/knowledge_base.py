"""
Knowledge-base ingestion: register an uploaded file, push it to the OpenAI Files API.

No chunking, no embeddings: OpenAI's file_search does the indexing when an
assistant is created over the file ids. We only keep track of which files
are ready for which avatar.
"""

import logging
import time
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.knowledge import KnowledgeBase, UploadedFile
from . import realtime
from .assistants import AssistantsClient

logger = logging.getLogger(__name__)


async def register_upload(
    db: AsyncSession,
    avatar_id: str,
    filename: str,
    original_name: str,
    file_path: str,
    file_size: int,
    mime_type: str,
) -> UploadedFile:
    record = UploadedFile(
        avatar_id=avatar_id,
        filename=filename,
        original_name=original_name,
        file_path=file_path,
        file_size=file_size,
        mime_type=mime_type,
        upload_status="pending",
    )
    db.add(record)
    await db.flush()
    await db.refresh(record)
    return record


async def get_or_create_knowledge_base(db: AsyncSession, avatar_id: str) -> KnowledgeBase:
    """
    The avatar's knowledge-base row, created on first use.

    Must be the first write in the session's transaction: losing the insert
    race to a concurrent ingestion rolls the transaction back and re-reads.
    """
    kb = await get_knowledge_base(db, avatar_id)
    if kb:
        return kb

    stamp = int(time.time() * 1000)
    kb = KnowledgeBase(
        avatar_id=avatar_id,
        store_id=f"store_{avatar_id}_{stamp}",
        store_name=f"kb-{avatar_id}-{stamp}",
        file_count=0,
    )
    db.add(kb)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        kb = await get_knowledge_base(db, avatar_id)
        if kb is None:
            raise
        logger.info("Knowledge base for avatar %s was created concurrently", avatar_id)
        return kb

    logger.info("Knowledge base created for avatar %s: %s", avatar_id, kb.store_id)
    return kb


async def ingest_file(
    file_id: int,
    session_factory: async_sessionmaker[AsyncSession],
    assistants: AssistantsClient,
) -> Optional[str]:
    """
    Upload one registered file to OpenAI and mark it completed.
    Runs after the upload response. Returns the OpenAI file id, or None on failure.
    """
    async with session_factory() as db:
        record = await db.get(UploadedFile, file_id)
        if record is None:
            logger.warning("Uploaded file %s vanished before ingestion", file_id)
            return None
        record.upload_status = "processing"
        avatar_id, path, name = record.avatar_id, record.file_path, record.original_name
        await db.commit()

    await realtime.file_processing(avatar_id, file_id, "processing")

    try:
        openai_file_id = await assistants.upload_file(path, filename=name)
    except Exception as e:
        logger.error("Failed to process file %s: %s", name, e)
        await _mark_failed(file_id, avatar_id, session_factory)
        return None

    try:
        async with session_factory() as db:
            await get_or_create_knowledge_base(db, avatar_id)
            await db.execute(
                update(KnowledgeBase)
                .where(KnowledgeBase.avatar_id == avatar_id)
                .values(file_count=KnowledgeBase.file_count + 1)
            )
            await db.execute(
                update(UploadedFile)
                .where(UploadedFile.id == file_id)
                .values(openai_file_id=openai_file_id, upload_status="completed")
            )
            await db.commit()
    except SQLAlchemyError as e:
        logger.error(
            "File %s uploaded as %s but could not be recorded: %s", name, openai_file_id, e,
        )
        await _mark_failed(file_id, avatar_id, session_factory)
        return None

    await realtime.file_processing(avatar_id, file_id, "completed")
    logger.info("File %s successfully processed (%s)", name, openai_file_id)
    return openai_file_id


async def _mark_failed(
    file_id: int,
    avatar_id: str,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as db:
        await db.execute(
            update(UploadedFile)
            .where(UploadedFile.id == file_id)
            .values(upload_status="failed")
        )
        await db.commit()
    await realtime.file_processing(avatar_id, file_id, "failed")


async def list_files(db: AsyncSession, avatar_id: str) -> list[UploadedFile]:
    result = await db.execute(
        select(UploadedFile)
        .where(UploadedFile.avatar_id == avatar_id)
        .order_by(UploadedFile.created_at.desc(), UploadedFile.id.desc())
    )
    return list(result.scalars().all())


async def get_knowledge_base(db: AsyncSession, avatar_id: str) -> Optional[KnowledgeBase]:
    result = await db.execute(
        select(KnowledgeBase).where(KnowledgeBase.avatar_id == avatar_id)
    )
    return result.scalar_one_or_none()
