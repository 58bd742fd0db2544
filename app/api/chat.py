"""
Chat API.

POST /api/chat                    — Answer a message, optionally start an avatar video
GET  /api/video-status/{chat_id}  — Current video state of a chat turn (read-only)
GET  /api/chats                   — Recent chat turns
POST /api/chats                   — Save a chat record supplied by the client
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..core.dependencies import get_services
from ..core.errors import StoreError
from ..models.chat import ChatTurn, VideoStatus
from ..orchestrator.orchestrator import ChatServices, get_video_status, handle_chat

logger = logging.getLogger(__name__)

chat_router = APIRouter(tags=["chat"])


class ChatRequest(BaseModel):
    message: str = ""
    session_id: Optional[str] = None
    avatar_id: Optional[str] = None
    use_video: bool = True


class Source(BaseModel):
    document_id: str
    quote: str


class VideoInfo(BaseModel):
    id: Optional[str] = None
    status: str
    message: Optional[str] = None


class ChatResponse(BaseModel):
    chat_id: int
    message: str
    session_id: str
    timestamp: str
    used_rag: bool = False
    sources: list[Source] = []
    video: VideoInfo


class VideoStatusResponse(BaseModel):
    video_id: Optional[str] = None
    video_url: Optional[str] = None
    status: str


class ChatTurnResponse(BaseModel):
    id: int
    session_id: str
    avatar_id: str
    question: str
    response: Optional[str] = None
    used_rag: bool = False
    sources: list[Source] = []
    video_id: Optional[str] = None
    video_url: Optional[str] = None
    video_status: str
    device_details: Optional[dict] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChatRecordRequest(BaseModel):
    session_id: Optional[str] = None
    avatar_id: Optional[str] = None
    question: str
    response: Optional[str] = None
    device_details: Optional[dict] = None


@chat_router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    services: ChatServices = Depends(get_services),
):
    """Answer a message. Returns before any avatar video has finished rendering."""
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    try:
        result = await handle_chat(
            message=request.message,
            session_id=request.session_id or "default",
            avatar_id=request.avatar_id or "default",
            use_video=request.use_video,
            services=services,
        )
    except StoreError as e:
        logger.error("Chat error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to process chat message")

    return ChatResponse(**result)


@chat_router.get("/video-status/{chat_id}", response_model=VideoStatusResponse)
async def video_status(
    chat_id: int,
    services: ChatServices = Depends(get_services),
):
    """Where this turn's video is. Never starts or advances any work."""
    try:
        status = await get_video_status(chat_id, services.store)
    except StoreError as e:
        logger.error("Video status error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to get video status")

    if status is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return VideoStatusResponse(**status)


@chat_router.get("/chats", response_model=list[ChatTurnResponse])
async def list_chats(services: ChatServices = Depends(get_services)):
    """The 50 most recent chat turns, newest first."""
    try:
        turns = await services.store.list_chat_turns(limit=50)
    except StoreError as e:
        logger.error("Error fetching chats: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch chats")

    return [_turn_response(t) for t in turns]


@chat_router.post("/chats", response_model=ChatTurnResponse, status_code=201)
async def save_chat(
    record: ChatRecordRequest,
    services: ChatServices = Depends(get_services),
):
    """Store a chat record as given. No answer is generated and no video is started."""
    try:
        chat_id = await services.store.create_chat_turn(
            session_id=record.session_id or "default",
            avatar_id=record.avatar_id or "default",
            question=record.question,
            response=record.response,
            device_details=record.device_details,
            video_status=VideoStatus.TEXT_ONLY.value,
        )
        turn = await services.store.get_chat_turn(chat_id)
    except StoreError as e:
        logger.error("Error saving chat: %s", e)
        raise HTTPException(status_code=500, detail="Failed to save chat")

    return _turn_response(turn)


def _turn_response(t: ChatTurn) -> ChatTurnResponse:
    return ChatTurnResponse(
        id=t.id,
        session_id=t.session_id,
        avatar_id=t.avatar_id,
        question=t.question,
        response=t.response,
        used_rag=bool(t.used_rag),
        sources=t.sources or [],
        video_id=t.video_id,
        video_url=t.video_url,
        video_status=t.video_status,
        device_details=t.device_details,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )
