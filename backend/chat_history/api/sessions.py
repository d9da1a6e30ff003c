"""
Session API endpoints - chat history for the signed-in user.
"""

import asyncio
import json
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..config import settings
from ..core import ChatHistoryService, get_history_service
from ..exceptions import (
    ChatHistoryError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
)
from ..models import (
    ChatHistoryFilter,
    ChatHistoryResult,
    ChatMessage,
    ChatSession,
    Language,
    MessageType,
    PaginationOptions,
)
from ..utils.auth import get_current_user_id

router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    language: Language = "en"
    initial_message: Optional[ChatMessage] = None


class RenameSessionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=50)


class BulkDeleteRequest(BaseModel):
    session_ids: List[str]


def _http_error(error: ChatHistoryError, unavailable_detail: str) -> HTTPException:
    """Map a chat history error to the HTTP response the UI expects."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized access to session")
    if isinstance(error, InvalidArgumentError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, StoreUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=unavailable_detail)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=unavailable_detail)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateSessionRequest,
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    """Start a new conversation, optionally with its opening message."""
    try:
        session_id = await service.create_session(user_id, request.language, request.initial_message)
    except ChatHistoryError as e:
        raise _http_error(e, "Failed to create chat session") from e
    return {"session_id": session_id}


@router.get("", response_model=ChatHistoryResult)
async def list_sessions(
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    cursor: Optional[str] = None,
    language: Optional[Language] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    message_type: Optional[MessageType] = None,
    tags: Optional[List[str]] = Query(None),
    q: Optional[str] = Query(None, description="Match title or message content"),
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    """
    List sessions newest first.

    A page can hold fewer than page_size sessions while has_more is true,
    because content filters run after the page is fetched.
    """
    history_filter = ChatHistoryFilter(
        date_from=date_from,
        date_to=date_to,
        search_query=q,
        language=language,
        message_type=message_type,
        tags=tags,
    )
    try:
        return await service.list_sessions(
            user_id, PaginationOptions(page_size=page_size, cursor=cursor), history_filter
        )
    except ChatHistoryError as e:
        raise _http_error(e, "Failed to load chat history") from e


@router.get("/search", response_model=ChatHistoryResult)
async def search_sessions(
    q: str = Query(..., min_length=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    cursor: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    """Search the newest sessions; partial=true means older ones were not scanned."""
    try:
        return await service.search_sessions(user_id, q, PaginationOptions(page_size=page_size, cursor=cursor))
    except ChatHistoryError as e:
        raise _http_error(e, "Failed to search sessions") from e


@router.get("/stream")
async def stream_sessions(
    language: Optional[Language] = None,
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    """
    Server-Sent Events feed of the newest sessions.
    Each event carries the whole list; a slow client only gets the latest one.
    The stream ends when the feed is replaced by a newer subscription for the
    same user (e.g. another tab).
    """
    latest: asyncio.Queue = asyncio.Queue(maxsize=1)

    def on_sessions(sessions: List[ChatSession]) -> None:
        if latest.full():
            latest.get_nowait()
        latest.put_nowait(sessions)

    handle = service.subscribe_to_sessions(user_id, on_sessions, ChatHistoryFilter(language=language))

    async def event_generator():
        try:
            while True:
                try:
                    sessions = await asyncio.wait_for(latest.get(), timeout=settings.stream_keepalive_seconds)
                except asyncio.TimeoutError:
                    if not handle.active:
                        break
                    yield ": keep-alive\n\n"
                    continue
                event = {
                    "type": "snapshot",
                    "sessions": [s.model_dump(mode="json") for s in sessions],
                }
                yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"
        finally:
            handle.unsubscribe()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


@router.post("/bulk-delete")
async def delete_sessions(
    request: BulkDeleteRequest,
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    try:
        deleted = await service.delete_sessions(request.session_ids, user_id)
    except ChatHistoryError as e:
        raise _http_error(e, "Failed to delete sessions") from e
    return {"deleted": deleted}


@router.get("/{session_id}", response_model=ChatSession)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    try:
        return await service.get_session(session_id, user_id)
    except ChatHistoryError as e:
        raise _http_error(e, "Failed to load conversation") from e


@router.post("/{session_id}/messages")
async def append_message(
    session_id: str,
    message: ChatMessage,
    best_effort: bool = Query(False, description="Report store failures instead of failing"),
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    """
    Append a message to a session.

    With best_effort=true a store outage returns saved=false so the
    conversation can go on without the message being persisted.
    """
    try:
        if best_effort:
            saved = await service.save_message(session_id, message, user_id)
            if not saved:
                return {"saved": False, "detail": "Your message wasn't saved"}
            return {"saved": True}

        session = await service.append_message(session_id, message, user_id)
    except ChatHistoryError as e:
        raise _http_error(e, "Your message wasn't saved") from e

    return {"saved": True, "message_count": session.message_count, "tags": session.tags}


@router.patch("/{session_id}")
async def rename_session(
    session_id: str,
    request: RenameSessionRequest,
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    try:
        await service.rename_session(session_id, request.title, user_id)
    except ChatHistoryError as e:
        raise _http_error(e, "Failed to update session title") from e
    return {"session_id": session_id, "title": request.title}


@router.post("/{session_id}/end")
async def end_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    try:
        await service.deactivate_session(session_id, user_id)
    except ChatHistoryError as e:
        raise _http_error(e, "Failed to end session") from e
    return {"session_id": session_id, "is_active": False}


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ChatHistoryService = Depends(get_history_service),
):
    try:
        await service.delete_session(session_id, user_id)
    except ChatHistoryError as e:
        raise _http_error(e, "Failed to delete conversation") from e
