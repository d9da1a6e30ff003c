"""
Session Models - Defines structures for chat sessions and history queries.
"""

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional, List
from pydantic import BaseModel, Field

Language = Literal["en", "ar"]
MessageType = Literal["islamic", "rejected", "error"]


class MessageMetadata(BaseModel):
    """Optional per-message details."""
    processing_time: Optional[float] = Field(default=None, ge=0)  # milliseconds
    message_type: Optional[MessageType] = None
    language: Optional[Language] = None


class ChatMessage(BaseModel):
    """One message in a conversation. Immutable once appended."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    content: str
    is_user: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


class SessionStats(BaseModel):
    """Aggregates maintained incrementally as messages arrive."""
    total_processing_time: float = 0.0  # milliseconds
    average_response_time: float = 0.0  # milliseconds
    topic_categories: List[str] = Field(default_factory=list)


class ChatSession(BaseModel):
    """Full session with messages."""
    id: str
    user_id: str
    title: str
    messages: List[ChatMessage] = Field(default_factory=list)
    start_time: datetime
    end_time: Optional[datetime] = None
    last_activity: datetime  # stamped by the store on every write
    message_count: int = 0
    is_active: bool = True
    language: Language = "en"
    tags: List[str] = Field(default_factory=list)
    metadata: SessionStats = Field(default_factory=SessionStats)


class ChatHistoryFilter(BaseModel):
    """
    Logical filter for listing sessions.
    language and the date range run in the store; the rest is applied in memory.
    """
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search_query: Optional[str] = None
    language: Optional[Language] = None
    message_type: Optional[MessageType] = None
    tags: Optional[List[str]] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class PaginationOptions(BaseModel):
    """Page size plus the opaque cursor returned by the previous page."""
    page_size: int = Field(default=10, ge=1)
    cursor: Optional[str] = None


class ChatHistoryResult(BaseModel):
    """One page of sessions."""
    sessions: List[ChatSession]
    has_more: bool = False
    next_cursor: Optional[str] = None
    total_count: int = 0
    partial: bool = False  # search only: sessions exist beyond the search window
