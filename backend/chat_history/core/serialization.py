"""
Conversion between session models and store documents.

Every datetime crossing the store boundary becomes a StoreTimestamp on the
way in and a timezone-aware datetime on the way out. Missing or unreadable
timestamps read back as the current time instead of failing the whole load.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..models import ChatMessage, ChatSession, MessageMetadata, SessionStats
from ..storage import DocumentSnapshot, StoreTimestamp

logger = logging.getLogger(__name__)


def to_store_timestamp(value: datetime) -> StoreTimestamp:
    return StoreTimestamp.from_datetime(value)


def from_store_timestamp(value: Any, default_now: bool = True) -> Optional[datetime]:
    """
    Read a timestamp field from a document.

    Args:
        value: StoreTimestamp, datetime, or None
        default_now: Substitute the current time when the value is missing

    Returns:
        Optional[datetime]: UTC datetime, or None when missing and default_now is False
    """
    if isinstance(value, StoreTimestamp):
        return value.to_datetime()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if value is not None:
        logger.warning(f"Unreadable timestamp value {value!r}, substituting current time")
    return datetime.now(timezone.utc) if default_now else None


def serialize_message(message: ChatMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "content": message.content,
        "is_user": message.is_user,
        "timestamp": to_store_timestamp(message.timestamp),
        "metadata": message.metadata.model_dump(exclude_none=True),
    }


def deserialize_message(data: Dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        id=data.get("id") or "",
        content=data.get("content") or "",
        is_user=bool(data.get("is_user", False)),
        timestamp=from_store_timestamp(data.get("timestamp")),
        metadata=MessageMetadata(**(data.get("metadata") or {})),
    )


def deserialize_session(snapshot: DocumentSnapshot) -> ChatSession:
    data = snapshot.data
    return ChatSession(
        id=snapshot.id,
        user_id=data.get("user_id", ""),
        title=data.get("title") or "",
        messages=[deserialize_message(m) for m in data.get("messages") or []],
        start_time=from_store_timestamp(data.get("start_time")),
        end_time=from_store_timestamp(data.get("end_time"), default_now=False),
        last_activity=from_store_timestamp(data.get("last_activity")),
        message_count=data.get("message_count") or 0,
        is_active=data.get("is_active", True),
        language=data.get("language") or "en",
        tags=list(data.get("tags") or []),
        metadata=SessionStats(**(data.get("metadata") or {})),
    )
