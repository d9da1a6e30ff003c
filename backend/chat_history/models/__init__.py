"""Models module."""

from .session import (
    Language, MessageType, MessageMetadata, ChatMessage, SessionStats, ChatSession,
    ChatHistoryFilter, PaginationOptions, ChatHistoryResult,
)
from .user import TokenData

__all__ = [
    'Language', 'MessageType', 'MessageMetadata', 'ChatMessage', 'SessionStats', 'ChatSession',
    'ChatHistoryFilter', 'PaginationOptions', 'ChatHistoryResult', 'TokenData',
]
