"""Core module - chat history caching, pagination and sync logic."""

from .history_service import ChatHistoryService, init_history_service, get_history_service
from .session_cache import SessionCache
from .session_repository import SessionRepository
from .subscriptions import SubscriptionManager, SubscriptionHandle

__all__ = [
    'ChatHistoryService', 'init_history_service', 'get_history_service',
    'SessionCache', 'SessionRepository', 'SubscriptionManager', 'SubscriptionHandle',
]
