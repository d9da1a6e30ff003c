"""
Subscription Manager - at most one live session feed per owner.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from ..config import settings
from ..models import ChatHistoryFilter, ChatSession
from ..storage import ListenerHandle
from .filters import StoreFilter
from .session_repository import SessionRepository

logger = logging.getLogger(__name__)

SessionsCallback = Callable[[List[ChatSession]], None]


class SubscriptionHandle:
    """Owner-facing handle. unsubscribe() is idempotent."""

    def __init__(self, manager: "SubscriptionManager", owner: str, listener: ListenerHandle):
        self.owner = owner
        self._manager = manager
        self._listener = listener

    @property
    def active(self) -> bool:
        return self._listener.active

    def unsubscribe(self) -> None:
        self._manager._release(self)

    def _dispose(self) -> None:
        self._listener.unsubscribe()


class SubscriptionManager:
    """
    Owns the per-owner handle table. Subscribing again for an owner disposes
    the previous feed first; each snapshot replaces the caller's view wholesale.
    """

    def __init__(self, repository: SessionRepository, limit: Optional[int] = None):
        """
        Args:
            repository: Session repository used to open store listeners
            limit: Sessions per snapshot (newest by last activity)
        """
        self.repository = repository
        self.limit = limit or settings.subscription_limit
        self._handles: Dict[str, SubscriptionHandle] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        owner: str,
        callback: SessionsCallback,
        history_filter: Optional[ChatHistoryFilter] = None,
    ) -> SubscriptionHandle:
        """
        Start delivering the owner's newest sessions to callback.

        Only the language of the filter applies; the feed is the plain
        newest-first query the store can keep live.
        """
        store_filter = StoreFilter(language=history_filter.language if history_filter else None)

        with self._lock:
            # Open the new feed first; if that fails the previous one stays live
            listener = self.repository.subscribe(owner, store_filter, self.limit, callback)
            handle = SubscriptionHandle(self, owner, listener)
            previous = self._handles.get(owner)
            self._handles[owner] = handle
            if previous is not None:
                previous._dispose()
                logger.debug(f"Replaced session subscription for {owner}")

        logger.info(f"Subscribed to sessions for {owner}")
        return handle

    def unsubscribe(self, owner: str) -> bool:
        """Dispose the owner's feed. Returns False if there was none."""
        with self._lock:
            handle = self._handles.pop(owner, None)
        if handle is None:
            return False
        handle._dispose()
        logger.info(f"Unsubscribed sessions for {owner}")
        return True

    def cleanup_all(self) -> int:
        """Dispose every feed. Returns how many were live."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle._dispose()
        if handles:
            logger.info(f"Disposed {len(handles)} session subscriptions")
        return len(handles)

    def has_subscription(self, owner: str) -> bool:
        with self._lock:
            return owner in self._handles

    def _release(self, handle: SubscriptionHandle) -> None:
        with self._lock:
            if self._handles.get(handle.owner) is handle:
                del self._handles[handle.owner]
        handle._dispose()
