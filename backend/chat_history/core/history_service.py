"""
Chat History Service - the operations the chat UI calls.

Reads go through the page cache; on a miss the filter is split into store
constraints and an in-memory residual, the store is asked for one document
more than the page size, and the residual runs on the cut page. Writes go
through the repository, which checks ownership and invalidates the cache.
"""

import asyncio
import logging
from typing import Iterable, Optional

from ..config import settings
from ..exceptions import InvalidArgumentError, StoreUnavailableError
from ..models import ChatHistoryFilter, ChatHistoryResult, ChatMessage, ChatSession, PaginationOptions
from ..storage import DocumentStore
from .filters import compose_filter, filter_signature, matches_search
from .logging_config import get_logger
from .pagination import decode_cursor, decode_offset, encode_offset, fetch_limit, paginate
from .serialization import deserialize_session
from .session_cache import SessionCache
from .session_repository import SessionRepository
from .subscriptions import SessionsCallback, SubscriptionHandle, SubscriptionManager

logger = logging.getLogger(__name__)


class ChatHistoryService:
    """
    Facade over repository, cache, pagination and subscriptions.
    Each instance owns its own cache and subscription table.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: Optional[SessionCache] = None,
        search_window: Optional[int] = None,
        max_page_size: Optional[int] = None,
        subscription_limit: Optional[int] = None,
    ):
        """
        Args:
            store: Document store backend
            cache: Page cache (a fresh one with the configured TTL by default)
            search_window: Newest sessions scanned by search_sessions
            max_page_size: Largest page list_sessions accepts
            subscription_limit: Sessions per live snapshot
        """
        self.cache = cache or SessionCache()
        self.repository = SessionRepository(store, cache=self.cache)
        self.subscriptions = SubscriptionManager(self.repository, limit=subscription_limit)
        self.search_window = search_window or settings.search_window
        self.max_page_size = max_page_size or settings.max_page_size

    async def create_session(
        self,
        owner: str,
        language: str = "en",
        initial_message: Optional[ChatMessage] = None,
    ) -> str:
        return await self.repository.create(owner, language, initial_message)

    async def append_message(self, session_id: str, message: ChatMessage, owner: str) -> ChatSession:
        return await self.repository.append_message(session_id, message, owner)

    async def save_message(self, session_id: str, message: ChatMessage, owner: str) -> bool:
        """
        Best-effort append for background saves during a conversation.

        Returns:
            bool: False if the store was unavailable; the failure is logged, not raised.
            Ownership and not-found errors still raise.
        """
        try:
            await self.repository.append_message(session_id, message, owner)
        except StoreUnavailableError as e:
            get_logger(__name__, user_id=owner, session_id=session_id).warning(
                f"Failed to save message {message.id}: {e}"
            )
            return False
        return True

    async def get_session(self, session_id: str, owner: str) -> ChatSession:
        return await self.repository.get(session_id, owner)

    async def list_sessions(
        self,
        owner: str,
        pagination: Optional[PaginationOptions] = None,
        history_filter: Optional[ChatHistoryFilter] = None,
    ) -> ChatHistoryResult:
        """
        One page of the owner's sessions, newest activity first.

        has_more reflects the raw store page, so a filtered page may hold
        fewer than page_size sessions while more pages still exist.
        """
        pagination = pagination or PaginationOptions(page_size=settings.default_page_size)
        if pagination.page_size > self.max_page_size:
            raise InvalidArgumentError(f"page_size must be at most {self.max_page_size}")
        return await self._list_page(owner, pagination, history_filter)

    async def _list_page(
        self,
        owner: str,
        pagination: PaginationOptions,
        history_filter: Optional[ChatHistoryFilter],
    ) -> ChatHistoryResult:
        if history_filter is not None and history_filter.is_empty():
            history_filter = None
        start_after = decode_cursor(pagination.cursor) if pagination.cursor else None

        key = self.cache.make_key(owner, pagination.page_size, filter_signature(history_filter), pagination.cursor)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        generation = self.cache.generation(owner)
        store_filter, residual = compose_filter(history_filter)
        documents = await self.repository.query(
            owner, store_filter, fetch_limit(pagination.page_size), start_after
        )
        page = paginate(documents, pagination.page_size)
        sessions = [s for s in (deserialize_session(d) for d in page.documents) if residual(s)]

        result = ChatHistoryResult(
            sessions=sessions,
            has_more=page.has_more,
            next_cursor=page.next_cursor,
            total_count=len(sessions),
        )
        self.cache.put(key, result, generation)
        return result

    async def search_sessions(
        self,
        owner: str,
        query: str,
        pagination: Optional[PaginationOptions] = None,
    ) -> ChatHistoryResult:
        """
        Case-insensitive search over titles and message content.

        Only the newest search_window sessions are scanned, in memory; the
        result sets partial=True when older sessions were left out. This is
        not a full-text index and won't scale past a few hundred sessions.
        """
        query = (query or "").strip()
        if not query:
            raise InvalidArgumentError("Search query must not be empty")
        pagination = pagination or PaginationOptions(page_size=settings.default_page_size)
        offset = decode_offset(pagination.cursor)

        window = await self._list_page(owner, PaginationOptions(page_size=self.search_window), None)
        matches = [s for s in window.sessions if matches_search(s, query)]

        end = offset + pagination.page_size
        has_more = end < len(matches)
        return ChatHistoryResult(
            sessions=matches[offset:end],
            has_more=has_more,
            next_cursor=encode_offset(end) if has_more else None,
            total_count=len(matches),
            partial=window.has_more,
        )

    async def rename_session(self, session_id: str, title: str, owner: str) -> None:
        await self.repository.rename(session_id, title, owner)

    async def deactivate_session(self, session_id: str, owner: str) -> None:
        await self.repository.deactivate(session_id, owner)

    async def delete_session(self, session_id: str, owner: str) -> None:
        await self.repository.delete(session_id, owner)

    async def delete_sessions(self, session_ids: Iterable[str], owner: str) -> int:
        """
        Delete several sessions concurrently.

        Every id is attempted; if any delete fails the first error is raised
        after the others have finished.

        Returns:
            int: Number of sessions deleted
        """
        unique_ids = list(dict.fromkeys(session_ids or []))
        if not unique_ids:
            raise InvalidArgumentError("session_ids must not be empty")

        results = await asyncio.gather(
            *(self.repository.delete(session_id, owner) for session_id in unique_ids),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        if failures:
            logger.warning(f"Bulk delete for {owner}: {len(failures)} of {len(unique_ids)} failed")
            raise failures[0]
        return len(unique_ids)

    def subscribe_to_sessions(
        self,
        owner: str,
        callback: SessionsCallback,
        history_filter: Optional[ChatHistoryFilter] = None,
    ) -> SubscriptionHandle:
        return self.subscriptions.subscribe(owner, callback, history_filter)

    def cleanup(self, owner: Optional[str] = None) -> None:
        """Dispose subscriptions and cached pages for one owner, or for everyone."""
        if owner:
            self.subscriptions.unsubscribe(owner)
            self.cache.invalidate(owner)
        else:
            self.subscriptions.cleanup_all()
            self.cache.clear()


# Global service instance
_history_service: Optional[ChatHistoryService] = None


def init_history_service(store: DocumentStore) -> ChatHistoryService:
    """
    Initialize the global chat history service.

    Args:
        store: Document store backend
    """
    global _history_service
    _history_service = ChatHistoryService(store)
    return _history_service


def get_history_service() -> ChatHistoryService:
    """
    Get the global chat history service.

    Raises:
        RuntimeError: If the service has not been initialized
    """
    if _history_service is None:
        raise RuntimeError("Chat history service not initialized. Call init_history_service() first.")
    return _history_service
