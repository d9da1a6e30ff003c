"""
Session Repository - CRUD and queries for chat session documents.

Every single-session operation loads the stored document and checks its
owner before doing anything else, so a permission failure never writes.
Writes replace the whole document (last write wins) and drop the owner's
cached pages afterwards.
"""

import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, get_args

from ..config import settings
from ..exceptions import (
    ChatHistoryError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
)
from ..models import ChatMessage, ChatSession, Language, SessionStats
from ..storage import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore, ListenerHandle, QuerySpec, StartAfter
from .filters import StoreFilter
from .pagination import ORDER_FIELD
from .serialization import deserialize_session, serialize_message
from .session_cache import SessionCache
from .statistics import update_running_stats
from .tagging import extract_tags, generate_title

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = get_args(Language)


class SessionRepository:
    """Shapes session documents and guards access to them."""

    def __init__(
        self,
        store: DocumentStore,
        cache: Optional[SessionCache] = None,
        collection: Optional[str] = None,
        max_tags: Optional[int] = None,
    ):
        """
        Args:
            store: Document store backend
            cache: Page cache to invalidate after writes
            collection: Collection holding session documents
            max_tags: Cap on tags per session
        """
        self.store = store
        self.cache = cache
        self.collection = collection or settings.sessions_collection
        self.max_tags = max_tags or settings.max_tags

    async def _call(self, description: str, awaitable: Awaitable[Any]) -> Any:
        """Await a store call, turning backend failures into StoreUnavailableError."""
        try:
            return await awaitable
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable, could not {description}: {e}")
            raise
        except ChatHistoryError:
            raise
        except Exception as e:
            logger.error(f"Store failure, could not {description}: {e}")
            raise StoreUnavailableError(f"Failed to {description}") from e

    def _invalidate(self, owner: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(owner)

    @staticmethod
    def _check_id(session_id: str) -> None:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise InvalidArgumentError(f"Invalid session id: {session_id!r}")

    async def _load_owned(self, session_id: str, owner: str) -> DocumentSnapshot:
        """Authorization guard: load the document and verify its owner."""
        self._check_id(session_id)
        snapshot = await self._call(
            f"load session {session_id}", self.store.get(self.collection, session_id)
        )
        if snapshot is None:
            raise NotFoundError(session_id)
        if snapshot.data.get("user_id") != owner:
            logger.warning(f"Owner mismatch on session {session_id} for requester {owner}")
            raise PermissionDeniedError(session_id)
        return snapshot

    async def create(self, owner: str, language: str, first_message: Optional[ChatMessage] = None) -> str:
        """
        Create a session, optionally seeded with its first message.

        Returns:
            str: New session id
        """
        if not owner:
            raise InvalidArgumentError("Owner id is required")
        if language not in SUPPORTED_LANGUAGES:
            raise InvalidArgumentError(
                f"Unsupported language {language!r}, expected one of {', '.join(SUPPORTED_LANGUAGES)}"
            )

        stats = SessionStats()
        messages: List[Dict[str, Any]] = []
        tags: List[str] = []
        if first_message is not None:
            stats = update_running_stats(stats, 0, first_message)
            messages = [serialize_message(first_message)]
            tags = extract_tags(first_message.content, max_tags=self.max_tags)

        session_id = uuid.uuid4().hex
        document = {
            "user_id": owner,
            "title": generate_title(first_message.content if first_message else None, language),
            "title_pending": first_message is None,
            "messages": messages,
            "start_time": SERVER_TIMESTAMP,
            "last_activity": SERVER_TIMESTAMP,
            "message_count": len(messages),
            "is_active": True,
            "language": language,
            "tags": tags,
            "metadata": stats.model_dump(),
        }

        await self._call(
            f"create session for {owner}", self.store.put(self.collection, session_id, document)
        )
        self._invalidate(owner)
        logger.info(f"Created session {session_id} for {owner} ({len(messages)} messages)")
        return session_id

    async def get(self, session_id: str, owner: str) -> ChatSession:
        snapshot = await self._load_owned(session_id, owner)
        return deserialize_session(snapshot)

    async def append_message(self, session_id: str, message: ChatMessage, owner: str) -> ChatSession:
        """
        Append a message and update counters, statistics and tags.

        Reads the current document and writes it back whole; two concurrent
        appenders race and the later write wins.
        """
        snapshot = await self._load_owned(session_id, owner)
        data = dict(snapshot.data)
        messages = list(data.get("messages") or [])

        if any(existing.get("id") == message.id for existing in messages):
            raise InvalidArgumentError(f"Message {message.id} already exists in session {session_id}")

        stats = update_running_stats(
            SessionStats(**(data.get("metadata") or {})), len(messages), message
        )
        messages.append(serialize_message(message))

        if data.pop("title_pending", False) and len(messages) == 1:
            # Session was opened empty and never renamed; its first message names it
            data["title"] = generate_title(message.content, data.get("language", "en"))

        data.update({
            "messages": messages,
            "message_count": len(messages),
            "last_activity": SERVER_TIMESTAMP,
            "metadata": stats.model_dump(),
            "tags": extract_tags(message.content, data.get("tags") or [], max_tags=self.max_tags),
        })

        stored = await self._call(
            f"append message to session {session_id}", self.store.put(self.collection, session_id, data)
        )
        self._invalidate(owner)
        logger.debug(f"Appended message {message.id} to session {session_id}")
        return deserialize_session(stored)

    async def rename(self, session_id: str, title: str, owner: str) -> None:
        title = (title or "").strip()
        if not title:
            raise InvalidArgumentError("Title must not be empty")
        if len(title) > settings.title_max_length:
            raise InvalidArgumentError(f"Title must be at most {settings.title_max_length} characters")

        snapshot = await self._load_owned(session_id, owner)
        data = dict(snapshot.data)
        data.update({"title": title, "title_pending": False, "last_activity": SERVER_TIMESTAMP})

        await self._call(f"rename session {session_id}", self.store.put(self.collection, session_id, data))
        self._invalidate(owner)
        logger.info(f"Renamed session {session_id}")

    async def deactivate(self, session_id: str, owner: str) -> None:
        snapshot = await self._load_owned(session_id, owner)
        data = dict(snapshot.data)
        data.update({
            "is_active": False,
            "end_time": SERVER_TIMESTAMP,
            "last_activity": SERVER_TIMESTAMP,
        })

        await self._call(f"end session {session_id}", self.store.put(self.collection, session_id, data))
        self._invalidate(owner)
        logger.info(f"Ended session {session_id}")

    async def delete(self, session_id: str, owner: str) -> None:
        await self._load_owned(session_id, owner)
        deleted = await self._call(
            f"delete session {session_id}", self.store.delete(self.collection, session_id)
        )
        if not deleted:
            # Removed by someone else between the ownership check and the delete
            raise NotFoundError(session_id)
        self._invalidate(owner)
        logger.info(f"Deleted session {session_id}")

    def _spec(self, owner: str, store_filter: StoreFilter, limit: int,
              start_after: Optional[StartAfter] = None) -> QuerySpec:
        return QuerySpec(
            equals={"user_id": owner, **store_filter.equals()},
            ranges=store_filter.ranges(),
            order_by=ORDER_FIELD,
            descending=True,
            limit=limit,
            start_after=start_after,
        )

    async def query(
        self,
        owner: str,
        store_filter: StoreFilter,
        limit: int,
        start_after: Optional[StartAfter] = None,
    ) -> List[DocumentSnapshot]:
        """
        Newest-first page of the owner's raw session documents.
        Only store-native constraints; no free-text matching happens here.
        """
        spec = self._spec(owner, store_filter, limit, start_after)
        return await self._call(f"list sessions for {owner}", self.store.query(self.collection, spec))

    def subscribe(
        self,
        owner: str,
        store_filter: StoreFilter,
        limit: int,
        callback: Callable[[List[ChatSession]], None],
    ) -> ListenerHandle:
        """Live view of the owner's newest sessions, delivered as whole lists."""

        def on_snapshot(snapshots: List[DocumentSnapshot]) -> None:
            callback([deserialize_session(s) for s in snapshots])

        return self.store.subscribe(self.collection, self._spec(owner, store_filter, limit), on_snapshot)
