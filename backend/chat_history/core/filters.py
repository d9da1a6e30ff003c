"""
Split a logical history filter into the part the store can run and the
part that has to be checked in memory after the fetch.

language and the date range are native equality/range constraints.
message_type, tags and search_query need a scan of nested message content
or array containment the store does not index, so they become a residual
predicate over deserialized sessions.
"""

import json
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..models import ChatHistoryFilter, ChatSession
from ..storage import RangeFilter, StoreTimestamp
from .serialization import to_store_timestamp

ResidualPredicate = Callable[[ChatSession], bool]


@dataclass(frozen=True)
class StoreFilter:
    """Constraints pushed down to the document store."""
    language: Optional[str] = None
    date_from: Optional[StoreTimestamp] = None
    date_to: Optional[StoreTimestamp] = None

    def equals(self) -> dict:
        return {"language": self.language} if self.language else {}

    def ranges(self) -> Tuple[RangeFilter, ...]:
        ranges: List[RangeFilter] = []
        if self.date_from is not None:
            ranges.append(RangeFilter("last_activity", ">=", self.date_from))
        if self.date_to is not None:
            ranges.append(RangeFilter("last_activity", "<=", self.date_to))
        return tuple(ranges)


def matches_search(session: ChatSession, query: str) -> bool:
    """Case-insensitive match against the title or any message content."""
    needle = query.lower()
    if needle in session.title.lower():
        return True
    return any(needle in message.content.lower() for message in session.messages)


def _accept_all(session: ChatSession) -> bool:
    return True


def compose_filter(history_filter: Optional[ChatHistoryFilter]) -> Tuple[StoreFilter, ResidualPredicate]:
    """
    Args:
        history_filter: Logical filter, or None for no filtering

    Returns:
        (StoreFilter, residual predicate)
    """
    if history_filter is None:
        return StoreFilter(), _accept_all

    store_filter = StoreFilter(
        language=history_filter.language,
        date_from=to_store_timestamp(history_filter.date_from) if history_filter.date_from else None,
        date_to=to_store_timestamp(history_filter.date_to) if history_filter.date_to else None,
    )

    search_query = (history_filter.search_query or "").strip()
    message_type = history_filter.message_type
    wanted_tags = set(history_filter.tags or [])

    if not (search_query or message_type or wanted_tags):
        return store_filter, _accept_all

    def residual(session: ChatSession) -> bool:
        if search_query and not matches_search(session, search_query):
            return False
        if message_type and not any(
            m.metadata.message_type == message_type for m in session.messages
        ):
            return False
        if wanted_tags and wanted_tags.isdisjoint(session.tags):
            return False
        return True

    return store_filter, residual


def filter_signature(history_filter: Optional[ChatHistoryFilter]) -> str:
    """Stable string for a filter, used in cache keys."""
    if history_filter is None:
        return "{}"
    return json.dumps(history_filter.model_dump(mode="json", exclude_none=True), sort_keys=True)
