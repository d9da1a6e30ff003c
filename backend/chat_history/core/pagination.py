"""
Cursor pagination over the store's last_activity ordering.

A page of size k asks the store for k + 1 documents; receiving the extra one
means more results exist, without a separate count query. Cursors are opaque
URL-safe tokens holding the position of the last document on the page.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import List, Optional

from ..exceptions import InvalidArgumentError
from ..storage import DocumentSnapshot, StartAfter, StoreTimestamp

ORDER_FIELD = "last_activity"


@dataclass
class Page:
    documents: List[DocumentSnapshot]
    has_more: bool
    next_cursor: Optional[str]


def encode_cursor(snapshot: DocumentSnapshot) -> str:
    value = snapshot.data.get(ORDER_FIELD)
    position = {
        "t": value.to_json() if isinstance(value, StoreTimestamp) else None,
        "id": snapshot.id,
    }
    raw = json.dumps(position, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> StartAfter:
    """
    Raises:
        InvalidArgumentError: If the token was not produced by encode_cursor
    """
    try:
        padded = token + "=" * (-len(token) % 4)
        position = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        return StartAfter(StoreTimestamp.from_json(position["t"]), str(position["id"]))
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError, IndexError) as e:
        raise InvalidArgumentError(f"Invalid pagination cursor: {token!r}") from e


def encode_offset(offset: int) -> str:
    return base64.urlsafe_b64encode(f"offset:{offset}".encode("ascii")).decode("ascii").rstrip("=")


def decode_offset(token: Optional[str]) -> int:
    """Offset cursors are used by search, which pages an in-memory match list."""
    if not token:
        return 0
    try:
        padded = token + "=" * (-len(token) % 4)
        prefix, _, value = base64.urlsafe_b64decode(padded.encode("ascii")).decode("ascii").partition(":")
        offset = int(value)
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidArgumentError(f"Invalid search cursor: {token!r}") from e
    if prefix != "offset" or offset < 0:
        raise InvalidArgumentError(f"Invalid search cursor: {token!r}")
    return offset


def fetch_limit(page_size: int) -> int:
    return page_size + 1


def paginate(documents: List[DocumentSnapshot], page_size: int) -> Page:
    """
    Cut an over-fetched result to one page.

    Args:
        documents: Up to page_size + 1 documents in query order
        page_size: Requested page size

    Returns:
        Page: at most page_size documents, whether more exist, and the next cursor
    """
    has_more = len(documents) > page_size
    page = documents[:page_size]
    next_cursor = encode_cursor(page[-1]) if has_more and page else None
    return Page(documents=page, has_more=has_more, next_cursor=next_cursor)
