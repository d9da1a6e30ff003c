"""
Document Store Interface - Abstract base class for all document store implementations.
The chat history layer only depends on this contract, so the bundled stores
can be swapped for a hosted document database without touching the core.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .notifications import ListenerHandle, SnapshotCallback
from .query import DocumentSnapshot, QuerySpec


class DocumentStore(ABC):
    """
    Abstract document store.

    Implementations must replace SERVER_TIMESTAMP field values with their own
    clock at write time, and raise StoreUnavailableError on I/O failure.
    """

    @abstractmethod
    async def put(self, collection: str, document_id: str, document: Dict[str, Any]) -> DocumentSnapshot:
        """
        Create or overwrite a whole document.

        Args:
            collection: Collection name (e.g., "chat_sessions")
            document_id: Document id, unique within the collection
            document: Field values; SERVER_TIMESTAMP values are stamped by the store

        Returns:
            DocumentSnapshot: The document as stored, with timestamps resolved
        """
        pass

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Optional[DocumentSnapshot]:
        """
        Load one document.

        Returns:
            Optional[DocumentSnapshot]: The document, or None if it doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> bool:
        """
        Delete one document.

        Returns:
            bool: True if a document was deleted, False if it didn't exist
        """
        pass

    @abstractmethod
    async def query(self, collection: str, spec: QuerySpec) -> List[DocumentSnapshot]:
        """
        Run an equality/range query with ordering, limit and start-after cursor.

        Args:
            collection: Collection name
            spec: Query shape

        Returns:
            List[DocumentSnapshot]: Matching documents in query order
        """
        pass

    @abstractmethod
    def subscribe(self, collection: str, spec: QuerySpec, callback: SnapshotCallback) -> ListenerHandle:
        """
        Listen for changes to a query's result set.

        The callback receives the full result of the query once immediately
        and again after every change, asynchronously on the event loop.
        Must be called while an event loop is running.

        Returns:
            ListenerHandle: call unsubscribe() to stop delivery
        """
        pass
