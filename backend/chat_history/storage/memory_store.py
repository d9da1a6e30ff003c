"""
In-process document store.
Keeps every collection in a dict; used as the default backend and in tests.
"""

import copy
import threading
from typing import Any, Dict, List, Optional

from .interface import DocumentStore
from .notifications import ListenerHandle, ListenerRegistry, SnapshotCallback
from .query import DocumentSnapshot, QuerySpec, run_query
from .timestamps import ServerClock, resolve_server_timestamps


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed DocumentStore. Safe to share between threads."""

    def __init__(self, clock: Optional[ServerClock] = None):
        self.clock = clock or ServerClock()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._listeners = ListenerRegistry(self.query)

    async def put(self, collection: str, document_id: str, document: Dict[str, Any]) -> DocumentSnapshot:
        stored = resolve_server_timestamps(copy.deepcopy(document), self.clock)
        with self._lock:
            self._collections.setdefault(collection, {})[document_id] = stored
        self._listeners.notify(collection)
        return DocumentSnapshot(document_id, copy.deepcopy(stored))

    async def get(self, collection: str, document_id: str) -> Optional[DocumentSnapshot]:
        with self._lock:
            stored = self._collections.get(collection, {}).get(document_id)
            if stored is None:
                return None
            return DocumentSnapshot(document_id, copy.deepcopy(stored))

    async def delete(self, collection: str, document_id: str) -> bool:
        with self._lock:
            removed = self._collections.get(collection, {}).pop(document_id, None)
        if removed is None:
            return False
        self._listeners.notify(collection)
        return True

    async def query(self, collection: str, spec: QuerySpec) -> List[DocumentSnapshot]:
        with self._lock:
            documents = [
                DocumentSnapshot(doc_id, copy.deepcopy(data))
                for doc_id, data in self._collections.get(collection, {}).items()
            ]
        return run_query(documents, spec)

    def subscribe(self, collection: str, spec: QuerySpec, callback: SnapshotCallback) -> ListenerHandle:
        return self._listeners.add(collection, spec, callback)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
