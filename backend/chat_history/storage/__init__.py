"""Storage module - document store contract and bundled implementations."""

from .interface import DocumentStore
from .query import DocumentSnapshot, QuerySpec, RangeFilter, StartAfter
from .notifications import ListenerHandle
from .timestamps import SERVER_TIMESTAMP, ServerClock, StoreTimestamp
from .memory_store import InMemoryDocumentStore
from .local_storage import LocalStorage
from .factory import create_document_store

__all__ = [
    'DocumentStore', 'DocumentSnapshot', 'QuerySpec', 'RangeFilter', 'StartAfter',
    'ListenerHandle', 'SERVER_TIMESTAMP', 'ServerClock', 'StoreTimestamp',
    'InMemoryDocumentStore', 'LocalStorage', 'create_document_store',
]
