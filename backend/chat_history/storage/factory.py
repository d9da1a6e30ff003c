"""
Document store factory - creates the backend selected in settings.
"""

import logging
from typing import Any

from .interface import DocumentStore
from .local_storage import LocalStorage
from .memory_store import InMemoryDocumentStore

logger = logging.getLogger(__name__)


def create_document_store(config: Any) -> DocumentStore:
    """
    Create the document store configured in settings.

    Args:
        config: Settings object with store_backend and local_storage_path

    Returns:
        DocumentStore: Configured backend

    Raises:
        ValueError: If store_backend is not "memory" or "local"
    """
    backend = config.store_backend.lower()

    if backend == "memory":
        logger.info("Using in-memory document store")
        return InMemoryDocumentStore()

    elif backend == "local":
        logger.info(f"Using local document store: {config.local_storage_path}")
        return LocalStorage(config.local_storage_path)

    else:
        raise ValueError(
            f"Unsupported store backend: {backend}. Must be 'memory' or 'local'"
        )
