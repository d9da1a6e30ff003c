"""
Local Filesystem Document Store.
Stores each document as one JSON file under <base_dir>/<collection>/<id>.json.
Queries load the whole collection, so this backend suits development and
single-user deployments rather than large histories.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from ..exceptions import StoreUnavailableError
from .interface import DocumentStore
from .notifications import ListenerHandle, ListenerRegistry, SnapshotCallback
from .query import DocumentSnapshot, QuerySpec, run_query
from .timestamps import ServerClock, StoreTimestamp, resolve_server_timestamps

_TIMESTAMP_KEY = "__timestamp__"


def _encode(value: Any) -> Any:
    """Make a document JSON-serializable, tagging StoreTimestamp values."""
    if isinstance(value, StoreTimestamp):
        return {_TIMESTAMP_KEY: value.to_json()}
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_TIMESTAMP_KEY}:
            return StoreTimestamp.from_json(value[_TIMESTAMP_KEY])
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


class LocalStorage(DocumentStore):
    """
    Local filesystem document store.
    All files live below a single base directory.
    """

    def __init__(self, base_dir: str = "./data", clock: Optional[ServerClock] = None):
        """
        Initialize local storage with a base directory.

        Args:
            base_dir: Base directory for all collections
            clock: Server clock used for SERVER_TIMESTAMP fields
        """
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.clock = clock or ServerClock()
        self._listeners = ListenerRegistry(self.query)
        self._write_lock = asyncio.Lock()

    def _get_full_path(self, collection: str, document_id: Optional[str] = None) -> Path:
        """Resolve a collection directory or document file within base_dir."""
        relative = collection if document_id is None else f"{collection}/{document_id}.json"
        full_path = (self.base_dir / relative).resolve()

        # Security check: ensure path is within base_dir
        if full_path != self.base_dir and self.base_dir not in full_path.parents:
            raise ValueError(f"Invalid path: {relative} - path traversal detected")

        return full_path

    async def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                return _decode(json.loads(await f.read()))
        except FileNotFoundError:
            return None

    async def put(self, collection: str, document_id: str, document: Dict[str, Any]) -> DocumentSnapshot:
        full_path = self._get_full_path(collection, document_id)
        stored = resolve_server_timestamps(document, self.clock)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = full_path.with_suffix('.json.tmp')
            async with self._write_lock:
                async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
                    await f.write(json.dumps(_encode(stored), ensure_ascii=False, indent=2))
                os.replace(tmp_path, full_path)
        except (OSError, TypeError) as e:
            raise StoreUnavailableError(f"Error saving {collection}/{document_id}: {e}") from e

        self._listeners.notify(collection)
        return DocumentSnapshot(document_id, _decode(_encode(stored)))

    async def get(self, collection: str, document_id: str) -> Optional[DocumentSnapshot]:
        full_path = self._get_full_path(collection, document_id)
        try:
            data = await self._read(full_path)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Error loading {collection}/{document_id}: {e}") from e
        if data is None:
            return None
        return DocumentSnapshot(document_id, data)

    async def delete(self, collection: str, document_id: str) -> bool:
        full_path = self._get_full_path(collection, document_id)
        try:
            async with self._write_lock:
                if not full_path.exists():
                    return False
                full_path.unlink()
        except OSError as e:
            raise StoreUnavailableError(f"Error deleting {collection}/{document_id}: {e}") from e

        self._listeners.notify(collection)
        return True

    async def query(self, collection: str, spec: QuerySpec) -> List[DocumentSnapshot]:
        directory = self._get_full_path(collection)
        if not directory.exists():
            return []

        documents = []
        try:
            for file_path in sorted(directory.glob("*.json")):
                data = await self._read(file_path)
                if data is not None:
                    documents.append(DocumentSnapshot(file_path.stem, data))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Error querying {collection}: {e}") from e

        return run_query(documents, spec)

    def subscribe(self, collection: str, spec: QuerySpec, callback: SnapshotCallback) -> ListenerHandle:
        return self._listeners.add(collection, spec, callback)
