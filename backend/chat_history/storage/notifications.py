"""
Change-notification registry shared by the bundled document stores.

Each listener holds a query; after any write to its collection the query is
re-run and the full result delivered as one snapshot. Delivery runs as a task
on the event loop, never inside the writer's call. At most one delivery per
listener is pending at a time, so bursts of writes coalesce into one snapshot.
"""

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Set

from .query import DocumentSnapshot, QuerySpec

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[DocumentSnapshot]], None]
SnapshotLoader = Callable[[str, QuerySpec], Awaitable[List[DocumentSnapshot]]]


@dataclass
class _Listener:
    listener_id: int
    collection: str
    spec: QuerySpec
    callback: SnapshotCallback
    active: bool = True
    pending: bool = False


class ListenerHandle:
    """Returned by DocumentStore.subscribe; call unsubscribe() to stop delivery."""

    def __init__(self, registry: "ListenerRegistry", listener: _Listener):
        self._registry = registry
        self._listener = listener

    @property
    def active(self) -> bool:
        return self._listener.active

    def unsubscribe(self) -> None:
        self._registry.remove(self._listener.listener_id)


class ListenerRegistry:
    """Thread-safe table of live listeners."""

    def __init__(self, loader: SnapshotLoader):
        """
        Args:
            loader: Coroutine function running a query against current state
        """
        self._loader = loader
        self._listeners: Dict[int, _Listener] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

    def add(self, collection: str, spec: QuerySpec, callback: SnapshotCallback) -> ListenerHandle:
        """Register a listener and schedule its initial snapshot. Needs a running loop."""
        loop = asyncio.get_running_loop()
        listener = _Listener(next(self._ids), collection, spec, callback)
        with self._lock:
            self._listeners[listener.listener_id] = listener
        self._schedule(loop, listener)
        return ListenerHandle(self, listener)

    def remove(self, listener_id: int) -> None:
        with self._lock:
            listener = self._listeners.pop(listener_id, None)
        if listener is not None:
            listener.active = False

    def notify(self, collection: str) -> None:
        """Schedule a fresh snapshot for every listener on the collection."""
        with self._lock:
            targets = [l for l in self._listeners.values() if l.collection == collection]
        if not targets:
            return
        loop = asyncio.get_running_loop()
        for listener in targets:
            self._schedule(loop, listener)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _schedule(self, loop: asyncio.AbstractEventLoop, listener: _Listener) -> None:
        with self._lock:
            if listener.pending:
                return
            listener.pending = True
        task = loop.create_task(self._deliver(listener))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, listener: _Listener) -> None:
        with self._lock:
            listener.pending = False
        if not listener.active:
            return
        try:
            snapshot = await self._loader(listener.collection, listener.spec)
            if listener.active:
                listener.callback(snapshot)
        except Exception:
            logger.exception(
                f"Snapshot listener {listener.listener_id} on {listener.collection} failed"
            )
