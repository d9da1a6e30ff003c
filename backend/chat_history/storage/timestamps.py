"""
Store-native timestamp type and server-side clock.

Documents never carry Python datetimes. Writers put StoreTimestamp values,
or SERVER_TIMESTAMP to have the store stamp the field with its own clock.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional


@dataclass(frozen=True, order=True)
class StoreTimestamp:
    """Seconds + nanoseconds since the Unix epoch, UTC."""
    seconds: int
    nanos: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> "StoreTimestamp":
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
        seconds = delta.days * 86400 + delta.seconds
        return cls(seconds=seconds, nanos=delta.microseconds * 1000)

    @classmethod
    def now(cls) -> "StoreTimestamp":
        return cls.from_datetime(datetime.now(timezone.utc))

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.seconds, tz=timezone.utc).replace(
            microsecond=self.nanos // 1000
        )

    def to_json(self) -> list:
        return [self.seconds, self.nanos]

    @classmethod
    def from_json(cls, value: list) -> "StoreTimestamp":
        return cls(seconds=int(value[0]), nanos=int(value[1]))


class _ServerTimestamp:
    """Sentinel replaced by the store's clock at write time."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class ServerClock:
    """
    Store-side clock. Never hands out the same or an earlier instant twice,
    so ordering by server timestamps is total within one store.
    """

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._last: Optional[StoreTimestamp] = None
        self._lock = threading.Lock()

    def stamp(self) -> StoreTimestamp:
        with self._lock:
            current = StoreTimestamp.from_datetime(self._now())
            if self._last is not None and current <= self._last:
                nanos = self._last.nanos + 1000
                current = StoreTimestamp(self._last.seconds + nanos // 10**9, nanos % 10**9)
            self._last = current
            return current


def resolve_server_timestamps(document: Dict[str, Any], clock: ServerClock) -> Dict[str, Any]:
    """Replace top-level SERVER_TIMESTAMP values with a single stamp from the clock."""
    stamp = None
    resolved = {}
    for key, value in document.items():
        if value is SERVER_TIMESTAMP:
            if stamp is None:
                stamp = clock.stamp()
            value = stamp
        resolved[key] = value
    return resolved
