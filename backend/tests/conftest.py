"""
Shared test fixtures and configuration.
"""

import asyncio
import os

import pytest

# Set test environment variables before importing package modules
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_API_REQUESTS", "false")

from chat_history.core import ChatHistoryService, SessionCache  # noqa: E402
from chat_history.models import ChatMessage, MessageMetadata  # noqa: E402
from chat_history.storage import InMemoryDocumentStore  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock for cache TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_message(content: str, is_user: bool = True, processing_time=None, message_type=None) -> ChatMessage:
    return ChatMessage(
        content=content,
        is_user=is_user,
        metadata=MessageMetadata(processing_time=processing_time, message_type=message_type),
    )


async def settle() -> None:
    """Let scheduled snapshot deliveries run."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(store, clock):
    return ChatHistoryService(store, cache=SessionCache(ttl_seconds=300, clock=clock))
