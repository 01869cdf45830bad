"""
Shared pytest fixtures for nelson-memory tests.

Uses ChromaDB in ephemeral (in-memory) mode and a controllable clock so
that tests run fast and decay behaviour is reproducible.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import chromadb
import pytest

from nelson_memory.memory import MemoryManager
from nelson_memory.store import ChromaBlobStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FailingBlobStore:
    """BlobStore whose every operation raises, to exercise error paths."""

    def get(self, key: str) -> str | None:
        raise OSError("storage unavailable")

    def set(self, key: str, value: str) -> None:
        raise OSError("storage unavailable")

    def delete(self, key: str) -> None:
        raise OSError("storage unavailable")


# A single shared EphemeralClient instance for the test session.
# Each fixture call creates a uniquely named collection so tests are isolated.
_EPHEMERAL_CLIENT = chromadb.EphemeralClient()


def make_blob_store() -> ChromaBlobStore:
    return ChromaBlobStore(
        _client=_EPHEMERAL_CLIENT,
        collection_name=f"test_{uuid.uuid4().hex}",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def blob_store() -> ChromaBlobStore:
    """In-memory ChromaBlobStore in its own collection."""
    return make_blob_store()


@pytest.fixture()
def memory_manager(blob_store: ChromaBlobStore, clock: FakeClock) -> MemoryManager:
    """MemoryManager wired to the ephemeral store and the fake clock."""
    return MemoryManager(_store=blob_store, _clock=clock)
