"""
Durable storage for the memory state.

``BlobStore`` is the narrow key -> string contract the manager depends on.
``ChromaBlobStore`` implements it on top of a ChromaDB collection, and
``MemoryStore`` serializes a whole :class:`~nelson_memory.models.MemoryState`
into one blob under a fixed key.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol, runtime_checkable

import chromadb

from .models import MemoryState

logger = logging.getLogger(__name__)

#: Blobs are looked up by id only, so every document shares one embedding.
_PLACEHOLDER_EMBEDDING: list[float] = [1.0, 0.0]


@runtime_checkable
class BlobStore(Protocol):
    """Scoped key -> string store."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class ChromaBlobStore:
    """
    Persistent key/value blobs backed by ChromaDB.

    Each key is a document id and the blob is the document text.  Documents
    are written with a fixed placeholder embedding so no embedding model is
    ever loaded.
    """

    def __init__(
        self,
        path: str = "./chroma_db",
        collection_name: str = "nelson_memory",
        _client: chromadb.ClientAPI | None = None,
    ) -> None:
        self.client = _client or chromadb.PersistentClient(path=path)
        self.collection = self.client.get_or_create_collection(name=collection_name)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def set(self, key: str, value: str) -> None:
        """Create or replace the blob stored under *key*."""
        self.collection.upsert(
            ids=[key],
            documents=[value],
            embeddings=[_PLACEHOLDER_EMBEDDING],
        )

    def delete(self, key: str) -> None:
        """Delete the blob stored under *key* (no-op if absent)."""
        self.collection.delete(ids=[key])

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> str | None:
        """Return the blob stored under *key*, or ``None``."""
        result = self.collection.get(ids=[key], include=["documents"])
        documents = result.get("documents") or []
        if not documents:
            return None
        return documents[0]


class MemoryStore:
    """
    Saves and loads the complete memory state as one JSON blob.

    Failures never escape: a failed save is logged and reported as
    ``False``, and a failed or empty load yields an empty state.
    """

    def __init__(self, blobs: BlobStore, key: str = "nelson-gpt-memory") -> None:
        self.blobs = blobs
        self.key = key

    def save(self, state: MemoryState) -> bool:
        try:
            self.blobs.set(self.key, json.dumps(state.to_payload()))
        except Exception:
            logger.exception("Failed to save memory to storage (key=%s)", self.key)
            return False
        return True

    def load(self) -> MemoryState:
        try:
            raw = self.blobs.get(self.key)
        except Exception:
            logger.exception("Failed to load memory from storage (key=%s)", self.key)
            return MemoryState()

        if raw is None:
            return MemoryState()

        try:
            return MemoryState.from_payload(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Discarding unreadable memory state (key=%s): %s", self.key, exc)
            return MemoryState()
