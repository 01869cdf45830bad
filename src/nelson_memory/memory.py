"""
MemoryManager: high-level API for session memory and relevance retrieval.

This is the only entry-point host applications need.  It owns the memory
entries, the conversation sessions and the current-session pointer, and
persists all three after every mutating call.

Usage example::

    from nelson_memory import MemoryManager

    memory = MemoryManager(db_path="./my_memory")
    memory.start_session()

    memory.add_message("user", "I always prefer weight-based dosing.")
    memory.add_message("assistant", "Treatment for a 5 year old with otitis ...")

    # Later, feed the most relevant slice into the next model call
    for snippet in memory.get_relevant_memories("dosing for otitis"):
        print(snippet)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from .intelligence import (
    SUMMARY_INTERVAL,
    ContentClassifier,
    KeywordExtractor,
    extract_key_topics,
    generate_id,
    rank_entries,
    summarise_messages,
)
from .models import ROLES, ConversationMemory, ConversationMessage, MemoryEntry, MemoryState
from .store import BlobStore, ChromaBlobStore, MemoryStore

logger = logging.getLogger(__name__)

#: How many scored memories :meth:`MemoryManager.get_relevant_memories` returns.
RELEVANT_MEMORY_LIMIT: int = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryManager:
    """
    Session memory manager backed by a durable key/value blob.

    Responsibilities
    ----------------
    * **Sessions** – Starts conversation sessions, appends messages to the
      current one and refreshes its summary every ``SUMMARY_INTERVAL``
      messages.
    * **Extract** – Runs each message through the content classifier and
      keeps the categorized entries it produces.
    * **Retrieve** – Ranks stored entries against a query by lexical
      overlap, importance and age.
    * **Persist** – Writes the full state after every mutation and reloads
      it on construction.  Storage problems are logged, never raised.

    Parameters
    ----------
    db_path:
        Filesystem path for the ChromaDB persistent store.
    collection_name:
        Name of the ChromaDB collection holding the state blob.
    storage_key:
        Key under which the state blob is stored.
    extractor:
        Content classifier used on every message.  Defaults to
        :class:`~nelson_memory.intelligence.KeywordExtractor`.
    """

    def __init__(
        self,
        db_path: str = "./chroma_db",
        collection_name: str = "nelson_memory",
        storage_key: str = "nelson-gpt-memory",
        extractor: ContentClassifier | None = None,
        _store: BlobStore | None = None,
        _clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = _clock or _utcnow
        self.extractor = extractor or KeywordExtractor(clock=self._clock)
        self._memory_store = MemoryStore(
            _store or ChromaBlobStore(path=db_path, collection_name=collection_name),
            key=storage_key,
        )
        self._state = self._memory_store.load()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self) -> str:
        """Start a new conversation session, make it current and return its id."""
        now = self._clock()
        session_id = generate_id("session", now)
        self._state.conversations[session_id] = ConversationMemory(
            session_id=session_id,
            start_time=now,
            last_activity=now,
        )
        self._state.current_session_id = session_id
        logger.debug("Started memory session %s", session_id)
        self._persist()
        return session_id

    def get_current_session_id(self) -> str | None:
        return self._state.current_session_id

    def add_message(self, role: str, content: str) -> list[str]:
        """
        Append a message to the current session and extract memories from it.

        A session is started implicitly when none is current.  Malformed
        input is logged and degrades to zero extracted memories.

        Returns
        -------
        list[str]
            IDs of the memory entries produced from this message.
        """
        conversation = self._current_conversation()
        if conversation is None:
            self.start_session()
            conversation = self._current_conversation()

        if not isinstance(content, str):
            logger.warning("Coercing non-string message content of type %s", type(content).__name__)
            content = "" if content is None else str(content)
        if role not in ROLES:
            logger.warning("Unknown message role %r; role-specific rules will not apply", role)

        entries = self._extract(content, role)
        for entry in entries:
            self._state.memories[entry.id] = entry
        memory_ids = [e.id for e in entries]

        conversation.append(
            ConversationMessage(
                role=role,
                content=content,
                timestamp=self._clock(),
                memory_ids=memory_ids,
            )
        )

        if len(conversation.messages) % SUMMARY_INTERVAL == 0:
            self._update_summary(conversation)

        self._persist()
        return memory_ids

    def get_conversation_history(self) -> list[ConversationMemory]:
        """Return every session, most recently active first."""
        return sorted(
            self._state.conversations.values(),
            key=lambda c: c.last_activity,
            reverse=True,
        )

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def search_memories(self, query: str, limit: int = 10) -> list[MemoryEntry]:
        """
        Rank stored entries against *query* and return up to *limit*.

        See :func:`~nelson_memory.intelligence.score_entry` for the formula.
        Equal scores keep insertion order.
        """
        return rank_entries(self._state.memories.values(), query, self._clock(), limit)

    def get_relevant_memories(self, query: str) -> list[str]:
        """
        Return memory snippets to splice into the next model prompt.

        The current session's summary, when it has one, comes first,
        followed by the contents of the top-scoring entries.
        """
        contents = [m.content for m in self.search_memories(query, RELEVANT_MEMORY_LIMIT)]
        conversation = self._current_conversation()
        if conversation is not None and conversation.summary:
            return [conversation.summary, *contents]
        return contents

    def get_memory_stats(self) -> dict[str, Any]:
        categories: dict[str, int] = {}
        for entry in self._state.memories.values():
            categories[entry.category] = categories.get(entry.category, 0) + 1
        return {
            "total_memories": len(self._state.memories),
            "total_conversations": len(self._state.conversations),
            "categories": categories,
        }

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def clear_memories(self) -> None:
        """Delete every entry and session and reset the current session."""
        self._state.clear()
        self._persist()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _current_conversation(self) -> ConversationMemory | None:
        session_id = self._state.current_session_id
        if session_id is None:
            return None
        return self._state.conversations.get(session_id)

    def _extract(self, content: str, role: str) -> list[MemoryEntry]:
        try:
            return list(self.extractor.extract(content, role))
        except Exception:
            logger.exception("Memory extraction failed; storing message without memories")
            return []

    def _update_summary(self, conversation: ConversationMemory) -> None:
        conversation.summary = summarise_messages(conversation.messages)
        conversation.key_topics = extract_key_topics(conversation.messages)
        logger.debug(
            "Updated summary for session %s: %s",
            conversation.session_id,
            conversation.summary,
        )

    def _persist(self) -> None:
        self._memory_store.save(self._state)
