"""
Data model for session memory: memory entries, conversations, and the
full persisted state.

Entries and conversations only reference each other by id.  A conversation
lists the ids of the entries each of its messages produced; entries never
point back at a conversation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

Category = Literal[
    "medical_fact",
    "case_context",
    "user_preference",
    "clinical_rule",
    "conversation",
]
Role = Literal["user", "assistant"]
Source = Literal["nelson", "conversation", "user_input"]

CATEGORIES: tuple[str, ...] = (
    "medical_fact",
    "case_context",
    "user_preference",
    "clinical_rule",
    "conversation",
)
ROLES: tuple[str, ...] = ("user", "assistant")


def _parse_time(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; values without an offset are taken as UTC."""
    if not isinstance(value, str):
        raise TypeError(f"Expected ISO-8601 string, got {type(value).__name__}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require(value: Any, kind: type | tuple[type, ...], name: str) -> Any:
    if not isinstance(value, kind) or isinstance(value, bool):
        raise TypeError(f"{name} has unexpected type {type(value).__name__}")
    return value


def _require_strings(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    _require(value, list, name)
    for item in value:
        _require(item, str, name)
    return list(value)


@dataclass(frozen=True)
class MemoryEntry:
    """A single categorized snippet derived from one chat message."""

    id: str
    content: str
    category: Category
    importance: float
    timestamp: datetime
    tags: tuple[str, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category,
            "importance": self.importance,
            "timestamp": self.timestamp.isoformat(),
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryEntry:
        if data["category"] not in CATEGORIES:
            raise ValueError(f"Unknown memory category {data['category']!r}")
        return cls(
            id=_require(data["id"], str, "id"),
            content=_require(data["content"], str, "content"),
            category=data["category"],
            importance=float(_require(data["importance"], (int, float), "importance")),
            timestamp=_parse_time(data["timestamp"]),
            tags=tuple(_require_strings(data.get("tags"), "tags")),
            metadata=dict(_require(data.get("metadata") or {}, dict, "metadata")),
        )


@dataclass
class ConversationMessage:
    role: str
    content: str
    timestamp: datetime
    memory_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "memories": list(self.memory_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMessage:
        return cls(
            role=_require(data["role"], str, "role"),
            content=_require(data["content"], str, "content"),
            timestamp=_parse_time(data["timestamp"]),
            memory_ids=_require_strings(data.get("memories"), "memories"),
        )


@dataclass
class ConversationMemory:
    """
    One conversation thread.

    ``messages`` is append-only and ``last_activity`` never moves
    backwards.  ``summary`` and ``key_topics`` are derived and recomputed
    every :data:`~nelson_memory.intelligence.SUMMARY_INTERVAL` messages.
    """

    session_id: str
    start_time: datetime
    last_activity: datetime
    messages: list[ConversationMessage] = field(default_factory=list)
    summary: str = ""
    key_topics: list[str] = field(default_factory=list)

    def append(self, message: ConversationMessage) -> None:
        self.messages.append(message)
        if message.timestamp > self.last_activity:
            self.last_activity = message.timestamp

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "messages": [m.to_dict() for m in self.messages],
            "summary": self.summary,
            "keyTopics": list(self.key_topics),
            "startTime": self.start_time.isoformat(),
            "lastActivity": self.last_activity.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMemory:
        return cls(
            session_id=_require(data["sessionId"], str, "sessionId"),
            start_time=_parse_time(data["startTime"]),
            last_activity=_parse_time(data["lastActivity"]),
            messages=[ConversationMessage.from_dict(m) for m in data.get("messages") or []],
            summary=_require(data.get("summary") or "", str, "summary"),
            key_topics=_require_strings(data.get("keyTopics"), "keyTopics"),
        )


@dataclass
class MemoryState:
    """
    Everything the memory manager persists: entries by id, conversations by
    session id, and the current-session pointer.  Both maps keep insertion
    order, which is also the tiebreak order for equal search scores.
    """

    memories: dict[str, MemoryEntry] = field(default_factory=dict)
    conversations: dict[str, ConversationMemory] = field(default_factory=dict)
    current_session_id: str | None = None

    def clear(self) -> None:
        self.memories.clear()
        self.conversations.clear()
        self.current_session_id = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "memories": [[mid, m.to_dict()] for mid, m in self.memories.items()],
            "conversations": [[sid, c.to_dict()] for sid, c in self.conversations.items()],
            "currentSessionId": self.current_session_id,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> MemoryState:
        """
        Rebuild state from :meth:`to_payload` output.

        Raises ``KeyError``, ``TypeError`` or ``ValueError`` when the payload
        is malformed; callers decide how to recover.
        """
        if not isinstance(payload, dict):
            raise TypeError(f"Expected dict payload, got {type(payload).__name__}")
        memories = {mid: MemoryEntry.from_dict(m) for mid, m in payload.get("memories") or []}
        conversations = {
            sid: ConversationMemory.from_dict(c) for sid, c in payload.get("conversations") or []
        }
        current = payload.get("currentSessionId")
        if current is not None and not isinstance(current, str):
            raise TypeError("currentSessionId must be a string or null")
        return cls(memories=memories, conversations=conversations, current_session_id=current)
