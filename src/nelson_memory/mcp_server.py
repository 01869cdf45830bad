"""
MCP (Model Context Protocol) server for nelson-memory.

Exposes a MemoryManager as a set of tools so that a chat front-end or
agent can record conversation turns and pull relevant memory context
before each model call.

Run as a stdio server:
    python -m nelson_memory.mcp_server

Or via the installed entry-point:
    nelson-memory-mcp

Configuration (environment variables):
    NELSON_MEMORY_DB_PATH      - path to the ChromaDB store (default: ~/.cache/nelson-memory)
    NELSON_MEMORY_COLLECTION   - ChromaDB collection name (default: nelson_memory)
    NELSON_MEMORY_STORAGE_KEY  - key of the persisted state blob (default: nelson-gpt-memory)
    NELSON_MEMORY_LOG_LEVEL    - logging level (default: WARNING)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .memory import MemoryManager

# ---------------------------------------------------------------------------
# Resolve configuration from environment (with sensible defaults)
# ---------------------------------------------------------------------------

_DEFAULT_DB_PATH = str(Path.home() / ".cache" / "nelson-memory")

_DB_PATH = os.environ.get("NELSON_MEMORY_DB_PATH", _DEFAULT_DB_PATH)
_COLLECTION = os.environ.get("NELSON_MEMORY_COLLECTION", "nelson_memory")
_STORAGE_KEY = os.environ.get("NELSON_MEMORY_STORAGE_KEY", "nelson-gpt-memory")
_LOG_LEVEL = os.environ.get("NELSON_MEMORY_LOG_LEVEL", "WARNING")

INSTRUCTIONS = (
    "Conversation memory for a pediatric medical assistant. "
    "Call `start_session` when a new conversation begins. "
    "Call `add_message` for every user and assistant turn. "
    "Call `relevant_memories` before answering to get prior context "
    "(the session summary, if any, comes first). "
    "Use `search_memories` to inspect ranked entries, `memory_stats` and "
    "`conversation_history` to browse, and `clear_memories` to wipe everything."
)


class MemoryTools:
    """Tool implementations bound to one explicit MemoryManager."""

    def __init__(self, manager: MemoryManager) -> None:
        self.manager = manager

    def start_session(self) -> str:
        """
        Start a new conversation session.

        Returns:
            A confirmation sentence containing the new session ID.
        """
        session_id = self.manager.start_session()
        return f"Started session {session_id}."

    def add_message(self, role: str, content: str) -> str:
        """
        Record one chat message in the current session.

        Args:
            role:    "user" or "assistant".
            content: The message text.

        Returns:
            A confirmation with the IDs of any memories extracted.
        """
        ids = self.manager.add_message(role, content)
        if not ids:
            return "Message recorded. No memories extracted."
        plural = "memory" if len(ids) == 1 else "memories"
        return f"Message recorded. Extracted {len(ids)} {plural}. IDs: {', '.join(ids)}"

    def relevant_memories(self, query: str) -> str:
        """
        Memory context to include in the next model call for *query*.

        Returns:
            JSON array of strings, the session summary first when present.
        """
        snippets = self.manager.get_relevant_memories(query)
        if not snippets:
            return "No memories found."
        return json.dumps(snippets, indent=2)

    def search_memories(self, query: str, limit: int = 10) -> str:
        """
        Rank stored memories against *query*.

        Args:
            query: Free-text query.
            limit: Maximum number of entries to return (default 10).

        Returns:
            JSON array of entries with id, content, category, importance,
            timestamp, tags and metadata.
        """
        results = self.manager.search_memories(query, limit=limit)
        if not results:
            return "No memories found."
        return json.dumps([r.to_dict() for r in results], indent=2)

    def memory_stats(self) -> str:
        """Return total memories, total conversations and per-category counts as JSON."""
        return json.dumps(self.manager.get_memory_stats(), indent=2)

    def conversation_history(self) -> str:
        """
        List conversation sessions, most recently active first.

        Returns:
            JSON array with session_id, message_count, summary, key_topics
            and last_activity.
        """
        history = self.manager.get_conversation_history()
        if not history:
            return "No conversations stored."
        return json.dumps(
            [
                {
                    "session_id": c.session_id,
                    "message_count": len(c.messages),
                    "summary": c.summary,
                    "key_topics": c.key_topics,
                    "last_activity": c.last_activity.isoformat(),
                }
                for c in history
            ],
            indent=2,
        )

    def clear_memories(self) -> str:
        """Delete every memory and session.  Irreversible."""
        self.manager.clear_memories()
        return "Cleared all memories."


# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------


def create_server(tools: MemoryTools) -> FastMCP:
    """Build a FastMCP server exposing every method of *tools*."""
    mcp = FastMCP("nelson-memory", instructions=INSTRUCTIONS)
    for fn in (
        tools.start_session,
        tools.add_message,
        tools.relevant_memories,
        tools.search_memories,
        tools.memory_stats,
        tools.conversation_history,
        tools.clear_memories,
    ):
        mcp.add_tool(fn)
    return mcp


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server over stdio."""
    logging.basicConfig(level=getattr(logging, _LOG_LEVEL.upper(), logging.WARNING))
    manager = MemoryManager(
        db_path=_DB_PATH,
        collection_name=_COLLECTION,
        storage_key=_STORAGE_KEY,
    )
    create_server(MemoryTools(manager)).run(transport="stdio")


if __name__ == "__main__":
    main()
