"""
Command-line interface for nelson-memory.

Sub-commands
------------
start    – Start a new conversation session.
add      – Add a user or assistant message to the current session.
relevant – Print the memory context for a query (summary first).
search   – Rank stored memories against a query.
stats    – Print memory counts per category.
history  – List conversation sessions, most recent first.
context  – Print the system prompt a model call would receive.
clear    – Delete every memory and session.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .context import build_context, build_system_prompt
from .memory import MemoryManager


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nelson-memory",
        description="Session memory and relevance retrieval for Nelson-GPT.",
    )
    parser.add_argument(
        "--db",
        default="./chroma_db",
        metavar="PATH",
        help="Path to the ChromaDB persistent store (default: ./chroma_db).",
    )
    parser.add_argument(
        "--collection",
        default="nelson_memory",
        metavar="NAME",
        help="ChromaDB collection name (default: nelson_memory).",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # start
    sub.add_parser("start", help="Start a new conversation session.")

    # add
    p_add = sub.add_parser("add", help="Add a message to the current session.")
    p_add.add_argument("role", choices=["user", "assistant"], help="Who sent the message.")
    p_add.add_argument("text", nargs="?", help="Message text (reads stdin if omitted).")

    # relevant
    p_relevant = sub.add_parser("relevant", help="Print memory context for a query.")
    p_relevant.add_argument("query", help="Free-text query.")

    # search
    p_search = sub.add_parser("search", help="Rank stored memories against a query.")
    p_search.add_argument("query", help="Free-text query.")
    p_search.add_argument(
        "-n",
        type=int,
        default=10,
        metavar="N",
        help="Number of results to return (default: 10).",
    )
    p_search.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Output results as JSON.",
    )

    # stats
    p_stats = sub.add_parser("stats", help="Print memory statistics.")
    p_stats.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # history
    p_history = sub.add_parser("history", help="List conversation sessions.")
    p_history.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # context
    p_context = sub.add_parser("context", help="Print the system prompt for a query.")
    p_context.add_argument("query", help="Free-text query.")

    # clear
    sub.add_parser("clear", help="Delete every memory and session.")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level))

    manager = MemoryManager(db_path=args.db, collection_name=args.collection)

    if args.command == "start":
        print(manager.start_session())

    elif args.command == "add":
        text = args.text
        if text is None:
            text = sys.stdin.read()
        if not text.strip():
            print("Error: no text provided.", file=sys.stderr)
            return 1
        ids = manager.add_message(args.role, text)
        print(f"Added {args.role} message; extracted {len(ids)} memory(s): {', '.join(ids)}")

    elif args.command == "relevant":
        snippets = manager.get_relevant_memories(args.query)
        if not snippets:
            print("No memories found.")
            return 0
        for i, snippet in enumerate(snippets, 1):
            print(f"{i}. {snippet}")

    elif args.command == "search":
        results = manager.search_memories(args.query, limit=args.n)
        if not results:
            print("No memories found.")
            return 0
        if args.as_json:
            print(json.dumps([r.to_dict() for r in results], indent=2))
        else:
            for i, r in enumerate(results, 1):
                print(f"[{i}] ({r.category}, importance={r.importance:.1f}, "
                      f"tags={', '.join(r.tags) or '-'})")
                print(f"    {r.content[:200]}")
                print(f"    id={r.id}")
                print()

    elif args.command == "stats":
        stats = manager.get_memory_stats()
        if args.as_json:
            print(json.dumps(stats, indent=2))
        else:
            print(f"memories={stats['total_memories']} "
                  f"conversations={stats['total_conversations']}")
            for category, count in sorted(stats["categories"].items()):
                print(f"    {category}: {count}")

    elif args.command == "history":
        history = manager.get_conversation_history()
        if not history:
            print("No conversations stored.")
            return 0
        if args.as_json:
            print(json.dumps([c.to_dict() for c in history], indent=2))
        else:
            current = manager.get_current_session_id()
            for c in history:
                marker = "*" if c.session_id == current else " "
                print(f"{marker} {c.session_id} messages={len(c.messages)} "
                      f"last_activity={c.last_activity.isoformat()}")
                if c.summary:
                    print(f"    {c.summary}")

    elif args.command == "context":
        print(build_system_prompt(build_context(manager, args.query)))

    elif args.command == "clear":
        manager.clear_memories()
        print("Cleared all memories.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
