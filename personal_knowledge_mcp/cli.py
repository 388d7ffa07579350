#!/usr/bin/env python3
"""
Command-line interface for Personal Knowledge MCP

Usage:
    pk add "Title" "Content" --source https://example.com --tags python,patterns
    pk search "query" --limit 5
    pk search "keyword" --text
    pk get 12
    pk update 12 --content "New content" --tags python
    pk delete 12
    pk list --tags python --limit 10
    pk stats
    pk vectors convert|stats|clear
    pk sessions list|show ID|close-stale
"""

import sys
import json
import asyncio
import argparse
import logging
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .context import KnowledgeContext
from .errors import PersonalKnowledgeError, VectorIndexNotInitializedError
from .services import KnowledgeService, SessionService
from .utils import configure_logging

logger = logging.getLogger("personal-knowledge.cli")

PREVIEW_CHARS = 100


def parse_tags(tags_str: Optional[str]) -> Optional[List[str]]:
    """Parse comma-separated tags; an explicit empty string means no tags"""
    if tags_str is None:
        return None
    return [tag.strip() for tag in tags_str.split(",") if tag.strip()]


class KnowledgeCLI:
    """CLI interface for knowledge and session operations"""

    def __init__(self, context: KnowledgeContext, as_json: bool = False):
        self.context = context
        self.knowledge = KnowledgeService(context)
        self.sessions = SessionService(context)
        self.as_json = as_json

    def emit(self, data, text: str):
        print(json.dumps(data, indent=2, default=str) if self.as_json else text)

    async def add(self, title: str, content: str, source: str = None, tags: List[str] = None):
        result = await self.knowledge.add_knowledge(title, content, source=source, tags=tags)
        status = "Indexed for semantic search" if result["vectorized"] else "Saved to database only"
        self.emit(result, f"Added entry #{result['id']}: \"{title}\"\n{status}")

    async def search(self, query: str, limit: int = 5, text: bool = False):
        if text:
            results = self.knowledge.search_knowledge_text(query, limit)
            if not results:
                self.emit([], "No results found.")
                return
            lines = [f"Found {len(results)} result(s):\n"]
            for r in results:
                lines.append(f"[{r.id}] {r.title}")
                lines.append(f"    {r.content[:PREVIEW_CHARS]}")
                if r.tags:
                    lines.append(f"    Tags: {', '.join(r.tags)}")
                lines.append("")
            self.emit([r.to_dict() for r in results], "\n".join(lines))
            return

        try:
            results = await self.knowledge.search_knowledge(query, limit=limit)
        except VectorIndexNotInitializedError as e:
            raise PersonalKnowledgeError(f"{e} Try --text for keyword search.") from e

        if not results:
            self.emit([], "No similar entries found.")
            return
        lines = [f"Found {len(results)} similar entries:\n"]
        for r in results:
            lines.append(f"[{r.id}] {r.title} ({round(r.score * 100)}% similar)")
            lines.append(f"    {r.content_preview[:PREVIEW_CHARS]}")
            if r.tags:
                lines.append(f"    Tags: {', '.join(r.tags)}")
            lines.append("")
        self.emit([r.to_dict() for r in results], "\n".join(lines))

    async def get(self, entry_id: int) -> bool:
        entry = self.knowledge.get_knowledge(entry_id)
        if not entry:
            self.emit(None, f"No entry found with ID: {entry_id}")
            return False
        lines = [
            f"# {entry.title}\n",
            f"ID: {entry.id}",
            f"Created: {entry.created_at.isoformat()}",
            f"Updated: {entry.updated_at.isoformat()}",
        ]
        if entry.source:
            lines.append(f"Source: {entry.source}")
        if entry.tags:
            lines.append(f"Tags: {', '.join(entry.tags)}")
        lines.append(f"\n{entry.content}")
        self.emit(entry.to_dict(), "\n".join(lines))
        return True

    async def update(self, entry_id: int, **updates) -> bool:
        updates = {k: v for k, v in updates.items() if v is not None}
        if not updates:
            self.emit({"success": False}, "No updates provided.")
            return False
        result = await self.knowledge.update_knowledge(entry_id, **updates)
        if not result["success"]:
            self.emit(result, f"No entry found with ID: {entry_id}")
            return False
        status = "Re-indexed" if result["vectorized"] else "Vector update failed"
        self.emit(result, f"Updated entry #{entry_id}\n{status}")
        return True

    async def delete(self, entry_id: int) -> bool:
        deleted = await self.knowledge.delete_knowledge(entry_id)
        self.emit({"deleted": deleted}, f"Deleted entry #{entry_id}" if deleted else f"No entry found with ID: {entry_id}")
        return deleted

    async def list(self, limit: int = 20, offset: int = 0, tags: List[str] = None):
        entries = self.knowledge.list_knowledge(limit=limit, offset=offset, tags=tags)
        if not entries:
            self.emit([], "No entries found.")
            return
        lines = [f"Knowledge Entries ({len(entries)}):\n"]
        lines.extend(
            f"[{e.id}] {e.title}" + (f" [{', '.join(e.tags)}]" if e.tags else "")
            for e in entries
        )
        self.emit([e.to_dict() for e in entries], "\n".join(lines))

    async def stats(self):
        stats = await self.knowledge.get_knowledge_stats()
        db, vectors = stats["database"], stats["vectors"]
        lines = [
            "Knowledge Base Stats\n",
            f"Total Entries: {db['total_entries']}",
            f"Vectors Indexed: {vectors['total_vectors']}",
            f"Oldest: {db['oldest_entry'] or 'N/A'}",
            f"Newest: {db['newest_entry'] or 'N/A'}",
        ]
        top_tags = sorted(db["tag_counts"].items(), key=lambda item: item[1], reverse=True)[:10]
        if top_tags:
            lines.append("\nTop Tags:")
            lines.extend(f"  {tag}: {count}" for tag, count in top_tags)
        self.emit(stats, "\n".join(lines))

    async def vectors_convert(self):
        def progress(current, total):
            if not self.as_json:
                print(f"\rProgress: {current}/{total}", end="", flush=True)

        if not self.as_json:
            print("Converting entries to vectors...")
        result = await self.knowledge.convert_to_vectors(on_progress=progress)
        self.emit(result, f"\nConverted {result['converted']} entries ({result['skipped']} already indexed)")

    async def vectors_stats(self):
        stats = await self.knowledge.get_vector_stats()
        lines = ["Vector Database Stats\n", f"Total Vectors: {stats['total_vectors']}"]
        top_tags = sorted(stats["tag_counts"].items(), key=lambda item: item[1], reverse=True)[:10]
        if top_tags:
            lines.append("\nTags in vectors:")
            lines.extend(f"  {tag}: {count}" for tag, count in top_tags)
        self.emit(stats, "\n".join(lines))

    async def vectors_clear(self):
        cleared = await self.knowledge.clear_vectors()
        self.emit({"cleared": cleared}, "Vector database cleared" if cleared else "Vector database was already empty")

    async def sessions_list(self, limit: int = 20, active_only: bool = False):
        found = self.sessions.list_sessions(limit=limit, active_only=active_only)
        if not found:
            self.emit([], "No sessions found.")
            return
        lines = [f"Sessions ({len(found)}):\n"]
        for s in found:
            status = "active" if s.is_active else f"ended {s.ended_at.isoformat()}"
            lines.append(f"[{s.id}] {s.name or '(unnamed)'} - started {s.started_at.isoformat()}, {status}")
        self.emit([s.to_dict() for s in found], "\n".join(lines))

    async def sessions_show(self, session_id: int) -> bool:
        result = self.sessions.get_session(session_id)
        if not result:
            self.emit(None, f"No session found with ID: {session_id}")
            return False
        session = result["session"]
        lines = [
            f"# Session {session.id}" + (f": {session.name}" if session.name else ""),
            f"Started: {session.started_at.isoformat()}",
            f"Ended: {session.ended_at.isoformat() if session.ended_at else 'active'}",
            f"Messages: {result['message_count']}",
        ]
        if session.summary:
            lines.append(f"Summary: {session.summary}")
        lines.append("")
        lines.extend(f"[{m.role}] {m.content}" for m in result["messages"])
        data = {
            "session": session.to_dict(),
            "messages": [m.to_dict() for m in result["messages"]],
            "message_count": result["message_count"],
        }
        self.emit(data, "\n".join(lines))
        return True

    async def sessions_close_stale(self):
        closed = self.sessions.close_timed_out_sessions()
        self.emit({"closed": closed}, f"Closed {closed} inactive session(s)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pk",
        description="Personal Knowledge CLI - Manage your knowledge base",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--data-dir", type=Path, help="Data directory (overrides OPENCODE_PK_DATA_DIR)")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show log output")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    add_parser = subparsers.add_parser("add", help="Add a new knowledge entry")
    add_parser.add_argument("title", help="Entry title")
    add_parser.add_argument("content", help="Entry content")
    add_parser.add_argument("--source", "-s", help="Source URL or reference")
    add_parser.add_argument("--tags", "-t", help="Comma-separated tags")

    search_parser = subparsers.add_parser("search", help="Search knowledge entries")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--text", action="store_true", help="Use text search instead of semantic search")
    search_parser.add_argument("--limit", "-l", type=int, default=5, help="Maximum results (default: 5)")

    get_parser = subparsers.add_parser("get", help="Get a knowledge entry by ID")
    get_parser.add_argument("id", type=int, help="Entry ID")

    update_parser = subparsers.add_parser("update", help="Update a knowledge entry")
    update_parser.add_argument("id", type=int, help="Entry ID")
    update_parser.add_argument("--title", help="New title")
    update_parser.add_argument("--content", help="New content")
    update_parser.add_argument("--source", "-s", help="New source")
    update_parser.add_argument("--tags", "-t", help="New comma-separated tags (\"\" clears them)")

    delete_parser = subparsers.add_parser("delete", help="Delete a knowledge entry")
    delete_parser.add_argument("id", type=int, help="Entry ID")

    list_parser = subparsers.add_parser("list", help="List knowledge entries")
    list_parser.add_argument("--limit", "-l", type=int, default=20, help="Maximum entries (default: 20)")
    list_parser.add_argument("--offset", "-o", type=int, default=0, help="Offset for pagination")
    list_parser.add_argument("--tags", "-t", help="Filter by comma-separated tags")

    subparsers.add_parser("stats", help="Get knowledge base statistics")

    vectors_parser = subparsers.add_parser("vectors", help="Manage vector database")
    vectors_parser.add_argument("action", choices=["convert", "stats", "clear"], help="Vector action")

    sessions_parser = subparsers.add_parser("sessions", help="Inspect logging sessions")
    sessions_sub = sessions_parser.add_subparsers(dest="action", required=True)
    sessions_list = sessions_sub.add_parser("list", help="List sessions")
    sessions_list.add_argument("--limit", "-l", type=int, default=20, help="Maximum sessions (default: 20)")
    sessions_list.add_argument("--active", action="store_true", help="Only active sessions")
    sessions_show = sessions_sub.add_parser("show", help="Show a session and its messages")
    sessions_show.add_argument("id", type=int, help="Session ID")
    sessions_sub.add_parser("close-stale", help="Close sessions inactive for over an hour")

    return parser


async def dispatch(cli: KnowledgeCLI, args) -> bool:
    """Run one command; False means the target was not found"""
    if args.command == "add":
        await cli.add(args.title, args.content, source=args.source, tags=parse_tags(args.tags) or None)
    elif args.command == "search":
        await cli.search(args.query, limit=args.limit, text=args.text)
    elif args.command == "get":
        return await cli.get(args.id)
    elif args.command == "update":
        return await cli.update(
            args.id,
            title=args.title,
            content=args.content,
            source=args.source,
            tags=parse_tags(args.tags),
        )
    elif args.command == "delete":
        return await cli.delete(args.id)
    elif args.command == "list":
        await cli.list(limit=args.limit, offset=args.offset, tags=parse_tags(args.tags) or None)
    elif args.command == "stats":
        await cli.stats()
    elif args.command == "vectors":
        await getattr(cli, f"vectors_{args.action}")()
    elif args.command == "sessions":
        if args.action == "list":
            await cli.sessions_list(limit=args.limit, active_only=args.active)
        elif args.action == "show":
            return await cli.sessions_show(args.id)
        else:
            await cli.sessions_close_stale()
    return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = load_config(data_dir=args.data_dir)
    configure_logging(config["log_level"] if args.verbose else "WARNING")

    try:
        with KnowledgeContext(config=config) as context:
            found = asyncio.run(dispatch(KnowledgeCLI(context, as_json=args.json), args))
    except PersonalKnowledgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0 if found else 1


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
