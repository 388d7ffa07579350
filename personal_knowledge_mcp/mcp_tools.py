"""
MCP Tool Definitions and Handlers for Personal Knowledge MCP
Copyright 2025 Jurden Bruce

Tool responses are human-readable text. Failures are reported in-band as
text starting with "Error:".
"""

import logging
from typing import List, Dict, Any, Optional

from mcp.types import Tool, TextContent

from .errors import SessionError, VectorIndexNotInitializedError

logger = logging.getLogger("personal-knowledge.mcp-tools")

PREVIEW_CHARS = 200


def get_tool_definitions() -> List[Tool]:
    """Return list of available MCP tools"""
    return [
        Tool(
            name="store_knowledge",
            description="Store a new knowledge entry in your personal knowledge base. Use this to save important information, notes, or learnings for later retrieval.",
            inputSchema={
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Short descriptive title for the entry"},
                    "content": {"type": "string", "description": "The full content/text of the knowledge entry"},
                    "source": {"type": "string", "description": "Optional source URL or reference"},
                    "tags": {"type": "array", "items": {"type": "string"}, "description": "Optional tags for categorization (e.g. [\"python\", \"patterns\"])"},
                },
                "required": ["title", "content"],
            },
        ),
        Tool(
            name="search_knowledge",
            description="Search your personal knowledge base using semantic similarity. Returns entries most similar in meaning to your query.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query to find similar knowledge entries"},
                    "limit": {"type": "integer", "description": "Maximum number of results", "default": 5},
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="search_knowledge_text",
            description="Search knowledge entries by keyword (text-based, no semantic similarity). Good for exact matches. Words shorter than 3 characters are ignored.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Keywords to search for in titles and content"},
                    "limit": {"type": "integer", "description": "Maximum number of results", "default": 10},
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="get_knowledge",
            description="Get a specific knowledge entry by its ID",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "integer", "description": "The ID of the knowledge entry"},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="update_knowledge",
            description="Update an existing knowledge entry. Only the provided fields change; the entry is re-indexed for semantic search.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "integer", "description": "The ID of the entry to update"},
                    "title": {"type": "string", "description": "New title"},
                    "content": {"type": "string", "description": "New content"},
                    "source": {"type": "string", "description": "New source"},
                    "tags": {"type": "array", "items": {"type": "string"}, "description": "New tags (replaces existing)"},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="delete_knowledge",
            description="Delete a knowledge entry from the database and the vector index",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "integer", "description": "The ID of the entry to delete"},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="list_knowledge",
            description="List knowledge entries, newest first, optionally filtered by tags (entries with ANY of the tags match)",
            inputSchema={
                "type": "object",
                "properties": {
                    "limit": {"type": "integer", "description": "Maximum number of entries", "default": 20},
                    "offset": {"type": "integer", "description": "Offset for pagination", "default": 0},
                    "tags": {"type": "array", "items": {"type": "string"}, "description": "Filter by tags"},
                },
            },
        ),
        Tool(
            name="get_knowledge_stats",
            description="Get knowledge base statistics (entry count, tags, vector index size)",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="start_logging_session",
            description="Start a new session for logging conversation messages. Any session still open is closed first.",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Optional session name"},
                },
            },
        ),
        Tool(
            name="log_message",
            description="Log a conversation message to the current session (or the given session). Messages are indexed for semantic search.",
            inputSchema={
                "type": "object",
                "properties": {
                    "role": {"type": "string", "enum": ["user", "agent"], "description": "Who wrote the message"},
                    "content": {"type": "string", "description": "Message text"},
                    "session_id": {"type": "integer", "description": "Session ID (defaults to the current session)"},
                },
                "required": ["role", "content"],
            },
        ),
        Tool(
            name="search_session",
            description="Semantic search over the messages of one session",
            inputSchema={
                "type": "object",
                "properties": {
                    "session_id": {"type": "integer", "description": "Session to search"},
                    "query": {"type": "string", "description": "Search query"},
                    "limit": {"type": "integer", "description": "Maximum number of results", "default": 5},
                },
                "required": ["session_id", "query"],
            },
        ),
        Tool(
            name="search_all_sessions",
            description="Semantic search over messages from all sessions",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query"},
                    "limit": {"type": "integer", "description": "Maximum number of results", "default": 10},
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="list_sessions",
            description="List logging sessions, most recent first",
            inputSchema={
                "type": "object",
                "properties": {
                    "limit": {"type": "integer", "description": "Maximum number of sessions", "default": 20},
                    "offset": {"type": "integer", "description": "Offset for pagination", "default": 0},
                    "active_only": {"type": "boolean", "description": "Only list active sessions", "default": False},
                },
            },
        ),
        Tool(
            name="get_session",
            description="Get a session with all of its messages",
            inputSchema={
                "type": "object",
                "properties": {
                    "session_id": {"type": "integer", "description": "Session ID"},
                },
                "required": ["session_id"],
            },
        ),
        Tool(
            name="end_session",
            description="End the current session (or the given session), optionally storing a summary",
            inputSchema={
                "type": "object",
                "properties": {
                    "session_id": {"type": "integer", "description": "Session ID (defaults to the current session)"},
                    "summary": {"type": "string", "description": "Optional summary of the session"},
                },
            },
        ),
    ]


def _text(text: str) -> List[TextContent]:
    return [TextContent(type="text", text=text)]


def _format_tags(tags: Optional[List[str]]) -> str:
    return ", ".join(tags) if tags else ""


def _format_search_results(results, heading: str) -> str:
    output = f"## {heading}\n\n"
    for i, r in enumerate(results, 1):
        output += f"### {i}. {r.title} ({round(r.score * 100)}% similar)\n"
        output += f"**ID:** {r.id}\n"
        if r.tags:
            output += f"**Tags:** {_format_tags(r.tags)}\n"
        output += f"\n{r.content_preview}\n\n---\n\n"
    return output


def _format_session_line(session) -> str:
    status = "active" if session.is_active else f"ended {session.ended_at.isoformat()}"
    name = f" {session.name}" if session.name else ""
    return f"[{session.id}]{name} (started {session.started_at.isoformat()}, {status})"


async def handle_tool_call(name: str, arguments: Dict[str, Any], knowledge, sessions) -> List[TextContent]:
    """
    Handle MCP tool calls

    Args:
        name: Tool name
        arguments: Tool arguments
        knowledge: KnowledgeService instance
        sessions: SessionService instance

    Returns:
        List with a single TextContent
    """
    arguments = arguments or {}
    try:
        if name == "store_knowledge":
            result = await knowledge.add_knowledge(
                title=arguments["title"],
                content=arguments["content"],
                source=arguments.get("source"),
                tags=arguments.get("tags"),
            )
            status = ("Indexed for semantic search" if result["vectorized"]
                      else "Saved to database only (vector indexing failed)")
            return _text(f"Stored knowledge entry #{result['id']}: \"{arguments['title']}\"\n{status}")

        elif name == "search_knowledge":
            try:
                results = await knowledge.search_knowledge(arguments["query"], limit=arguments.get("limit", 5))
            except VectorIndexNotInitializedError:
                return _text("Vector database not initialized. Use search_knowledge_text for keyword search, or add some entries first.")
            if not results:
                return _text("No similar knowledge entries found.")
            return _text(_format_search_results(results, f"Found {len(results)} similar entries:"))

        elif name == "search_knowledge_text":
            query = arguments["query"]
            results = knowledge.search_knowledge_text(query, limit=arguments.get("limit", 10))
            if not results:
                return _text(f"No results found for: \"{query}\"")
            formatted = "\n\n---\n\n".join(
                f"**{r.title}** (ID: {r.id})\n{r.content[:PREVIEW_CHARS]}"
                + (f"\nTags: {_format_tags(r.tags)}" if r.tags else "")
                for r in results
            )
            return _text(f"Found {len(results)} result(s) for \"{query}\":\n\n{formatted}")

        elif name == "get_knowledge":
            entry = knowledge.get_knowledge(arguments["id"])
            if not entry:
                return _text(f"No entry found with ID: {arguments['id']}")
            text = (
                f"# {entry.title}\n\n**ID:** {entry.id}\n"
                f"**Created:** {entry.created_at.isoformat()}\n**Updated:** {entry.updated_at.isoformat()}"
            )
            if entry.source:
                text += f"\n**Source:** {entry.source}"
            if entry.tags:
                text += f"\n**Tags:** {_format_tags(entry.tags)}"
            return _text(f"{text}\n\n---\n\n{entry.content}")

        elif name == "update_knowledge":
            updates = {
                key: arguments[key]
                for key in ("title", "content", "source", "tags")
                if arguments.get(key) is not None
            }
            if not updates:
                return _text("No updates provided")
            result = await knowledge.update_knowledge(arguments["id"], **updates)
            if not result["success"]:
                return _text(f"No entry found with ID: {arguments['id']}")
            status = ("Re-indexed for semantic search" if result["vectorized"]
                      else "Database updated (vector re-indexing failed)")
            return _text(f"Updated entry #{arguments['id']}\n{status}")

        elif name == "delete_knowledge":
            if not await knowledge.delete_knowledge(arguments["id"]):
                return _text(f"No entry found with ID: {arguments['id']}")
            return _text(f"Deleted entry #{arguments['id']}")

        elif name == "list_knowledge":
            entries = knowledge.list_knowledge(
                limit=arguments.get("limit", 20),
                offset=arguments.get("offset", 0),
                tags=arguments.get("tags"),
            )
            if not entries:
                return _text("No entries found.")
            lines = [
                f"[{e.id}] {e.title}" + (f" [{_format_tags(e.tags)}]" if e.tags else "")
                for e in entries
            ]
            return _text(f"Knowledge Entries ({len(entries)}):\n\n" + "\n".join(lines))

        elif name == "get_knowledge_stats":
            stats = await knowledge.get_knowledge_stats()
            db, vectors = stats["database"], stats["vectors"]
            oldest = db["oldest_entry"].isoformat() if db["oldest_entry"] else "N/A"
            newest = db["newest_entry"].isoformat() if db["newest_entry"] else "N/A"
            text = (
                "## Knowledge Base Stats\n\n"
                f"**Total Entries:** {db['total_entries']}\n"
                f"**Vectors Indexed:** {vectors['total_vectors'] if vectors['total_vectors'] is not None else 'unavailable'}\n"
                f"**Oldest:** {oldest}\n"
                f"**Newest:** {newest}\n"
            )
            top_tags = sorted(db["tag_counts"].items(), key=lambda item: item[1], reverse=True)[:10]
            if top_tags:
                text += "\n**Top Tags:**\n" + "\n".join(f"- {tag}: {count}" for tag, count in top_tags)
            return _text(text)

        elif name == "start_logging_session":
            result = sessions.start_logging_session(arguments.get("name"))
            session = result["session"]
            label = f" \"{session.name}\"" if session.name else ""
            return _text(f"Started session #{result['session_id']}{label}\nMessages will be logged to this session.")

        elif name == "log_message":
            result = await sessions.log_message(
                role=arguments["role"],
                content=arguments["content"],
                session_id=arguments.get("session_id"),
            )
            status = "indexed for search" if result["indexed"] else "saved to database only"
            return _text(f"Logged message #{result['message_id']} ({status})")

        elif name == "search_session":
            try:
                results = await sessions.search_session(
                    arguments["session_id"], arguments["query"], limit=arguments.get("limit", 5)
                )
            except VectorIndexNotInitializedError:
                return _text("Vector database not initialized. No session messages have been indexed yet.")
            if not results:
                return _text(f"No matching messages found in session {arguments['session_id']}.")
            return _text(_format_search_results(results, f"Found {len(results)} message(s) in session {arguments['session_id']}:"))

        elif name == "search_all_sessions":
            try:
                results = await sessions.search_all_sessions(arguments["query"], limit=arguments.get("limit", 10))
            except VectorIndexNotInitializedError:
                return _text("Vector database not initialized. No session messages have been indexed yet.")
            if not results:
                return _text("No matching session messages found.")
            return _text(_format_search_results(results, f"Found {len(results)} session message(s):"))

        elif name == "list_sessions":
            found = sessions.list_sessions(
                limit=arguments.get("limit", 20),
                offset=arguments.get("offset", 0),
                active_only=arguments.get("active_only", False),
            )
            if not found:
                return _text("No sessions found.")
            return _text(f"Sessions ({len(found)}):\n\n" + "\n".join(_format_session_line(s) for s in found))

        elif name == "get_session":
            result = sessions.get_session(arguments["session_id"])
            if not result:
                return _text(f"No session found with ID: {arguments['session_id']}")
            session = result["session"]
            text = f"# Session {_format_session_line(session)}\n\n**Messages:** {result['message_count']}\n"
            if session.summary:
                text += f"**Summary:** {session.summary}\n"
            for message in result["messages"]:
                text += f"\n[{message.created_at.isoformat()}] **{message.role}:** {message.content}"
            return _text(text)

        elif name == "end_session":
            result = sessions.end_session(arguments.get("session_id"), arguments.get("summary"))
            if not result["success"]:
                return _text("No active session to end.")
            return _text(f"Session ended ({result['message_count']} messages logged)")

        else:
            return _text(f"Error: Unknown tool: {name}")

    except SessionError as e:
        logger.warning(f"Session precondition failed in {name}: {e}")
        return _text(f"Error: {e}")
    except Exception as e:
        logger.error(f"Tool execution error: {name}: {e}", exc_info=True)
        return _text(f"Error: {e}")
