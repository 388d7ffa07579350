#!/usr/bin/env python3
"""
MCP Server for Personal Knowledge MCP
Copyright 2025 Jurden Bruce

Exposes the knowledge base and session memory over the Model Context
Protocol (stdio transport).
"""

import sys
import os
import asyncio
import logging
import traceback

from mcp.server.models import InitializationOptions
from mcp.server import NotificationOptions, Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from . import __version__
from .config import load_config
from .context import KnowledgeContext
from .mcp_tools import get_tool_definitions, handle_tool_call
from .services import KnowledgeService, SessionService
from .utils import configure_logging

logger = logging.getLogger("personal-knowledge")

SERVER_NAME = "personal-knowledge-mcp"


def create_server(knowledge: KnowledgeService, sessions: SessionService) -> Server:
    """Build the MCP server bound to the given services"""
    app = Server(SERVER_NAME)

    @app.list_tools()
    async def handle_list_tools() -> list[Tool]:
        """List available knowledge and session tools"""
        return get_tool_definitions()

    @app.call_tool()
    async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
        logger.info(f"Tool call: {name}")
        return await handle_tool_call(name, arguments, knowledge, sessions)

    return app


async def main():
    """Main entry point"""
    # Keep stray library output off the protocol stream while starting up
    original_stdout_fd = os.dup(1)
    os.dup2(2, 1)

    context = None
    try:
        config = load_config()
        configure_logging(config["log_level"])

        logger.info(f"Initializing knowledge store at {config['data_dir']}")
        context = KnowledgeContext(config=config).initialize()
        knowledge = KnowledgeService(context)
        sessions = SessionService(context)

        closed = sessions.close_timed_out_sessions()
        if closed:
            logger.info(f"Closed {closed} stale session(s) on startup")

        app = create_server(knowledge, sessions)

        # Restore stdout for MCP communication
        os.dup2(original_stdout_fd, 1)

        logger.info("Starting MCP server...")
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=app.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        logger.error(traceback.format_exc())
        sys.exit(1)
    finally:
        os.close(original_stdout_fd)
        if context:
            context.shutdown()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
