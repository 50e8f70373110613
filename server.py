import argparse
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP

from managers.session_manager import SessionManager
from managers.settings_manager import SettingsManager
from tools.configuration import register_configuration_tools
from tools.generation import register_generation_tools
from tools.library import register_library_tools
from tools.session import register_session_tools

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("TryOn_MCP")


class AppContext:
    def __init__(self, settings_manager: SettingsManager, session_manager: SessionManager):
        self.settings_manager = settings_manager
        self.session_manager = session_manager


def create_server(settings_manager: Optional[SettingsManager] = None) -> FastMCP:
    """Build the MCP server with all tools registered"""
    settings_manager = settings_manager or SettingsManager()
    session_manager = SessionManager(settings_manager)

    @asynccontextmanager
    async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
        """Manage application lifecycle"""
        logger.info("Starting try-on MCP server...")
        try:
            yield AppContext(settings_manager, session_manager)
        finally:
            # Sessions hold open HTTP clients
            await session_manager.sign_out()
            logger.info("Shutting down try-on MCP server")

    mcp = FastMCP("TryOn_MCP_Server", lifespan=app_lifespan)
    register_session_tools(mcp, session_manager)
    register_library_tools(mcp, session_manager)
    register_generation_tools(mcp, session_manager)
    register_configuration_tools(mcp, settings_manager)
    return mcp


def main():
    parser = argparse.ArgumentParser(description="Virtual try-on MCP server")
    parser.add_argument(
        "--transport",
        choices=("stdio", "sse", "streamable-http"),
        default="streamable-http",
        help="MCP transport (default: streamable-http)",
    )
    args = parser.parse_args()
    create_server().run(transport=args.transport)


if __name__ == "__main__":
    main()
