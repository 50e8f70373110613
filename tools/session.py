"""Session tools for the try-on MCP server"""

import logging

from mcp.server.fastmcp import FastMCP

from tools.helpers import error_response

logger = logging.getLogger("TryOn_MCP")


def register_session_tools(mcp: FastMCP, session_manager):
    """Register sign-in/sign-out tools with the MCP server"""

    @mcp.tool()
    async def sign_in(user_id: str, access_token: str) -> dict:
        """Start a session and load the user's assets from remote storage.

        Any existing session is signed out first.

        Args:
            user_id: Stable identity from the authentication provider
            access_token: Bearer token valid for remote storage and the quota service
        """
        try:
            session = await session_manager.sign_in(user_id, access_token)
            response = {"signed_in": True, "user_id": session.user_id, "categories": {}}
            for name, error in session.load_errors.items():
                if error is None:
                    response["categories"][name] = len(session.library_for(name).records(name))
                else:
                    response.setdefault("errors", {})[name] = str(error)
            return response
        except Exception as e:
            return error_response(e, "sign_in")

    @mcp.tool()
    async def sign_out() -> dict:
        """End the session and discard all locally cached assets and quota state."""
        try:
            return {"signed_out": await session_manager.sign_out()}
        except Exception as e:
            return error_response(e, "sign_out")

    @mcp.tool()
    def get_session() -> dict:
        """Report whether a user is signed in."""
        if not session_manager.signed_in:
            return {"signed_in": False}
        return {"signed_in": True, "user_id": session_manager.current().user_id}
