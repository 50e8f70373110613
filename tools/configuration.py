"""Configuration tools for the try-on MCP server"""

from typing import Any, Dict

from mcp.server.fastmcp import FastMCP


def register_configuration_tools(mcp: FastMCP, settings_manager):
    """Register configuration tools with the MCP server"""

    @mcp.tool()
    def get_settings() -> dict:
        """Get current effective settings.

        Returns merged settings from all sources (runtime, config, env, hardcoded).
        Secrets are redacted. Changes apply to sessions started after the change.
        """
        return settings_manager.get_all()

    @mcp.tool()
    def set_settings(values: Dict[str, Any], persist: bool = False) -> dict:
        """Set runtime settings.

        Args:
            values: Dict of settings to change (e.g., {"daily_generation_limit": 5, "thumbnail_size": 800})
            persist: If True, write settings to the config file (~/.config/tryon-mcp/config.json).
                Otherwise, changes are ephemeral.

        Returns:
            Success status and any validation errors (e.g., unknown keys).
        """
        result = settings_manager.set_settings(values)
        if "errors" in result:
            return {"success": False, "errors": result["errors"]}
        if persist:
            persist_result = settings_manager.persist_settings(result["updated"])
            if "error" in persist_result:
                return {"success": False, "errors": [persist_result["error"]]}
        return {"success": True, "updated": result["updated"]}
