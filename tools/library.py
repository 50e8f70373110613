"""Asset library tools for the try-on MCP server"""

import logging
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from data_uri import load_upload_file
from errors import UploadFailed
from models.asset import AssetCategory, UploadReport
from tools.helpers import error_response, upload_report_response

logger = logging.getLogger("TryOn_MCP")


def register_library_tools(mcp: FastMCP, session_manager):
    """Register asset library tools with the MCP server"""

    @mcp.tool()
    def list_assets(category: str) -> dict:
        """List the confirmed assets in one category.

        Args:
            category: One of "self-photo", "garment", "try-on-result",
                "mannequin", "product", "catalog-result"

        Returns:
            Assets in upload order (oldest first) with asset_id, display_url and file_name.
        """
        try:
            session = session_manager.current()
            library = session.library_for(category)
            records = library.records(category)
            return {
                "category": AssetCategory.parse(category).value,
                "loaded": library.is_loaded(category),
                "assets": [record.to_dict() for record in records],
                "count": len(records),
            }
        except Exception as e:
            return error_response(e, "list_assets")

    @mcp.tool()
    async def refresh_assets(category: Optional[str] = None) -> dict:
        """Reload assets from remote storage, replacing the local view.

        Args:
            category: Category to reload; omit to reload every category

        Returns:
            Per-category counts, plus errors for categories that could not be loaded.
        """
        try:
            session = session_manager.current()
            if category:
                records = await session.library_for(category).load(category)
                return {"categories": {AssetCategory.parse(category).value: len(records)}}
            errors = await session.open()
            counts = {
                name: len(session.library_for(name).records(name))
                for name, error in errors.items() if error is None
            }
            response = {"categories": counts}
            failed = {name: str(error) for name, error in errors.items() if error is not None}
            if failed:
                response["errors"] = failed
            return response
        except Exception as e:
            return error_response(e, "refresh_assets")

    @mcp.tool()
    async def upload_assets(category: str, file_paths: List[str]) -> dict:
        """Upload local image files into a category.

        Each file is uploaded independently: files that fail are reported and
        skipped, the rest are still added.

        Args:
            category: Target category (e.g., "self-photo" or "garment")
            file_paths: Paths to image files on the server's filesystem

        Returns:
            Added assets and per-file errors.
        """
        try:
            session = session_manager.current()
            library = session.library_for(category)
            uploads = []
            unreadable = []
            for path in file_paths:
                try:
                    uploads.append(load_upload_file(path))
                except OSError as e:
                    unreadable.append(UploadFailed(str(path), f"cannot read file ({e})"))
            report = await library.add(category, uploads) if uploads else UploadReport()
            report.errors.extend(unreadable)
            return upload_report_response(AssetCategory.parse(category).value, report)
        except Exception as e:
            return error_response(e, "upload_assets")

    @mcp.tool()
    async def delete_asset(category: str, asset_id: str) -> dict:
        """Delete an asset from remote storage and the library.

        The asset stays in the library if remote deletion fails.

        Args:
            category: Category the asset belongs to
            asset_id: Asset ID from list_assets
        """
        try:
            session = session_manager.current()
            record = await session.library_for(category).remove(category, asset_id)
            return {"success": True, "deleted": record.to_dict()}
        except Exception as e:
            return error_response(e, "delete_asset")
