"""Generation tools for the try-on MCP server"""

import logging
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from models.generation import GenerationMode
from tools.helpers import error_response

logger = logging.getLogger("TryOn_MCP")


def register_generation_tools(mcp: FastMCP, session_manager):
    """Register generation and quota tools with the MCP server"""

    async def _submit(mode: GenerationMode, subject_id, target_ids, style=None, face_id=None) -> dict:
        try:
            session = session_manager.current()
            orchestrator = session.orchestrator_for(mode)
            if target_ids is None:
                category = mode.profile.target_category
                target_ids = [r.asset_id for r in session.library_for(category).records(category) if not r.is_pending]
            request = await orchestrator.submit(mode, subject_id, target_ids, style=style, face_id=face_id)
            response = request.to_dict()
            if request.result_payload is not None:
                response["image_data_uri"] = request.result_payload
            return response
        except Exception as e:
            return error_response(e, f"generate_{mode.value}")

    @mcp.tool()
    async def generate_try_on(photo_id: str, garment_ids: List[str]) -> dict:
        """Generate an image of the user wearing one or more garments.

        Consumes one generation from the daily quota on success. The result is
        saved to the "try-on-result" category; if saving fails the image is still
        returned with a persistence warning.

        Args:
            photo_id: Asset ID of a "self-photo"
            garment_ids: Asset IDs of one or more "garment" items

        Returns:
            Request status, result asset and the generated image as a data URI.
        """
        return await _submit(GenerationMode.TRY_ON, photo_id, garment_ids)

    @mcp.tool()
    async def generate_catalog(mannequin_id: str, product_id: str, style: Optional[str] = None) -> dict:
        """Generate a catalog image of a product on a mannequin.

        Args:
            mannequin_id: Asset ID of a "mannequin" photo
            product_id: Asset ID of a "product" photo
            style: Optional description of the catalog look and background

        Returns:
            Request status, result asset and the generated image as a data URI.
        """
        return await _submit(GenerationMode.CATALOG, mannequin_id, [product_id], style=style)

    @mcp.tool()
    async def recommend_outfits(
        photo_id: str,
        garment_ids: Optional[List[str]] = None,
        face_id: Optional[str] = None,
        style_preferences: Optional[str] = None,
    ) -> dict:
        """Get outfit suggestions built from the user's own wardrobe.

        Consumes one generation from the daily quota. Recommendations are
        returned, not saved. Runs on the same slot as try-on generation.

        Args:
            photo_id: Asset ID of a full-body "self-photo"
            garment_ids: Asset IDs of "garment" items to choose from (default: the whole wardrobe)
            face_id: Asset ID of a close-up "self-photo" (default: photo_id)
            style_preferences: Free-text description of the user's taste

        Returns:
            Request status and a list of recommendations, each with a description,
            a preview image as a data URI and a confidence between 0 and 1.
        """
        return await _submit(
            GenerationMode.RECOMMEND, photo_id, garment_ids, style=style_preferences, face_id=face_id
        )

    @mcp.tool()
    def get_generation_status() -> dict:
        """Get the active or most recent generation request for each library.

        While a request is in flight, "progress" carries a status message.
        """
        try:
            session = session_manager.current()
            requests = {}
            for name, orchestrator in session.orchestrators.items():
                request = orchestrator.status()
                requests[name] = request.to_dict() if request else None
            return {"requests": requests}
        except Exception as e:
            return error_response(e, "get_generation_status")

    @mcp.tool()
    def cancel_generation(library: str = "library") -> dict:
        """Stop waiting for the active generation request.

        The remote generation cannot be stopped once submitted; its result is
        discarded when it arrives.

        Args:
            library: "library" for try-on and recommendation requests, "catalog" for catalog requests
        """
        try:
            session = session_manager.current()
            orchestrator = session.orchestrators.get(library)
            if orchestrator is None:
                return {"error": f"Unknown library '{library}'", "code": "invalid_argument"}
            request = orchestrator.cancel()
            if request is None:
                return {"cancelled": False, "message": "No generation request is running."}
            return {"cancelled": True, "request_id": request.request_id}
        except Exception as e:
            return error_response(e, "cancel_generation")

    @mcp.tool()
    async def get_quota() -> dict:
        """Get today's generation quota for the signed-in user."""
        try:
            session = session_manager.current()
            state = await session.quota.current(session.require_user())
            return state.to_dict()
        except Exception as e:
            return error_response(e, "get_quota")
