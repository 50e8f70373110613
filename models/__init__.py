"""Data models for the try-on MCP server"""

from models.asset import (
    CATALOG_GROUP,
    LIBRARY_GROUP,
    AssetCategory,
    AssetRecord,
    CategoryGroup,
    RemoteItem,
    UploadFile,
    UploadReport,
)
from models.generation import (
    GenerationMode,
    GenerationRequest,
    GenerationStatus,
    GenerationWarning,
    OutfitRecommendation,
    QuotaState,
)

__all__ = [
    "AssetCategory",
    "AssetRecord",
    "CATALOG_GROUP",
    "CategoryGroup",
    "GenerationMode",
    "GenerationRequest",
    "GenerationStatus",
    "GenerationWarning",
    "LIBRARY_GROUP",
    "OutfitRecommendation",
    "QuotaState",
    "RemoteItem",
    "UploadFile",
    "UploadReport",
]
