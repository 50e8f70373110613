"""Manager classes for the try-on MCP server"""

from managers.asset_library import AssetLibrary
from managers.generation_orchestrator import GenerationOrchestrator
from managers.quota_tracker import QuotaTracker
from managers.session_manager import SessionManager, UserSession
from managers.settings_manager import SettingsManager

__all__ = [
    "AssetLibrary",
    "GenerationOrchestrator",
    "QuotaTracker",
    "SessionManager",
    "SettingsManager",
    "UserSession",
]
