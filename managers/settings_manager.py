"""Settings management for the try-on server"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("TryOn_MCP")

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "tryon-mcp"
CONFIG_FILE = CONFIG_DIR / "config.json"
ENV_PREFIX = "TRYON_MCP_"

HARDCODED_SETTINGS: Dict[str, Any] = {
    "drive_api_url": "https://www.googleapis.com/drive/v3",
    "drive_upload_url": "https://www.googleapis.com/upload/drive/v3",
    "drive_root_folder": "TryOn Studio",
    "thumbnail_size": 1024,
    "generation_url": "http://localhost:3000/api",
    "generation_api_key": None,
    "generation_timeout": 180.0,
    "quota_url": "http://localhost:3000/api/quota",
    "daily_generation_limit": 10,
    "quota_staleness_seconds": 60.0,
    "http_timeout": 30.0,
    "max_upload_dim": None,
}
INT_SETTINGS = {"thumbnail_size", "daily_generation_limit", "max_upload_dim"}
FLOAT_SETTINGS = {"generation_timeout", "quota_staleness_seconds", "http_timeout"}


def _coerce(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in INT_SETTINGS:
        return int(value)
    if key in FLOAT_SETTINGS:
        return float(value)
    return str(value)


class SettingsManager:
    """Resolves settings with precedence: runtime > config file > env > hardcoded"""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or CONFIG_FILE
        self._runtime: Dict[str, Any] = {}
        self._config = self._load_config_settings()

    def _load_config_settings(self) -> Dict[str, Any]:
        """Load settings from config file"""
        settings: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
                for key, value in config.get("settings", {}).items():
                    if key in HARDCODED_SETTINGS:
                        settings[key] = _coerce(key, value)
                    else:
                        logger.warning(f"Ignoring unknown setting '{key}' in {self.config_file}")
            except (json.JSONDecodeError, IOError, ValueError, AttributeError) as e:
                logger.warning(f"Failed to load config file {self.config_file}: {e}")
        return settings

    def _get_env_settings(self) -> Dict[str, Any]:
        """Load settings from TRYON_MCP_* environment variables"""
        settings: Dict[str, Any] = {}
        for key in HARDCODED_SETTINGS:
            raw = os.getenv(ENV_PREFIX + key.upper())
            if raw is None or raw == "":
                continue
            try:
                settings[key] = _coerce(key, raw)
            except ValueError:
                logger.warning(f"Ignoring invalid value for {ENV_PREFIX + key.upper()}: {raw!r}")
        return settings

    def get(self, key: str) -> Any:
        if key not in HARDCODED_SETTINGS:
            raise KeyError(f"Unknown setting '{key}'")
        if key in self._runtime:
            return self._runtime[key]
        if key in self._config:
            return self._config[key]
        env_settings = self._get_env_settings()
        if key in env_settings:
            return env_settings[key]
        return HARDCODED_SETTINGS[key]

    def get_all(self, redact: bool = True) -> Dict[str, Any]:
        """Get all effective settings (merged from all sources)"""
        result = dict(HARDCODED_SETTINGS)
        result.update(self._get_env_settings())
        result.update(self._config)
        result.update(self._runtime)
        if redact and result.get("generation_api_key"):
            result["generation_api_key"] = "***"
        return result

    def set_settings(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Set runtime settings. Returns validation errors if any."""
        errors = []
        coerced = {}
        for key, value in values.items():
            if key not in HARDCODED_SETTINGS:
                errors.append(f"Unknown setting '{key}'")
                continue
            try:
                coerced[key] = _coerce(key, value)
            except (TypeError, ValueError):
                errors.append(f"Invalid value for '{key}': {value!r}")
        if errors:
            return {"errors": errors}

        self._runtime.update(coerced)
        logger.info(f"Updated runtime settings: {sorted(coerced)}")
        return {"success": True, "updated": coerced}

    def persist_settings(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Persist settings to config file"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        config: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
            except (json.JSONDecodeError, IOError):
                config = {}

        config.setdefault("settings", {}).update(values)

        try:
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
            self._config = self._load_config_settings()
            return {"success": True, "persisted": values}
        except IOError as e:
            return {"error": f"Failed to write config file: {e}"}
