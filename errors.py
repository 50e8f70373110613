"""Error types for the try-on MCP server"""

from typing import Optional


class TryOnError(Exception):
    """Base class for every error reported to the tool layer"""
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


# Validation-stage errors: raised before any network call, nothing to roll back

class MissingSelection(TryOnError):
    code = "missing_selection"


class InvalidSelection(MissingSelection):
    code = "invalid_selection"


class Unauthenticated(TryOnError):
    code = "unauthenticated"

    def __init__(self, message: str = "Please sign in to continue."):
        super().__init__(message)


class QuotaExceeded(TryOnError):
    code = "quota_exceeded"


class QuotaUnavailable(TryOnError):
    """Quota state is unknown; submissions are blocked until it can be fetched"""
    code = "quota_unavailable"


class RequestInProgress(TryOnError):
    code = "request_in_progress"


# Post-admission errors

class RequestCancelled(TryOnError):
    code = "request_cancelled"


class AssetUnavailable(TryOnError):
    code = "asset_unavailable"

    def __init__(self, category: str, asset_id: str, reason: str):
        super().__init__(f"Asset {asset_id} in '{category}' is unavailable: {reason}")
        self.category = category
        self.asset_id = asset_id


class GenerationFailed(TryOnError):
    code = "generation_failed"

    def __init__(self, message: str, upstream_message: Optional[str] = None):
        super().__init__(message)
        self.upstream_message = upstream_message


# Transport and store errors

class FetchFailed(TryOnError):
    code = "fetch_failed"

    def __init__(self, locator: str, reason: str, status_code: Optional[int] = None):
        shown = locator if len(locator) <= 120 else locator[:117] + "..."
        super().__init__(f"Failed to fetch image from {shown}: {reason}")
        self.locator = locator
        self.status_code = status_code


class StoreError(TryOnError):
    code = "store_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UploadFailed(TryOnError):
    code = "upload_failed"

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"Failed to upload '{file_name}': {reason}")
        self.file_name = file_name


class DeleteFailed(TryOnError):
    code = "delete_failed"

    def __init__(self, asset_id: str, reason: str):
        super().__init__(f"Failed to delete asset {asset_id}: {reason}")
        self.asset_id = asset_id


class AssetNotFound(TryOnError):
    code = "asset_not_found"

    def __init__(self, category: str, asset_id: str):
        super().__init__(f"Asset {asset_id} not found in '{category}'")
        self.category = category
        self.asset_id = asset_id
