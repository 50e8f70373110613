"""Shared helper functions for tool implementations"""

import logging
from typing import Any, Dict

from errors import TryOnError
from models.asset import UploadReport

logger = logging.getLogger("TryOn_MCP")


def error_response(exc: Exception, action: str) -> Dict[str, Any]:
    """Convert an exception into a tool error dict.

    Domain errors carry their own message and code; anything else is logged
    with its traceback and reported generically.
    """
    if isinstance(exc, TryOnError):
        logger.warning(f"{action} failed: {exc}")
        return exc.to_dict()
    if isinstance(exc, ValueError):
        logger.warning(f"{action} rejected: {exc}")
        return {"error": str(exc), "code": "invalid_argument"}
    logger.exception(f"{action} failed unexpectedly")
    return {"error": f"{action} failed: {exc}", "code": "internal_error"}


def upload_report_response(category: str, report: UploadReport) -> Dict[str, Any]:
    response: Dict[str, Any] = {
        "category": category,
        "added": [record.to_dict() for record in report.added],
        "added_count": len(report.added),
        "failed_count": len(report.errors),
    }
    if report.errors:
        response["errors"] = [
            e.to_dict() if isinstance(e, TryOnError) else {"error": str(e), "code": "internal_error"}
            for e in report.errors
        ]
    return response
