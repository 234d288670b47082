"""Helpers for the uniform ``{success, message, data?, errors?}`` envelope."""

import math
from typing import Any, Dict, List, Optional


def error(message: str = "Internal Server Error", errors: Optional[List[Any]] = None) -> Dict[str, Any]:
    response: Dict[str, Any] = {
        "success": False,
        "message": message,
    }
    if errors:
        response["errors"] = errors
    return response


def get_pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    """Page metadata in the shape the chat UI consumes."""
    pages = math.ceil(total / limit) if limit else 0
    return {
        "current": page,
        "pages": pages,
        "total": total,
        "has_next": page < pages,
        "has_prev": page > 1,
    }
