"""
Error envelope shared by exception handlers and middleware.

Errors are rendered as `{"ok": false, "error": {"code", "message", "details"?}}`.
With USE_SOFT_ERRORS the HTTP status is always 200 and clients read `ok`.
"""

from typing import Any, Optional

from fastapi import status
from fastapi.responses import JSONResponse

from chatstore.config import Settings
from chatstore.schemas import ErrorResponse


def error_response(
    settings: Settings,
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    """Render the error envelope; soft-error mode always answers 200."""
    body = ErrorResponse(error={"code": code, "message": message, "details": details})
    return JSONResponse(
        status_code=status.HTTP_200_OK if settings.USE_SOFT_ERRORS else status_code,
        content=body.model_dump(exclude_none=True),
    )
