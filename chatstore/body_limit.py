"""
Request body size cap.

Bodies are checked twice: a declared Content-Length over the cap is answered
before the app runs, and streamed bodies without one are counted as they are
received and cut off once they pass the cap.
"""

import logging

from fastapi import HTTPException, status
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from chatstore.config import Settings
from chatstore.responses import error_response

logger = logging.getLogger(__name__)

TOO_LARGE_MESSAGE = "Request body too large"


class BodySizeLimitMiddleware:
    """Reject request bodies larger than settings.REQUEST_BODY_LIMIT with a 413."""

    def __init__(self, app: ASGIApp, settings: Settings):
        self.app = app
        self.settings = settings
        self.max_bytes = settings.REQUEST_BODY_LIMIT

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = _content_length(scope)
        if declared is not None and declared > self.max_bytes:
            logger.warning(f"Rejected body of {declared} bytes, limit is {self.max_bytes}")
            response = error_response(
                self.settings,
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                "PAYLOAD_TOO_LARGE",
                TOO_LARGE_MESSAGE,
                {"limit": self.max_bytes},
            )
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    # Raised inside the route's body read, so the HTTPException handler renders it
                    raise HTTPException(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, TOO_LARGE_MESSAGE)
            return message

        await self.app(scope, limited_receive, send)


def _content_length(scope: Scope):
    for name, value in scope.get("headers", []):
        if name == b"content-length":
            try:
                return int(value)
            except ValueError:
                return None
    return None
