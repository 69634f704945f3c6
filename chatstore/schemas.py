"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from chatstore.repository import Message


def format_created_at(value: datetime) -> str:
    """Render a timestamp as UTC ISO-8601 with a fixed six-digit fraction and a Z suffix."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# =============================================================================
# Pydantic Request Models
# =============================================================================

class PostMessageRequest(BaseModel):
    """
    Pydantic model for validating POST /api/messages bodies.

    String fields are trimmed before their lengths are checked.
    """
    channel_id: str = Field(..., min_length=1, max_length=100, description="Channel to append to")
    user_id: str = Field(..., min_length=1, max_length=100, description="Author of the message")
    content: str = Field(..., min_length=1, max_length=2000, description="Message text")
    consistency: Optional[str] = Field(None, description="Write consistency level, e.g. QUORUM")
    client_msg_id: Optional[str] = Field(
        None,
        min_length=1,
        max_length=100,
        description="Idempotency key; resends with the same key are deduplicated",
    )

    model_config = {
        "str_strip_whitespace": True,
        "json_schema_extra": {
            "examples": [
                {
                    "channel_id": "general",
                    "user_id": "u1",
                    "content": "Hello",
                    "consistency": "QUORUM",
                    "client_msg_id": "c-123",
                }
            ]
        },
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class PostMessageResponse(BaseModel):
    """Response model for an accepted or deduplicated append."""
    ok: bool = Field(default=True)
    message_id: Optional[str] = Field(None, description="Id of the new message")
    created_at: Optional[str] = Field(None, description="Creation time derived from message_id")
    deduped: Optional[bool] = Field(None, description="True when the client_msg_id was already used")
    warning: Optional[str] = Field(None, description="Consistency fallback warning")


class MessageItem(BaseModel):
    """A single message in a channel listing."""
    channel_id: str
    message_id: str
    user_id: str
    content: str
    created_at: str

    @classmethod
    def from_message(cls, message: Message) -> "MessageItem":
        return cls(
            channel_id=message.channel_id,
            message_id=str(message.message_id),
            user_id=message.user_id,
            content=message.content,
            created_at=format_created_at(message.created_at),
        )


class PageInfo(BaseModel):
    next_before: Optional[str] = Field(None, description="Pass as `before` to fetch the next older page")


class MessagesListResponse(BaseModel):
    """Response model for GET /api/channels/{channel_id}/messages."""
    ok: bool = Field(default=True)
    items: list[MessageItem] = Field(default_factory=list)
    page: PageInfo
    warning: Optional[str] = Field(None, description="Consistency fallback warning")


class ErrorBody(BaseModel):
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Error description")
    details: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    ok: bool = Field(default=False)
    error: ErrorBody


class HealthResponse(BaseModel):
    """Response model for liveness/readiness checks."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class ClusterHealthResponse(BaseModel):
    """Response model for GET /health."""
    ok: bool = Field(default=True)
    dc: str
    keyspace: str
