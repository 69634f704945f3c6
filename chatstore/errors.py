"""
Error taxonomy for the message store.

Every error carries an API error code so the HTTP layer can render the
`{"ok": false, "error": {...}}` envelope without inspecting the exception type.
"""

from typing import Any, Optional


class ChatStoreError(Exception):
    """Base class for all store errors."""

    code = "INTERNAL"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ChatStoreError):
    """Malformed input detected before any storage call."""

    code = "BAD_REQUEST"


class StorageUnavailable(ChatStoreError):
    """The requested consistency level could not be satisfied, or the database is unreachable."""

    code = "UNAVAILABLE"


class NotInitialized(ChatStoreError):
    """An operation ran before the database handle was connected."""

    code = "NOT_INITIALIZED"

    def __init__(self, message: str = "Database not initialized"):
        super().__init__(message)


class MalformedRecord(ChatStoreError):
    """A stored row could not be decoded into a Message."""

    code = "INTERNAL"
