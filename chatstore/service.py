"""
The two store operations exposed to the HTTP layer.

- append_message: resolve consistency, claim the client key (when given),
  then generate an id and write the message.
- list_messages: resolve consistency, validate the page request, read one
  page newest-first.

Inputs are expected to be structurally valid already (lengths, presence);
the request schemas in schemas.py take care of that.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from chatstore import dedup, ids, pagination, repository
from chatstore.config import Settings
from chatstore.consistency import resolve
from chatstore.ids import TimeUuidGenerator
from chatstore.repository import Message
from chatstore.storage import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Accepted:
    message_id: uuid.UUID
    created_at: datetime
    warning: Optional[str] = None


@dataclass(frozen=True)
class Deduplicated:
    warning: Optional[str] = None


@dataclass(frozen=True)
class MessageList:
    items: list[Message]
    next_before: Optional[uuid.UUID]
    warning: Optional[str] = None


AppendResult = Union[Accepted, Deduplicated]


def append_message(
    db: Database,
    generator: TimeUuidGenerator,
    settings: Settings,
    channel_id: str,
    user_id: str,
    content: str,
    client_key: Optional[str] = None,
    consistency: Optional[str] = None,
) -> AppendResult:
    """
    Append a message to a channel, at most once per client key.

    Returns:
        Accepted with the new id, or Deduplicated when the client key was
        already claimed in this channel

    Raises:
        NotInitialized: if the database handle is not connected
        StorageUnavailable: if storage cannot serve the write
    """
    resolution = resolve(consistency, settings.DEFAULT_WRITE_CONSISTENCY)

    with db.session() as session:
        if client_key is not None:
            if not dedup.try_claim(db, session, channel_id, client_key, resolution.level):
                return Deduplicated(warning=resolution.warning)

        message_id = generator.next()
        created_at = ids.timestamp(message_id)
        try:
            repository.append(
                db,
                session,
                channel_id,
                message_id,
                user_id,
                content,
                created_at,
                resolution.level,
            )
        except Exception:
            if client_key is not None:
                logger.error(
                    f"Message write failed after claiming client key; key is now orphaned: "
                    f"channel={channel_id}, key={client_key}"
                )
            raise

    logger.info(f"Message accepted: channel={channel_id}, id={message_id}")
    return Accepted(message_id=message_id, created_at=created_at, warning=resolution.warning)


def list_messages(
    db: Database,
    settings: Settings,
    channel_id: str,
    limit: Any = pagination.DEFAULT_LIMIT,
    before: Optional[str] = None,
    after: Optional[str] = None,
    consistency: Optional[str] = None,
) -> MessageList:
    """
    List one page of a channel's messages, newest first.

    Raises:
        ValidationError: bad limit or cursors (no storage call is made)
        NotInitialized: if the database handle is not connected
        StorageUnavailable: if storage cannot serve the read
    """
    request = pagination.build_page_request(limit=limit, before=before, after=after)
    resolution = resolve(consistency, settings.DEFAULT_READ_CONSISTENCY)

    with db.session() as session:
        page = pagination.fetch_page(db, session, channel_id, request, resolution.level)

    return MessageList(items=page.items, next_before=page.next_before, warning=resolution.warning)
