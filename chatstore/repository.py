"""
Channel-partitioned, append-only message storage.

Rows are keyed by (channel_id, message_id) and scanned through the derived
sort_key column, which follows message id order. Every row read back is
decoded into a frozen Message; rows that do not decode raise MalformedRecord
instead of leaking loosely-typed values to callers.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatstore import ids
from chatstore.consistency import ConsistencyLevel
from chatstore.errors import ChatStoreError, MalformedRecord, ValidationError
from chatstore.models import MessageRow
from chatstore.storage import Database, storage_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    channel_id: str
    message_id: uuid.UUID
    user_id: str
    content: str
    created_at: datetime


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def decode_message(row: MessageRow) -> Message:
    """
    Turn a stored row into a Message.

    created_at is re-derived from the message id; a stored value that
    disagrees with the id marks the row as malformed.

    Raises:
        MalformedRecord: if any field fails to decode
    """
    try:
        message_id = ids.parse_id(row.message_id)
        created_at = ids.timestamp(message_id)
        if not row.channel_id or not row.user_id or not row.content:
            raise MalformedRecord("missing required field")
        if row.sort_key != ids.sort_key(message_id):
            raise MalformedRecord("sort_key does not match message_id")
        if row.created_at is None or _as_utc(row.created_at) != created_at:
            raise MalformedRecord("created_at does not match message_id")
    except ChatStoreError as e:
        logger.error(f"Malformed message row: channel={row.channel_id}, id={row.message_id}: {e}")
        raise MalformedRecord(
            f"Stored message {row.message_id!r} is malformed: {e}",
            details={"channel_id": row.channel_id, "message_id": row.message_id},
        ) from e

    return Message(
        channel_id=row.channel_id,
        message_id=message_id,
        user_id=row.user_id,
        content=row.content,
        created_at=created_at,
    )


def append(
    db: Database,
    session: Session,
    channel_id: str,
    message_id: uuid.UUID,
    user_id: str,
    content: str,
    created_at: datetime,
    level: ConsistencyLevel,
) -> None:
    """
    Persist a message.

    No uniqueness check is made; message ids come from the identifier
    generator and are unique by construction.

    Raises:
        StorageUnavailable: if the level cannot be met or the database is unreachable
    """
    db.require(level)
    logger.info(f"Appending message: channel={channel_id}, id={message_id}, level={level.value}")

    row = MessageRow(
        channel_id=channel_id,
        message_id=str(message_id),
        sort_key=ids.sort_key(message_id),
        user_id=user_id,
        content=content,
        created_at=created_at,
    )
    with storage_errors("message append"):
        try:
            session.add(row)
            session.commit()
        except Exception:
            session.rollback()
            raise


def read(
    db: Database,
    session: Session,
    channel_id: str,
    limit: int,
    before: Optional[uuid.UUID] = None,
    after: Optional[uuid.UUID] = None,
    level: ConsistencyLevel = ConsistencyLevel.ONE,
) -> list[Message]:
    """
    Read messages from one channel, newest first.

    Args:
        channel_id: Channel to read
        limit: Maximum number of messages
        before: Only messages with an id strictly lower than this
        after: Only the messages nearest above this id (still returned newest first)
        level: Consistency level for the read

    Raises:
        ValidationError: if both before and after are given
        StorageUnavailable: if the level cannot be met or the database is unreachable
        MalformedRecord: if a stored row does not decode
    """
    if before is not None and after is not None:
        raise ValidationError("Cannot use both before and after parameters simultaneously")
    db.require(level)

    query = select(MessageRow).where(MessageRow.channel_id == channel_id)
    if after is not None:
        # Walk upwards from the cursor so the page is the closest one to it
        query = query.where(MessageRow.sort_key > ids.sort_key(after)).order_by(MessageRow.sort_key.asc())
    else:
        if before is not None:
            query = query.where(MessageRow.sort_key < ids.sort_key(before))
        query = query.order_by(MessageRow.sort_key.desc())
    query = query.limit(limit)

    logger.debug(f"Reading messages: channel={channel_id}, limit={limit}, before={before}, after={after}")
    with storage_errors("message read"):
        rows = session.execute(query).scalars().all()

    messages = [decode_message(row) for row in rows]
    if after is not None:
        messages.reverse()
    logger.info(f"Read {len(messages)} messages from channel {channel_id}")
    return messages
