"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For the decoded, typed Message record see repository.py; for Pydantic
request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, Index, String, Text

from chatstore.storage import Base


class MessageRow(Base):
    """
    One message in a channel.

    Table: messages
    Primary Key: (channel_id, message_id)
    sort_key mirrors message_id's total order so range scans stay in SQL.
    """
    __tablename__ = "messages"

    channel_id = Column(String(100), primary_key=True)
    message_id = Column(String(36), primary_key=True)
    sort_key = Column(String(31), nullable=False)
    user_id = Column(String(100), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_messages_channel_sort", "channel_id", "sort_key"),
    )


class DedupRecord(Base):
    """
    Existence-only idempotency claim.

    Table: message_dedupe
    Primary Key: (channel_id, client_msg_id), the unique constraint that
    decides which writer wins a claim.
    """
    __tablename__ = "message_dedupe"

    channel_id = Column(String(100), primary_key=True)
    client_msg_id = Column(String(100), primary_key=True)
