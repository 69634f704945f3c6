"""
Idempotency claims keyed by (channel_id, client key).

A claim is an insert-if-absent of a DedupRecord. The table's primary key is
the arbiter: the first committed insert wins, every later or concurrent
insert of the same key fails with IntegrityError and is reported as a
duplicate.

The guarantee is only as strong as the consistency level the claim runs at.
At QUORUM/LOCAL_QUORUM/ALL the claim is a linearizable compare-and-set. At
weaker levels a replicated backend may let two racing claims both succeed;
callers choose that tradeoff by choosing the level. The bundled SQL backend
serializes through one database and never shows that window.

Claiming and inserting the message are two separate commits. If the process
dies between them the claim stays behind with no message, and later resends
with the same key are reported as duplicates until the record is removed by
hand.
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatstore.consistency import ConsistencyLevel
from chatstore.models import DedupRecord
from chatstore.storage import Database, storage_errors

logger = logging.getLogger(__name__)


def try_claim(
    db: Database,
    session: Session,
    channel_id: str,
    client_key: str,
    level: ConsistencyLevel,
) -> bool:
    """
    Claim a client key for a channel.

    Args:
        db: Database handle (replica requirements)
        session: Session to write through
        channel_id: Channel the key is scoped to
        client_key: Caller-supplied idempotency key
        level: Consistency level for the conditional write

    Returns:
        True if this call created the claim, False if it already existed

    Raises:
        StorageUnavailable: if the level cannot be met or the database is unreachable
    """
    db.require(level)
    logger.debug(f"Claiming client key: channel={channel_id}, key={client_key}, level={level.value}")

    with storage_errors("dedup claim"):
        try:
            session.add(DedupRecord(channel_id=channel_id, client_msg_id=client_key))
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.info(f"Duplicate client key: channel={channel_id}, key={client_key}")
            return False
        except Exception:
            session.rollback()
            raise

    if not level.is_strong:
        logger.debug(f"Claim accepted at non-linearizable level {level.value}")
    return True
