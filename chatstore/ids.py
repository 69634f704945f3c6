"""
Time-encoded message identifiers.

Message ids are RFC 4122 version-1 UUIDs ("time UUIDs"). The embedded 60-bit
timestamp counts 100 ns intervals since the Gregorian epoch (1582-10-15),
which makes every id carry its own creation time.

Ordering follows the timeuuid comparator used by Cassandra/Scylla:
timestamp first, then clock sequence, then node. `sort_key()` renders that
order as a fixed-width hex string so it can be range-scanned by any SQL
backend.
"""

import re
import secrets
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone

from chatstore.errors import ValidationError


# 100 ns intervals between 1582-10-15 and 1970-01-01
GREGORIAN_OFFSET = 0x01B21DD213814000

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_TIME_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-1[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class TimeUuidGenerator:
    """
    Produces strictly increasing version-1 UUIDs.

    Each instance picks a random clock sequence and node once. Calls landing
    in the same 100 ns tick (or after the wall clock stepped backwards) take
    the previous tick plus one, so ids from one instance never repeat and
    always sort after their predecessors.
    """

    def __init__(self, clock=time.time_ns):
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ticks = 0
        self.clock_seq = secrets.randbits(14)
        # Random node ids must set the multicast bit (RFC 4122 section 4.5)
        self.node = secrets.randbits(48) | 0x010000000000

    def _now_ticks(self) -> int:
        return self._clock() // 100 + GREGORIAN_OFFSET

    def next(self) -> uuid.UUID:
        with self._lock:
            ticks = max(self._now_ticks(), self._last_ticks + 1)
            self._last_ticks = ticks
        return make_time_uuid(ticks, self.clock_seq, self.node)


def make_time_uuid(ticks: int, clock_seq: int, node: int) -> uuid.UUID:
    """Assemble a version-1 UUID from its timestamp, clock sequence and node."""
    time_low = ticks & 0xFFFFFFFF
    time_mid = (ticks >> 32) & 0xFFFF
    time_hi_version = ((ticks >> 48) & 0x0FFF) | 0x1000
    clock_seq_hi_variant = ((clock_seq >> 8) & 0x3F) | 0x80
    clock_seq_low = clock_seq & 0xFF
    return uuid.UUID(
        fields=(time_low, time_mid, time_hi_version, clock_seq_hi_variant, clock_seq_low, node)
    )


def _require_time_uuid(message_id: uuid.UUID) -> None:
    if message_id.version != 1:
        raise ValidationError(f"'{message_id}' is not a time-based (version 1) UUID")


def ticks(message_id: uuid.UUID) -> int:
    """Full-resolution timestamp: 100 ns intervals since 1582-10-15."""
    _require_time_uuid(message_id)
    return message_id.time


def timestamp(message_id: uuid.UUID) -> datetime:
    """
    Creation time embedded in a message id, as an aware UTC datetime.

    Python datetimes stop at microseconds, so the last 100 ns digit is
    truncated; use `ticks()` when the full value matters.
    """
    micros = (ticks(message_id) - GREGORIAN_OFFSET) // 10
    return UNIX_EPOCH + timedelta(microseconds=micros)


def id_order_key(message_id: uuid.UUID) -> tuple[int, int, int]:
    """Total order over message ids: timestamp, clock sequence, node."""
    _require_time_uuid(message_id)
    return (message_id.time, message_id.clock_seq, message_id.node)


def sort_key(message_id: uuid.UUID) -> str:
    """Fixed-width hex rendering of `id_order_key`; lexicographic order matches id order."""
    t, seq, node = id_order_key(message_id)
    return f"{t:015x}{seq:04x}{node:012x}"


def parse_id(value: str, field: str = "message_id") -> uuid.UUID:
    """
    Parse a message id from its canonical 8-4-4-4-12 text form.

    Raises:
        ValidationError: if the value is not a version-1 UUID string
    """
    if not isinstance(value, str) or not _TIME_UUID_RE.match(value):
        raise ValidationError(f"{field} must be a valid time UUID")
    return uuid.UUID(value)
