"""
Keyset pagination over channel reads.

Pages are bounded by message ids, never by offsets. A page's `next_before`
is the id of its oldest item; passing it back as `before` yields the next
strictly older page. Because the bound is a strict inequality against a
fixed id, messages inserted after a cursor was issued cannot shift or repeat
items across pages.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from chatstore import ids, repository
from chatstore.consistency import ConsistencyLevel
from chatstore.errors import ValidationError
from chatstore.repository import Message
from chatstore.storage import Database

MIN_LIMIT = 1
MAX_LIMIT = 100
DEFAULT_LIMIT = 20


@dataclass(frozen=True)
class PageRequest:
    limit: int
    before: Optional[uuid.UUID] = None
    after: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class Page:
    items: list[Message]
    next_before: Optional[uuid.UUID]


def build_page_request(
    limit: Any = DEFAULT_LIMIT,
    before: Optional[str] = None,
    after: Optional[str] = None,
) -> PageRequest:
    """
    Validate raw pagination input.

    Raises:
        ValidationError: limit outside [1, 100] or not an integer, both
            cursors given, or a cursor that is not a valid message id
    """
    errors = []
    # An empty cursor value counts as no cursor
    before = before or None
    after = after or None

    if isinstance(limit, bool) or not isinstance(limit, int) or not MIN_LIMIT <= limit <= MAX_LIMIT:
        errors.append(f"limit must be a number between {MIN_LIMIT} and {MAX_LIMIT}")

    if before is not None and after is not None:
        errors.append("Cannot use both before and after parameters simultaneously")

    cursors = {}
    for field, value in (("before", before), ("after", after)):
        if value is None:
            continue
        try:
            cursors[field] = ids.parse_id(value, field=field)
        except ValidationError:
            errors.append(f"{field} parameter must be a valid UUID")

    if errors:
        raise ValidationError("Invalid query parameters", details={"errors": errors})

    return PageRequest(limit=limit, before=cursors.get("before"), after=cursors.get("after"))


def fetch_page(
    db: Database,
    session: Session,
    channel_id: str,
    request: PageRequest,
    level: ConsistencyLevel,
) -> Page:
    """Read one page and compute its continuation cursor."""
    items = repository.read(
        db,
        session,
        channel_id,
        limit=request.limit,
        before=request.before,
        after=request.after,
        level=level,
    )
    next_before = items[-1].message_id if items else None
    return Page(items=items, next_before=next_before)
