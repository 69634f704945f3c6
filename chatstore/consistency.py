"""
Consistency level resolution.

Callers may pass a consistency token with every read or write. Unknown tokens
never fail a request: they fall back to the configured default and produce a
warning that is returned to the caller.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ConsistencyLevel(str, Enum):
    ANY = "ANY"
    ONE = "ONE"
    TWO = "TWO"
    THREE = "THREE"
    QUORUM = "QUORUM"
    ALL = "ALL"
    LOCAL_ONE = "LOCAL_ONE"
    LOCAL_QUORUM = "LOCAL_QUORUM"

    @property
    def is_strong(self) -> bool:
        """True for levels at which a conditional write behaves as a linearizable compare-and-set."""
        return self in (ConsistencyLevel.QUORUM, ConsistencyLevel.LOCAL_QUORUM, ConsistencyLevel.ALL)

    def required_replicas(self, replication_factor: int) -> int:
        """Number of replica acknowledgements this level needs for the given replication factor."""
        if self is ConsistencyLevel.ANY:
            return 0
        if self in (ConsistencyLevel.ONE, ConsistencyLevel.LOCAL_ONE):
            return 1
        if self is ConsistencyLevel.TWO:
            return 2
        if self is ConsistencyLevel.THREE:
            return 3
        if self in (ConsistencyLevel.QUORUM, ConsistencyLevel.LOCAL_QUORUM):
            return replication_factor // 2 + 1
        return replication_factor


_LEVELS_BY_NAME = {level.value: level for level in ConsistencyLevel}


@dataclass(frozen=True)
class Resolution:
    level: ConsistencyLevel
    warning: Optional[str] = None


def parse_level(name: str) -> Optional[ConsistencyLevel]:
    """Case-insensitive lookup; None for unknown names."""
    return _LEVELS_BY_NAME.get(name.strip().upper())


def resolve(token: Optional[str], default: ConsistencyLevel) -> Resolution:
    """
    Map a caller-supplied consistency token to a level.

    Args:
        token: Token from the request, or None when absent
        default: Level used when the token is absent or unknown

    Returns:
        Resolution with the chosen level and, for unknown tokens, a warning
    """
    if token is None or not token.strip():
        return Resolution(level=default)

    level = parse_level(token)
    if level is None:
        warning = f"Invalid consistency level '{token}', using default '{default.value}'"
        logger.warning(warning)
        return Resolution(level=default, warning=warning)

    return Resolution(level=level)
