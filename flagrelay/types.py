"""Typed records independent of persistence."""

from dataclasses import dataclass
from enum import IntEnum


class FlagType(IntEnum):
    """Flag states exposed by lookups.

    Only FLAGGED and CONFIRMED are ever stored; QUEUED_POSITIVE is produced at
    lookup time for users the queue worker resolved as positive.
    """

    NONE = 0
    FLAGGED = 1
    CONFIRMED = 2
    QUEUED_POSITIVE = 3


@dataclass(frozen=True, slots=True)
class FlagRecord:
    """One user flag as read from the primary store."""

    user_id: int
    flag_type: FlagType
    confidence: float
    reasons: str | None = None


@dataclass(frozen=True, slots=True)
class FlagView:
    """Composite lookup result for a single user id."""

    flag_type: FlagType = FlagType.NONE
    confidence: float | None = None
    reasons: str | None = None

    @property
    def is_flagged(self) -> bool:
        return self.flag_type != FlagType.NONE


@dataclass(frozen=True, slots=True)
class QueueEntry:
    """Row of the processing queue."""

    user_id: int
    queued_at: int
    processed: bool = False
    processing: bool = False
    flagged: bool = False


@dataclass(frozen=True, slots=True)
class ApiKeyRecord:
    """Stored API key."""

    key: str
    description: str
    created_at: int
