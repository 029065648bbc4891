"""Admission of users into the processing queue."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from flagrelay.errors import ConflictError, InvalidInputError
from flagrelay.services.flags import UINT64_MAX, resolve_flag
from flagrelay.services.remote import RemoteExecutor
from flagrelay.services.remote_schema import QUEUE_TABLE
from flagrelay.types import QueueEntry

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=7)


class AlreadyFlaggedError(ConflictError):
    """Raised when the user already has a live flag."""


class RecentlyQueuedError(ConflictError):
    """Raised when the user was queued inside the retention window."""


def get_queue_entry(executor: RemoteExecutor, user_id: int) -> QueueEntry | None:
    """Return the queue row for a user, if any."""

    row = executor.execute(
        f"SELECT user_id, queued_at, processed, processing, flagged FROM {QUEUE_TABLE} WHERE user_id = ?",
        [user_id],
    ).first()
    if row is None:
        return None
    return QueueEntry(
        user_id=int(row["user_id"]),
        queued_at=int(row["queued_at"]),
        processed=bool(row.get("processed")),
        processing=bool(row.get("processing")),
        flagged=bool(row.get("flagged")),
    )


def admit_user(
    executor: RemoteExecutor,
    user_id: int,
    *,
    now: datetime | None = None,
    retention: timedelta = DEFAULT_RETENTION,
) -> QueueEntry:
    """Insert or refresh the queue entry for a user.

    Rejected with AlreadyFlaggedError when the user resolves to any flag (a live
    row or a resolved positive queue entry), and with
    RecentlyQueuedError when the user was queued less than `retention` ago.
    A stale entry is refreshed in place with `processed` reset; `processing`
    and `flagged` stay as the worker left them.

    Both writes are conditional, so a concurrent admission for the same user
    surfaces as RecentlyQueuedError rather than a constraint failure.
    """

    if isinstance(user_id, bool) or user_id <= 0 or user_id > UINT64_MAX:
        raise InvalidInputError("Invalid ID: must be greater than 0")

    if resolve_flag(executor, user_id).is_flagged:
        raise AlreadyFlaggedError("User is already flagged or confirmed")

    current = now or datetime.now(timezone.utc)
    queued_at = int(current.timestamp())
    cutoff = int((current - retention).timestamp())

    existing = get_queue_entry(executor, user_id)
    if existing is None:
        inserted = executor.execute(
            f"INSERT INTO {QUEUE_TABLE} (user_id, queued_at, processed) VALUES (?, ?, 0) "
            "ON CONFLICT(user_id) DO NOTHING",
            [user_id, queued_at],
        )
        if inserted.changes == 0:
            raise RecentlyQueuedError(_recently_queued_message(retention))
        logger.info("queue.admitted user_id=%d queued_at=%d", user_id, queued_at)
        return QueueEntry(user_id=user_id, queued_at=queued_at)

    if existing.queued_at > cutoff:
        raise RecentlyQueuedError(_recently_queued_message(retention))

    updated = executor.execute(
        f"UPDATE {QUEUE_TABLE} SET queued_at = ?, processed = 0 WHERE user_id = ? AND queued_at <= ?",
        [queued_at, user_id, cutoff],
    )
    if updated.changes == 0:
        raise RecentlyQueuedError(_recently_queued_message(retention))
    logger.info(
        "queue.requeued user_id=%d previous_queued_at=%d queued_at=%d",
        user_id,
        existing.queued_at,
        queued_at,
    )
    return QueueEntry(
        user_id=user_id,
        queued_at=queued_at,
        processed=False,
        processing=existing.processing,
        flagged=existing.flagged,
    )


def _recently_queued_message(retention: timedelta) -> str:
    if retention.days and retention == timedelta(days=retention.days):
        return f"User was queued within the past {retention.days} days"
    return "User was queued within the retention window"
