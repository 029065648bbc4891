"""Bulk replication of the flag dataset into the remote store.

A run recreates the staging table, writes every record into it in fixed-size
batches on a bounded worker pool, and only then swaps staging in for the live
table with a single statement batch. Any batch failure aborts the run before
the swap, so readers only ever see a complete generation.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

from sqlalchemy.orm import Session

from flagrelay.errors import InvalidInputError, SyncCancelledError
from flagrelay.services.remote import RemoteExecutor
from flagrelay.services.remote_schema import (
    FLAG_COLUMNS,
    LIVE_TABLE,
    RETIRED_TABLE,
    STAGING_TABLE,
    init_remote_schema,
    reset_staging_table,
)
from flagrelay.services.source import fetch_flag_records
from flagrelay.types import FlagRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25
DEFAULT_MAX_CONCURRENCY = 5

ProgressCallback = Callable[[int, int], None]

SWAP_STATEMENT = f"""
ALTER TABLE {LIVE_TABLE} RENAME TO {RETIRED_TABLE};
ALTER TABLE {STAGING_TABLE} RENAME TO {LIVE_TABLE};
DROP TABLE {RETIRED_TABLE}
"""


@dataclass(slots=True)
class SyncProgress:
    """Shared progress counter for one sync run."""

    total: int
    on_progress: ProgressCallback | None = None
    synced: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def advance(self, count: int) -> float:
        """Add `count` written records and return the completion percentage."""

        with self._lock:
            self.synced += count
            synced = self.synced
        percentage = (synced / self.total * 100.0) if self.total else 100.0
        logger.info("sync.progress synced=%d total=%d pct=%.1f", synced, self.total, percentage)
        if self.on_progress is not None:
            self.on_progress(synced, self.total)
        return percentage


@dataclass(slots=True)
class SyncReport:
    """Summary of a completed sync run."""

    records: int
    batches: int
    swapped: bool
    duration_ms: float


def partition_records(records: Sequence[FlagRecord], batch_size: int) -> list[list[FlagRecord]]:
    """Split records into consecutive batches of at most `batch_size`."""

    if batch_size <= 0:
        raise InvalidInputError("batch_size must be greater than 0")
    return [list(records[start : start + batch_size]) for start in range(0, len(records), batch_size)]


def build_insert_statement(chunk: Sequence[FlagRecord]) -> tuple[str, list[Any]]:
    """Return a multi-row INSERT into the staging table and its parameters."""

    placeholders = ", ".join("(?, ?, ?, ?)" for _ in chunk)
    statement = f"INSERT INTO {STAGING_TABLE} ({', '.join(FLAG_COLUMNS)}) VALUES {placeholders}"
    params: list[Any] = []
    for record in chunk:
        params.extend([record.user_id, int(record.flag_type), record.confidence, record.reasons])
    return statement, params


def write_batch(
    executor: RemoteExecutor,
    batch: Sequence[FlagRecord],
    *,
    chunk_size: int = DEFAULT_BATCH_SIZE,
    cancel_event: threading.Event | None = None,
) -> int:
    """Write one batch into staging as sequential chunks and return the row count."""

    for start in range(0, len(batch), chunk_size):
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError("Sync cancelled before batch was fully written")
        statement, params = build_insert_statement(batch[start : start + chunk_size])
        executor.execute(statement, params)
    return len(batch)


def sync_records(
    executor: RemoteExecutor,
    records: Sequence[FlagRecord],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    progress: SyncProgress | None = None,
    cancel_event: threading.Event | None = None,
) -> int:
    """Write every record into the staging table, at most `max_concurrency` batches at a time.

    Waits for every dispatched batch before returning. When any batch fails,
    the first failure (in completion order) is raised once all batches have
    settled. Returns the number of batches written.
    """

    if max_concurrency <= 0:
        raise InvalidInputError("max_concurrency must be greater than 0")
    batches = partition_records(records, batch_size)
    if not batches:
        return 0
    tracker = progress or SyncProgress(total=len(records))

    def _run(batch: list[FlagRecord]) -> int:
        written = write_batch(executor, batch, chunk_size=batch_size, cancel_event=cancel_event)
        tracker.advance(written)
        return written

    first_error: BaseException | None = None
    with ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="flag-sync") as pool:
        pending: set[Future[int]] = {pool.submit(_run, batch) for batch in batches}
        while pending:
            done, pending = wait(pending, return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None and first_error is None:
                    first_error = error
                    logger.error("sync.batch_failed error=%s", error)

    if first_error is not None:
        raise first_error
    return len(batches)


def swap_tables(executor: RemoteExecutor) -> None:
    """Replace the live table with the staging table in one statement batch."""

    executor.execute(SWAP_STATEMENT)
    logger.info("sync.swap_done live=%s", LIVE_TABLE)


def run_flag_sync(
    db: Session,
    executor: RemoteExecutor,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> SyncReport:
    """Replicate the primary-store flag dataset into the remote live table."""

    total_started = perf_counter()
    init_remote_schema(executor)
    reset_staging_table(executor)

    records = fetch_flag_records(db)
    if not records:
        logger.warning("sync.skipped reason=no_records live=%s kept", LIVE_TABLE)
        return SyncReport(
            records=0,
            batches=0,
            swapped=False,
            duration_ms=(perf_counter() - total_started) * 1000.0,
        )

    progress = SyncProgress(total=len(records), on_progress=on_progress)
    batches = sync_records(
        executor,
        records,
        batch_size=batch_size,
        max_concurrency=max_concurrency,
        progress=progress,
        cancel_event=cancel_event,
    )
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelledError("Sync cancelled; live table left unchanged")
    swap_tables(executor)

    duration_ms = (perf_counter() - total_started) * 1000.0
    logger.info("sync.completed records=%d batches=%d total_ms=%.2f", len(records), batches, duration_ms)
    return SyncReport(records=len(records), batches=batches, swapped=True, duration_ms=duration_ms)
