"""Tests for bulk replication and the staging/live table swap."""

from __future__ import annotations

import threading
import time
import unittest
from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from flagrelay.errors import InvalidInputError, SyncCancelledError
from flagrelay.models.base import Base
from flagrelay.models.flag_source import ConfirmedUser, FlaggedUser
from flagrelay.services.remote import QueryResult, RemoteExecutorError, SQLiteExecutor
from flagrelay.services.remote_schema import init_remote_schema, reset_staging_table
from flagrelay.services.sync import (
    SyncProgress,
    partition_records,
    run_flag_sync,
    swap_tables,
    sync_records,
)
from flagrelay.types import FlagRecord, FlagType


def _memory_executor() -> SQLiteExecutor:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return SQLiteExecutor(engine)


def _records(count: int, *, start: int = 1, flag_type: FlagType = FlagType.FLAGGED) -> list[FlagRecord]:
    return [
        FlagRecord(user_id=user_id, flag_type=flag_type, confidence=0.5, reasons=None)
        for user_id in range(start, start + count)
    ]


class _RecordingExecutor:
    """Delegates to a real executor while recording statements and concurrency."""

    def __init__(self, inner: SQLiteExecutor, *, delay: float = 0.0, fail_on_user_id: int | None = None) -> None:
        self.inner = inner
        self.delay = delay
        self.fail_on_user_id = fail_on_user_id
        self.statements: list[str] = []
        self.insert_sizes: list[int] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def execute(self, statement: str, params: Sequence[Any] | None = None) -> QueryResult:
        with self._lock:
            self.statements.append(statement)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if statement.startswith("INSERT INTO new_flags"):
                values = list(params or [])
                with self._lock:
                    self.insert_sizes.append(len(values) // 4)
                if self.delay:
                    time.sleep(self.delay)
                if self.fail_on_user_id is not None and self.fail_on_user_id in values[0::4]:
                    raise RemoteExecutorError("simulated batch failure")
            return self.inner.execute(statement, params)
        finally:
            with self._lock:
                self.in_flight -= 1


def _live_ids(executor: SQLiteExecutor) -> list[int]:
    rows = executor.execute("SELECT user_id FROM user_flags ORDER BY user_id").rows
    return [int(row["user_id"]) for row in rows]


def _table_exists(executor: SQLiteExecutor, name: str) -> bool:
    rows = executor.execute("SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", [name]).rows
    return bool(rows)


def _full_run(executor: Any, records: list[FlagRecord]) -> None:
    init_remote_schema(executor)
    reset_staging_table(executor)
    sync_records(executor, records)
    swap_tables(executor)


class PartitionTests(unittest.TestCase):
    def test_partition_keeps_order_and_short_tail(self) -> None:
        batches = partition_records(_records(60), 25)

        self.assertEqual([len(batch) for batch in batches], [25, 25, 10])
        self.assertEqual(batches[0][0].user_id, 1)
        self.assertEqual(batches[2][-1].user_id, 60)

    def test_partition_rejects_non_positive_batch_size(self) -> None:
        with self.assertRaises(InvalidInputError):
            partition_records(_records(3), 0)

    def test_partition_of_empty_input_is_empty(self) -> None:
        self.assertEqual(partition_records([], 25), [])


class SyncRecordsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.remote = _memory_executor()
        init_remote_schema(self.remote)
        reset_staging_table(self.remote)

    def tearDown(self) -> None:
        self.remote.dispose()

    def test_sixty_records_write_three_batches_and_swap_in(self) -> None:
        recording = _RecordingExecutor(self.remote)

        batches = sync_records(recording, _records(60), batch_size=25, max_concurrency=5)
        swap_tables(recording)

        self.assertEqual(batches, 3)
        self.assertEqual(sorted(recording.insert_sizes), [10, 25, 25])
        self.assertEqual(_live_ids(self.remote), list(range(1, 61)))
        self.assertFalse(_table_exists(self.remote, "new_flags"))
        self.assertFalse(_table_exists(self.remote, "old_flags"))

    def test_concurrency_never_exceeds_cap(self) -> None:
        recording = _RecordingExecutor(self.remote, delay=0.01)

        sync_records(recording, _records(200), batch_size=10, max_concurrency=3)

        self.assertLessEqual(recording.max_in_flight, 3)
        self.assertEqual(len(recording.insert_sizes), 20)

    def test_failed_batch_raises_after_other_batches_settle(self) -> None:
        recording = _RecordingExecutor(self.remote, fail_on_user_id=30)

        with self.assertRaises(RemoteExecutorError):
            sync_records(recording, _records(100), batch_size=25, max_concurrency=5)

        self.assertEqual(len(recording.insert_sizes), 4)
        staged = self.remote.execute("SELECT COUNT(*) AS n FROM new_flags").first()
        self.assertEqual(staged["n"], 75)

    def test_progress_reaches_total_once_per_batch(self) -> None:
        seen: list[tuple[int, int]] = []
        progress = SyncProgress(total=60, on_progress=lambda synced, total: seen.append((synced, total)))

        sync_records(self.remote, _records(60), progress=progress)

        self.assertEqual(len(seen), 3)
        self.assertEqual(progress.synced, 60)
        self.assertEqual(max(synced for synced, _ in seen), 60)
        self.assertTrue(all(total == 60 for _, total in seen))

    def test_cancelled_run_writes_nothing_and_raises(self) -> None:
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(SyncCancelledError):
            sync_records(self.remote, _records(60), cancel_event=cancel)

        staged = self.remote.execute("SELECT COUNT(*) AS n FROM new_flags").first()
        self.assertEqual(staged["n"], 0)

    def test_duplicate_user_id_fails_the_batch(self) -> None:
        records = _records(3) + [FlagRecord(user_id=2, flag_type=FlagType.CONFIRMED, confidence=1.0)]

        with self.assertRaises(RemoteExecutorError):
            sync_records(self.remote, records, batch_size=25)


class SwapTests(unittest.TestCase):
    def setUp(self) -> None:
        self.remote = _memory_executor()

    def tearDown(self) -> None:
        self.remote.dispose()

    def test_failed_sync_keeps_previous_live_generation(self) -> None:
        _full_run(self.remote, _records(10))

        reset_staging_table(self.remote)
        recording = _RecordingExecutor(self.remote, fail_on_user_id=105)
        with self.assertRaises(RemoteExecutorError):
            sync_records(recording, _records(20, start=100))

        self.assertEqual(_live_ids(self.remote), list(range(1, 11)))

    def test_failed_swap_batch_leaves_live_table_in_place(self) -> None:
        _full_run(self.remote, _records(10))
        self.assertFalse(_table_exists(self.remote, "new_flags"))

        with self.assertRaises(RemoteExecutorError):
            swap_tables(self.remote)

        self.assertTrue(_table_exists(self.remote, "user_flags"))
        self.assertFalse(_table_exists(self.remote, "old_flags"))
        self.assertEqual(_live_ids(self.remote), list(range(1, 11)))

        _full_run(self.remote, _records(5, start=200))
        self.assertEqual(_live_ids(self.remote), list(range(200, 205)))

    def test_rerun_with_unchanged_source_is_identical(self) -> None:
        records = _records(30) + _records(5, start=500, flag_type=FlagType.CONFIRMED)
        _full_run(self.remote, records)
        first = self.remote.execute("SELECT * FROM user_flags ORDER BY user_id").rows

        _full_run(self.remote, records)
        second = self.remote.execute("SELECT * FROM user_flags ORDER BY user_id").rows

        self.assertEqual(first, second)
        self.assertEqual(len(second), 35)


class RunFlagSyncTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self.db.query(FlaggedUser).delete()
        self.db.query(ConfirmedUser).delete()
        self.db.commit()
        self.remote = _memory_executor()

    def tearDown(self) -> None:
        self.db.close()
        self.remote.dispose()

    def _seed(self, flagged: int, confirmed: int) -> None:
        for user_id in range(1, flagged + 1):
            self.db.add(FlaggedUser(id=user_id, confidence=0.6, reasons={"model": {"message": "m"}}))
        for user_id in range(1000, 1000 + confirmed):
            self.db.add(ConfirmedUser(id=user_id, confidence=0.9, reasons=None))
        self.db.commit()

    def test_pipeline_replicates_every_source_row(self) -> None:
        self._seed(flagged=40, confirmed=20)

        report = run_flag_sync(self.db, self.remote)

        self.assertTrue(report.swapped)
        self.assertEqual(report.records, 60)
        self.assertEqual(report.batches, 3)
        rows = self.remote.execute("SELECT flag_type, COUNT(*) AS n FROM user_flags GROUP BY flag_type").rows
        self.assertEqual({int(row["flag_type"]): int(row["n"]) for row in rows}, {1: 40, 2: 20})

    def test_pipeline_never_swaps_after_a_failed_batch(self) -> None:
        self._seed(flagged=10, confirmed=0)
        run_flag_sync(self.db, self.remote)
        self._seed_more()

        recording = _RecordingExecutor(self.remote, fail_on_user_id=1001)
        with self.assertRaises(RemoteExecutorError):
            run_flag_sync(self.db, recording)

        self.assertFalse(any(statement.lstrip().startswith("ALTER") for statement in recording.statements))
        self.assertEqual(_live_ids(self.remote), list(range(1, 11)))

    def test_empty_source_keeps_live_table(self) -> None:
        _full_run(self.remote, _records(5))

        report = run_flag_sync(self.db, self.remote)

        self.assertFalse(report.swapped)
        self.assertEqual(report.records, 0)
        self.assertEqual(_live_ids(self.remote), [1, 2, 3, 4, 5])

    def _seed_more(self) -> None:
        for user_id in range(1000, 1005):
            self.db.add(ConfirmedUser(id=user_id, confidence=0.9, reasons=None))
        self.db.commit()


if __name__ == "__main__":
    unittest.main()
