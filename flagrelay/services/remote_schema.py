"""Remote store table definitions and bootstrap statements."""

from __future__ import annotations

import logging

from flagrelay.services.remote import RemoteExecutor

logger = logging.getLogger(__name__)

LIVE_TABLE = "user_flags"
STAGING_TABLE = "new_flags"
RETIRED_TABLE = "old_flags"
QUEUE_TABLE = "queued_users"
API_KEYS_TABLE = "api_keys"

FLAG_COLUMNS = ("user_id", "flag_type", "confidence", "reasons")


def flag_table_ddl(table_name: str, *, if_not_exists: bool = True) -> str:
    """Return CREATE TABLE for a table with the live flag shape."""

    guard = "IF NOT EXISTS " if if_not_exists else ""
    return (
        f"CREATE TABLE {guard}{table_name} (\n"
        "    user_id INTEGER PRIMARY KEY,\n"
        "    flag_type INTEGER NOT NULL,\n"
        "    confidence REAL NOT NULL,\n"
        "    reasons TEXT\n"
        ")"
    )


API_KEYS_DDL = f"""
CREATE TABLE IF NOT EXISTS {API_KEYS_TABLE} (
    key TEXT PRIMARY KEY,
    description TEXT,
    created_at INTEGER NOT NULL
)
"""

QUEUE_DDL = f"""
CREATE TABLE IF NOT EXISTS {QUEUE_TABLE} (
    user_id INTEGER PRIMARY KEY,
    queued_at INTEGER NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0,
    processing INTEGER NOT NULL DEFAULT 0,
    flagged INTEGER NOT NULL DEFAULT 0
);
-- pending work ordered by queue time
CREATE INDEX IF NOT EXISTS idx_queue_status
ON {QUEUE_TABLE} (processed, processing, queued_at)
WHERE processed = 0 AND processing = 0;
-- resolved positives surfaced by lookups
CREATE INDEX IF NOT EXISTS idx_processed_flagged
ON {QUEUE_TABLE} (processed, flagged)
WHERE processed = 1 AND flagged = 1
"""


def init_remote_schema(executor: RemoteExecutor) -> None:
    """Create the live flag, API key, and queue tables when missing."""

    executor.execute(";\n".join([flag_table_ddl(LIVE_TABLE), API_KEYS_DDL.strip(), QUEUE_DDL.strip()]))
    logger.info("remote_schema.initialized tables=%s,%s,%s", LIVE_TABLE, API_KEYS_TABLE, QUEUE_TABLE)


def reset_staging_table(executor: RemoteExecutor) -> None:
    """Drop and recreate the staging table so each sync run starts empty."""

    executor.execute(
        f"DROP TABLE IF EXISTS {STAGING_TABLE};\n{flag_table_ddl(STAGING_TABLE, if_not_exists=False)}"
    )
