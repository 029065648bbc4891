"""Operator command line: flag sync and API key management.

Usage:
    flagrelay sync
    flagrelay add-key "<description>"
    flagrelay remove-key <key>
    flagrelay list-keys
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from datetime import datetime, timezone

from flagrelay.config import get_settings
from flagrelay.errors import FlagRelayError
from flagrelay.services.api_keys import add_api_key, list_api_keys, remove_api_key
from flagrelay.services.remote import RemoteExecutor, get_default_executor
from flagrelay.services.remote_schema import init_remote_schema

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""

    parser = argparse.ArgumentParser(prog="flagrelay", description="Flag replication and API key tooling.")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("sync", help="Replicate the flag dataset into the remote store.")
    add_key = commands.add_parser("add-key", help="Create a new API key.")
    add_key.add_argument("description", help="Who or what the key is for.")
    remove_key = commands.add_parser("remove-key", help="Revoke an API key.")
    remove_key.add_argument("key", help="Key to revoke.")
    commands.add_parser("list-keys", help="List API keys, newest first.")
    return parser


def run_sync(executor: RemoteExecutor) -> None:
    from flagrelay.db.session import SessionLocal
    from flagrelay.services.sync import run_flag_sync

    settings = get_settings()
    logger.info("Starting flag update process...")
    with SessionLocal() as db:
        report = run_flag_sync(
            db,
            executor,
            batch_size=settings.sync_batch_size,
            max_concurrency=settings.sync_max_concurrency,
        )
    if report.swapped:
        logger.info("Synced %d flags in %d batches (took %.0fms)", report.records, report.batches, report.duration_ms)
    else:
        logger.info("No flags to sync; live table left unchanged")


def run_add_key(executor: RemoteExecutor, description: str) -> None:
    init_remote_schema(executor)
    record = add_api_key(executor, description)
    print(record.key)
    logger.info("Added API key for %r", description)


def run_remove_key(executor: RemoteExecutor, key: str) -> None:
    remove_api_key(executor, key)
    logger.info("Removed API key %s", key)


def run_list_keys(executor: RemoteExecutor) -> None:
    records = list_api_keys(executor)
    if not records:
        print("No API keys found")
        return
    for record in records:
        created = datetime.fromtimestamp(record.created_at, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        print(f"{record.key} - {record.description} (created: {created})")


def main(argv: Sequence[str] | None = None) -> int:
    """Run one CLI command and return its exit status."""

    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    try:
        executor = get_default_executor(settings)
        if args.command == "sync":
            run_sync(executor)
        elif args.command == "add-key":
            run_add_key(executor, args.description)
        elif args.command == "remove-key":
            run_remove_key(executor, args.key)
        elif args.command == "list-keys":
            run_list_keys(executor)
    except FlagRelayError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    except Exception:
        logger.exception("%s failed unexpectedly", args.command)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
