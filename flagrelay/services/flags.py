"""Composite flag lookups over the live table and resolved queue entries."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from flagrelay.errors import InvalidInputError
from flagrelay.services.remote import RemoteExecutor
from flagrelay.services.remote_schema import LIVE_TABLE, QUEUE_TABLE
from flagrelay.types import FlagType, FlagView

logger = logging.getLogger(__name__)

UINT64_MAX = 2**64 - 1


def validate_user_ids(ids: Iterable[int]) -> list[int]:
    """Return ids de-duplicated in request order, rejecting anything outside 1..2^64-1."""

    unique: list[int] = []
    seen: set[int] = set()
    for user_id in ids:
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise InvalidInputError(f"Invalid ID: {user_id!r}")
        if user_id <= 0 or user_id > UINT64_MAX:
            raise InvalidInputError("Invalid ID: must be greater than 0")
        if user_id not in seen:
            seen.add(user_id)
            unique.append(user_id)
    return unique


def resolve_flags(executor: RemoteExecutor, ids: Iterable[int]) -> dict[int, FlagView]:
    """Return a flag view for every requested id.

    Live rows win. Ids without a live row but with a processed, positive queue
    entry resolve to QUEUED_POSITIVE without confidence. Everything else is NONE.
    """

    user_ids = validate_user_ids(ids)
    if not user_ids:
        return {}

    placeholders = ", ".join("?" for _ in user_ids)
    live = executor.execute(
        f"SELECT user_id, flag_type, confidence, reasons FROM {LIVE_TABLE} WHERE user_id IN ({placeholders})",
        user_ids,
    )
    views: dict[int, FlagView] = {}
    for row in live.rows:
        views[int(row["user_id"])] = FlagView(
            flag_type=FlagType(int(row["flag_type"])),
            confidence=_as_float(row.get("confidence")),
            reasons=row.get("reasons"),
        )

    remaining = [user_id for user_id in user_ids if user_id not in views]
    if remaining:
        placeholders = ", ".join("?" for _ in remaining)
        queued = executor.execute(
            f"SELECT user_id FROM {QUEUE_TABLE} "
            f"WHERE processed = 1 AND flagged = 1 AND user_id IN ({placeholders})",
            remaining,
        )
        for row in queued.rows:
            views[int(row["user_id"])] = FlagView(flag_type=FlagType.QUEUED_POSITIVE)

    return {user_id: views.get(user_id, FlagView()) for user_id in user_ids}


def resolve_flag(executor: RemoteExecutor, user_id: int) -> FlagView:
    """Resolve a single id."""

    return resolve_flags(executor, [user_id])[user_id]


def parse_reasons(raw: str | None, *, user_id: int | None = None) -> dict[str, dict[str, Any]] | None:
    """Decode stored reasons into `{name: {message, confidence, evidence}}`.

    Undecodable payloads are logged and dropped.
    """

    if not raw:
        return None
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("flags.reasons_undecodable user_id=%s", user_id)
        return None
    if not isinstance(decoded, dict):
        logger.warning("flags.reasons_unexpected_shape user_id=%s", user_id)
        return None

    parsed: dict[str, dict[str, Any]] = {}
    for name, value in decoded.items():
        if not isinstance(value, dict):
            continue
        evidence = value.get("evidence") or []
        parsed[str(name)] = {
            "message": str(value.get("message") or ""),
            "confidence": _as_float(value.get("confidence")) or 0.0,
            "evidence": [str(item) for item in evidence] if isinstance(evidence, list) else [],
        }
    return parsed or None


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
