"""Source reader pulling the full flag dataset from the primary store."""

from __future__ import annotations

import json
import logging

from sqlalchemy import literal, select, union_all
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from flagrelay.errors import UpstreamUnavailableError
from flagrelay.models.flag_source import ConfirmedUser, FlaggedUser
from flagrelay.types import FlagRecord, FlagType

logger = logging.getLogger(__name__)


class SourceUnavailableError(UpstreamUnavailableError):
    """Raised when the primary store query fails."""


def fetch_flag_records(db: Session) -> list[FlagRecord]:
    """Return one record per user id from the flagged and confirmed relations.

    Both relations are read with a single UNION ALL query. A user present in
    both is reported once as CONFIRMED.
    """

    flagged = select(
        FlaggedUser.id.label("user_id"),
        literal(int(FlagType.FLAGGED)).label("flag_type"),
        FlaggedUser.confidence.label("confidence"),
        FlaggedUser.reasons.label("reasons"),
    )
    confirmed = select(
        ConfirmedUser.id.label("user_id"),
        literal(int(FlagType.CONFIRMED)).label("flag_type"),
        ConfirmedUser.confidence.label("confidence"),
        ConfirmedUser.reasons.label("reasons"),
    )
    stmt = union_all(flagged, confirmed)

    try:
        rows = db.execute(stmt).all()
    except SQLAlchemyError as exc:
        logger.exception("source.fetch_failed")
        raise SourceUnavailableError(f"Failed to read flag source tables: {exc}") from exc

    records: dict[int, FlagRecord] = {}
    collisions = 0
    for user_id, flag_type, confidence, reasons in rows:
        record = FlagRecord(
            user_id=int(user_id),
            flag_type=FlagType(int(flag_type)),
            confidence=float(confidence or 0.0),
            reasons=_reasons_text(reasons),
        )
        existing = records.get(record.user_id)
        if existing is not None:
            collisions += 1
            if existing.flag_type >= record.flag_type:
                continue
        records[record.user_id] = record

    if collisions:
        logger.warning("source.duplicate_user_ids count=%d resolution=confirmed_wins", collisions)
    logger.info("source.fetch_done rows=%d records=%d", len(rows), len(records))
    return list(records.values())


def _reasons_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True)
