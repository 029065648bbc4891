"""Flag lookup routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from flagrelay.config import Settings, get_settings
from flagrelay.db.dependencies import get_remote_executor
from flagrelay.errors import InvalidInputError, UpstreamUnavailableError
from flagrelay.schemas.common import ApiResponse
from flagrelay.schemas.flags import LookupRequest, UserFlagRead
from flagrelay.security import require_api_key
from flagrelay.services.flags import parse_reasons, resolve_flags
from flagrelay.services.remote import RemoteExecutor
from flagrelay.types import FlagView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lookup", dependencies=[Depends(require_api_key)])


@router.post("", response_model=ApiResponse[list[UserFlagRead]], response_model_exclude_none=True)
def batch_lookup(
    payload: LookupRequest,
    executor: RemoteExecutor = Depends(get_remote_executor),
    settings: Settings = Depends(get_settings),
) -> ApiResponse[list[UserFlagRead]]:
    """Resolve flags for up to `lookup_batch_limit` user ids, in request order."""

    if len(payload.ids) > settings.lookup_batch_limit:
        raise HTTPException(status_code=400, detail=f"Batch size too large (max {settings.lookup_batch_limit})")
    if 0 in payload.ids:
        raise HTTPException(status_code=400, detail="Invalid ID in batch: must be greater than 0")

    views = _resolve_or_fail(executor, payload.ids)
    return ApiResponse(data=[_to_read(user_id, views[user_id]) for user_id in payload.ids])


@router.get("/{user_id}", response_model=ApiResponse[UserFlagRead], response_model_exclude_none=True)
def single_lookup(
    user_id: str,
    executor: RemoteExecutor = Depends(get_remote_executor),
) -> ApiResponse[UserFlagRead]:
    """Resolve the flag for one user id."""

    if not (user_id.isascii() and user_id.isdigit()):
        raise HTTPException(status_code=400, detail=f"Invalid ID format: {user_id}")
    parsed_id = int(user_id)
    if parsed_id == 0:
        raise HTTPException(status_code=400, detail="Invalid ID: must be greater than 0")

    views = _resolve_or_fail(executor, [parsed_id])
    return ApiResponse(data=_to_read(parsed_id, views[parsed_id]))


def _resolve_or_fail(executor: RemoteExecutor, ids: list[int]) -> dict[int, FlagView]:
    try:
        return resolve_flags(executor, ids)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UpstreamUnavailableError as exc:
        logger.exception("lookup.resolve_failed ids=%d", len(ids))
        raise HTTPException(status_code=500, detail="Internal server error") from exc


def _to_read(user_id: int, view: FlagView) -> UserFlagRead:
    if not view.is_flagged:
        return UserFlagRead(id=user_id, flag_type=int(view.flag_type))
    return UserFlagRead(
        id=user_id,
        flag_type=int(view.flag_type),
        confidence=view.confidence,
        reasons=parse_reasons(view.reasons, user_id=user_id),
    )
