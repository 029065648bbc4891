"""Queue admission routes."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException

from flagrelay.config import Settings, get_settings
from flagrelay.db.dependencies import get_remote_executor
from flagrelay.errors import FlagRelayError, InvalidInputError
from flagrelay.schemas.common import ApiResponse
from flagrelay.schemas.queue import QueueRequest, QueueResult
from flagrelay.security import require_api_key
from flagrelay.services.queue import AlreadyFlaggedError, RecentlyQueuedError, admit_user
from flagrelay.services.remote import RemoteExecutor

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/queue", response_model=ApiResponse[QueueResult], response_model_exclude_none=True)
def queue_user(
    payload: QueueRequest,
    executor: RemoteExecutor = Depends(get_remote_executor),
    settings: Settings = Depends(get_settings),
) -> ApiResponse[QueueResult]:
    """Admit a user into the processing queue."""

    if payload.id == 0:
        raise HTTPException(status_code=400, detail="Invalid ID: must be greater than 0")

    try:
        admit_user(executor, payload.id, retention=timedelta(days=settings.queue_retention_days))
    except (AlreadyFlaggedError, RecentlyQueuedError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except FlagRelayError as exc:
        logger.exception("queue.admission_failed user_id=%d", payload.id)
        raise HTTPException(status_code=500, detail="Failed to queue user") from exc

    return ApiResponse(data=QueueResult(queued=payload.id))
