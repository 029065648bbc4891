"""Header token authentication for the HTTP surface."""

import logging

from fastapi import Depends, Header, HTTPException

from flagrelay.config import Settings, get_settings
from flagrelay.db.dependencies import get_remote_executor
from flagrelay.errors import UpstreamUnavailableError
from flagrelay.services.api_keys import validate_api_key
from flagrelay.services.remote import RemoteExecutor

AUTH_HEADER_NAME = "X-Auth-Token"

logger = logging.getLogger(__name__)


def require_api_key(
    token: str | None = Header(default=None, alias=AUTH_HEADER_NAME),
    executor: RemoteExecutor = Depends(get_remote_executor),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests whose token is not in the API key registry."""

    if not settings.require_auth:
        return
    try:
        valid = validate_api_key(executor, token)
    except UpstreamUnavailableError as exc:
        logger.exception("auth.validation_failed")
        raise HTTPException(status_code=500, detail="Internal Server Error") from exc
    if not valid:
        raise HTTPException(status_code=401, detail="Unauthorized")
