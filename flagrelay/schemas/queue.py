"""Queue admission schemas."""

from pydantic import BaseModel

from flagrelay.schemas.flags import UserId


class QueueRequest(BaseModel):
    """Queue admission payload."""

    id: UserId


class QueueResult(BaseModel):
    """Successful admission."""

    queued: int
