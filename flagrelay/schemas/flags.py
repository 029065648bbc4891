"""Flag lookup request/response schemas."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

UserId = Annotated[int, Field(ge=0, le=2**64 - 1)]


class LookupRequest(BaseModel):
    """Batch lookup payload."""

    ids: list[UserId] = Field(default_factory=list)


class FlagReason(BaseModel):
    """One structured reason behind a flag."""

    message: str
    confidence: float
    evidence: list[str] = Field(default_factory=list)


class UserFlagRead(BaseModel):
    """Flag state for one user id."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    flag_type: int = Field(serialization_alias="flagType")
    confidence: float | None = None
    reasons: dict[str, FlagReason] | None = None
