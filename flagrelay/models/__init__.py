"""ORM models package exports."""

from flagrelay.models.flag_source import ConfirmedUser, FlaggedUser

__all__ = [
    "FlaggedUser",
    "ConfirmedUser",
]
