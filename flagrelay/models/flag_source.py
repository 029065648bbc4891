"""Primary-store relations feeding the flag dataset."""

from flagrelay.models.base import Base, FlagSourceMixin


class FlaggedUser(Base, FlagSourceMixin):
    """User flagged by automated review."""

    __tablename__ = "flagged_users"


class ConfirmedUser(Base, FlagSourceMixin):
    """User whose flag was confirmed by a moderator."""

    __tablename__ = "confirmed_users"
