"""Declarative base and shared column mixins for primary-store models."""

from sqlalchemy import JSON, BigInteger, Float
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class FlagSourceMixin:
    """Columns shared by the flag source relations."""

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    confidence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    reasons: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
