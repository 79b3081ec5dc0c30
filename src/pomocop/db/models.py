"""SQLAlchemy ORM models."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""


class SessionSnapshot(Base):
    """Durable snapshot of one channel's pomodoro session.

    The full session lives in ``snapshot`` as JSON text so that a row which
    fails to decode can be reported and dropped on its own instead of
    breaking the whole result set.
    """

    __tablename__ = "pomo_sessions"

    channel_id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False)
    lifecycle: Mapped[str] = mapped_column(String, nullable=False, index=True)
    snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )
