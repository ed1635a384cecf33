"""
Compensation event database model.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class CompensationEventType(str, Enum):
    """Kinds of operations that can leave work for manual review."""

    STORY_GENERATION_FAILED = "STORY_GENERATION_FAILED"
    ORPHANED_COVER_IMAGE = "ORPHANED_COVER_IMAGE"
    STREAK_UPDATE_FAILED = "STREAK_UPDATE_FAILED"


class CompensationStatus(str, Enum):
    """Review state of a compensation event."""

    FAILED = "failed"
    PENDING_REVIEW = "pending_review"
    RESOLVED = "resolved"


class CompensationEvent(Base, TimestampMixin):
    """Audit row for a retried or failed operation, reviewed by a human."""

    __tablename__ = "compensation_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    request_id: Mapped[str] = mapped_column(String(64), nullable=False)
    identity_user_id: Mapped[str] = mapped_column(String(50), nullable=False)
    story_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """
    Structure:
    {
        "code": "STORY_PARSE_ERROR",
        "coverImage": "https://...",
        "language2": "Spanish",
        ...
    }
    """

    __table_args__ = (
        Index("ix_compensation_events_request_id", "request_id"),
        Index("ix_compensation_events_user", "identity_user_id"),
        Index("ix_compensation_events_story_id", "story_id"),
        Index("ix_compensation_events_status", "status"),
        Index("ix_compensation_events_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<CompensationEvent(request_id={self.request_id}, type={self.event_type}, status={self.status})>"
