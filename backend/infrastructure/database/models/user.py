"""
User database model.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, utcnow

DEFAULT_STARTING_CREDITS = 3


class User(Base, TimestampMixin):
    """User profile, onboarding answers, story statistics and credit balance."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity provider subject
    identity_user_id: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
    )

    # Basic info
    user_name: Mapped[str] = mapped_column(String(100), nullable=False)
    user_email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    user_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Onboarding
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    onboarding_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    first_name: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    mother_tongue: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    preferred_age_group: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    primary_goal: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    story_frequency: Mapped[str] = mapped_column(String(30), default="", nullable=False)
    preferred_image_style: Mapped[str] = mapped_column(String(30), default="", nullable=False)

    # Dashboard stats
    total_stories_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_stories_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_monthly_reset: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    language_streaks: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    """
    Structure:
    {
        "<language>": {
            "totalStories": 4,
            "currentWeekStories": 2,
            "weeklyStreak": 1,
            "lastStoryDate": "2026-10-12"
        }
    }
    """

    credits: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_STARTING_CREDITS, nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(identity_user_id={self.identity_user_id}, credits={self.credits})>"
