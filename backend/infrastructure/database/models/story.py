"""
Story database model.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, JSON, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class Story(Base):
    """A generated bilingual story and the wizard choices that produced it."""

    __tablename__ = "story"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Public identifier used in URLs
    story_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    # Wizard choices
    story_subject: Mapped[str] = mapped_column(Text, nullable=False)
    story_type: Mapped[str] = mapped_column(String(50), nullable=False)
    age_group: Mapped[str] = mapped_column(String(50), nullable=False)
    image_style: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    genre: Mapped[str] = mapped_column(String(50), nullable=False)
    language1: Mapped[str] = mapped_column(String(50), nullable=False)
    """Mother tongue of the reader."""
    language2: Mapped[str] = mapped_column(String(50), nullable=False)
    """Language being learned."""

    # Generated content
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """
    Structure:
    {
        "bookTitle": {"<language1>": "...", "<language2>": "..."},
        "cover": {"imagePrompt": "...", "imageText": "..."},
        "chapters": [{"chapterNumber": 1, "chapterTitle": {...}, "storyText": {...},
                      "imagePrompt": "...", "imageText": "...",
                      "difficultWords": [{"word": "...", "meaning": "...", "pronunciation": "..."}]}],
        "moralOfTheStory": {"moral": {...}}
    }
    """
    cover_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Author snapshot at creation time
    identity_user_id: Mapped[str] = mapped_column(String(50), nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(100), nullable=False)
    user_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_story_identity_user_id", "identity_user_id"),
        Index("ix_story_user_email", "user_email"),
        Index("ix_story_language2", "language2"),
        Index("ix_story_created_at", "created_at"),
        # Dashboard queries: per user, per learning language, by date
        Index("ix_story_user_lang_date", "identity_user_id", "language2", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Story(story_id={self.story_id}, language2={self.language2})>"
