"""
Story request/response schemas.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class BookTitle(BaseModel):
    language1: str
    language2: str


class StoryListItem(BaseModel):
    """A story in the user's list, with the title normalized per language."""

    story_id: str
    story_subject: str
    story_type: str
    age_group: str
    image_style: Optional[str] = None
    genre: str
    language1: str
    language2: str
    cover_image: Optional[str] = None
    book_title: BookTitle
    output: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None


class StoryListResponse(BaseModel):
    stories: list[StoryListItem]
    total: int


class StoryResponse(BaseModel):
    """A full story record."""

    model_config = ConfigDict(from_attributes=True)

    story_id: str
    story_subject: str
    story_type: str
    age_group: str
    image_style: Optional[str] = None
    genre: str
    language1: str
    language2: str
    output: dict[str, Any]
    cover_image: str
    user_name: str
    user_image: Optional[str] = None
    created_at: Optional[datetime] = None


class StoryMetadataResponse(BaseModel):
    story_id: str
    title: str
    story_type: str
    age_group: str
    genre: str
    image_style: Optional[str] = None
    language1: str
    language2: str
    chapter_count: int
    author_name: str
    created_at: Optional[datetime] = None


class StoryAccessResponse(BaseModel):
    allowed: bool


class StoryOwnershipResponse(BaseModel):
    is_owner: bool


class DifficultWord(BaseModel):
    word: str
    meaning: str = ""
    pronunciation: Optional[str] = None


class VocabularyResponse(BaseModel):
    story_id: str
    words: list[DifficultWord]


class MoralResponse(BaseModel):
    story_id: str
    moral: str


class StoryHistoryResponse(BaseModel):
    total_stories: int
    this_month_stories: int
    language_breakdown: dict[str, int]


class GenerateStoryResponse(BaseModel):
    """Outcome of a generation request, shaped like the wizard's action state."""

    success: bool
    message: str
    story_id: Optional[str] = None
    credits_remaining: Optional[int] = None
    processing_time_ms: Optional[int] = None
    errors: dict[str, list[str]] = Field(default_factory=dict)


class StoryOptionSchema(BaseModel):
    label: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_free: bool = True


class StoryOptionsResponse(BaseModel):
    story_types: list[StoryOptionSchema]
    age_groups: list[StoryOptionSchema]
    image_styles: list[StoryOptionSchema]
    genres: list[str]
    languages: list[str]
    subject_min_length: int
    subject_max_length: int
