"""
Dashboard response schemas.
"""

from typing import Any

from pydantic import BaseModel, Field


class StoriesByLanguage(BaseModel):
    language: str
    month: str
    count: int


class DashboardResponse(BaseModel):
    mother_tongue: str
    first_name: str
    last_name: str
    total_stories_created: int
    monthly_stories_created: int
    stories_by_language: list[StoriesByLanguage] = Field(default_factory=list)
    language_streaks: dict[str, dict[str, Any]] = Field(default_factory=dict)


class LanguageStreaksResponse(BaseModel):
    language_streaks: dict[str, dict[str, Any]]


class ResetMonthlyResponse(BaseModel):
    success: bool
