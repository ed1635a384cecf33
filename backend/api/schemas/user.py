"""
User, credit and onboarding request/response schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator

from core.credit_packages import MAX_CREDIT_GRANT


class UserCreateRequest(BaseModel):
    """Profile data for a newly signed-up user."""

    user_email: EmailStr
    user_name: str = Field(..., min_length=1, max_length=100)
    user_image: Optional[HttpUrl] = None

    @field_validator("user_image", mode="before")
    @classmethod
    def empty_image_is_none(cls, v):
        if v == "":
            return None
        return v

    @field_validator("user_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("User name is required")
        return v


class UserResponse(BaseModel):
    """Public profile of a user."""

    model_config = ConfigDict(from_attributes=True)

    user_email: str
    user_name: str
    user_image: Optional[str] = None
    credits: int
    onboarding_completed: bool


class UserCreateResponse(BaseModel):
    success: bool
    message: str
    user: UserResponse


class CreditUpdateRequest(BaseModel):
    user_email: EmailStr
    credit_change: int = Field(..., le=MAX_CREDIT_GRANT)


class CreditUpdateResponse(BaseModel):
    success: bool
    message: str
    credits: int


class CreditCheckResponse(BaseModel):
    """Credit balance used to gate story creation."""

    has_credits: bool
    credit_count: int
    error: Optional[str] = None


class UserStatsResponse(BaseModel):
    total_stories_created: int
    monthly_stories_created: int
    credits: int


class OnboardingRequest(BaseModel):
    """
    Onboarding answers.

    Fields are validated in the route so each missing field reports its own
    "{field} is required" message in a fixed order.
    """

    identity_user_id: str
    first_name: str = ""
    last_name: str = ""
    mother_tongue: str = ""
    preferred_age_group: str = ""
    primary_goal: str = ""
    story_frequency: str = ""
    preferred_image_style: str = ""


class OnboardingResponse(BaseModel):
    success: bool
    message: str
    onboarding_completed_at: Optional[datetime] = None


class OnboardingStatusResponse(BaseModel):
    onboarding_completed: bool
