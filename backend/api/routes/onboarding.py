"""
Onboarding routes.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import CurrentSession
from api.schemas.user import OnboardingRequest, OnboardingResponse, OnboardingStatusResponse
from infrastructure.database.connection import get_db
from infrastructure.database.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["Onboarding"])

# Checked in this order; the first blank one is reported
ONBOARDING_FIELDS = (
    "first_name",
    "last_name",
    "mother_tongue",
    "preferred_age_group",
    "primary_goal",
    "story_frequency",
    "preferred_image_style",
)


@router.post("", response_model=OnboardingResponse)
async def complete_onboarding(
    request: OnboardingRequest,
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    if claims.sub != request.identity_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    for field_name in ONBOARDING_FIELDS:
        if not getattr(request, field_name).strip():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{field_name} is required",
            )

    result = await db.execute(select(User).where(User.identity_user_id == request.identity_user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    first_name = request.first_name.strip()
    last_name = request.last_name.strip()
    now = datetime.now(timezone.utc)

    user.first_name = first_name
    user.last_name = last_name
    user.user_name = f"{first_name} {last_name}"
    user.mother_tongue = request.mother_tongue.strip()
    user.preferred_age_group = request.preferred_age_group.strip()
    user.primary_goal = request.primary_goal.strip()
    user.story_frequency = request.story_frequency.strip()
    user.preferred_image_style = request.preferred_image_style.strip()
    user.onboarding_completed = True
    user.onboarding_completed_at = now
    await db.commit()

    logger.info("Onboarding completed for user %s", claims.sub)
    return OnboardingResponse(
        success=True,
        message="Onboarding completed successfully",
        onboarding_completed_at=now,
    )


@router.get("/status", response_model=OnboardingStatusResponse)
async def check_user_onboarding(
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(User.onboarding_completed).where(User.identity_user_id == claims.sub)
    )
    completed = result.scalar_one_or_none()
    return OnboardingStatusResponse(onboarding_completed=bool(completed))
