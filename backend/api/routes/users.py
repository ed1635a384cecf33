"""
User profile and credit routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import CurrentSession, CurrentUser
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.user import (
    CreditCheckResponse,
    CreditUpdateRequest,
    CreditUpdateResponse,
    UserCreateRequest,
    UserCreateResponse,
    UserResponse,
    UserStatsResponse,
)
from infrastructure.database.connection import get_db
from infrastructure.database.models import DEFAULT_STARTING_CREDITS, User
from services.dashboard import DashboardService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

_email_adapter = TypeAdapter(EmailStr)


@router.post("", response_model=UserCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: UserCreateRequest,
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    """
    Create the profile row for the signed-in identity.

    New users start with three credits and onboarding pending.
    """
    result = await db.execute(
        select(User).where(
            or_(
                User.identity_user_id == claims.sub,
                User.user_email == request.user_email,
            )
        )
    )
    if result.scalars().first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")

    user = User(
        identity_user_id=claims.sub,
        user_email=request.user_email,
        user_name=request.user_name,
        user_image=str(request.user_image) if request.user_image else None,
        credits=DEFAULT_STARTING_CREDITS,
        onboarding_completed=False,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")
    await db.refresh(user)

    logger.info("Created user %s", claims.sub)
    return UserCreateResponse(
        success=True,
        message="User created successfully",
        user=UserResponse.model_validate(user),
    )


@router.get("/me", response_model=UserResponse)
async def fetch_user(
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.identity_user_id == claims.sub))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserResponse.model_validate(user)


@router.get("/by-email/{email}", response_model=UserResponse)
async def fetch_user_by_email(
    email: str,
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    try:
        email = _email_adapter.validate_python(email)
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid email format")

    result = await db.execute(select(User).where(User.user_email == email))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserResponse.model_validate(user)


@router.patch("/me/credits", response_model=CreditUpdateResponse)
@limiter.limit(get_rate_limit("credits"))
async def update_user_credits(
    request: Request,
    body: CreditUpdateRequest,
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    """
    Add or use credits.

    Negative changes never take the balance below zero.
    """
    result = await db.execute(
        select(User).where(User.identity_user_id == claims.sub).with_for_update()
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if user.user_email.lower() != body.user_email.lower():
        logger.warning("Credit update rejected for %s: email mismatch", claims.sub)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized - Email does not match authenticated user",
        )

    user.credits = max(0, user.credits + body.credit_change)
    await db.commit()

    message = "Credits added successfully" if body.credit_change > 0 else "Credits used successfully"
    return CreditUpdateResponse(success=True, message=message, credits=user.credits)


@router.get("/me/credits", response_model=CreditCheckResponse)
async def check_user_credits(
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    stats = await DashboardService(db).get_user_stats(claims.sub)
    if not stats:
        return CreditCheckResponse(has_credits=False, credit_count=0, error="Unable to fetch user stats")
    return CreditCheckResponse(has_credits=stats["credits"] > 0, credit_count=stats["credits"])


@router.get("/me/stats", response_model=UserStatsResponse)
async def get_user_stats(current_user: CurrentUser):
    return UserStatsResponse(
        total_stories_created=current_user.total_stories_created or 0,
        monthly_stories_created=current_user.monthly_stories_created or 0,
        credits=current_user.credits,
    )
