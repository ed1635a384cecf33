"""
Dashboard routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import CurrentSession
from api.schemas.dashboard import DashboardResponse, LanguageStreaksResponse, ResetMonthlyResponse
from infrastructure.database.connection import get_db
from services.dashboard import DashboardService

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("", response_model=DashboardResponse)
async def get_dashboard_data(
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    data = await DashboardService(db).get_dashboard_data(claims.sub)
    if not data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return DashboardResponse(
        mother_tongue=data.mother_tongue,
        first_name=data.first_name,
        last_name=data.last_name,
        total_stories_created=data.total_stories_created,
        monthly_stories_created=data.monthly_stories_created,
        stories_by_language=data.stories_by_language,
        language_streaks=data.language_streaks,
    )


@router.post("/reset-monthly", response_model=ResetMonthlyResponse)
async def reset_monthly_stats(
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    reset = await DashboardService(db).reset_monthly_stats(claims.sub)
    if not reset:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return ResetMonthlyResponse(success=True)


@router.get("/streaks", response_model=LanguageStreaksResponse)
async def get_language_streaks(
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    streaks = await DashboardService(db).get_language_streaks(claims.sub)
    if streaks is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return LanguageStreaksResponse(language_streaks=streaks)
