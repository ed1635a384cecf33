"""
Dashboard statistics and per-language weekly streaks.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import Story, User, as_utc

logger = logging.getLogger(__name__)

# Previous week must reach this many stories for the weekly streak to grow
WEEKLY_STREAK_GOAL = 2


@dataclass
class DashboardData:
    mother_tongue: str
    first_name: str
    last_name: str
    total_stories_created: int
    monthly_stories_created: int
    stories_by_language: list[dict[str, Any]] = field(default_factory=list)
    language_streaks: dict[str, dict[str, Any]] = field(default_factory=dict)


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def needs_monthly_reset(last_reset: Optional[datetime], now: datetime) -> bool:
    if last_reset is None:
        return True
    last_reset = as_utc(last_reset)
    return last_reset.month != now.month or last_reset.year != now.year


def apply_story_to_streak(entry: Optional[dict[str, Any]], today: date) -> dict[str, Any]:
    """
    Return the streak entry after one more story written on ``today``.

    Weeks start on Monday. Entering a new week grows ``weeklyStreak`` only if
    the previous week met the goal, otherwise the streak resets to zero.
    """
    data = {
        "totalStories": 0,
        "currentWeekStories": 0,
        "weeklyStreak": 0,
        "lastStoryDate": today.isoformat(),
    }
    data.update(entry or {})

    try:
        last_story_day = date.fromisoformat(str(data["lastStoryDate"])[:10])
    except ValueError:
        last_story_day = today

    if week_start(today) > week_start(last_story_day):
        if data["currentWeekStories"] >= WEEKLY_STREAK_GOAL:
            data["weeklyStreak"] += 1
        else:
            data["weeklyStreak"] = 0
        data["currentWeekStories"] = 1
    else:
        data["currentWeekStories"] += 1

    data["totalStories"] += 1
    data["lastStoryDate"] = today.isoformat()
    return data


class DashboardService:
    """Reads and updates the per-user dashboard statistics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_user(self, identity_user_id: str, for_update: bool = False) -> Optional[User]:
        query = select(User).where(User.identity_user_id == identity_user_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_dashboard_data(
        self, identity_user_id: str, now: Optional[datetime] = None
    ) -> Optional[DashboardData]:
        """
        Collect the dashboard for a user, resetting the monthly counter when
        the month has changed since the last reset.

        Returns None when the user does not exist.
        """
        now = now or datetime.now(timezone.utc)
        user = await self._get_user(identity_user_id)
        if not user:
            return None

        if needs_monthly_reset(user.last_monthly_reset, now):
            await self.reset_monthly_stats(identity_user_id, now=now)

        result = await self.db.execute(
            select(Story.language2, Story.created_at).where(
                Story.identity_user_id == identity_user_id
            )
        )
        rows = result.all()

        grouped: Counter = Counter()
        first_of_month = month_start(now)
        monthly_count = 0
        for language, created_at in rows:
            created_at = as_utc(created_at)
            grouped[(language, created_at.strftime("%b %Y"))] += 1
            if created_at >= first_of_month:
                monthly_count += 1

        stories_by_language = [
            {"language": language, "month": month, "count": count}
            for (language, month), count in grouped.items()
        ]

        return DashboardData(
            mother_tongue=user.mother_tongue or "",
            first_name=user.first_name or "",
            last_name=user.last_name or "",
            total_stories_created=user.total_stories_created or 0,
            monthly_stories_created=monthly_count,
            stories_by_language=stories_by_language,
            language_streaks=dict(user.language_streaks or {}),
        )

    async def reset_monthly_stats(self, identity_user_id: str, now: Optional[datetime] = None) -> bool:
        """Zero the monthly counter and stamp the reset. False when the user is missing."""
        now = now or datetime.now(timezone.utc)
        user = await self._get_user(identity_user_id)
        if not user:
            return False

        user.monthly_stories_created = 0
        user.last_monthly_reset = now
        await self.db.commit()
        logger.info("Monthly stats reset for user %s", identity_user_id)
        return True

    async def update_language_streak(
        self, identity_user_id: str, language: str, now: Optional[datetime] = None
    ) -> bool:
        """Count a new story in ``language`` against the user's streaks and totals."""
        now = now or datetime.now(timezone.utc)
        user = await self._get_user(identity_user_id, for_update=True)
        if not user:
            logger.warning("Streak update skipped, user %s not found", identity_user_id)
            return False

        streaks = dict(user.language_streaks or {})
        streaks[language] = apply_story_to_streak(streaks.get(language), now.date())

        # Assign a new dict so the JSON column is flagged dirty
        user.language_streaks = streaks
        user.total_stories_created = (user.total_stories_created or 0) + 1
        user.monthly_stories_created = (user.monthly_stories_created or 0) + 1
        await self.db.commit()
        return True

    async def get_language_streaks(self, identity_user_id: str) -> Optional[dict[str, dict[str, Any]]]:
        user = await self._get_user(identity_user_id)
        if not user:
            return None
        return dict(user.language_streaks or {})

    async def get_user_stats(self, identity_user_id: str) -> Optional[dict[str, int]]:
        user = await self._get_user(identity_user_id)
        if not user:
            return None
        return {
            "total_stories_created": user.total_stories_created or 0,
            "monthly_stories_created": user.monthly_stories_created or 0,
            "credits": user.credits,
        }
