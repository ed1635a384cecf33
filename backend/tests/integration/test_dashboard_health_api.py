"""
Integration tests for dashboard and health endpoints.
"""

from datetime import datetime, timezone

import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import Story, User
from services.dashboard import DashboardService


class TestDashboard:
    """Tests for /dashboard endpoints."""

    @pytest.mark.asyncio
    async def test_dashboard(self, async_client: AsyncClient, auth_headers: dict, test_story: Story):
        response = await async_client.get("/api/v1/dashboard", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["first_name"] == "Test"
        assert data["monthly_stories_created"] == 1
        month = datetime.now(timezone.utc).strftime("%b %Y")
        assert data["stories_by_language"] == [{"language": "Spanish", "month": month, "count": 1}]

    @pytest.mark.asyncio
    async def test_dashboard_without_profile(self, async_client: AsyncClient, other_auth_headers: dict):
        response = await async_client.get("/api/v1/dashboard", headers=other_auth_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_reset_monthly(
        self, async_client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        test_user.monthly_stories_created = 4
        await db_session.commit()

        response = await async_client.post("/api/v1/dashboard/reset-monthly", headers=auth_headers)

        assert response.json() == {"success": True}
        await db_session.refresh(test_user)
        assert test_user.monthly_stories_created == 0

    @pytest.mark.asyncio
    async def test_streaks(
        self, async_client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        empty = await async_client.get("/api/v1/dashboard/streaks", headers=auth_headers)
        assert empty.json() == {"language_streaks": {}}

        await DashboardService(db_session).update_language_streak(test_user.identity_user_id, "French")

        response = await async_client.get("/api/v1/dashboard/streaks", headers=auth_headers)
        streak = response.json()["language_streaks"]["French"]
        assert streak["totalStories"] == 1
        assert streak["currentWeekStories"] == 1


class TestHealth:
    """Tests for health probes."""

    @pytest.mark.asyncio
    async def test_health(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"
        assert response.json()["app"] == "StoriesOnTips API"

    @pytest.mark.asyncio
    async def test_liveness(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/live")

        assert response.json() == {"alive": True}

    @pytest.mark.asyncio
    async def test_database(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/db")

        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_redis_not_configured(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/redis")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_readiness(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/ready")

        assert response.json() == {"ready": True, "database": "ok", "redis": "degraded"}

    @pytest.mark.asyncio
    async def test_generation_components(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/generation")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert set(data["components"]) == {"environment", "database", "replicate", "storage"}
        assert data["components"]["database"] is True
        assert data["is_healthy"] == all(data["components"].values())

    @pytest.mark.asyncio
    async def test_root(self, async_client: AsyncClient):
        response = await async_client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["X-Content-Type-Options"] == "nosniff"
