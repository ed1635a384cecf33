"""API Routes."""

from fastapi import APIRouter

from .dashboard import router as dashboard_router
from .health import router as health_router
from .onboarding import router as onboarding_router
from .payments import router as payments_router
from .stories import router as stories_router
from .users import router as users_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(users_router)
api_router.include_router(onboarding_router)
api_router.include_router(stories_router)
api_router.include_router(dashboard_router)
api_router.include_router(payments_router)
