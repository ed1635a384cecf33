"""
Service layer for business logic.
"""

from services.compensation import CompensationService
from services.dashboard import DashboardService
from services.generation_rate_limiter import GenerationRateLimiter, generation_rate_limiter
from services.payments import PaymentService
from services.story_generation import StoryGenerationService

__all__ = [
    "CompensationService",
    "DashboardService",
    "GenerationRateLimiter",
    "generation_rate_limiter",
    "PaymentService",
    "StoryGenerationService",
]
