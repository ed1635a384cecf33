"""
API request and response schemas.
"""

from .dashboard import DashboardResponse, LanguageStreaksResponse
from .payment import (
    CreditPackagesResponse,
    PaymentHistoryResponse,
    PaymentResultResponse,
    PayPalCaptureRequest,
    PayPalVerifyRequest,
    PayPalVerifyResponse,
)
from .story import GenerateStoryResponse, StoryListResponse, StoryResponse
from .user import (
    CreditCheckResponse,
    CreditUpdateRequest,
    OnboardingRequest,
    UserCreateRequest,
    UserResponse,
)

__all__ = [
    "DashboardResponse",
    "LanguageStreaksResponse",
    "CreditPackagesResponse",
    "PaymentHistoryResponse",
    "PaymentResultResponse",
    "PayPalCaptureRequest",
    "PayPalVerifyRequest",
    "PayPalVerifyResponse",
    "GenerateStoryResponse",
    "StoryListResponse",
    "StoryResponse",
    "CreditCheckResponse",
    "CreditUpdateRequest",
    "OnboardingRequest",
    "UserCreateRequest",
    "UserResponse",
]
