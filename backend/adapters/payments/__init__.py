"""Payment adapters for credit purchases."""

from .paypal_adapter import (
    PayPalAdapter,
    PayPalAPIError,
    PayPalAuthError,
    PayPalError,
    PayPalNetworkError,
    PayPalOrder,
    PayPalResponseError,
    PayPalTimeoutError,
    create_paypal_adapter,
)
from .polar_adapter import (
    CreditPurchase,
    PolarWebhookAdapter,
    PolarWebhookError,
    PolarWebhookEvent,
)

__all__ = [
    "PayPalAdapter",
    "PayPalOrder",
    "PayPalError",
    "PayPalAPIError",
    "PayPalAuthError",
    "PayPalTimeoutError",
    "PayPalNetworkError",
    "PayPalResponseError",
    "create_paypal_adapter",
    "PolarWebhookAdapter",
    "PolarWebhookEvent",
    "PolarWebhookError",
    "CreditPurchase",
]
