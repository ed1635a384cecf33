"""
PayPal Orders v2 adapter.

Captures approved orders and reads order status. Every failure is mapped to
a PayPalError subclass so callers can record the outcome and decide whether
to retry.
"""

import base64
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


# Custom Exceptions
class PayPalError(Exception):
    """Base exception for PayPal adapter errors."""

    retryable = False


class PayPalAuthError(PayPalError):
    """Raised when PayPal credentials are not configured."""


class PayPalAPIError(PayPalError):
    """Raised when PayPal returns a non-2xx response."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.retryable = status_code >= 500


class PayPalTimeoutError(PayPalError):
    """Raised when PayPal does not answer within the configured timeout."""

    retryable = True


class PayPalNetworkError(PayPalError):
    """Raised when PayPal cannot be reached."""

    retryable = True


class PayPalResponseError(PayPalError):
    """Raised when a PayPal response body is not valid JSON."""


@dataclass
class PayPalOrder:
    """Relevant fields of a PayPal order / capture response."""

    id: str
    status: str
    capture_id: str | None
    amount: Decimal | None
    currency: str
    raw: dict[str, Any]

    @property
    def is_completed(self) -> bool:
        return self.status == "COMPLETED"

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "PayPalOrder":
        """Create an order from an Orders v2 response body."""
        capture: dict[str, Any] = {}
        purchase_units = data.get("purchase_units") or []
        if purchase_units:
            captures = (purchase_units[0].get("payments") or {}).get("captures") or []
            if captures:
                capture = captures[0]

        amount_data = capture.get("amount") or {}
        try:
            amount = Decimal(str(amount_data["value"])) if "value" in amount_data else None
        except InvalidOperation:
            amount = None

        return cls(
            id=data.get("id", ""),
            status=data.get("status", ""),
            capture_id=capture.get("id"),
            amount=amount,
            currency=amount_data.get("currency_code", "USD"),
            raw=data,
        )


class PayPalAdapter:
    """
    PayPal REST API adapter.

    Uses HTTP Basic auth with the client id and secret on every call.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize PayPal adapter.

        Args:
            client_id: PayPal REST client id (defaults to settings)
            secret: PayPal REST secret (defaults to settings)
            base_url: API base URL, sandbox or live (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            transport: Optional httpx transport, used by tests
        """
        self.client_id = client_id or settings.paypal_client_id
        self.secret = secret or settings.paypal_secret
        self.base_url = (base_url or settings.paypal_base_url).rstrip("/")
        self.timeout = timeout or settings.paypal_timeout
        self._transport = transport

        if not self.is_configured:
            logger.warning("PayPal credentials not configured. Set PAYPAL_CLIENT_ID and PAYPAL_SECRET.")

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.secret and self.base_url)

    def _get_headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        """Get HTTP headers for API requests."""
        if not self.is_configured:
            raise PayPalAuthError("PayPal configuration missing")

        token = base64.b64encode(f"{self.client_id}:{self.secret}".encode()).decode()
        headers = {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["PayPal-Request-Id"] = idempotency_key
            headers["Prefer"] = "return=representation"
        return headers

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """
        Make HTTP request to the PayPal API.

        Raises:
            PayPalTimeoutError, PayPalNetworkError, PayPalAPIError, PayPalResponseError
        """
        url = f"{self.base_url}/{endpoint}"
        headers = self._get_headers(idempotency_key)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                logger.info("Making %s request to %s", method, endpoint)
                response = await client.request(method, url, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("PayPal API timeout: %s", endpoint)
            raise PayPalTimeoutError(f"PayPal request timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            logger.error("PayPal API network error: %s", e)
            raise PayPalNetworkError(f"Request failed: {e}") from e

        if response.is_error:
            logger.error(
                "PayPal API HTTP error %s on %s: %s",
                response.status_code,
                endpoint,
                response.text[:500],
            )
            raise PayPalAPIError(
                f"PayPal API error: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            logger.error("Failed to parse PayPal response: %s", e)
            raise PayPalResponseError("Invalid response from PayPal") from e

    async def capture_order(self, order_id: str, idempotency_key: str | None = None) -> PayPalOrder:
        """
        Capture an approved order.

        Args:
            order_id: PayPal order id approved by the buyer
            idempotency_key: PayPal-Request-Id value; generated when omitted

        Returns:
            PayPalOrder describing the capture
        """
        key = idempotency_key or f"{order_id}-{int(time.time() * 1000)}"
        data = await self._make_request(
            "POST",
            f"v2/checkout/orders/{order_id}/capture",
            idempotency_key=key,
        )
        return PayPalOrder.from_api_response(data)

    async def get_order(self, order_id: str) -> PayPalOrder:
        """Fetch an order's current status."""
        data = await self._make_request("GET", f"v2/checkout/orders/{order_id}")
        return PayPalOrder.from_api_response(data)


# Factory function for easy instantiation
def create_paypal_adapter(
    client_id: str | None = None,
    secret: str | None = None,
    base_url: str | None = None,
) -> PayPalAdapter:
    return PayPalAdapter(client_id=client_id, secret=secret, base_url=base_url)
