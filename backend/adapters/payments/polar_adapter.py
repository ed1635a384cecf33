"""
Polar webhook adapter.

Verifies webhook signatures and parses order events carrying credit
purchase metadata.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

from core.credit_packages import CREDIT_PACKAGES
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

MIN_WEBHOOK_CREDITS = 1
MAX_WEBHOOK_CREDITS = 100


class PolarWebhookError(Exception):
    """Raised when webhook verification or parsing fails."""


@dataclass
class CreditPurchase:
    """Validated purchase metadata from a successful order."""

    user_id: str
    package_id: int
    credits: int
    order_id: str


@dataclass
class PolarWebhookEvent:
    """Polar webhook event data."""

    event_type: str
    order_id: str
    status: str | None
    metadata: dict[str, Any]
    data: dict[str, Any]

    @classmethod
    def from_webhook_payload(cls, payload: dict[str, Any]) -> "PolarWebhookEvent":
        data = payload.get("data") or {}
        return cls(
            event_type=payload.get("type") or "unknown",
            order_id=str(data.get("id") or "unknown"),
            status=data.get("status"),
            metadata=data.get("metadata") or {},
            data=data,
        )

    @property
    def is_successful_order(self) -> bool:
        return self.event_type == "order.created" and self.status == "succeeded"


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


class PolarWebhookAdapter:
    """Signature verification and event parsing for Polar webhooks."""

    def __init__(self, webhook_secret: str | None = None):
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.polar_webhook_secret

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_secret)

    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        """
        Verify a webhook signature using HMAC SHA256 (hex digest).

        Raises:
            PolarWebhookError: If the webhook secret is not configured
        """
        if not self.webhook_secret:
            raise PolarWebhookError("Webhook secret not configured. Set POLAR_WEBHOOK_SECRET.")

        if not signature:
            logger.warning("Webhook signature missing")
            return False

        expected_signature = hmac.new(
            key=self.webhook_secret.encode("utf-8"),
            msg=payload,
            digestmod=hashlib.sha256,
        ).hexdigest()

        is_valid = hmac.compare_digest(expected_signature, signature.strip())
        if not is_valid:
            logger.warning("Webhook signature verification failed")
        return is_valid

    def parse_event(self, payload: bytes) -> PolarWebhookEvent:
        """
        Parse a raw webhook body.

        Raises:
            PolarWebhookError: If the body is not a JSON object
        """
        try:
            data = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            raise PolarWebhookError("Invalid JSON") from e
        if not isinstance(data, dict):
            raise PolarWebhookError("Invalid JSON")
        return PolarWebhookEvent.from_webhook_payload(data)

    def extract_credit_purchase(self, event: PolarWebhookEvent) -> CreditPurchase:
        """
        Validate the purchase metadata of a successful order.

        Raises:
            PolarWebhookError: With a client-facing message for each violation
        """
        user_id = event.metadata.get("userId")
        package_id = _parse_int(event.metadata.get("packageId"))
        credits = _parse_int(event.metadata.get("credits"))

        if not user_id or not package_id or not credits:
            logger.error(
                "Missing required metadata: userId=%s packageId=%s credits=%s",
                bool(user_id),
                bool(package_id),
                bool(credits),
            )
            raise PolarWebhookError("Invalid webhook metadata")

        if not isinstance(user_id, str) or len(user_id) < 1:
            raise PolarWebhookError("Invalid userId")

        if package_id not in CREDIT_PACKAGES:
            raise PolarWebhookError("Invalid packageId")

        if credits < MIN_WEBHOOK_CREDITS or credits > MAX_WEBHOOK_CREDITS:
            raise PolarWebhookError("Invalid credits amount")

        return CreditPurchase(
            user_id=user_id,
            package_id=package_id,
            credits=credits,
            order_id=event.order_id,
        )
