"""
Tests for the PayPal and Polar payment adapters.

Tests cover:
- PayPal capture and order lookup over a mocked transport
- PayPal error mapping (HTTP, timeout, network, invalid JSON)
- Polar webhook signature verification
- Polar event parsing and purchase metadata validation
"""

import base64
import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from adapters.payments import (
    PayPalAdapter,
    PayPalAPIError,
    PayPalAuthError,
    PayPalNetworkError,
    PayPalOrder,
    PayPalResponseError,
    PayPalTimeoutError,
    PolarWebhookAdapter,
    PolarWebhookError,
    PolarWebhookEvent,
)

PAYPAL_BASE_URL = "https://api-m.sandbox.paypal.com"
WEBHOOK_SECRET = "polar_whs_test_secret"


def _capture_response(order_id: str = "ORDER-1", status: str = "COMPLETED", value: str = "4.99") -> dict:
    return {
        "id": order_id,
        "status": status,
        "purchase_units": [
            {
                "payments": {
                    "captures": [
                        {"id": "CAPTURE-1", "amount": {"value": value, "currency_code": "USD"}},
                    ]
                }
            }
        ],
    }


def _adapter(handler) -> PayPalAdapter:
    return PayPalAdapter(
        client_id="client-id",
        secret="client-secret",
        base_url=PAYPAL_BASE_URL,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def _sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestPayPalOrder:
    """Tests for PayPalOrder parsing."""

    def test_from_capture_response(self):
        order = PayPalOrder.from_api_response(_capture_response())

        assert order.id == "ORDER-1"
        assert order.is_completed is True
        assert order.capture_id == "CAPTURE-1"
        assert order.amount == Decimal("4.99")
        assert order.currency == "USD"

    def test_without_captures(self):
        order = PayPalOrder.from_api_response({"id": "ORDER-2", "status": "APPROVED"})

        assert order.is_completed is False
        assert order.capture_id is None
        assert order.amount is None


class TestPayPalAdapter:
    """Tests for PayPalAdapter requests."""

    @pytest.mark.asyncio
    async def test_capture_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            return httpx.Response(201, json=_capture_response())

        order = await _adapter(handler).capture_order("ORDER-1", idempotency_key="key-123")

        expected_auth = base64.b64encode(b"client-id:client-secret").decode()
        assert order.is_completed
        assert seen["method"] == "POST"
        assert seen["url"] == f"{PAYPAL_BASE_URL}/v2/checkout/orders/ORDER-1/capture"
        assert seen["headers"]["Authorization"] == f"Basic {expected_auth}"
        assert seen["headers"]["PayPal-Request-Id"] == "key-123"
        assert seen["headers"]["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_get_order(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert "PayPal-Request-Id" not in request.headers
            return httpx.Response(200, json={"id": "ORDER-1", "status": "APPROVED"})

        order = await _adapter(handler).get_order("ORDER-1")

        assert order.status == "APPROVED"

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY"})

        with pytest.raises(PayPalAPIError) as exc_info:
            await _adapter(handler).capture_order("ORDER-1")

        assert exc_info.value.status_code == 422
        assert exc_info.value.retryable is False
        assert "UNPROCESSABLE_ENTITY" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        with pytest.raises(PayPalAPIError) as exc_info:
            await _adapter(handler).capture_order("ORDER-1")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(PayPalTimeoutError):
            await _adapter(handler).capture_order("ORDER-1")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(PayPalNetworkError):
            await _adapter(handler).capture_order("ORDER-1")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>not json</html>")

        with pytest.raises(PayPalResponseError):
            await _adapter(handler).capture_order("ORDER-1")

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        adapter = PayPalAdapter(client_id="", secret="", base_url=PAYPAL_BASE_URL)
        adapter.client_id = None
        adapter.secret = None

        assert adapter.is_configured is False
        with pytest.raises(PayPalAuthError):
            await adapter.capture_order("ORDER-1")


class TestPolarSignature:
    """Tests for webhook signature verification."""

    def test_valid_signature(self):
        adapter = PolarWebhookAdapter(webhook_secret=WEBHOOK_SECRET)
        body = b'{"type": "order.created"}'

        assert adapter.verify_signature(body, _sign(body)) is True

    def test_invalid_signature(self):
        adapter = PolarWebhookAdapter(webhook_secret=WEBHOOK_SECRET)
        body = b'{"type": "order.created"}'

        assert adapter.verify_signature(body, _sign(body, "wrong-secret")) is False

    def test_missing_signature(self):
        adapter = PolarWebhookAdapter(webhook_secret=WEBHOOK_SECRET)

        assert adapter.verify_signature(b"{}", None) is False

    def test_unconfigured_secret(self):
        adapter = PolarWebhookAdapter(webhook_secret="")

        assert adapter.is_configured is False
        with pytest.raises(PolarWebhookError):
            adapter.verify_signature(b"{}", "abc")


class TestPolarEvents:
    """Tests for event parsing and purchase extraction."""

    @pytest.fixture
    def adapter(self):
        return PolarWebhookAdapter(webhook_secret=WEBHOOK_SECRET)

    def _event(self, metadata: dict, status: str = "succeeded", event_type: str = "order.created") -> PolarWebhookEvent:
        return PolarWebhookEvent.from_webhook_payload(
            {"type": event_type, "data": {"id": "polar-order-1", "status": status, "metadata": metadata}}
        )

    def test_parse_event(self, adapter):
        body = json.dumps(
            {"type": "order.created", "data": {"id": "polar-order-1", "status": "succeeded", "metadata": {}}}
        ).encode()

        event = adapter.parse_event(body)

        assert event.order_id == "polar-order-1"
        assert event.is_successful_order is True

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]"])
    def test_parse_invalid_json(self, adapter, body):
        with pytest.raises(PolarWebhookError, match="Invalid JSON"):
            adapter.parse_event(body)

    def test_non_order_events_not_successful(self):
        assert self._event({}, event_type="checkout.updated").is_successful_order is False
        assert self._event({}, status="pending").is_successful_order is False

    def test_extract_purchase_parses_strings(self, adapter):
        purchase = adapter.extract_credit_purchase(
            self._event({"userId": "user_1", "packageId": "2", "credits": "7"})
        )

        assert purchase.user_id == "user_1"
        assert purchase.package_id == 2
        assert purchase.credits == 7
        assert purchase.order_id == "polar-order-1"

    @pytest.mark.parametrize(
        "metadata, message",
        [
            ({"packageId": 2, "credits": 7}, "Invalid webhook metadata"),
            ({"userId": "user_1", "packageId": "abc", "credits": 7}, "Invalid webhook metadata"),
            ({"userId": 42, "packageId": 2, "credits": 7}, "Invalid userId"),
            ({"userId": "user_1", "packageId": 9, "credits": 7}, "Invalid packageId"),
            ({"userId": "user_1", "packageId": 2, "credits": 500}, "Invalid credits amount"),
            ({"userId": "user_1", "packageId": 2, "credits": -1}, "Invalid credits amount"),
        ],
    )
    def test_extract_purchase_rejects_bad_metadata(self, adapter, metadata, message):
        with pytest.raises(PolarWebhookError, match=message):
            adapter.extract_credit_purchase(self._event(metadata))
