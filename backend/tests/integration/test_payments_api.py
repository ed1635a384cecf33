"""
Integration tests for payment endpoints.

Tests cover:
- Credit package catalog
- PayPal capture and verification over a mocked PayPal API
- Credit recovery and payment history
- Polar webhook signature checks, filtering, crediting and deduplication
"""

import hashlib
import hmac
import json
from unittest.mock import patch

import httpx
import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from fastapi import status
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import PayPalAdapter, PolarWebhookAdapter
from api.routes.payments import get_payment_service, get_polar_adapter
from infrastructure.database.models import User
from services.payments import PaymentService

WEBHOOK_SECRET = "polar_whs_integration"


def _capture_body(order_id: str = "ORDER-1", value: str = "4.99") -> dict:
    return {
        "id": order_id,
        "status": "COMPLETED",
        "purchase_units": [
            {"payments": {"captures": [{"id": "CAP-1", "amount": {"value": value, "currency_code": "USD"}}]}}
        ],
    }


def _polar_body(metadata: dict, event_type: str = "order.created", order_status: str = "succeeded") -> bytes:
    return json.dumps(
        {"type": event_type, "data": {"id": "polar-order-1", "status": order_status, "metadata": metadata}}
    ).encode()


def _signature(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def paypal_handler():
    """Mutable handler so a test can swap PayPal's response."""
    state = {"response": lambda request: httpx.Response(201, json=_capture_body())}

    def handler(request: httpx.Request) -> httpx.Response:
        return state["response"](request)

    handler.state = state
    return handler


@pytest.fixture
def use_mock_paypal(db_session: AsyncSession, paypal_handler):
    from main import app

    def override() -> PaymentService:
        adapter = PayPalAdapter(
            client_id="client-id",
            secret="client-secret",
            base_url="https://api-m.sandbox.paypal.com",
            transport=httpx.MockTransport(paypal_handler),
        )
        return PaymentService(db_session, paypal=adapter, retry_delays=(0, 0, 0))

    app.dependency_overrides[get_payment_service] = override
    app.dependency_overrides[get_polar_adapter] = lambda: PolarWebhookAdapter(webhook_secret=WEBHOOK_SECRET)
    yield


class TestPackages:
    """Tests for GET /payments/packages."""

    @pytest.mark.asyncio
    async def test_packages_are_public(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/payments/packages")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["currency"] == "USD"
        assert data["packages"][1] == {"id": 2, "name": "Popular Pack", "price": "4.99", "credits": 7}


class TestPayPalEndpoints:
    """Tests for capture, verification, recovery and history."""

    @pytest.mark.asyncio
    async def test_capture(self, async_client: AsyncClient, auth_headers: dict, use_mock_paypal):
        response = await async_client.post(
            "/api/v1/payments/paypal/capture",
            headers=auth_headers,
            json={"order_id": "ORDER-1", "package_id": 2},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert data["new_balance"] == 10
        assert data["transaction_id"] is not None

    @pytest.mark.asyncio
    async def test_capture_requires_session(self, async_client: AsyncClient, use_mock_paypal):
        response = await async_client.post(
            "/api/v1/payments/paypal/capture", json={"order_id": "ORDER-1", "package_id": 2}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_capture_rejects_empty_order(self, async_client: AsyncClient, auth_headers: dict, use_mock_paypal):
        response = await async_client.post(
            "/api/v1/payments/paypal/capture",
            headers=auth_headers,
            json={"order_id": "", "package_id": 2},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.asyncio
    async def test_verify_then_recover(self, async_client: AsyncClient, auth_headers: dict, use_mock_paypal):
        verify = await async_client.post(
            "/api/v1/payments/paypal/verify", headers=auth_headers, json={"order_id": "ORDER-1"}
        )
        assert verify.status_code == status.HTTP_200_OK
        assert verify.json() == {"success": True, "message": "Payment verified successfully!", "order_id": "ORDER-1"}

        recover = await async_client.post("/api/v1/payments/recover", headers=auth_headers)
        assert recover.json()["success"] is True
        assert recover.json()["new_balance"] == 10

        history = await async_client.get("/api/v1/payments/history", headers=auth_headers)
        transactions = history.json()["transactions"]
        assert [t["order_id"] for t in transactions] == ["ORDER-1"]
        assert transactions[0]["status"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_verify_failure_status(
        self, async_client: AsyncClient, auth_headers: dict, use_mock_paypal, paypal_handler
    ):
        paypal_handler.state["response"] = lambda request: httpx.Response(404, json={})

        response = await async_client.post(
            "/api/v1/payments/paypal/verify", headers=auth_headers, json={"order_id": "ORDER-404"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["success"] is False


class TestPolarWebhook:
    """Tests for POST /payments/webhooks/polar."""

    URL = "/api/v1/payments/webhooks/polar"

    async def _post(self, client: AsyncClient, body: bytes, signature: str | None = None):
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["polar-signature"] = signature
        return await client.post(self.URL, content=body, headers=headers)

    @pytest.mark.asyncio
    async def test_unconfigured(self, async_client: AsyncClient, use_mock_paypal):
        from main import app

        app.dependency_overrides[get_polar_adapter] = lambda: PolarWebhookAdapter(webhook_secret="")
        body = _polar_body({})

        response = await self._post(async_client, body, _signature(body))

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["detail"] == "Webhook not configured"

    @pytest.mark.asyncio
    async def test_invalid_signature(self, async_client: AsyncClient, use_mock_paypal):
        response = await self._post(async_client, _polar_body({}), "deadbeef")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_missing_signature(self, async_client: AsyncClient, use_mock_paypal):
        response = await self._post(async_client, _polar_body({}))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_invalid_json(self, async_client: AsyncClient, use_mock_paypal):
        body = b"{not json"

        response = await self._post(async_client, body, _signature(body))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Invalid JSON"

    @pytest.mark.asyncio
    async def test_ignored_event(self, async_client: AsyncClient, use_mock_paypal):
        body = _polar_body({}, order_status="pending")

        response = await self._post(async_client, body, _signature(body))

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"received": True, "processed": False}

    @pytest.mark.asyncio
    async def test_invalid_metadata(self, async_client: AsyncClient, test_user: User, use_mock_paypal):
        body = _polar_body({"userId": test_user.identity_user_id, "packageId": 42, "credits": 7})

        response = await self._post(async_client, body, _signature(body))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Invalid packageId"

    @pytest.mark.asyncio
    async def test_credits_granted_once(
        self, async_client: AsyncClient, db_session: AsyncSession, test_user: User, use_mock_paypal
    ):
        body = _polar_body({"userId": test_user.identity_user_id, "packageId": "2", "credits": "7"})

        first = await self._post(async_client, body, _signature(body))
        second = await self._post(async_client, body, _signature(body))

        assert first.status_code == status.HTTP_200_OK
        assert first.json() == {"received": True, "processed": True, "orderId": "polar-order-1", "newBalance": 10}
        assert second.json()["newBalance"] == 10

        await db_session.refresh(test_user)
        assert test_user.credits == 10

    @pytest.fixture
    def fake_redis(self):
        """Route webhook dedupe through an in-memory Redis server."""
        server = FakeServer()
        with patch("api.routes.payments.settings.redis_url", "redis://fake:6379/0"), patch(
            "api.routes.payments.aioredis.from_url",
            side_effect=lambda *args, **kwargs: FakeRedis(server=server),
        ):
            yield server

    @pytest.mark.asyncio
    async def test_duplicate_delivery_skipped(
        self, async_client: AsyncClient, db_session: AsyncSession, test_user: User, use_mock_paypal, fake_redis
    ):
        body = _polar_body({"userId": test_user.identity_user_id, "packageId": 1, "credits": 3})

        first = await self._post(async_client, body, _signature(body))
        second = await self._post(async_client, body, _signature(body))

        assert first.json()["processed"] is True
        assert second.json() == {"received": True, "processed": False, "duplicate": True}
        await db_session.refresh(test_user)
        assert test_user.credits == 6

    @pytest.mark.asyncio
    async def test_retry_after_failed_grant(
        self, async_client: AsyncClient, db_session: AsyncSession, use_mock_paypal, fake_redis
    ):
        body = _polar_body({"userId": "user_late_789", "packageId": 1, "credits": 3})

        failed = await self._post(async_client, body, _signature(body))
        assert failed.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR

        user = User(identity_user_id="user_late_789", user_email="late@example.com", user_name="Late", credits=3)
        db_session.add(user)
        await db_session.commit()

        retried = await self._post(async_client, body, _signature(body))

        assert retried.status_code == status.HTTP_200_OK
        assert retried.json() == {"received": True, "processed": True, "orderId": "polar-order-1", "newBalance": 6}
        await db_session.refresh(user)
        assert user.credits == 6

    @pytest.mark.asyncio
    async def test_unknown_user(self, async_client: AsyncClient, use_mock_paypal):
        body = _polar_body({"userId": "user_ghost", "packageId": 1, "credits": 3})

        response = await self._post(async_client, body, _signature(body))

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error"] == "Failed to process payment"

    @pytest.mark.asyncio
    async def test_health(self, async_client: AsyncClient):
        response = await async_client.get(self.URL)

        assert response.json() == {"status": "healthy", "service": "polar-webhook"}
