"""
Credit purchase routes: package catalog, PayPal capture and verification,
credit recovery, payment history and the Polar webhook.
"""

import logging
from typing import Annotated

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import PolarWebhookAdapter, PolarWebhookError
from api.dependencies import CurrentSession
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.payment import (
    CreditPackageInfo,
    CreditPackagesResponse,
    PaymentHistoryResponse,
    PaymentResultResponse,
    PaymentTransactionResponse,
    PayPalCaptureRequest,
    PayPalVerifyRequest,
    PayPalVerifyResponse,
)
from core.credit_packages import CREDIT_PACKAGES, CURRENCY
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from services.payments import PaymentResult, PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

WEBHOOK_DEDUP_TTL_SECONDS = 86400


def get_payment_service(db: AsyncSession = Depends(get_db)) -> PaymentService:
    return PaymentService(db)


def get_polar_adapter() -> PolarWebhookAdapter:
    return PolarWebhookAdapter()


def _result_response(result: PaymentResult) -> PaymentResultResponse:
    return PaymentResultResponse(
        success=result.success,
        message=result.message,
        new_balance=result.new_balance,
        error=result.error,
        can_retry=result.can_retry,
        transaction_id=result.transaction_id,
    )


@router.get("/packages", response_model=CreditPackagesResponse)
async def get_credit_packages():
    """Purchasable credit packs. Public."""
    return CreditPackagesResponse(
        currency=CURRENCY,
        packages=[
            CreditPackageInfo(id=p.id, name=p.name, price=str(p.price), credits=p.credits)
            for p in CREDIT_PACKAGES.values()
        ],
    )


@router.post("/paypal/capture", response_model=PaymentResultResponse)
@limiter.limit(get_rate_limit("payment"))
async def process_paypal_payment(
    request: Request,
    body: PayPalCaptureRequest,
    claims: CurrentSession,
    service: PaymentService = Depends(get_payment_service),
):
    """Capture an approved PayPal order and add the package's credits."""
    result = await service.process_paypal_payment(claims.sub, body.order_id, body.package_id)
    return _result_response(result)


@router.post("/paypal/verify", response_model=PayPalVerifyResponse)
@limiter.limit(get_rate_limit("payment"))
async def verify_paypal_payment(
    request: Request,
    body: PayPalVerifyRequest,
    claims: CurrentSession,
    service: PaymentService = Depends(get_payment_service),
):
    """Capture an order and record the outcome without granting credits."""
    result = await service.verify_paypal_order(claims.sub, body.order_id)
    content = PayPalVerifyResponse(success=result.success, message=result.message, order_id=result.order_id)
    if result.success:
        return content
    return JSONResponse(status_code=result.status_code, content=content.model_dump())


@router.post("/recover", response_model=PaymentResultResponse)
async def recover_missing_credits(
    claims: CurrentSession,
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.recover_missing_credits(claims.sub)
    return _result_response(result)


@router.get("/history", response_model=PaymentHistoryResponse)
async def get_user_payment_history(
    claims: CurrentSession,
    service: PaymentService = Depends(get_payment_service),
):
    transactions = await service.get_payment_history(claims.sub)
    return PaymentHistoryResponse(
        success=True,
        message="Payment history retrieved successfully",
        transactions=[PaymentTransactionResponse.model_validate(t) for t in transactions],
    )


def _delivery_key(order_id: str, event_type: str) -> str:
    return f"webhook:polar:{event_type}:{order_id}"


async def _already_delivered(order_id: str, event_type: str) -> bool:
    """
    True when this delivery was already processed successfully.

    Redis errors are logged and the delivery is processed; crediting is
    idempotent on order id.
    """
    if not settings.redis_url:
        return False
    try:
        r = aioredis.from_url(settings.redis_url)
        seen = await r.exists(_delivery_key(order_id, event_type))
        await r.aclose()
        return bool(seen)
    except Exception as redis_err:
        logger.warning("Webhook idempotency check unavailable (Redis error): %s", redis_err)
        return False


async def _mark_delivered(order_id: str, event_type: str) -> None:
    """Remember a processed delivery. Failed grants are never marked so Polar can retry."""
    if not settings.redis_url:
        return
    try:
        r = aioredis.from_url(settings.redis_url)
        await r.set(_delivery_key(order_id, event_type), "1", ex=WEBHOOK_DEDUP_TTL_SECONDS)
        await r.aclose()
    except Exception as redis_err:
        logger.warning("Could not record Polar delivery for order %s: %s", order_id, redis_err)



@router.post("/webhooks/polar")
@limiter.limit(get_rate_limit("webhook"))
async def handle_polar_webhook(
    request: Request,
    polar_signature: Annotated[str | None, Header(alias="polar-signature")] = None,
    polar: PolarWebhookAdapter = Depends(get_polar_adapter),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Handle Polar order webhooks.

    Only succeeded ``order.created`` events grant credits.
    """
    body = await request.body()

    if not polar.is_configured:
        logger.error("Webhook rejected: POLAR_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook not configured")

    if not polar.verify_signature(body, polar_signature):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = polar.parse_event(body)
    except PolarWebhookError as e:
        logger.error("Invalid JSON in Polar webhook payload: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    if not event.is_successful_order:
        logger.info("Polar webhook %s ignored", event.event_type)
        return {"received": True, "processed": False}

    try:
        purchase = polar.extract_credit_purchase(event)
    except PolarWebhookError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if await _already_delivered(event.order_id, event.event_type):
        logger.info("Duplicate Polar webhook for order %s, skipping", event.order_id)
        return {"received": True, "processed": False, "duplicate": True}

    result = await service.add_credits_to_user(
        purchase.user_id, purchase.credits, purchase.order_id, purchase.package_id
    )
    if not result.success:
        logger.error("Polar webhook processing failed for order %s: %s", purchase.order_id, result.error)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to process payment", "details": result.message},
        )

    await _mark_delivered(purchase.order_id, event.event_type)

    return {
        "received": True,
        "processed": True,
        "orderId": purchase.order_id,
        "newBalance": result.new_balance,
    }


@router.get("/webhooks/polar")
async def polar_webhook_health():
    return {"status": "healthy", "service": "polar-webhook"}
