"""
Credit purchases: PayPal capture, order verification, Polar webhook credits,
recovery of credits for verified orders, and payment history.

Every state change of a payment transaction is mirrored by a
PaymentAuditLog row.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import (
    PayPalAdapter,
    PayPalAPIError,
    PayPalAuthError,
    PayPalError,
    PayPalNetworkError,
    PayPalOrder,
    PayPalResponseError,
    PayPalTimeoutError,
)
from core.credit_packages import (
    CREDIT_PACKAGES,
    CURRENCY,
    CreditPackage,
    amount_matches,
    get_package,
)
from infrastructure.database.models import (
    PaymentAuditLog,
    PaymentStatus,
    PaymentTransaction,
    User,
)

logger = logging.getLogger(__name__)

MAX_CAPTURE_ATTEMPTS = 3
CAPTURE_RETRY_DELAYS: tuple[float, ...] = (1.0, 2.0, 4.0)
PAYMENT_HISTORY_LIMIT = 50

# Audit rows written when credits were actually added to a balance
CREDIT_GRANTING_AUDITS = (
    (PaymentStatus.COMPLETED.value, "system"),
    (PaymentStatus.COMPLETED.value, "polar"),
    (PaymentStatus.CREDITS_RECOVERED.value, "recovery_system"),
)

PAYMENT_UNAVAILABLE_MESSAGE = "Payment service is temporarily unavailable. Please contact support."


class PaymentProcessingError(Exception):
    """Raised when the credit-granting database transaction fails."""


@dataclass
class PaymentResult:
    success: bool
    message: str
    new_balance: Optional[int] = None
    error: Optional[str] = None
    can_retry: Optional[bool] = None
    transaction_id: Optional[str] = None


@dataclass
class VerificationResult:
    success: bool
    message: str
    status_code: int = 200
    order_id: Optional[str] = None


@dataclass
class _CaptureOutcome:
    success: bool
    order: Optional[PayPalOrder] = None
    error: Optional[str] = None
    retryable: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _status_message(status: str) -> str:
    if status == "APPROVED":
        return "Payment was approved but not captured. Please try again."
    if status == "CANCELLED":
        return "Payment was cancelled. Please start a new payment."
    if status == "PAYER_ACTION_REQUIRED":
        return "Additional action required from payer. Please complete the payment process."
    return f"Payment is in {status} status. Please try again or contact support."


class PaymentService:
    """Payment workflows backed by PayPal and the local ledger."""

    def __init__(
        self,
        db: AsyncSession,
        paypal: Optional[PayPalAdapter] = None,
        retry_delays: Sequence[float] = CAPTURE_RETRY_DELAYS,
    ):
        self.db = db
        self.paypal = paypal or PayPalAdapter()
        self.retry_delays = tuple(retry_delays)

    # ------------------------------------------------------------------
    # Ledger primitives
    # ------------------------------------------------------------------

    async def _get_transaction(self, order_id: str) -> Optional[PaymentTransaction]:
        result = await self.db.execute(
            select(PaymentTransaction).where(PaymentTransaction.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def _get_user(self, identity_user_id: str, for_update: bool = False) -> Optional[User]:
        query = select(User).where(User.identity_user_id == identity_user_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def upsert_transaction(
        self,
        user_id: str,
        order_id: str,
        status: str,
        raw_payload: dict[str, Any],
        amount: str = "0",
        currency: str = CURRENCY,
        capture_id: Optional[str] = None,
        verified_at: Optional[datetime] = None,
    ) -> tuple[PaymentTransaction, Optional[str]]:
        """
        Insert or update the transaction for ``order_id``.

        A COMPLETED transaction keeps its status when a later outcome fails.

        Returns:
            Tuple of (transaction, previous_status); previous_status is None
            for a new row
        """
        transaction = await self._get_transaction(order_id)
        if transaction is None:
            transaction = PaymentTransaction(
                user_id=user_id,
                order_id=order_id,
                capture_id=capture_id,
                amount=amount,
                currency=currency,
                status=status,
                raw_payload=raw_payload,
                verified_at=verified_at,
            )
            self.db.add(transaction)
            await self.db.flush()
            return transaction, None

        previous_status = transaction.status
        if previous_status == PaymentStatus.COMPLETED.value and status != PaymentStatus.COMPLETED.value:
            logger.warning(
                "Not downgrading completed order %s to %s", order_id, status
            )
            return transaction, previous_status

        transaction.status = status
        transaction.raw_payload = raw_payload
        if capture_id:
            transaction.capture_id = capture_id
        if amount != "0":
            transaction.amount = amount
            transaction.currency = currency
        if verified_at:
            transaction.verified_at = verified_at
        await self.db.flush()
        return transaction, previous_status

    async def create_audit_log(
        self,
        transaction_id: int,
        new_status: str,
        changed_by: str,
        reason: Optional[str] = None,
        previous_status: Optional[str] = None,
    ) -> PaymentAuditLog:
        audit = PaymentAuditLog(
            transaction_id=transaction_id,
            previous_status=previous_status,
            new_status=new_status,
            changed_by=changed_by,
            reason=reason,
        )
        self.db.add(audit)
        await self.db.flush()
        return audit

    async def _record_outcome(
        self,
        user_id: str,
        order_id: str,
        status: str,
        changed_by: str,
        reason: str,
        raw_payload: dict[str, Any],
        amount: str = "0",
        currency: str = CURRENCY,
        capture_id: Optional[str] = None,
        verified_at: Optional[datetime] = None,
    ) -> Optional[PaymentTransaction]:
        """Persist a verification outcome. Failures are logged and not raised."""
        try:
            transaction, previous_status = await self.upsert_transaction(
                user_id=user_id,
                order_id=order_id,
                status=status,
                raw_payload=raw_payload,
                amount=amount,
                currency=currency,
                capture_id=capture_id,
                verified_at=verified_at,
            )
            await self.create_audit_log(
                transaction_id=transaction.id,
                previous_status=previous_status,
                new_status=status,
                changed_by=changed_by,
                reason=reason,
            )
            await self.db.commit()
            return transaction
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to record payment outcome %s for order %s: %s", status, order_id, e)
            return None

    # ------------------------------------------------------------------
    # PayPal capture with credit grant
    # ------------------------------------------------------------------

    async def _capture(self, order_id: str, request_id: str) -> _CaptureOutcome:
        idempotency_key = f"{order_id}-{request_id}-{int(_now().timestamp() * 1000)}"
        try:
            try:
                order = await self.paypal.capture_order(order_id, idempotency_key)
            except PayPalAPIError as e:
                if e.status_code != 422:
                    raise
                # Already captured or otherwise unprocessable, read the order instead
                order = await self.paypal.get_order(order_id)
                if not order.is_completed:
                    return _CaptureOutcome(False, order, f"Order status: {order.status}", False)
        except PayPalAuthError as e:
            return _CaptureOutcome(False, error=str(e), retryable=False)
        except PayPalError as e:
            return _CaptureOutcome(False, error=str(e), retryable=e.retryable)

        if not order.is_completed:
            return _CaptureOutcome(
                False,
                order,
                f"Payment not completed. Status: {order.status}",
                retryable=order.status == "APPROVED",
            )
        return _CaptureOutcome(True, order)

    async def _existing_completed(self, order_id: str, user_id: str) -> Optional[PaymentResult]:
        transaction = await self._get_transaction(order_id)
        if not transaction or transaction.user_id != user_id:
            return None
        if transaction.status != PaymentStatus.COMPLETED.value:
            return None
        user = await self._get_user(user_id)
        if not user:
            return None
        return PaymentResult(
            success=True,
            message="Payment already processed successfully",
            new_balance=user.credits,
            transaction_id=str(transaction.id),
        )

    async def _grant_package(
        self,
        user_id: str,
        order_id: str,
        package: CreditPackage,
        order: PayPalOrder,
        request_id: str,
        attempt: int,
    ) -> tuple[int, PaymentTransaction]:
        """Insert the transaction, add credits and audit, all in one commit."""
        try:
            user = await self._get_user(user_id, for_update=True)
            if not user:
                raise PaymentProcessingError("User not found during credit update")

            transaction = await self._get_transaction(order_id)
            if transaction and transaction.status == PaymentStatus.COMPLETED.value:
                raise PaymentProcessingError("Duplicate order detected (orderId already recorded)")

            raw_payload = {
                "provider": "paypal",
                "packageId": package.id,
                "packageName": package.name,
                "credits": package.credits,
                "attempt": attempt,
                "requestId": request_id,
                "paypalData": {
                    "captureId": order.capture_id,
                    "status": order.status,
                    "amount": str(order.amount) if order.amount is not None else None,
                },
                "processedAt": _now().isoformat(),
            }

            previous_status = transaction.status if transaction else None
            if transaction is None:
                transaction = PaymentTransaction(user_id=user_id, order_id=order_id)
                self.db.add(transaction)
            transaction.capture_id = order.capture_id
            transaction.amount = str(package.price)
            transaction.currency = CURRENCY
            transaction.status = PaymentStatus.COMPLETED.value
            transaction.raw_payload = raw_payload
            transaction.verified_at = _now()
            await self.db.flush()

            user.credits += package.credits

            await self.create_audit_log(
                transaction_id=transaction.id,
                previous_status=previous_status,
                new_status=PaymentStatus.COMPLETED.value,
                changed_by="system",
                reason=f"Payment processed successfully - Added {package.credits} credits",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return user.credits, transaction

    async def process_paypal_payment(self, user_id: str, order_id: str, package_id: int) -> PaymentResult:
        """
        Capture a PayPal order and add the package's credits to the user.

        Retries up to three times with 1s, 2s and 4s delays on retryable
        capture failures.
        """
        request_id = uuid.uuid4().hex[:8]

        for attempt in range(1, MAX_CAPTURE_ATTEMPTS + 1):
            delay = self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)] if self.retry_delays else 0
            try:
                existing = await self._existing_completed(order_id, user_id)
                if existing:
                    logger.info("[%s] Order %s already processed for %s", request_id, order_id, user_id)
                    return existing

                package = get_package(package_id)
                if not package:
                    logger.warning("[%s] Invalid package id %s", request_id, package_id)
                    return PaymentResult(success=False, message="Invalid package selected. Please try again.")

                outcome = await self._capture(order_id, request_id)
                if not outcome.success:
                    logger.warning(
                        "[%s] PayPal verification failed for %s (attempt %d): %s",
                        request_id,
                        order_id,
                        attempt,
                        outcome.error,
                    )
                    if attempt < MAX_CAPTURE_ATTEMPTS and outcome.retryable:
                        await asyncio.sleep(delay)
                        continue
                    return PaymentResult(
                        success=False,
                        message="Payment verification failed. Please try again or contact support.",
                        error=outcome.error,
                        can_retry=outcome.retryable,
                    )

                order = outcome.order
                if order.amount is None or not amount_matches(package, order.amount):
                    logger.warning(
                        "[%s] Amount mismatch for %s: expected %s, received %s",
                        request_id,
                        order_id,
                        package.price,
                        order.amount,
                    )
                    return PaymentResult(success=False, message="Payment amount mismatch. Please try again.")

                new_balance, transaction = await self._grant_package(
                    user_id, order_id, package, order, request_id, attempt
                )
                logger.info(
                    "[%s] Added %d credits to user %s for order %s",
                    request_id,
                    package.credits,
                    user_id,
                    order_id,
                )
                return PaymentResult(
                    success=True,
                    message=(
                        f"Successfully purchased {package.name}! "
                        f"{package.credits} credits added to your account."
                    ),
                    new_balance=new_balance,
                    transaction_id=str(transaction.id),
                )
            except Exception as e:
                logger.error("[%s] Payment processing error (attempt %d): %s", request_id, attempt, e)
                if attempt < MAX_CAPTURE_ATTEMPTS and isinstance(e, (TimeoutError, ConnectionError)):
                    await asyncio.sleep(delay)
                    continue
                return PaymentResult(
                    success=False,
                    message="Payment processing failed. Please try again or contact support.",
                    error=str(e),
                    can_retry=attempt < MAX_CAPTURE_ATTEMPTS,
                )

        return PaymentResult(
            success=False,
            message="Payment failed after multiple attempts. Please contact support if this continues.",
            can_retry=False,
        )

    # ------------------------------------------------------------------
    # Order verification
    # ------------------------------------------------------------------

    async def verify_paypal_order(self, user_id: str, order_id: str) -> VerificationResult:
        """
        Capture an order and persist whatever happened.

        Credits are not granted here; a completed order becomes eligible for
        ``recover_missing_credits``.
        """
        if not self.paypal.is_configured:
            logger.error("PayPal configuration missing")
            return VerificationResult(False, PAYMENT_UNAVAILABLE_MESSAGE, 500)

        timestamp = _now().isoformat()
        idempotency_key = f"{user_id}-{order_id}-{int(_now().timestamp() * 1000)}"

        try:
            order = await self.paypal.capture_order(order_id, idempotency_key)
        except (PayPalTimeoutError, PayPalNetworkError) as e:
            is_timeout = isinstance(e, PayPalTimeoutError)
            status = PaymentStatus.TIMEOUT_ERROR.value if is_timeout else PaymentStatus.NETWORK_ERROR.value
            await self._record_outcome(
                user_id,
                order_id,
                status,
                changed_by="system",
                reason="PayPal API timeout" if is_timeout else "PayPal API network error",
                raw_payload={
                    "error": {"type": type(e).__name__, "message": str(e)},
                    "orderID": order_id,
                    "userId": user_id,
                    "timestamp": timestamp,
                },
            )
            if is_timeout:
                return VerificationResult(
                    False,
                    "Payment verification timed out. Please try again or contact support if the issue persists.",
                    408,
                )
            return VerificationResult(
                False,
                "Unable to connect to payment service. Please check your internet connection and try again.",
                503,
            )
        except PayPalAPIError as e:
            status = f"HTTP_ERROR_{e.status_code}"
            await self._record_outcome(
                user_id,
                order_id,
                status,
                changed_by="system",
                reason=f"PayPal API HTTP error: {e.status_code}",
                raw_payload={
                    "error": {"status": e.status_code, "details": e.body[:2000]},
                    "orderID": order_id,
                    "userId": user_id,
                    "timestamp": timestamp,
                },
            )
            if e.status_code == 404:
                message = "Payment order not found. Please start a new payment process."
            elif e.status_code == 422:
                message = "Payment cannot be processed. The order may have already been captured or canceled."
            else:
                message = "Payment verification failed. Please contact support if this issue persists."
            return VerificationResult(False, message, 400)
        except PayPalResponseError as e:
            await self._record_outcome(
                user_id,
                order_id,
                PaymentStatus.JSON_PARSE_ERROR.value,
                changed_by="system",
                reason="Failed to parse PayPal API response",
                raw_payload={
                    "error": {"type": "JSON_PARSE_ERROR", "message": str(e)},
                    "orderID": order_id,
                    "userId": user_id,
                    "timestamp": timestamp,
                },
            )
            return VerificationResult(False, "Invalid response from payment service. Please try again.", 502)
        except PayPalAuthError:
            return VerificationResult(False, PAYMENT_UNAVAILABLE_MESSAGE, 500)

        recorded_order_id = order.id or order_id
        amount = str(order.amount) if order.amount is not None else "0"

        if order.is_completed:
            await self._record_outcome(
                user_id,
                recorded_order_id,
                order.status,
                changed_by="paypal",
                reason="Payment captured successfully",
                raw_payload=order.raw,
                amount=amount,
                currency=order.currency,
                capture_id=order.capture_id,
                verified_at=_now(),
            )
            logger.info("Payment verified for order %s by user %s", recorded_order_id, user_id)
            return VerificationResult(True, "Payment verified successfully!", 200, recorded_order_id)

        await self._record_outcome(
            user_id,
            recorded_order_id,
            order.status,
            changed_by="paypal",
            reason=f"Payment verification failed - status: {order.status}",
            raw_payload=order.raw,
            amount=amount,
            currency=order.currency,
            capture_id=order.capture_id,
        )
        return VerificationResult(False, _status_message(order.status), 400, recorded_order_id)

    # ------------------------------------------------------------------
    # Polar webhook credits
    # ------------------------------------------------------------------

    async def add_credits_to_user(
        self,
        user_id: str,
        credits: int,
        order_id: str,
        package_id: int,
    ) -> PaymentResult:
        """
        Grant credits for an externally paid order.

        Idempotent on ``order_id``: an order that already granted credits
        returns the current balance without changing it.
        """
        try:
            user = await self._get_user(user_id, for_update=True)
            if not user:
                return PaymentResult(success=False, message="User not found", error="USER_NOT_FOUND")

            transaction = await self._get_transaction(order_id)
            if transaction and transaction.status == PaymentStatus.COMPLETED.value:
                logger.info("Order %s already credited, skipping", order_id)
                return PaymentResult(
                    success=True,
                    message="Order already processed",
                    new_balance=user.credits,
                    transaction_id=str(transaction.id),
                )

            package = get_package(package_id)
            previous_status = transaction.status if transaction else None
            if transaction is None:
                transaction = PaymentTransaction(user_id=user_id, order_id=order_id)
                self.db.add(transaction)
            transaction.amount = str(package.price) if package else "0"
            transaction.currency = CURRENCY
            transaction.status = PaymentStatus.COMPLETED.value
            transaction.raw_payload = {
                "provider": "polar",
                "packageId": package_id,
                "packageName": package.name if package else None,
                "credits": credits,
                "processedAt": _now().isoformat(),
            }
            transaction.verified_at = _now()
            await self.db.flush()

            user.credits += credits
            await self.create_audit_log(
                transaction_id=transaction.id,
                previous_status=previous_status,
                new_status=PaymentStatus.COMPLETED.value,
                changed_by="polar",
                reason=f"Polar order processed - Added {credits} credits",
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to add credits for order %s: %s", order_id, e)
            return PaymentResult(success=False, message="Failed to add credits", error=str(e))

        logger.info("Added %d credits to user %s for Polar order %s", credits, user_id, order_id)
        return PaymentResult(
            success=True,
            message=f"Added {credits} credits",
            new_balance=user.credits,
            transaction_id=str(transaction.id),
        )

    # ------------------------------------------------------------------
    # Recovery and history
    # ------------------------------------------------------------------

    async def recover_missing_credits(self, user_id: str) -> PaymentResult:
        """
        Grant credits for the user's verified, completed orders that never
        received them.
        """
        granted = [
            and_(PaymentAuditLog.new_status == status, PaymentAuditLog.changed_by == changed_by)
            for status, changed_by in CREDIT_GRANTING_AUDITS
        ]

        already_granted = exists().where(
            PaymentAuditLog.transaction_id == PaymentTransaction.id,
            or_(*granted),
        )

        try:
            result = await self.db.execute(
                select(PaymentTransaction).where(
                    PaymentTransaction.user_id == user_id,
                    PaymentTransaction.status == PaymentStatus.COMPLETED.value,
                    PaymentTransaction.verified_at.is_not(None),
                    ~already_granted,
                )
            )
            missing = list(result.scalars().all())

            if not missing:
                return PaymentResult(success=True, message="No missing credits found", new_balance=0)

            user = await self._get_user(user_id, for_update=True)
            if not user:
                return PaymentResult(success=False, message="Credit recovery failed", error="User not found")

            total_recovered = 0
            for transaction in missing:
                credits = _payload_credits(transaction)
                if credits <= 0:
                    continue
                user.credits += credits
                await self.create_audit_log(
                    transaction_id=transaction.id,
                    previous_status=PaymentStatus.COMPLETED.value,
                    new_status=PaymentStatus.CREDITS_RECOVERED.value,
                    changed_by="recovery_system",
                    reason=f"Recovered {credits} missing credits",
                )
                total_recovered += credits

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error("Credit recovery failed for %s: %s", user_id, e)
            return PaymentResult(success=False, message="Credit recovery failed", error=str(e))

        if total_recovered == 0:
            return PaymentResult(success=True, message="No credits needed recovery", new_balance=0)

        logger.info("Recovered %d credits for user %s", total_recovered, user_id)
        return PaymentResult(
            success=True,
            message=f"Recovered {total_recovered} missing credits!",
            new_balance=user.credits,
        )

    async def get_payment_history(self, user_id: str, limit: int = PAYMENT_HISTORY_LIMIT) -> list[PaymentTransaction]:
        result = await self.db.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.user_id == user_id)
            .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


def _payload_credits(transaction: PaymentTransaction) -> int:
    """Credits recorded for an order, taken from the package when not stored."""
    payload = transaction.raw_payload or {}
    credits = payload.get("credits")
    if isinstance(credits, int) and not isinstance(credits, bool):
        return credits

    package_id = payload.get("packageId")
    package = get_package(package_id) if isinstance(package_id, int) else None
    if package:
        return package.credits

    # Verified orders carry PayPal's capture payload; match on the paid amount
    try:
        paid = Decimal(transaction.amount)
    except (ArithmeticError, TypeError, ValueError):
        return 0

    for candidate in CREDIT_PACKAGES.values():
        if amount_matches(candidate, paid):
            return candidate.credits
    return 0
